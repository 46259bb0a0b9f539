"""
Candidate path generation and the first-success walk over candidates.

Order is the tie-break policy: direct pools are assumed most liquid, then
wrapped-native pools, then stable intermediaries as a last resort. Each
tier is a strategy in DEFAULT_PATH_STRATEGIES; add a tier by adding a
callable there.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from core.errors import SwapError
from core.log import log_warn
from core.tokens import same_address

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class CandidatePath:
    tokens: Tuple[str, ...]
    description: str

    @property
    def hops(self) -> int:
        return len(self.tokens) - 1


@dataclass(frozen=True)
class PathContext:
    from_addr: str
    to_addr: str
    wrapped_native: str
    stables: Tuple[str, ...] = ()
    labels: Tuple[Tuple[str, str], ...] = ()

    def label(self, address: str, fallback: str) -> str:
        for addr, name in self.labels:
            if same_address(addr, address):
                return name
        return fallback

    def is_endpoint(self, address: str) -> bool:
        return same_address(address, self.from_addr) or same_address(address, self.to_addr)


PathStrategy = Callable[[PathContext], Iterable[CandidatePath]]


def direct(ctx: PathContext) -> Iterable[CandidatePath]:
    yield CandidatePath((ctx.from_addr, ctx.to_addr), "direct")


def via_wrapped_native(ctx: PathContext) -> Iterable[CandidatePath]:
    if ctx.is_endpoint(ctx.wrapped_native):
        return
    name = ctx.label(ctx.wrapped_native, "WPLS")
    yield CandidatePath((ctx.from_addr, ctx.wrapped_native, ctx.to_addr), f"via {name}")


def via_stables(ctx: PathContext) -> Iterable[CandidatePath]:
    for i, stable in enumerate(ctx.stables):
        if ctx.is_endpoint(stable) or same_address(stable, ctx.wrapped_native):
            continue
        name = ctx.label(stable, f"stable #{i + 1}")
        yield CandidatePath((ctx.from_addr, stable, ctx.to_addr), f"via {name}")


DEFAULT_PATH_STRATEGIES: Tuple[PathStrategy, ...] = (direct, via_wrapped_native, via_stables)


def is_valid_path(tokens: Sequence[str]) -> bool:
    if len(tokens) < 2:
        return False
    return all(not same_address(a, b) for a, b in zip(tokens, tokens[1:]))


def candidate_paths(
    from_addr: str,
    to_addr: str,
    wrapped_native: str,
    stables: Sequence[str] = (),
    strategies: Sequence[PathStrategy] = DEFAULT_PATH_STRATEGIES,
    labels: Sequence[Tuple[str, str]] = (),
) -> List[CandidatePath]:
    """Ordered, de-duplicated candidate paths from from_addr to to_addr.

    Addresses must already have NATIVE replaced by the wrapped-native
    address. Identical endpoints produce no candidates.
    """
    if same_address(from_addr, to_addr):
        return []
    ctx = PathContext(from_addr, to_addr, wrapped_native, tuple(stables), tuple(labels))
    seen = set()
    out: List[CandidatePath] = []
    for strategy in strategies:
        for candidate in strategy(ctx):
            key = tuple(t.lower() for t in candidate.tokens)
            if key in seen or not is_valid_path(candidate.tokens):
                continue
            seen.add(key)
            out.append(candidate)
    return out


async def first_success(
    candidates: Iterable[T],
    attempt: Callable[[T], Awaitable[R]],
    accept: Optional[Callable[[R], bool]] = None,
    tag: str = "paths",
) -> Optional[Tuple[T, R]]:
    """Try candidates strictly in order; return the first accepted result.

    A candidate fails when attempt() raises a SwapError or the result is
    rejected by accept(). Returns None when every candidate fails.
    """
    for candidate in candidates:
        try:
            result = await attempt(candidate)
        except SwapError as e:
            log_warn(tag, f"{_describe(candidate)} failed: {e}")
            continue
        if accept is not None and not accept(result):
            log_warn(tag, f"{_describe(candidate)} returned an unusable result")
            continue
        return candidate, result
    return None


def _describe(candidate: object) -> str:
    return getattr(candidate, "description", None) or repr(candidate)
