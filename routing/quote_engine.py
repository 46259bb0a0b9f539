from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from connectors.gateway import ChainGateway
from core.config import DEFAULT_SLIPPAGE_PERCENT, MAX_SLIPPAGE_PERCENT, NetworkConfig
from core.errors import SwapError
from core.log import log_info, log_warn
from core.token_registry import TokenRegistry
from core.tokens import NATIVE, TokenLike, is_native, routing_address, same_address, short_address, token_address
from core.units import DecimalResolver, from_base_units, min_amount_out, parse_amount, slippage_percent_to_bps, to_base_units
from routing.paths import DEFAULT_PATH_STRATEGIES, CandidatePath, PathStrategy, candidate_paths, first_success
from routing.price_impact import PriceImpactModel
from routing.results import Found, NotFound, Quote, Result


@dataclass(frozen=True)
class _Request:
    from_token: TokenLike
    to_token: TokenLike
    from_addr: str
    to_addr: str
    amount_in: int
    from_decimals: int
    to_decimals: int
    slippage_bps: int


class QuoteEngine:
    """
    Prices a swap by walking candidate paths against router contracts.

    Quoting never raises for chain-side problems: every failure degrades to
    the next candidate, and exhausting all of them yields NotFound with a
    zero placeholder quote so a UI can keep rendering.

    - get_swap_quote: first successful candidate on the designated router
    - best_path: all candidates on one router, highest output wins
    - compare_routers: first-success walk on every registry router, best router wins
    """

    def __init__(
        self,
        network: NetworkConfig,
        gateway: Optional[ChainGateway] = None,
        registry: Optional[TokenRegistry] = None,
        strategies: Sequence[PathStrategy] = DEFAULT_PATH_STRATEGIES,
        impact_model: Optional[PriceImpactModel] = None,
    ) -> None:
        self.network = network
        self.gateway = gateway
        self.registry = registry
        self.strategies = tuple(strategies)
        self.impact_model = impact_model or PriceImpactModel()

    def _new_gateway(self) -> ChainGateway:
        # Handles are per request unless one was injected
        return self.gateway or ChainGateway(self.network)

    # ----------------------------
    # public API
    # ----------------------------
    async def get_swap_quote(
        self,
        from_token: TokenLike,
        to_token: TokenLike,
        amount: str,
        slippage: float = DEFAULT_SLIPPAGE_PERCENT,
        router: Optional[str] = None,
    ) -> Result[Quote]:
        router_addr = router or self.network.default_router

        async def run(gateway: ChainGateway, req: _Request) -> Result[Quote]:
            hit = await first_success(
                self.candidates(req.from_addr, req.to_addr),
                lambda c: gateway.get_amounts_out(router_addr, req.amount_in, c.tokens),
                accept=_has_output,
                tag="quote",
            )
            if hit is None:
                log_warn("quote", "All paths failed")
                return self._not_found(req, "no route found", router_addr)
            candidate, amounts = hit
            return Found(self._build_quote(req, candidate, amounts[-1], router_addr))

        return await self._run(from_token, to_token, amount, slippage, run)

    async def best_path(
        self,
        from_token: TokenLike,
        to_token: TokenLike,
        amount: str,
        slippage: float = DEFAULT_SLIPPAGE_PERCENT,
        router: Optional[str] = None,
    ) -> Result[Quote]:
        router_addr = router or self.network.default_router

        async def run(gateway: ChainGateway, req: _Request) -> Result[Quote]:
            candidates = self.candidates(req.from_addr, req.to_addr)
            outputs = await asyncio.gather(*(self._try_path(gateway, router_addr, req.amount_in, c) for c in candidates))
            best: Optional[Tuple[CandidatePath, int]] = None
            for candidate, out in zip(candidates, outputs):
                if out is not None and (best is None or out > best[1]):
                    best = (candidate, out)
            if best is None:
                return self._not_found(req, "no route found", router_addr)
            return Found(self._build_quote(req, best[0], best[1], router_addr))

        return await self._run(from_token, to_token, amount, slippage, run)

    async def compare_routers(
        self,
        from_token: TokenLike,
        to_token: TokenLike,
        amount: str,
        slippage: float = DEFAULT_SLIPPAGE_PERCENT,
    ) -> Result[Quote]:
        routers = self.network.router_addresses()

        async def walk(gateway: ChainGateway, req: _Request, router_addr: str) -> Optional[Tuple[CandidatePath, int]]:
            hit = await first_success(
                self.candidates(req.from_addr, req.to_addr),
                lambda c: gateway.get_amounts_out(router_addr, req.amount_in, c.tokens),
                accept=_has_output,
                tag=f"quote {short_address(router_addr)}",
            )
            return None if hit is None else (hit[0], hit[1][-1])

        async def run(gateway: ChainGateway, req: _Request) -> Result[Quote]:
            results = await asyncio.gather(*(walk(gateway, req, r) for r in routers))
            best: Optional[Tuple[str, CandidatePath, int]] = None
            for router_addr, hit in zip(routers, results):
                if hit is not None and (best is None or hit[1] > best[2]):
                    best = (router_addr, hit[0], hit[1])
            if best is None:
                return self._not_found(req, "no route found on any router", self.network.default_router)
            log_info("quote", f"Best router {short_address(best[0])} via {best[1].description}")
            return Found(self._build_quote(req, best[1], best[2], best[0]))

        return await self._run(from_token, to_token, amount, slippage, run)

    def candidates(self, from_addr: str, to_addr: str) -> List[CandidatePath]:
        return candidate_paths(
            from_addr,
            to_addr,
            self.network.wrapped_native,
            self.network.stable_intermediaries,
            self.strategies,
            labels=self._labels(),
        )

    def describe_path(self, path: Sequence[str]) -> str:
        names = []
        for address in path:
            symbol = self.registry.symbol_for(address) if self.registry else None
            if symbol is None and same_address(address, self.network.wrapped_native):
                symbol = "WPLS"
            names.append(symbol or short_address(address))
        return " → ".join(names)

    # ----------------------------
    # internals
    # ----------------------------
    async def _run(self, from_token, to_token, amount, slippage, run) -> Result[Quote]:
        from_addr = routing_address(from_token, self.network.wrapped_native)
        to_addr = routing_address(to_token, self.network.wrapped_native)
        placeholder = Quote.zero(path=(token_address(from_token), token_address(to_token)))
        if same_address(from_addr, to_addr):
            log_warn("quote", "Cannot swap a token to itself")
            return NotFound("cannot swap a token to itself", placeholder)

        gateway = self._new_gateway()

        async def flow() -> Result[Quote]:
            req = await self._prepare(gateway, from_token, to_token, from_addr, to_addr, amount, slippage)
            if isinstance(req, NotFound):
                return req
            return await run(gateway, req)

        try:
            return await asyncio.wait_for(flow(), self.network.quote_timeout)
        except asyncio.TimeoutError:
            log_warn("quote", f"Quote timed out after {self.network.quote_timeout}s")
            return NotFound("quote timed out", placeholder)

    async def _prepare(self, gateway, from_token, to_token, from_addr, to_addr, amount, slippage):
        placeholder = Quote.zero(path=(token_address(from_token), token_address(to_token)))
        try:
            value = parse_amount(amount)
            slippage_bps = slippage_percent_to_bps(slippage)
        except ValueError as e:
            return NotFound(str(e), placeholder)
        if value <= 0:
            return NotFound("amount must be positive", placeholder)
        if not 0 <= slippage_bps <= MAX_SLIPPAGE_PERCENT * 100:
            return NotFound(f"slippage must be between 0 and {MAX_SLIPPAGE_PERCENT}%", placeholder)

        resolver = DecimalResolver(gateway)
        from_decimals, to_decimals = await asyncio.gather(resolver.resolve(from_token), resolver.resolve(to_token))
        amount_in = to_base_units(value, from_decimals)
        if amount_in <= 0:
            return NotFound(f"amount is below the smallest unit of a {from_decimals}-decimal token", placeholder)
        log_info("quote", f"Quoting {amount} {self._symbol(from_token)} -> {self._symbol(to_token)} ({from_decimals}/{to_decimals} decimals)")
        return _Request(from_token, to_token, from_addr, to_addr, amount_in, from_decimals, to_decimals, slippage_bps)

    async def _try_path(self, gateway: ChainGateway, router: str, amount_in: int, candidate: CandidatePath) -> Optional[int]:
        try:
            amounts = await gateway.get_amounts_out(router, amount_in, candidate.tokens)
        except SwapError as e:
            log_warn("quote", f"{candidate.description} failed: {e}")
            return None
        return amounts[-1] if _has_output(amounts) else None

    def _build_quote(self, req: _Request, candidate: CandidatePath, output: int, router: str) -> Quote:
        amount_in_human = from_base_units(req.amount_in, req.from_decimals)
        output_human = from_base_units(output, req.to_decimals)
        execution_price = float(output_human / amount_in_human) if amount_in_human > 0 else 0.0
        impact = self.impact_model.estimate(float(amount_in_human), float(output_human))

        display = list(candidate.tokens)
        if is_native(token_address(req.from_token)):
            display[0] = NATIVE
        if is_native(token_address(req.to_token)):
            display[-1] = NATIVE

        quote = Quote(
            output_amount=int(output),
            path=candidate.tokens,
            router_address=router,
            price_impact_percent=impact,
            execution_price=execution_price,
            route_description=candidate.description,
            amount_in=req.amount_in,
            min_amount_out=min_amount_out(output, req.slippage_bps),
            display_path=tuple(display),
            route_label=self.describe_path(candidate.tokens),
            from_decimals=req.from_decimals,
            to_decimals=req.to_decimals,
        )
        log_info(
            "quote",
            f"Swap quote ({candidate.description}): {amount_in_human} -> {output_human}, "
            f"price {execution_price:.8g}, impact {impact:.2f}%",
        )
        return quote

    def _not_found(self, req: _Request, reason: str, router: str) -> NotFound[Quote]:
        path = (token_address(req.from_token), token_address(req.to_token))
        return NotFound(
            reason,
            Quote.zero(
                path=path,
                router_address=router,
                amount_in=req.amount_in,
                from_decimals=req.from_decimals,
                to_decimals=req.to_decimals,
            ),
        )

    def _labels(self) -> Tuple[Tuple[str, str], ...]:
        labels = [(self.network.wrapped_native, "WPLS")]
        if self.registry is not None:
            for stable in self.network.stable_intermediaries:
                symbol = self.registry.symbol_for(stable)
                if symbol:
                    labels.append((stable, symbol))
        return tuple(labels)

    def _symbol(self, token: TokenLike) -> str:
        symbol = getattr(token, "symbol", None)
        return symbol or short_address(token_address(token))


def _has_output(amounts: Sequence[int]) -> bool:
    return len(amounts) > 0 and amounts[-1] > 0
