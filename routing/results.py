from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, Tuple, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Quote:
    """A single priced route. Valid only for the deadline window used at execution."""

    output_amount: int  # base units of the output token
    path: Tuple[str, ...]
    router_address: str
    price_impact_percent: float
    execution_price: float
    route_description: Optional[str]
    amount_in: int = 0
    min_amount_out: int = 0
    display_path: Tuple[str, ...] = ()
    route_label: Optional[str] = None
    # Decimals the amounts above were scaled with
    from_decimals: int = 18
    to_decimals: int = 18

    @property
    def has_route(self) -> bool:
        return self.output_amount > 0 and len(self.path) >= 2

    @classmethod
    def zero(
        cls,
        path: Tuple[str, ...] = (),
        router_address: str = "",
        amount_in: int = 0,
        from_decimals: int = 18,
        to_decimals: int = 18,
    ) -> "Quote":
        return cls(
            output_amount=0,
            path=path,
            router_address=router_address,
            price_impact_percent=0.0,
            execution_price=0.0,
            route_description=None,
            amount_in=amount_in,
            display_path=path,
            from_decimals=from_decimals,
            to_decimals=to_decimals,
        )


@dataclass(frozen=True)
class Found(Generic[T]):
    value: T


@dataclass(frozen=True)
class NotFound(Generic[T]):
    """No usable result. value is a zero placeholder the caller can still render."""

    reason: str
    value: T


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """A fallback result; show it as an estimate, not as a real quote."""

    value: T
    reason: str


Result = Union[Found[T], NotFound[T], Degraded[T]]
