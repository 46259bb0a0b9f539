from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import TYPE_CHECKING, Dict, Union

from core.errors import SwapError
from core.log import log_warn
from core.tokens import TokenLike, is_native, token_address

if TYPE_CHECKING:
    from connectors.gateway import ChainGateway


NATIVE_DECIMALS = 18
DEFAULT_DECIMALS = 18
BPS_DENOMINATOR = 10_000


class DecimalResolver:
    """
    Resolves token decimals for one request.

    The native coin is always 18 decimals and costs no call. By default any
    failure (missing method, revert, timeout, odd value) falls back to 18,
    which is only safe for display and threshold math. With strict=True the
    failure is raised instead; use that wherever decimals size an on-chain
    amount.
    """

    def __init__(self, gateway: "ChainGateway", strict: bool = False) -> None:
        self.gateway = gateway
        self.strict = strict
        self._cache: Dict[str, int] = {}

    async def resolve(self, token: TokenLike) -> int:
        address = token_address(token)
        if is_native(address):
            return NATIVE_DECIMALS
        key = address.lower()
        if key in self._cache:
            return self._cache[key]
        try:
            decimals = await self.gateway.decimals(address)
        except SwapError as e:
            if self.strict:
                raise
            log_warn("decimals", f"Failed to get decimals for {address}, using {DEFAULT_DECIMALS}: {e}")
            decimals = DEFAULT_DECIMALS
        self._cache[key] = decimals
        return decimals


def parse_amount(amount: Union[str, int, Decimal]) -> Decimal:
    """Parse a human amount; rejects malformed, infinite and negative values."""
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")
    return value


def to_base_units(amount: Union[str, int, Decimal], decimals: int) -> int:
    """Convert a human amount ("1.5") into integer base units, rounding down."""
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = 100
        return int((value * (Decimal(10) ** int(decimals))).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(int(amount)) / (Decimal(10) ** int(decimals))


def slippage_percent_to_bps(percent: Union[float, str, Decimal]) -> int:
    """0.5 (percent) -> 50 bps. Fractions of a basis point are dropped."""
    try:
        value = Decimal(str(percent))
    except InvalidOperation as e:
        raise ValueError(f"Invalid slippage: {percent!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid slippage: {percent!r}")
    return int((value * 100).to_integral_value(rounding=ROUND_DOWN))


def min_amount_out(quoted_output: int, slippage_bps: int) -> int:
    """Slippage-bounded minimum output using integer arithmetic only."""
    if not 0 <= int(slippage_bps) < BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be in [0, {BPS_DENOMINATOR}): {slippage_bps}")
    return int(quoted_output) * (BPS_DENOMINATOR - int(slippage_bps)) // BPS_DENOMINATOR
