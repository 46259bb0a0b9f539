"""
Sandwich/MEV mitigation helpers used around execution.

- adaptive_min_amount_out: widens slippage by 25 bps per hop beyond one
- optimal_deadline: stretches the deadline with network congestion
- check_mev_risk: grades how far a fill price drifted from the expected one
- optimal_slippage: suggests a slippage for a token and trade size
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, Union

from core.tokens import Token
from core.units import min_amount_out, parse_amount

EXTRA_HOP_SLIPPAGE_BPS = 25

HIGH_VOLATILITY_SYMBOLS: FrozenSet[str] = frozenset({"HDRN", "HEX", "PLSX"})
VOLATILITY_SLIPPAGE_PERCENT = 5.0
LARGE_TRADE_USD = 1000
MEDIUM_TRADE_USD = 100
MAX_SUGGESTED_SLIPPAGE_PERCENT = 15.0
# Price used when a token carries none
UNKNOWN_TOKEN_PRICE = 0.0001


class Congestion(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_CONGESTION_FACTOR = {
    Congestion.LOW: Decimal("1"),
    Congestion.MEDIUM: Decimal("1.5"),
    Congestion.HIGH: Decimal("2"),
}


class MevRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class MevRisk:
    level: MevRiskLevel
    reason: str
    deviation_percent: float


def adaptive_slippage_bps(slippage_bps: int, path_length: int) -> int:
    extra_hops = max(0, int(path_length) - 2)
    return int(slippage_bps) + extra_hops * EXTRA_HOP_SLIPPAGE_BPS


def adaptive_min_amount_out(quoted_output: int, slippage_bps: int, path_length: int) -> int:
    """Minimum output with slippage widened for multi-hop paths.

    Raises ValueError when the widened slippage reaches 100%.
    """
    return min_amount_out(quoted_output, adaptive_slippage_bps(slippage_bps, path_length))


def optimal_deadline(now: float, base_minutes: int = 20, congestion: Union[Congestion, str] = Congestion.MEDIUM) -> int:
    """Unix deadline: base_minutes x1 (low), x1.5 (medium) or x2 (high) from now."""
    factor = _CONGESTION_FACTOR[Congestion(congestion)]
    return int(now) + int(Decimal(base_minutes) * factor * 60)


def check_mev_risk(amount_in: Union[Decimal, float], output_amount: Union[Decimal, float], expected_price: float) -> MevRisk:
    """Grade the deviation of output/input from expected_price (human units)."""
    if expected_price <= 0 or amount_in <= 0:
        raise ValueError("amount_in and expected_price must be positive")
    actual = float(output_amount) / float(amount_in)
    deviation = abs((actual - expected_price) / expected_price) * 100
    if deviation < 1:
        return MevRisk(MevRiskLevel.LOW, "Price deviation is minimal", deviation)
    if deviation < 3:
        return MevRisk(MevRiskLevel.MEDIUM, "Moderate price deviation detected", deviation)
    return MevRisk(MevRiskLevel.HIGH, "Significant price deviation detected", deviation)


def optimal_slippage(token: Token, amount: Union[str, Decimal], base_slippage: float) -> float:
    """Suggested slippage percent for trading `amount` of `token`, capped at 15%."""
    slippage = float(base_slippage)
    if token.symbol.upper() in HIGH_VOLATILITY_SYMBOLS:
        slippage += VOLATILITY_SLIPPAGE_PERCENT

    value = float(parse_amount(amount)) * (token.price or UNKNOWN_TOKEN_PRICE)
    if value > LARGE_TRADE_USD:
        slippage += 2
    elif value > MEDIUM_TRADE_USD:
        slippage += 1
    return min(slippage, MAX_SUGGESTED_SLIPPAGE_PERCENT)
