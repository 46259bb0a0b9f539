from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class PriceImpactModel:
    """
    Display-only price impact estimate.

    There is no reserve data at quote time, so the model builds a synthetic
    constant-product pool at a fixed baseline depth that reproduces the
    observed rate, pushes the trade through it and compares the marginal
    price before and after. Larger trades relative to the baseline give a
    larger impact. Results are clamped to [min_percent, max_percent].
    """

    baseline_reserve: float = 1_000_000.0
    volatility_factor: float = 0.2
    min_percent: float = 0.1
    max_percent: float = 5.0

    def clamp(self, percent: float) -> float:
        return min(max(percent, self.min_percent), self.max_percent)

    def estimate(self, amount_in: float, amount_out: float) -> float:
        """Impact in percent for amount_in -> amount_out (human units)."""
        if not (amount_in > 0 and amount_out > 0) or not math.isfinite(amount_in) or not math.isfinite(amount_out):
            return self.min_percent

        k = self.baseline_reserve * self.baseline_reserve
        rate = amount_out / amount_in
        reserve_out = math.sqrt(k / rate)
        reserve_in = k / reserve_out
        price_before = reserve_out / reserve_in

        reserve_in_after = reserve_in + amount_in
        reserve_out_after = k / reserve_in_after
        effective_price = (reserve_out - reserve_out_after) / amount_in

        impact = abs((effective_price - price_before) / price_before)
        trade_size_factor = min(1.0, amount_in / self.baseline_reserve)
        impact *= 1 + trade_size_factor * self.volatility_factor
        return self.clamp(impact * 100)
