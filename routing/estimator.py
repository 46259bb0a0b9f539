from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from connectors.gateway import ChainGateway
from core.config import NetworkConfig
from core.errors import SwapError
from core.log import log_info, log_warn
from core.tokens import routing_address, short_address
from core.units import BPS_DENOMINATOR
from routing.results import Degraded, Found, Result


@dataclass(frozen=True)
class SafetyFactorPolicy:
    """Haircut applied to a router output, in basis points.

    Two-token paths keep base_bps; each extra hop removes per_hop_bps,
    never going below floor_bps.
    """

    base_bps: int = 9950
    per_hop_bps: int = 50
    floor_bps: int = 9800
    fallback_divisor: int = 3

    def factor_bps(self, path_length: int) -> int:
        extra_hops = max(0, path_length - 2)
        return max(self.floor_bps, self.base_bps - self.per_hop_bps * extra_hops)

    def apply(self, output: int, path_length: int) -> int:
        return int(output) * self.factor_bps(path_length) // BPS_DENOMINATOR


@dataclass(frozen=True)
class ConservativeEstimate:
    output_amount: int
    safety_factor: float
    router_address: str
    raw_output: int = 0


class ConservativeEstimator:
    """
    Lower-bound output estimate across every registry router.

    Routers are queried concurrently; one slow or failing router never
    blocks or poisons the others. When no router answers, a Degraded
    placeholder (a third of the input) is returned so callers still have a
    number to display.
    """

    def __init__(
        self,
        network: NetworkConfig,
        gateway: Optional[ChainGateway] = None,
        policy: Optional[SafetyFactorPolicy] = None,
    ) -> None:
        self.network = network
        self.gateway = gateway
        self.policy = policy or SafetyFactorPolicy()

    async def estimate(self, path: Sequence[str], amount_in: int) -> Result[ConservativeEstimate]:
        routing_path = [routing_address(t, self.network.wrapped_native) for t in path]
        gateway = self.gateway or ChainGateway(self.network)
        routers = self.network.router_addresses()

        outputs = await asyncio.gather(*(self._query(gateway, r, routing_path, amount_in) for r in routers))

        best: Optional[Tuple[str, int]] = None
        for router, out in zip(routers, outputs):
            if out is not None and out > 0 and (best is None or out > best[1]):
                best = (router, out)

        if best is None:
            log_warn("estimator", "All routers failed, returning fallback estimate")
            fallback = ConservativeEstimate(
                output_amount=int(amount_in) // self.policy.fallback_divisor,
                safety_factor=round(1 / self.policy.fallback_divisor, 2),
                router_address=routers[0] if routers else "",
                raw_output=0,
            )
            return Degraded(fallback, "all routers failed")

        router, raw = best
        factor_bps = self.policy.factor_bps(len(routing_path))
        estimate = ConservativeEstimate(
            output_amount=self.policy.apply(raw, len(routing_path)),
            safety_factor=factor_bps / BPS_DENOMINATOR,
            router_address=router,
            raw_output=raw,
        )
        log_info("estimator", f"Best router {short_address(router)}: {raw} -> {estimate.output_amount} (x{estimate.safety_factor})")
        return Found(estimate)

    async def _query(self, gateway: ChainGateway, router: str, path: Sequence[str], amount_in: int) -> Optional[int]:
        try:
            amounts = await gateway.get_amounts_out(router, amount_in, path)
        except SwapError as e:
            log_warn("estimator", f"Router {short_address(router)} failed: {e}")
            return None
        return amounts[-1] if amounts else None
