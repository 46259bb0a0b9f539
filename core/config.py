from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple


NATIVE = "NATIVE"
MAX_UINT256 = (1 << 256) - 1

DEFAULT_SLIPPAGE_PERCENT = 0.5
MAX_SLIPPAGE_PERCENT = 50

# Price impact warning thresholds (percent)
PRICE_IMPACT_WARNING = 2
PRICE_IMPACT_HIGH = 5


@dataclass(frozen=True)
class RouterInfo:
    name: str
    address: str
    version: str  # "V2" | "V3"


@dataclass(frozen=True)
class NetworkConfig:
    """
    Everything the engine needs to know about one chain.

    Injected into every component; nothing here is looked up or mutated at
    runtime. Use dataclasses.replace() to derive a variant.
    """

    name: str
    chain_id: int
    rpc_url: str
    wrapped_native: str
    stable_intermediaries: Tuple[str, ...]
    routers: Tuple[RouterInfo, ...]
    default_router: str
    explorer_tx_url: str
    native_symbol: str = "PLS"
    # Timeouts in seconds
    read_timeout: float = 10.0
    quote_timeout: float = 15.0
    receipt_timeout: float = 300.0
    deadline_minutes: int = 20
    gas_limit_multiplier: float = 1.2
    default_gas_limit: int = 300_000
    poa_middleware: bool = False

    def router_addresses(self) -> Tuple[str, ...]:
        return tuple(r.address for r in self.routers)

    def router_version(self, address: str) -> Optional[str]:
        for r in self.routers:
            if r.address.lower() == address.lower():
                return r.version
        return None

    def tx_explorer_url(self, tx_hash: str) -> str:
        return f"{self.explorer_tx_url}{tx_hash}"


NINEMM_V2_ROUTER = "0xcC73b59F8D7b7c532703bDfea2808a28a488cF47"
NINEMM_V3_ROUTER = "0xf6076d61A0C46C944852F65838E1b12A2910a717"

MAINNET = NetworkConfig(
    name="mainnet",
    chain_id=369,
    rpc_url="https://rpc-pulsechain.g4mm4.io",
    wrapped_native="0xA1077a294dDE1B09bB078844df40758a5D0f9a27",
    stable_intermediaries=(
        "0x15d38573d2feeb82e7ad5187ab8c1d52810b1f07",  # USDC
        "0xefD766cCb38EaF1dfd701853BFCe31359239F305",  # DAI
    ),
    routers=(
        RouterInfo("9mm V2", NINEMM_V2_ROUTER, "V2"),
        RouterInfo("9mm V3", NINEMM_V3_ROUTER, "V3"),
    ),
    default_router=NINEMM_V2_ROUTER,
    explorer_tx_url="https://scan.pulsechain.com/tx/",
)

TESTNET = NetworkConfig(
    name="testnet",
    chain_id=943,
    rpc_url="https://rpc-testnet-pulsechain.g4mm4.io",
    wrapped_native="0x70499adEBB11Efd915E3b69E700c331778628707",
    stable_intermediaries=(
        "0x15d38573d2feeb82e7ad5187ab8c1d52810b1f07",
        "0xefD766cCb38EaF1dfd701853BFCe31359239F305",
    ),
    routers=(
        RouterInfo("9mm V2", NINEMM_V2_ROUTER, "V2"),
        RouterInfo("9mm V3", NINEMM_V3_ROUTER, "V3"),
    ),
    default_router=NINEMM_V2_ROUTER,
    explorer_tx_url="https://scan.v4.testnet.pulsechain.com/tx/",
    native_symbol="tPLS",
)


def load_network(testnet: bool = False, env: Optional[Mapping[str, str]] = None) -> NetworkConfig:
    """Return the mainnet or testnet config with environment overrides applied.

    Recognized variables: DEX_RPC_URL, DEX_ROUTER_ADDRESS, DEX_WPLS_ADDRESS and
    their DEX_TESTNET_* counterparts. An overridden router becomes the
    default router and is added to the registry if it is not already there.
    """
    env = os.environ if env is None else env
    base = TESTNET if testnet else MAINNET
    prefix = "DEX_TESTNET_" if testnet else "DEX_"

    rpc_url = env.get(prefix + "RPC_URL") or base.rpc_url
    wrapped = env.get(prefix + "WPLS_ADDRESS") or base.wrapped_native
    router = env.get(prefix + "ROUTER_ADDRESS") or base.default_router

    routers = base.routers
    if all(r.address.lower() != router.lower() for r in routers):
        routers = (RouterInfo("custom", router, "V2"),) + routers
    return replace(base, rpc_url=rpc_url, wrapped_native=wrapped, default_router=router, routers=routers)
