from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence

from core.config import NATIVE
from core.errors import SwapError
from core.log import log_info, log_warn
from core.tokens import Token, is_native, same_address

if TYPE_CHECKING:
    from connectors.gateway import ChainGateway


DATA_DIR = os.path.join(os.path.dirname(__file__), "data")


def token_list_path(network: str, custom: bool = False) -> str:
    prefix = "custom_tokens" if custom else "pulsechain_tokens"
    return os.path.abspath(os.path.join(DATA_DIR, f"{prefix}_{network}.json"))


# Known alternatives tried when a configured testnet address has no code
TESTNET_CANDIDATES: Dict[str, List[str]] = {
    "PLSX": [
        "0x8a810ea8B121d08342E9e7696f4a9915cBE494B7",
        "0x95B303987A60C71504D99Aa1b13B4DA07b0790ab",
    ],
    "HEX": ["0x2b591e99afE9f32eAA6214f7B7629768c40Eeb39"],
    "WPLS": ["0x70499adEBB11Efd915E3b69E700c331778628707"],
}


class TokenRegistry:
    """
    Loads and resolves token metadata for PulseChain.

    - Supports mainnet and testnet lists
    - Case-insensitive symbol and address lookup
    - Handles duplicate symbols by returning the first match
    """

    def __init__(self, network: str = "mainnet", path: Optional[str] = None) -> None:
        if network not in {"mainnet", "testnet"}:
            raise ValueError("network must be 'mainnet' or 'testnet'")
        self.network = network
        self._path = path or token_list_path(network)
        self._tokens_by_symbol: Dict[str, List[Token]] = {}
        self._tokens_by_address: Dict[str, Token] = {}
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self._path):
            raise FileNotFoundError(f"Token list not found at {self._path}")
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        tokens = list(data.get("tokens", []))
        # Custom tokens are appended after the base list
        custom_path = token_list_path(self.network, custom=True)
        if os.path.exists(custom_path):
            try:
                with open(custom_path, "r", encoding="utf-8") as f:
                    tokens.extend(json.load(f).get("tokens", []))
            except (OSError, ValueError) as e:
                log_warn("tokens", f"Ignoring malformed custom token list {custom_path}: {e}")
        for t in tokens:
            token = Token(
                address=str(t.get("address")),
                symbol=str(t.get("symbol", "")),
                name=str(t.get("name", "")),
                decimals=int(t.get("decimals", 18)),
                logo_uri=t.get("logoURI"),
            )
            self._tokens_by_symbol.setdefault(token.symbol.upper(), []).append(token)
            self._tokens_by_address.setdefault(token.address.lower(), token)

    def get(self, symbol: str) -> Token:
        candidates = self._tokens_by_symbol.get(symbol.upper(), [])
        if not candidates:
            raise KeyError(f"Token symbol '{symbol}' not found in registry ({self.network})")
        return candidates[0]

    def find(self, symbol: str) -> List[Token]:
        return list(self._tokens_by_symbol.get(symbol.upper(), []))

    def by_address(self, address: str) -> Optional[Token]:
        return self._tokens_by_address.get(address.lower())

    def resolve(self, symbol_or_address: str) -> Token:
        """Accept a symbol, a 0x address or NATIVE and return a Token."""
        value = symbol_or_address.strip()
        if is_native(value):
            native = self.by_address(NATIVE)
            if native is None:
                raise KeyError(f"No native token configured for {self.network}")
            return native
        if value.lower().startswith("0x"):
            known = self.by_address(value)
            return known or Token(address=value, symbol=value[:6])
        return self.get(value)

    def symbol_for(self, address: str) -> Optional[str]:
        token = self.by_address(address)
        return token.symbol if token else None

    def list_symbols(self) -> List[str]:
        return sorted(self._tokens_by_symbol.keys())

    def addresses(self) -> Dict[str, str]:
        return {symbol: tokens[0].address for symbol, tokens in self._tokens_by_symbol.items()}


async def _has_code(gateway: "ChainGateway", address: str) -> bool:
    try:
        code = await gateway.get_code(address)
    except SwapError as e:
        log_warn("tokens", f"getCode failed for {address}: {e}")
        return False
    return len(code) > 0


async def discover_token(
    gateway: "ChainGateway",
    symbol: str,
    candidates: Sequence[str],
) -> Optional[str]:
    """Return the first candidate address with code whose symbol() matches."""
    for address in candidates:
        if not await _has_code(gateway, address):
            log_info("tokens", f"No contract code found at {address}")
            continue
        try:
            found_symbol = await gateway.symbol(address)
        except SwapError as e:
            log_warn("tokens", f"Error verifying token at {address}: {e}")
            continue
        if found_symbol.upper() == symbol.upper():
            return address
        log_info("tokens", f"Symbol mismatch at {address}: expected {symbol}, got {found_symbol}")
    return None


async def verify_token_addresses(
    gateway: "ChainGateway",
    addresses: Mapping[str, str],
    candidates: Optional[Mapping[str, Sequence[str]]] = None,
) -> Dict[str, str]:
    """
    Verify token addresses against the chain (testnet discovery).

    NATIVE entries are kept as-is. An address is kept when contract code
    exists there; otherwise the candidates for that symbol are tried.
    Symbols that can be neither verified nor discovered are left out.
    """
    candidates = TESTNET_CANDIDATES if candidates is None else candidates
    verified: Dict[str, str] = {}
    for symbol, address in addresses.items():
        if is_native(address):
            verified[symbol] = address
            continue
        if await _has_code(gateway, address):
            verified[symbol] = address
            continue
        others = [c for c in candidates.get(symbol, []) if not same_address(c, address)]
        discovered = await discover_token(gateway, symbol, others)
        if discovered:
            log_info("tokens", f"Discovered {symbol} at {discovered}")
            verified[symbol] = discovered
        else:
            log_warn("tokens", f"Could not verify or discover address for {symbol}")
    return verified
