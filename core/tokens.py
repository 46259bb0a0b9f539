from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from core.config import NATIVE


@dataclass(frozen=True)
class Token:
    address: str  # 0x-prefixed hex, or NATIVE
    symbol: str
    name: str = ""
    decimals: int = 18
    logo_uri: Optional[str] = None
    price: Optional[float] = None
    balance: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return is_native(self.address)


TokenLike = Union[Token, str]


def token_address(token: TokenLike) -> str:
    return token.address if isinstance(token, Token) else str(token)


def is_native(address: str) -> bool:
    return address.upper() == NATIVE


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def routing_address(token: TokenLike, wrapped_native: str) -> str:
    """Address to use inside a path: NATIVE becomes the wrapped-native contract."""
    addr = token_address(token)
    return wrapped_native if is_native(addr) else addr


def short_address(address: str, start: int = 6, end: int = 4) -> str:
    if len(address) <= start + end:
        return address
    return f"{address[:start]}...{address[-end:]}"
