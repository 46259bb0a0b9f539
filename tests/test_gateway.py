from __future__ import annotations

import asyncio
from dataclasses import replace
from types import SimpleNamespace

import pytest
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from connectors.gateway import SWAP_TOKENS_FOR_TOKENS, ChainGateway
from core.config import MAINNET
from core.errors import CallTimeout, ContractRevert, InvalidResponse, InvalidSwap, RpcError

ROUTER = MAINNET.default_router
WPLS = MAINNET.wrapped_native
TOKEN = "0x" + "a1" * 20


class FakeCall:
    def __init__(self, result, delay=0.0):
        self.result = result
        self.delay = delay

    async def call(self):
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeFunctions:
    def __init__(self, eth):
        self._eth = eth

    def __getattr__(self, name):
        def fn(*args):
            self._eth.calls.append((name, args))
            return FakeCall(self._eth.results[name], self._eth.delay)

        return fn


class FakeEth:
    def __init__(self, results=None, delay=0.0):
        self.results = results or {}
        self.delay = delay
        self.calls = []

    def contract(self, address, abi):
        return SimpleNamespace(address=address, functions=FakeFunctions(self))

    async def get_code(self, address):
        return self.results.get("code", b"")

    async def wait_for_transaction_receipt(self, tx_hash, timeout):
        raise self.results["receipt"]


def _gateway(results=None, delay=0.0):
    w3 = SimpleNamespace(eth=FakeEth(results, delay))
    return ChainGateway(MAINNET, w3=w3)


def test_default_provider_has_ens_disabled():
    gw = ChainGateway(MAINNET)
    assert isinstance(gw.w3, AsyncWeb3)
    assert gw.w3.ens is None


def test_poa_middleware_is_optional():
    gw = ChainGateway(replace(MAINNET, poa_middleware=True))
    assert isinstance(gw.w3, AsyncWeb3)


@pytest.mark.parametrize("value", ["pulsechain.eth", "WPLS", "0x1234", "", None])
def test_non_hex_addresses_are_rejected(value):
    with pytest.raises(InvalidSwap):
        ChainGateway.to_checksum(value)


def test_name_in_path_fails_before_any_call():
    gw = _gateway({"getAmountsOut": [1, 2]})
    with pytest.raises(InvalidSwap):
        asyncio.run(gw.get_amounts_out(ROUTER, 1, [TOKEN, "hex.pls"]))
    assert gw.w3.eth.calls == []


def test_get_amounts_out_checksums_path():
    gw = _gateway({"getAmountsOut": [10, 20]})
    assert asyncio.run(gw.get_amounts_out(ROUTER, 10, [TOKEN, WPLS.lower()])) == [10, 20]
    name, args = gw.w3.eth.calls[0]
    assert name == "getAmountsOut"
    assert args[1] == [ChainGateway.to_checksum(TOKEN), ChainGateway.to_checksum(WPLS)]


@pytest.mark.parametrize("raw", [None, [1], [1, 2, 3], [1, "2"], [1, -2], "0x00"])
def test_malformed_amounts_raise_invalid_response(raw):
    gw = _gateway({"getAmountsOut": raw})
    with pytest.raises(InvalidResponse):
        asyncio.run(gw.get_amounts_out(ROUTER, 1, [TOKEN, WPLS]))


def test_timeout_is_distinct_from_revert():
    slow = _gateway({"getAmountsOut": [1, 2]}, delay=1.0)
    with pytest.raises(CallTimeout):
        asyncio.run(slow.get_amounts_out(ROUTER, 1, [TOKEN, WPLS], timeout=0.01))

    reverting = _gateway({"getAmountsOut": ContractLogicError("execution reverted: PancakeLibrary: INSUFFICIENT_LIQUIDITY")})
    with pytest.raises(ContractRevert):
        asyncio.run(reverting.get_amounts_out(ROUTER, 1, [TOKEN, WPLS]))


def test_transport_errors_become_rpc_error():
    gw = _gateway({"decimals": ConnectionError("connection refused")})
    with pytest.raises(RpcError):
        asyncio.run(gw.decimals(TOKEN))


def test_decimals_validation():
    assert asyncio.run(_gateway({"decimals": 6}).decimals(TOKEN)) == 6
    with pytest.raises(InvalidResponse):
        asyncio.run(_gateway({"decimals": 300}).decimals(TOKEN))


def test_get_code():
    assert asyncio.run(_gateway({"code": b"\x60\x80"}).get_code(TOKEN)) == b"\x60\x80"


def test_receipt_timeout():
    gw = _gateway({"receipt": TimeExhausted("not mined")})
    with pytest.raises(CallTimeout):
        asyncio.run(gw.wait_for_receipt("0x" + "00" * 32, timeout=1))


def test_unknown_entry_point():
    gw = _gateway()
    with pytest.raises(InvalidSwap):
        asyncio.run(gw.build_swap("swapEverything", ROUTER, 1, 1, [TOKEN, WPLS], TOKEN, 0, TOKEN))


def test_entry_point_names_match_abi():
    names = {entry["name"] for entry in ChainGateway.ROUTER_ABI}
    assert SWAP_TOKENS_FOR_TOKENS in names
    assert {"swapExactETHForTokens", "swapExactTokensForETH", "getAmountsOut"} <= names
