"""Pytest configuration: disable problematic plugins and provide chain fakes."""

import asyncio
from dataclasses import replace

import pytest

from core.config import MAINNET
from core.errors import ContractRevert, InvalidSwap

# Disable web3.tools.pytest_ethereum plugin which has compatibility issues
pytest_plugins = []


def pytest_configure(config):
    """Configure pytest to skip problematic plugins."""
    config.pluginmanager.set_blocked("web3.tools.pytest_ethereum")


class FakeGateway:
    """In-memory stand-in for ChainGateway.

    Routes are keyed by (router, path) with lower-cased addresses. A path
    with no route reverts like a router with no pair would.
    """

    def __init__(self):
        self._routes = {}
        self._delays = {}
        self._decimals = {}
        self._symbols = {}
        self._code = {}
        self._allowances = {}
        self._receipts = {}
        self._block_times = {}
        self._receipt_error = None
        self._build_error = None
        self.calls = []
        self.sent = []

    @staticmethod
    def _key(router, path):
        return router.lower(), tuple(t.lower() for t in path)

    def set_route(self, router, path, amounts, delay=0.0):
        key = self._key(router, path)
        self._routes[key] = amounts
        if delay:
            self._delays[key] = delay

    def quoted_paths(self):
        return [path for name, _, path in self.calls if name == "getAmountsOut"]

    async def get_amounts_out(self, router, amount_in, path, timeout=None):
        key = self._key(router, path)
        self.calls.append(("getAmountsOut", router.lower(), key[1]))
        if key in self._delays:
            await asyncio.sleep(self._delays[key])
        result = self._routes.get(key)
        if result is None:
            raise ContractRevert("getAmountsOut reverted: INSUFFICIENT_LIQUIDITY")
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def decimals(self, token, timeout=None):
        self.calls.append(("decimals", token.lower(), None))
        value = self._decimals.get(token.lower(), 18)
        if isinstance(value, Exception):
            raise value
        return value

    async def symbol(self, token, timeout=None):
        value = self._symbols.get(token.lower())
        if value is None:
            raise ContractRevert("symbol reverted")
        return value

    async def get_code(self, address, timeout=None):
        return self._code.get(address.lower(), b"")

    async def allowance(self, token, owner, spender, timeout=None):
        self.calls.append(("allowance", token.lower(), spender.lower()))
        return self._allowances.get(token.lower(), 0)

    async def get_block_timestamp(self, block_number, timeout=None):
        return self._block_times.get(block_number, 0)

    async def build_approve(self, token, spender, amount, sender):
        self.calls.append(("approve", token.lower(), spender.lower()))
        return {"kind": "approve", "token": token, "spender": spender, "amount": amount, "from": sender, "gas": 60000}

    async def build_swap(self, entry_point, router, amount_in, min_out, path, recipient, deadline, sender):
        self.calls.append((entry_point, router.lower(), tuple(t.lower() for t in path)))
        if self._build_error is not None:
            raise self._build_error
        if entry_point not in {"swapExactTokensForTokens", "swapExactETHForTokens", "swapExactTokensForETH"}:
            raise InvalidSwap(f"Unknown router entry point: {entry_point}")
        return {
            "kind": entry_point,
            "router": router,
            "amount_in": amount_in,
            "min_out": min_out,
            "path": list(path),
            "to": recipient,
            "deadline": deadline,
            "from": sender,
            "gas": 250000,
        }

    async def send_transaction(self, tx, account):
        tx_hash = "0x" + f"{len(self.sent) + 1:064x}"
        self.sent.append((tx_hash, tx))
        return tx_hash

    async def wait_for_receipt(self, tx_hash, timeout=None):
        if self._receipt_error is not None:
            raise self._receipt_error
        return self._receipts.get(tx_hash, {"status": 1, "blockNumber": 100, "transactionHash": tx_hash})


class FakeAccount:
    address = "0x" + "ab" * 20


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def account():
    return FakeAccount()


@pytest.fixture
def network():
    return replace(MAINNET, quote_timeout=2.0, read_timeout=1.0)


@pytest.fixture
def slow_network():
    return replace(MAINNET, quote_timeout=0.05, read_timeout=1.0)


