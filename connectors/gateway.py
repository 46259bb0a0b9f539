from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from core.config import NetworkConfig
from core.errors import CallTimeout, ContractRevert, InvalidResponse, InvalidSwap, RpcError, SwapError

T = TypeVar("T")

SWAP_TOKENS_FOR_TOKENS = "swapExactTokensForTokens"
SWAP_ETH_FOR_TOKENS = "swapExactETHForTokens"
SWAP_TOKENS_FOR_ETH = "swapExactTokensForETH"


class ChainGateway:
    """
    Read/write access to router and ERC20 contracts over one RPC endpoint.

    Every remote call is bounded by a timeout and mapped onto the error
    types in core.errors: CallTimeout, ContractRevert, InvalidResponse or
    RpcError. ENS is disabled on the provider; only raw hex addresses are
    accepted.
    """

    ERC20_ABI: List[Dict] = [
        {"constant": True, "inputs": [{"name": "", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
        {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
        {"constant": True, "inputs": [], "name": "symbol", "outputs": [{"name": "", "type": "string"}], "stateMutability": "view", "type": "function"},
        {"constant": True, "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}], "name": "allowance", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
        {"constant": False, "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}], "name": "approve", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable", "type": "function"},
    ]

    # Uniswap V2 style router subset
    ROUTER_ABI: List[Dict] = [
        {
            "inputs": [
                {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                {"internalType": "address[]", "name": "path", "type": "address[]"},
            ],
            "name": "getAmountsOut",
            "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
            "stateMutability": "view",
            "type": "function",
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
                {"internalType": "address[]", "name": "path", "type": "address[]"},
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "deadline", "type": "uint256"},
            ],
            "name": SWAP_TOKENS_FOR_TOKENS,
            "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
            "stateMutability": "nonpayable",
            "type": "function",
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
                {"internalType": "address[]", "name": "path", "type": "address[]"},
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "deadline", "type": "uint256"},
            ],
            "name": SWAP_ETH_FOR_TOKENS,
            "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
            "stateMutability": "payable",
            "type": "function",
        },
        {
            "inputs": [
                {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
                {"internalType": "address[]", "name": "path", "type": "address[]"},
                {"internalType": "address", "name": "to", "type": "address"},
                {"internalType": "uint256", "name": "deadline", "type": "uint256"},
            ],
            "name": SWAP_TOKENS_FOR_ETH,
            "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
            "stateMutability": "nonpayable",
            "type": "function",
        },
    ]

    def __init__(self, network: NetworkConfig, w3: Optional[AsyncWeb3] = None) -> None:
        self.network = network
        # ens=None: name-like strings are never resolved to addresses
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(network.rpc_url), ens=None)
        if network.poa_middleware:
            self.w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    @staticmethod
    def to_checksum(address: str) -> str:
        if not isinstance(address, str) or not Web3.is_address(address):
            raise InvalidSwap(f"Not a hex address: {address!r}")
        return Web3.to_checksum_address(address)

    def router(self, address: str) -> AsyncContract:
        return self.w3.eth.contract(address=self.to_checksum(address), abi=self.ROUTER_ABI)

    def erc20(self, token: str) -> AsyncContract:
        return self.w3.eth.contract(address=self.to_checksum(token), abi=self.ERC20_ABI)

    async def _guard(self, what: str, call: Callable[[], Awaitable[T]], timeout: Optional[float] = None) -> T:
        limit = self.network.read_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(call(), limit)
        except asyncio.TimeoutError as e:
            raise CallTimeout(f"{what} timed out after {limit}s") from e
        except ContractLogicError as e:
            raise ContractRevert(f"{what} reverted: {e}") from e
        except SwapError:
            raise
        except Exception as e:
            raise RpcError(f"{what} failed: {e}") from e

    # ----------------------------
    # reads
    # ----------------------------
    async def get_amounts_out(self, router: str, amount_in: int, path: Sequence[str], timeout: Optional[float] = None) -> List[int]:
        checksummed = [self.to_checksum(t) for t in path]
        contract = self.router(router)
        raw = await self._guard(
            "getAmountsOut",
            lambda: contract.functions.getAmountsOut(int(amount_in), checksummed).call(),
            timeout,
        )
        if not isinstance(raw, (list, tuple)) or len(raw) != len(checksummed):
            raise InvalidResponse(f"getAmountsOut returned {raw!r} for a {len(checksummed)}-token path")
        if not all(isinstance(a, int) and a >= 0 for a in raw):
            raise InvalidResponse(f"getAmountsOut returned non-integer amounts: {raw!r}")
        return [int(a) for a in raw]

    async def decimals(self, token: str, timeout: Optional[float] = None) -> int:
        contract = self.erc20(token)
        raw = await self._guard("decimals", lambda: contract.functions.decimals().call(), timeout)
        if not isinstance(raw, int) or not 0 <= raw <= 255:
            raise InvalidResponse(f"decimals() returned {raw!r}")
        return int(raw)

    async def symbol(self, token: str, timeout: Optional[float] = None) -> str:
        contract = self.erc20(token)
        raw = await self._guard("symbol", lambda: contract.functions.symbol().call(), timeout)
        if not isinstance(raw, str):
            raise InvalidResponse(f"symbol() returned {raw!r}")
        return raw

    async def allowance(self, token: str, owner: str, spender: str, timeout: Optional[float] = None) -> int:
        contract = self.erc20(token)
        owner_addr = self.to_checksum(owner)
        spender_addr = self.to_checksum(spender)
        raw = await self._guard("allowance", lambda: contract.functions.allowance(owner_addr, spender_addr).call(), timeout)
        if not isinstance(raw, int):
            raise InvalidResponse(f"allowance() returned {raw!r}")
        return int(raw)

    async def get_code(self, address: str, timeout: Optional[float] = None) -> bytes:
        addr = self.to_checksum(address)
        return bytes(await self._guard("getCode", lambda: self.w3.eth.get_code(addr), timeout))

    async def get_block_timestamp(self, block_number: int, timeout: Optional[float] = None) -> int:
        block = await self._guard("getBlock", lambda: self.w3.eth.get_block(block_number), timeout)
        return int(block["timestamp"])

    # ----------------------------
    # writes
    # ----------------------------
    async def _default_tx_params(self, sender: str, value: int = 0) -> Dict[str, Any]:
        # 'pending' includes in-flight transactions in the nonce (approve then swap)
        nonce = await self._guard("getTransactionCount", lambda: self.w3.eth.get_transaction_count(sender, "pending"))
        params: Dict[str, Any] = {
            "chainId": self.network.chain_id,
            "from": sender,
            "nonce": nonce,
            "gas": self.network.default_gas_limit,
        }
        if value:
            params["value"] = int(value)
        return params

    async def _finalize_gas(self, tx: Dict[str, Any]) -> Dict[str, Any]:
        # A revert here (e.g. EXPIRED) surfaces before anything is broadcast
        estimate = await self._guard("estimateGas", lambda: self.w3.eth.estimate_gas(tx))
        tx["gas"] = int(int(estimate) * self.network.gas_limit_multiplier)
        return tx

    async def build_approve(self, token: str, spender: str, amount: int, sender: str) -> Dict[str, Any]:
        contract = self.erc20(token)
        spender_addr = self.to_checksum(spender)
        params = await self._default_tx_params(self.to_checksum(sender))
        tx = await self._guard("build approve", lambda: contract.functions.approve(spender_addr, int(amount)).build_transaction(params))
        return await self._finalize_gas(dict(tx))

    async def build_swap(
        self,
        entry_point: str,
        router: str,
        amount_in: int,
        min_out: int,
        path: Sequence[str],
        recipient: str,
        deadline: int,
        sender: str,
    ) -> Dict[str, Any]:
        contract = self.router(router)
        checksummed = [self.to_checksum(t) for t in path]
        to_addr = self.to_checksum(recipient)
        if entry_point == SWAP_ETH_FOR_TOKENS:
            fn = contract.functions.swapExactETHForTokens(int(min_out), checksummed, to_addr, int(deadline))
            params = await self._default_tx_params(self.to_checksum(sender), value=int(amount_in))
        elif entry_point == SWAP_TOKENS_FOR_ETH:
            fn = contract.functions.swapExactTokensForETH(int(amount_in), int(min_out), checksummed, to_addr, int(deadline))
            params = await self._default_tx_params(self.to_checksum(sender))
        elif entry_point == SWAP_TOKENS_FOR_TOKENS:
            fn = contract.functions.swapExactTokensForTokens(int(amount_in), int(min_out), checksummed, to_addr, int(deadline))
            params = await self._default_tx_params(self.to_checksum(sender))
        else:
            raise InvalidSwap(f"Unknown router entry point: {entry_point}")
        tx = await self._guard(f"build {entry_point}", lambda: fn.build_transaction(params))
        return await self._finalize_gas(dict(tx))

    async def send_transaction(self, tx: Dict[str, Any], account: LocalAccount) -> str:
        signed = account.sign_transaction(tx)
        tx_hash = await self._guard("sendRawTransaction", lambda: self.w3.eth.send_raw_transaction(signed.raw_transaction))
        return self.w3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        limit = self.network.receipt_timeout if timeout is None else timeout
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=limit)
        except TimeExhausted as e:
            raise CallTimeout(f"Transaction {tx_hash} not confirmed after {limit}s") from e
        except Exception as e:
            raise RpcError(f"Waiting for {tx_hash} failed: {e}") from e
        return dict(receipt)
