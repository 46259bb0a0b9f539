from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from eth_account.signers.local import LocalAccount

from connectors.gateway import SWAP_ETH_FOR_TOKENS, SWAP_TOKENS_FOR_ETH, SWAP_TOKENS_FOR_TOKENS, ChainGateway
from core.config import MAX_UINT256, NetworkConfig
from core.errors import (
    DeadlineExceeded,
    ExecutionFailed,
    FailureReason,
    InvalidSwap,
    NoRoute,
    SwapError,
    UserRejected,
    classify_failure,
    error_for,
)
from core.log import log_error, log_info, log_warn
from core.tokens import TokenLike, is_native, routing_address, same_address, short_address, token_address
from core.units import BPS_DENOMINATOR, DecimalResolver, min_amount_out, parse_amount, to_base_units
from routing.mev import Congestion, adaptive_min_amount_out, optimal_deadline
from routing.results import Quote

ConfirmHook = Callable[[str, Dict[str, Any]], Union[bool, Awaitable[bool]]]


class SwapState(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    APPROVED = "approved"
    APPROVAL_SKIPPED = "approval_skipped"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class SwapIntent:
    from_token: TokenLike
    to_token: TokenLike
    amount_in: str  # human decimal string
    slippage_bps: int
    user_address: str
    deadline: Optional[int] = None  # unix seconds


@dataclass
class SwapExecutionResult:
    success: bool = False
    state: SwapState = SwapState.IDLE
    states: List[SwapState] = field(default_factory=lambda: [SwapState.IDLE])
    transaction_hash: Optional[str] = None
    approval_hash: Optional[str] = None
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    min_amount_out: int = 0
    exception: Optional[SwapError] = field(default=None, repr=False, compare=False)

    def raise_for_failure(self) -> None:
        if self.success:
            return
        if self.exception is not None:
            raise self.exception
        raise error_for(self.reason or FailureReason.EXECUTION_FAILED, self.error or "swap failed")


class SwapExecutor:
    """
    Executes one swap intent against the router chosen by a quote.

    Flow: validate, check allowance and approve the router if needed, build
    the router call matching the native/token shape, submit, wait for the
    receipt. Every failure is categorised and returned on the result; a
    failed swap is never reported as successful.

    The quote must price exactly this intent: same endpoints and the same
    input amount in base units. Otherwise its output would size the wrong
    minimum, so the swap is rejected as InvalidSwap.

    confirm(action, tx) is asked before each signature ("approve", "swap")
    and may be sync or async. A falsy answer aborts with UserRejected.

    adaptive_slippage widens the tolerance for multi-hop paths; congestion
    stretches the default deadline.
    """

    def __init__(
        self,
        network: NetworkConfig,
        account: LocalAccount,
        gateway: Optional[ChainGateway] = None,
        confirm: Optional[ConfirmHook] = None,
        clock: Callable[[], float] = time.time,
        adaptive_slippage: bool = False,
        congestion: Congestion = Congestion.LOW,
    ) -> None:
        self.network = network
        self.account = account
        self.gateway = gateway
        self.confirm = confirm
        self.clock = clock
        self.adaptive_slippage = adaptive_slippage
        self.congestion = congestion

    async def execute(self, intent: SwapIntent, quote: Optional[Quote]) -> SwapExecutionResult:
        result = SwapExecutionResult()
        try:
            await self._execute(intent, quote, result)
        except SwapError as e:
            self._fail(result, e)
        except Exception as e:
            # Signing or wallet errors; categorise by message
            reason = classify_failure(e)
            self._fail(result, error_for(reason, str(e)))
        return result

    # ----------------------------
    # flow
    # ----------------------------
    async def _execute(self, intent: SwapIntent, quote: Optional[Quote], result: SwapExecutionResult) -> None:
        from_native = is_native(token_address(intent.from_token))
        to_native = is_native(token_address(intent.to_token))
        if from_native and to_native:
            raise InvalidSwap("Cannot swap the native coin to itself")
        if not 0 <= int(intent.slippage_bps) < BPS_DENOMINATOR:
            raise InvalidSwap(f"Slippage must be in [0, {BPS_DENOMINATOR}) bps, got {intent.slippage_bps}")
        if quote is None or not quote.has_route:
            raise NoRoute("No route available for this swap")

        wrapped = self.network.wrapped_native
        path = [routing_address(t, wrapped) for t in quote.path]
        if not (
            same_address(path[0], routing_address(intent.from_token, wrapped))
            and same_address(path[-1], routing_address(intent.to_token, wrapped))
        ):
            raise InvalidSwap(f"Quote path {short_address(path[0])} -> {short_address(path[-1])} does not match the swap tokens")
        if quote.amount_in <= 0:
            raise InvalidSwap("Quote carries no input amount")
        try:
            value = parse_amount(intent.amount_in)
        except ValueError as e:
            raise InvalidSwap(str(e)) from e
        if value <= 0:
            raise InvalidSwap("Swap amount must be positive")
        try:
            result.min_amount_out = self._min_amount_out(quote, intent.slippage_bps, len(path))
        except ValueError as e:
            raise InvalidSwap(str(e)) from e

        gateway = self.gateway or ChainGateway(self.network)
        router = quote.router_address or self.network.default_router
        sender = self.account.address

        # Sizes the on-chain amountIn, so no fallback decimals here
        decimals = await DecimalResolver(gateway, strict=True).resolve(intent.from_token)
        amount_in = to_base_units(value, decimals)
        if amount_in != quote.amount_in:
            raise InvalidSwap(f"Swap amount {amount_in} does not match the quoted amount {quote.amount_in}; quote again")

        if from_native:
            self._transition(result, SwapState.APPROVAL_SKIPPED)
        else:
            await self._ensure_allowance(gateway, token_address(intent.from_token), router, amount_in, sender, result)

        deadline = intent.deadline or optimal_deadline(self.clock(), self.network.deadline_minutes, self.congestion)
        if from_native:
            entry_point = SWAP_ETH_FOR_TOKENS
        elif to_native:
            entry_point = SWAP_TOKENS_FOR_ETH
        else:
            entry_point = SWAP_TOKENS_FOR_TOKENS

        log_info("swap", f"{entry_point} {amount_in} -> min {result.min_amount_out} via {short_address(router)}")
        tx = await gateway.build_swap(
            entry_point,
            router,
            amount_in,
            result.min_amount_out,
            path,
            intent.user_address,
            deadline,
            sender,
        )
        await self._ask("swap", tx)
        result.transaction_hash = await gateway.send_transaction(tx, self.account)
        self._transition(result, SwapState.SUBMITTED)
        log_info("swap", f"Submitted {self.network.tx_explorer_url(result.transaction_hash)}")

        receipt = await gateway.wait_for_receipt(result.transaction_hash)
        if receipt.get("status") == 1:
            result.success = True
            self._transition(result, SwapState.CONFIRMED)
            log_info("swap", f"Confirmed in block {receipt.get('blockNumber')}")
            return

        block_time = await gateway.get_block_timestamp(receipt["blockNumber"])
        if block_time > deadline:
            raise DeadlineExceeded(f"Swap mined at {block_time}, after deadline {deadline}")
        raise ExecutionFailed(f"Swap transaction {result.transaction_hash} reverted")

    async def _ensure_allowance(
        self,
        gateway: ChainGateway,
        token: str,
        router: str,
        amount_in: int,
        sender: str,
        result: SwapExecutionResult,
    ) -> None:
        current = await gateway.allowance(token, sender, router)
        if current >= amount_in:
            log_info("swap", f"Allowance {current} covers {amount_in}, skipping approval")
            self._transition(result, SwapState.APPROVAL_SKIPPED)
            return

        self._transition(result, SwapState.APPROVING)
        tx = await gateway.build_approve(token, router, MAX_UINT256, sender)
        await self._ask("approve", tx)
        result.approval_hash = await gateway.send_transaction(tx, self.account)
        log_info("swap", f"Approval sent {self.network.tx_explorer_url(result.approval_hash)}")
        receipt = await gateway.wait_for_receipt(result.approval_hash)
        if receipt.get("status") != 1:
            raise ExecutionFailed(f"Approval transaction {result.approval_hash} reverted")
        self._transition(result, SwapState.APPROVED)

    def _min_amount_out(self, quote: Quote, slippage_bps: int, path_length: int) -> int:
        if self.adaptive_slippage:
            return adaptive_min_amount_out(quote.output_amount, slippage_bps, path_length)
        return min_amount_out(quote.output_amount, slippage_bps)

    async def _ask(self, action: str, tx: Dict[str, Any]) -> None:
        if self.confirm is None:
            return
        answer = self.confirm(action, tx)
        if inspect.isawaitable(answer):
            answer = await answer
        if not answer:
            raise UserRejected(f"User rejected the {action} transaction")

    def _transition(self, result: SwapExecutionResult, state: SwapState) -> None:
        result.state = state
        result.states.append(state)

    def _fail(self, result: SwapExecutionResult, error: SwapError) -> None:
        reason = classify_failure(error)
        if reason != error.reason:
            error = error_for(reason, str(error))
        result.success = False
        result.reason = reason
        result.error = str(error)
        result.exception = error
        self._transition(result, SwapState.FAILED)
        if reason == FailureReason.TIMEOUT and result.transaction_hash:
            log_warn("swap", f"Timed out waiting for {result.transaction_hash}; it may still be mined")
        else:
            log_error("swap", f"{reason.value}: {error}")
