from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from eth_account.signers.local import LocalAccount

from connectors.gateway import ChainGateway
from core.config import NetworkConfig
from core.errors import FailureReason
from core.log import log_error, log_info
from core.tokens import TokenLike, is_native, routing_address, same_address, token_address
from core.units import BPS_DENOMINATOR, parse_amount
from routing.executor import ConfirmHook, SwapExecutionResult, SwapExecutor, SwapIntent, SwapState
from routing.mev import optimal_deadline
from routing.quote_engine import QuoteEngine
from routing.results import Found


class TxKind(str, Enum):
    APPROVAL = "approval"
    SWAP = "swap"


class TxStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class QueueStatus(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    SWAPPING = "swapping"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class SwapInput:
    token: TokenLike
    amount: str  # human decimal string


@dataclass
class QueuedTransaction:
    id: str
    kind: TxKind
    leg: int
    token: TokenLike
    amount: str
    status: TxStatus = TxStatus.PENDING
    error: Optional[str] = None
    hash: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.status in (TxStatus.SUCCESS, TxStatus.FAILED)


class TransactionQueue:
    """
    Ordered approval and swap transactions of a multi-asset swap.

    All approvals come first (none for the native coin), then one swap per
    input. Inputs with a zero amount get no transactions.
    """

    def __init__(self, transactions: Iterable[QueuedTransaction] = ()) -> None:
        self.transactions: List[QueuedTransaction] = list(transactions)

    @classmethod
    def from_inputs(cls, inputs: Sequence[SwapInput]) -> "TransactionQueue":
        legs = [(i, item) for i, item in enumerate(inputs) if parse_amount(item.amount) > 0]
        transactions = [
            QueuedTransaction(f"approval-{i}-{token_address(item.token)}", TxKind.APPROVAL, i, item.token, item.amount)
            for i, item in legs
            if not is_native(token_address(item.token))
        ]
        transactions += [
            QueuedTransaction(f"swap-{i}-{token_address(item.token)}", TxKind.SWAP, i, item.token, item.amount)
            for i, item in legs
        ]
        return cls(transactions)

    def get(self, tx_id: str) -> Optional[QueuedTransaction]:
        return next((tx for tx in self.transactions if tx.id == tx_id), None)

    def find(self, kind: TxKind, leg: int) -> Optional[QueuedTransaction]:
        return next((tx for tx in self.transactions if tx.kind == kind and tx.leg == leg), None)

    def update(self, tx_id: str, status: TxStatus, error: Optional[str] = None, tx_hash: Optional[str] = None) -> None:
        tx = self.get(tx_id)
        if tx is None:
            raise KeyError(tx_id)
        tx.status = status
        if error is not None:
            tx.error = error
        if tx_hash is not None:
            tx.hash = tx_hash

    def next_pending(self) -> Optional[QueuedTransaction]:
        return next((tx for tx in self.transactions if tx.status == TxStatus.PENDING), None)

    @property
    def approvals_complete(self) -> bool:
        return all(tx.done for tx in self.transactions if tx.kind == TxKind.APPROVAL)

    @property
    def progress(self) -> int:
        if not self.transactions:
            return 0
        return sum(tx.done for tx in self.transactions) * 100 // len(self.transactions)

    @property
    def success_rate(self) -> int:
        if not self.transactions:
            return 0
        return sum(tx.status == TxStatus.SUCCESS for tx in self.transactions) * 100 // len(self.transactions)

    @property
    def status(self) -> QueueStatus:
        if not self.transactions:
            return QueueStatus.IDLE
        # Execution stops at the first failure
        if any(tx.status == TxStatus.FAILED for tx in self.transactions):
            return QueueStatus.FAILED
        if all(tx.status == TxStatus.SUCCESS for tx in self.transactions):
            return QueueStatus.COMPLETED
        current = next((tx for tx in self.transactions if tx.status == TxStatus.PROCESSING), None)
        if current is None:
            return QueueStatus.IDLE
        return QueueStatus.APPROVING if current.kind == TxKind.APPROVAL else QueueStatus.SWAPPING


@dataclass
class MultiSwapResult:
    success: bool
    queue: TransactionQueue
    results: List[SwapExecutionResult] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    error: Optional[str] = None

    @property
    def transaction_hashes(self) -> List[str]:
        return [r.transaction_hash for r in self.results if r.transaction_hash]


class MultiSwapExecutor:
    """
    Swaps several input tokens into one output token, one leg at a time.

    Each leg is quoted on its own and executed through SwapExecutor, so it
    gets its own minimum output. All legs share one deadline. The first
    failed leg stops the run; legs already confirmed stay confirmed.
    """

    def __init__(
        self,
        network: NetworkConfig,
        account: LocalAccount,
        gateway: Optional[ChainGateway] = None,
        engine: Optional[QuoteEngine] = None,
        confirm: Optional[ConfirmHook] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.network = network
        self.engine = engine or QuoteEngine(network, gateway=gateway)
        self.executor = SwapExecutor(network, account, gateway=gateway, confirm=confirm, clock=clock)
        self.clock = clock

    async def execute(
        self,
        inputs: Sequence[SwapInput],
        output_token: TokenLike,
        slippage_bps: int,
        user_address: str,
        deadline: Optional[int] = None,
    ) -> MultiSwapResult:
        if not 0 <= int(slippage_bps) < BPS_DENOMINATOR:
            return self._invalid(f"Slippage must be in [0, {BPS_DENOMINATOR}) bps, got {slippage_bps}")
        output_addr = routing_address(output_token, self.network.wrapped_native)
        legs: List[SwapInput] = []
        for item in inputs:
            try:
                value = parse_amount(item.amount)
            except ValueError as e:
                return self._invalid(str(e))
            if value <= 0:
                continue
            if same_address(routing_address(item.token, self.network.wrapped_native), output_addr):
                log_info("multiswap", f"Skipping {token_address(item.token)}: same as the output token")
                continue
            legs.append(item)
        if not legs:
            return self._invalid("No input tokens to swap")

        queue = TransactionQueue.from_inputs(legs)
        deadline = deadline or optimal_deadline(self.clock(), self.network.deadline_minutes, self.executor.congestion)
        result = MultiSwapResult(success=False, queue=queue)
        log_info("multiswap", f"Swapping {len(legs)} inputs into {token_address(output_token)}")

        for leg, item in enumerate(legs):
            first = queue.find(TxKind.APPROVAL, leg) or queue.find(TxKind.SWAP, leg)
            queue.update(first.id, TxStatus.PROCESSING)

            quote = await self.engine.get_swap_quote(item.token, output_token, item.amount, slippage_bps / 100)
            if not isinstance(quote, Found):
                self._fail_leg(queue, leg, quote.reason)
                result.reason = FailureReason.NO_ROUTE
                result.error = f"No quote for {token_address(item.token)}: {quote.reason}"
                log_error("multiswap", result.error)
                return result

            intent = SwapIntent(item.token, output_token, item.amount, slippage_bps, user_address, deadline)
            swap = await self.executor.execute(intent, quote.value)
            result.results.append(swap)
            self._record(queue, leg, swap)
            if not swap.success:
                result.reason = swap.reason
                result.error = swap.error
                log_error("multiswap", f"Leg {leg + 1}/{len(legs)} failed, stopping: {swap.error}")
                return result
            log_info("multiswap", f"Leg {leg + 1}/{len(legs)} confirmed ({queue.progress}%)")

        result.success = True
        return result

    def _record(self, queue: TransactionQueue, leg: int, swap: SwapExecutionResult) -> None:
        approval = queue.find(TxKind.APPROVAL, leg)
        if approval is not None:
            if SwapState.APPROVED in swap.states or SwapState.APPROVAL_SKIPPED in swap.states:
                queue.update(approval.id, TxStatus.SUCCESS, tx_hash=swap.approval_hash)
            else:
                queue.update(approval.id, TxStatus.FAILED, error=swap.error, tx_hash=swap.approval_hash)
        tx = queue.find(TxKind.SWAP, leg)
        if swap.success:
            queue.update(tx.id, TxStatus.SUCCESS, tx_hash=swap.transaction_hash)
        else:
            queue.update(tx.id, TxStatus.FAILED, error=swap.error, tx_hash=swap.transaction_hash)

    def _fail_leg(self, queue: TransactionQueue, leg: int, error: str) -> None:
        for kind in (TxKind.APPROVAL, TxKind.SWAP):
            tx = queue.find(kind, leg)
            if tx is not None:
                queue.update(tx.id, TxStatus.FAILED, error=error)

    def _invalid(self, error: str) -> MultiSwapResult:
        log_error("multiswap", error)
        return MultiSwapResult(success=False, queue=TransactionQueue(), reason=FailureReason.INVALID_SWAP, error=error)
