"""
Error types shared by the gateway, quoting and execution layers.

Quoting absorbs these errors and falls back; execution surfaces them to the
caller with a FailureReason attached.
"""
from __future__ import annotations

import asyncio
from enum import Enum

from web3.exceptions import TimeExhausted


class FailureReason(str, Enum):
    USER_REJECTED = "UserRejected"
    INSUFFICIENT_ALLOWANCE = "InsufficientAllowance"
    NO_ROUTE = "NoRoute"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    EXECUTION_FAILED = "ExecutionFailed"
    TIMEOUT = "Timeout"
    INVALID_SWAP = "InvalidSwap"
    INVALID_RESPONSE = "InvalidResponse"


class SwapError(Exception):
    """Base class for every categorized failure raised by this project."""

    reason: FailureReason = FailureReason.EXECUTION_FAILED


class CallTimeout(SwapError):
    """A remote call did not answer within its timeout."""

    reason = FailureReason.TIMEOUT


class ContractRevert(SwapError):
    """The contract call reverted."""


class RpcError(SwapError):
    """Transport or node error that is neither a revert nor a timeout."""


class InvalidResponse(SwapError):
    """The node answered with a value of the wrong shape."""

    reason = FailureReason.INVALID_RESPONSE


class InvalidSwap(SwapError):
    reason = FailureReason.INVALID_SWAP


class UserRejected(SwapError):
    reason = FailureReason.USER_REJECTED


class InsufficientAllowance(SwapError):
    reason = FailureReason.INSUFFICIENT_ALLOWANCE


class NoRoute(SwapError):
    reason = FailureReason.NO_ROUTE


class DeadlineExceeded(SwapError):
    reason = FailureReason.DEADLINE_EXCEEDED


class ExecutionFailed(SwapError):
    reason = FailureReason.EXECUTION_FAILED


_ERRORS_BY_REASON = {
    FailureReason.USER_REJECTED: UserRejected,
    FailureReason.INSUFFICIENT_ALLOWANCE: InsufficientAllowance,
    FailureReason.NO_ROUTE: NoRoute,
    FailureReason.DEADLINE_EXCEEDED: DeadlineExceeded,
    FailureReason.EXECUTION_FAILED: ExecutionFailed,
    FailureReason.TIMEOUT: CallTimeout,
    FailureReason.INVALID_SWAP: InvalidSwap,
    FailureReason.INVALID_RESPONSE: InvalidResponse,
}


def error_for(reason: FailureReason, message: str) -> SwapError:
    """Build the exception class matching a failure reason."""
    return _ERRORS_BY_REASON[reason](message)


def classify_failure(error: BaseException) -> FailureReason:
    """Map any exception raised during execution to a FailureReason.

    Our own errors carry their reason. Foreign errors are matched by type,
    then by keywords found in revert strings and wallet messages.
    """
    # Reverts keep the generic reason unless the revert string says more
    if isinstance(error, SwapError) and not isinstance(error, (ContractRevert, RpcError)):
        return error.reason
    if isinstance(error, (asyncio.TimeoutError, TimeExhausted)):
        return FailureReason.TIMEOUT

    error_str = str(error).lower()
    deadline_keywords = ["expired", "deadline"]
    rejected_keywords = ["user rejected", "user denied", "rejected by user", "action_rejected"]
    allowance_keywords = [
        "transfer_from_failed",
        "transferfrom failed",
        "insufficient allowance",
        "exceeds allowance",
    ]
    if any(keyword in error_str for keyword in rejected_keywords):
        return FailureReason.USER_REJECTED
    if any(keyword in error_str for keyword in deadline_keywords):
        return FailureReason.DEADLINE_EXCEEDED
    if any(keyword in error_str for keyword in allowance_keywords):
        return FailureReason.INSUFFICIENT_ALLOWANCE
    return FailureReason.EXECUTION_FAILED
