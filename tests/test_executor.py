from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from core.config import MAINNET, MAX_UINT256, NATIVE, NINEMM_V2_ROUTER
from core.errors import CallTimeout, ContractRevert, DeadlineExceeded, FailureReason, InvalidSwap, RpcError
from routing.executor import SwapExecutor, SwapIntent, SwapState
from routing.mev import Congestion
from routing.results import Quote

WPLS = MAINNET.wrapped_native
TOKEN_A = "0x" + "a1" * 20
TOKEN_B = "0x" + "b2" * 20
USER = "0x" + "cd" * 20
ONE = 10**18
NOW = 1_700_000_000


def _quote(path, output=2 * ONE):
    return Quote(
        output_amount=output,
        path=tuple(path),
        router_address=NINEMM_V2_ROUTER,
        price_impact_percent=0.1,
        execution_price=2.0,
        route_description="direct",
        amount_in=ONE,
    )


def _executor(network, account, gateway, confirm=None):
    return SwapExecutor(network, account, gateway=gateway, confirm=confirm, clock=lambda: NOW)


def _intent(from_token=TOKEN_A, to_token=TOKEN_B, amount="1", slippage_bps=50, deadline=None):
    return SwapIntent(from_token, to_token, amount, slippage_bps, USER, deadline)


def _approvals(gateway):
    return [c for c in gateway.calls if c[0] == "approve"]


def test_native_to_native_fails_before_any_call(network, account, gateway):
    res = asyncio.run(_executor(network, account, gateway).execute(_intent(NATIVE, "native"), _quote([WPLS, WPLS])))

    assert not res.success
    assert res.reason == FailureReason.INVALID_SWAP
    assert res.state == SwapState.FAILED
    assert gateway.calls == []
    with pytest.raises(InvalidSwap):
        res.raise_for_failure()


def test_low_allowance_triggers_exactly_one_approval(network, account, gateway):
    gateway._allowances = {TOKEN_A: 0}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.success
    assert _approvals(gateway) == [("approve", TOKEN_A, NINEMM_V2_ROUTER.lower())]
    assert res.approval_hash is not None
    assert res.transaction_hash is not None
    # approval goes out before the swap, for the unlimited amount
    assert [tx["kind"] for _, tx in gateway.sent] == ["approve", "swapExactTokensForTokens"]
    assert gateway.sent[0][1]["amount"] == MAX_UINT256
    assert res.states == [
        SwapState.IDLE,
        SwapState.APPROVING,
        SwapState.APPROVED,
        SwapState.SUBMITTED,
        SwapState.CONFIRMED,
    ]


def test_sufficient_allowance_skips_approval(network, account, gateway):
    gateway._allowances = {TOKEN_A: 5 * ONE}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.success
    assert _approvals(gateway) == []
    assert res.approval_hash is None
    assert SwapState.APPROVAL_SKIPPED in res.states


def test_swap_arguments(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    tx = gateway.sent[-1][1]
    assert tx["amount_in"] == ONE
    assert tx["min_out"] == 2 * ONE * 9950 // 10_000 == res.min_amount_out
    assert tx["to"] == USER
    assert tx["from"] == account.address
    assert tx["deadline"] == NOW + 20 * 60


def test_native_input_uses_eth_entry_point(network, account, gateway):
    res = asyncio.run(_executor(network, account, gateway).execute(_intent(NATIVE, TOKEN_B), _quote([NATIVE, TOKEN_B])))

    assert res.success
    assert [c for c in gateway.calls if c[0] == "allowance"] == []
    tx = gateway.sent[-1][1]
    assert tx["kind"] == "swapExactETHForTokens"
    assert tx["path"] == [WPLS, TOKEN_B]


def test_native_output_uses_tokens_for_eth(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(TOKEN_A, NATIVE), _quote([TOKEN_A, WPLS])))

    assert res.success
    assert gateway.sent[-1][1]["kind"] == "swapExactTokensForETH"


def test_invalid_slippage(network, account, gateway):
    for bps in (-1, 10_000):
        res = asyncio.run(_executor(network, account, gateway).execute(_intent(slippage_bps=bps), _quote([TOKEN_A, TOKEN_B])))
        assert res.reason == FailureReason.INVALID_SWAP
    assert gateway.calls == []


def test_missing_route(network, account, gateway):
    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), Quote.zero(path=(TOKEN_A, TOKEN_B))))

    assert res.reason == FailureReason.NO_ROUTE
    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), None))
    assert res.reason == FailureReason.NO_ROUTE


def test_user_rejection(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway, confirm=lambda action, tx: False).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.USER_REJECTED
    assert gateway.sent == []


def test_async_confirm_hook(network, account, gateway):
    asked = []

    async def confirm(action, tx):
        asked.append(action)
        return True

    gateway._allowances = {TOKEN_A: 0}
    res = asyncio.run(_executor(network, account, gateway, confirm=confirm).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.success
    assert asked == ["approve", "swap"]


def test_expired_revert_at_estimation(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._build_error = ContractRevert("estimateGas reverted: execution reverted: UniswapV2Router: EXPIRED")

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.DEADLINE_EXCEEDED
    with pytest.raises(DeadlineExceeded):
        res.raise_for_failure()


def test_transfer_failure_is_allowance(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._build_error = ContractRevert("execution reverted: TransferHelper: TRANSFER_FROM_FAILED")

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.INSUFFICIENT_ALLOWANCE


def test_reverted_receipt_after_deadline(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._receipts = {"0x" + f"{1:064x}": {"status": 0, "blockNumber": 7}}
    gateway._block_times = {7: NOW + 20 * 60 + 5}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert not res.success
    assert res.reason == FailureReason.DEADLINE_EXCEEDED
    assert res.transaction_hash is not None


def test_reverted_receipt_before_deadline(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._receipts = {"0x" + f"{1:064x}": {"status": 0, "blockNumber": 7}}
    gateway._block_times = {7: NOW + 30}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.EXECUTION_FAILED


def test_failed_approval_stops_before_swap(network, account, gateway):
    gateway._allowances = {TOKEN_A: 0}
    gateway._receipts = {"0x" + f"{1:064x}": {"status": 0, "blockNumber": 3}}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.EXECUTION_FAILED
    assert [tx["kind"] for _, tx in gateway.sent] == ["approve"]
    assert SwapState.SUBMITTED not in res.states


def test_receipt_timeout(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._receipt_error = CallTimeout("not confirmed")

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.TIMEOUT
    assert res.transaction_hash is not None
    assert not res.success


def test_rpc_error_with_wallet_rejection_message(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    gateway._receipt_error = RpcError("User denied transaction signature")

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.USER_REJECTED


def test_malformed_amount_is_invalid(network, account, gateway):
    res = asyncio.run(_executor(network, account, gateway).execute(_intent(amount="lots"), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.INVALID_SWAP


def test_quote_for_a_different_amount_is_rejected(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(amount="100"), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.INVALID_SWAP
    assert "does not match the quoted amount" in res.error
    assert gateway.sent == []
    assert [c for c in gateway.calls if c[0] in ("allowance", "approve")] == []


def test_quote_for_different_tokens_is_rejected(network, account, gateway):
    token_c = "0x" + "c3" * 20

    for intent, path in [
        (_intent(TOKEN_A, TOKEN_B), [token_c, TOKEN_B]),
        (_intent(TOKEN_A, TOKEN_B), [TOKEN_A, WPLS, token_c]),
        (_intent(NATIVE, TOKEN_B), [TOKEN_A, TOKEN_B]),
    ]:
        res = asyncio.run(_executor(network, account, gateway).execute(intent, _quote(path)))
        assert res.reason == FailureReason.INVALID_SWAP
        assert "does not match the swap tokens" in res.error

    assert gateway.calls == []
    assert gateway.sent == []


def test_quote_without_input_amount_is_rejected(network, account, gateway):
    quote = replace(_quote([TOKEN_A, TOKEN_B]), amount_in=0)

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), quote))

    assert res.reason == FailureReason.INVALID_SWAP
    assert gateway.calls == []


def test_decimals_failure_aborts_the_swap(network, account, gateway):
    gateway._decimals = {TOKEN_A: CallTimeout("decimals timed out")}
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), replace(_quote([TOKEN_A, TOKEN_B]), amount_in=1_000_000)))

    assert not res.success
    assert res.reason == FailureReason.TIMEOUT
    assert gateway.sent == []
    assert [c for c in gateway.calls if c[0] == "allowance"] == []


def test_decimals_mismatch_with_quote_is_rejected(network, account, gateway):
    # quoted while decimals fell back to 18, executed once the real 6 is known
    gateway._decimals = {TOKEN_A: 6}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(), _quote([TOKEN_A, TOKEN_B])))

    assert res.reason == FailureReason.INVALID_SWAP
    assert gateway.sent == []


def test_six_decimal_input_uses_quoted_amount(network, account, gateway):
    gateway._decimals = {TOKEN_A: 6}
    gateway._allowances = {TOKEN_A: MAX_UINT256}

    res = asyncio.run(_executor(network, account, gateway).execute(_intent(amount="1.5"), replace(_quote([TOKEN_A, TOKEN_B]), amount_in=1_500_000)))

    assert res.success
    assert gateway.sent[-1][1]["amount_in"] == 1_500_000


def test_adaptive_slippage_widens_multi_hop_minimum(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    executor = SwapExecutor(network, account, gateway=gateway, clock=lambda: NOW, adaptive_slippage=True)

    res = asyncio.run(executor.execute(_intent(), _quote([TOKEN_A, WPLS, TOKEN_B])))

    assert res.success
    assert res.min_amount_out == 2 * ONE * (10_000 - 75) // 10_000
    assert gateway.sent[-1][1]["min_out"] == res.min_amount_out


def test_congestion_stretches_default_deadline(network, account, gateway):
    gateway._allowances = {TOKEN_A: MAX_UINT256}
    executor = SwapExecutor(network, account, gateway=gateway, clock=lambda: NOW, congestion=Congestion.HIGH)

    asyncio.run(executor.execute(_intent(), _quote([TOKEN_A, TOKEN_B])))
    asyncio.run(executor.execute(_intent(deadline=NOW + 60), _quote([TOKEN_A, TOKEN_B])))

    assert [tx["deadline"] for _, tx in gateway.sent] == [NOW + 40 * 60, NOW + 60]
