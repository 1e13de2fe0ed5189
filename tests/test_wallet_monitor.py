"""Tests for WalletMonitorWorker: exactly-once processing, polling baseline, stop semantics."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from strategy_service.engine.workers.base import WorkerState
from strategy_service.engine.workers.wallet_monitor import WalletMonitorWorker
from strategy_service.errors import ExecutionError
from strategy_service.schemas.jobs import WalletMonitorJob
from strategy_service.services.solana_rpc import TokenBalance
from strategy_service.utils.constants import SOL_MINT

WATCHED = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


def _native_buy_tx(pre=10_000_000_000, post=8_000_000_000):
    """WATCHED spends 20% of its SOL on BONK."""
    return {
        "transaction": {"message": {"accountKeys": [{"pubkey": WATCHED}]}},
        "meta": {
            "err": None,
            "preBalances": [pre],
            "postBalances": [post],
            "preTokenBalances": [],
            "postTokenBalances": [
                {"accountIndex": 1, "mint": BONK, "owner": WATCHED,
                 "uiTokenAmount": {"amount": "500000", "decimals": 5}},
            ],
        },
    }


@pytest.fixture
def job(wallet):
    pk, secret = wallet
    return WalletMonitorJob(
        trading_wallet_public_key=pk,
        trading_wallet_secret_key=secret,
        wallet_address=WATCHED,
        percentage=50,
    )


@pytest.fixture
def worker(job, ctx, rpc):
    rpc.get_transaction = AsyncMock(return_value=_native_buy_tx())
    rpc.get_token_balance = AsyncMock(return_value=TokenBalance(amount=10_000_000_000, decimals=9))
    return WalletMonitorWorker(job, ctx)


async def _drain(worker):
    while worker._tasks:
        await asyncio.gather(*list(worker._tasks), return_exceptions=True)


# ---------------------------------------------------------------------------
# 1. Exactly-once
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_replayed_signature_mirrors_once(worker, swap_gateway):
    await worker.start()
    first = worker.handle_signature("sigA")
    second = worker.handle_signature("sigA")
    assert first is not None
    assert second is None

    await _drain(worker)
    assert worker.handle_signature("sigA") is None
    assert len(swap_gateway.executed) == 1


@pytest.mark.asyncio
async def test_mirror_amount_is_proportional(worker, swap_gateway):
    await worker.start()
    worker.handle_signature("sigA")
    await _drain(worker)

    quote = swap_gateway.executed[0]
    # 10 SOL * 50% job * 20% of their balance
    assert quote.input_mint == SOL_MINT
    assert quote.output_mint == BONK
    assert quote.in_amount == 1_000_000_000


@pytest.mark.asyncio
async def test_native_dust_mirror_keeps_fee_reserve(worker, rpc, swap_gateway, test_settings):
    # WATCHED spends 99% of its SOL, above the dust threshold
    rpc.get_transaction = AsyncMock(return_value=_native_buy_tx(post=100_000_000))
    await worker.start()
    worker.handle_signature("sigA")
    await _drain(worker)

    quote = swap_gateway.executed[0]
    spendable = 10_000_000_000 - test_settings.fee_reserve_lamports
    assert spendable - 1 <= quote.in_amount <= spendable
    assert worker.job.profit_tracking.current_balance == 10.0


@pytest.mark.asyncio
async def test_recent_transactions_rehydrate_seen_set(job, ctx, rpc, swap_gateway):
    job.recent_transactions = ["sigOld"]
    worker = WalletMonitorWorker(job, ctx)
    await worker.start()
    assert worker.handle_signature("sigOld") is None
    assert swap_gateway.executed == []


@pytest.mark.asyncio
async def test_processed_signature_is_persisted_on_job(worker):
    await worker.start()
    worker.handle_signature("sigA")
    await _drain(worker)
    assert "sigA" in worker.job.recent_transactions
    assert BONK in worker.job.mirrored_tokens
    assert worker.job.last_activity is not None


@pytest.mark.asyncio
async def test_failed_swap_is_not_retried(worker, swap_gateway, ctx):
    swap_gateway.error = ExecutionError("slippage exceeded")
    await worker.start()
    worker.handle_signature("sigA")
    await _drain(worker)

    assert worker.handle_signature("sigA") is None
    statuses = [c.args[1] for c in ctx.activity_log.record.call_args_list]
    assert "error" in statuses


@pytest.mark.asyncio
async def test_below_floor_is_skipped(worker, rpc, swap_gateway, ctx):
    rpc.get_token_balance = AsyncMock(return_value=TokenBalance(amount=1_000_000, decimals=9))  # 0.001 SOL
    await worker.start()
    worker.handle_signature("sigA")
    await _drain(worker)

    assert swap_gateway.executed == []
    assert ctx.activity_log.record.call_args.args[1] == "skipped"


# ---------------------------------------------------------------------------
# 2. Polling
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_first_poll_only_sets_baseline(worker, rpc, swap_gateway):
    await worker.start()
    rpc.get_signatures_for_address = AsyncMock(return_value=[{"signature": "old1", "err": None}])
    await worker.poll()
    assert not worker._tasks

    rpc.get_signatures_for_address = AsyncMock(return_value=[
        {"signature": "new2", "err": None},
        {"signature": "failed", "err": {"InstructionError": []}},
        {"signature": "new1", "err": None},
    ])
    await worker.poll()
    rpc.get_signatures_for_address.assert_awaited_with(WATCHED, until="old1")
    await _drain(worker)
    assert len(swap_gateway.executed) == 2


@pytest.mark.asyncio
async def test_start_registers_scheduler_job(worker, scheduler):
    await worker.start()
    scheduler.add_job.assert_called_once()
    assert scheduler.add_job.call_args.kwargs["id"] == f"wallet_monitor_{worker.job.id}"
    assert scheduler.add_job.call_args.kwargs["max_instances"] == 1


# ---------------------------------------------------------------------------
# 3. Stop
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_no_swap_after_stop(worker, rpc, swap_gateway):
    release = asyncio.Event()

    async def slow_transaction(signature):
        await release.wait()
        return _native_buy_tx()

    rpc.get_transaction = AsyncMock(side_effect=slow_transaction)
    await worker.start()
    worker.handle_signature("sigA")
    await asyncio.sleep(0)

    await worker.stop()
    release.set()
    await asyncio.sleep(0)

    assert worker.state == WorkerState.STOPPED
    assert not worker._tasks
    assert swap_gateway.executed == []
    assert worker.handle_signature("sigB") is None


@pytest.mark.asyncio
async def test_stop_removes_scheduler_job(worker, scheduler):
    await worker.start()
    scheduler.get_job.return_value = object()
    await worker.stop()
    scheduler.remove_job.assert_called_once_with(f"wallet_monitor_{worker.job.id}")
