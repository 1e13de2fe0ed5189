"""Tests for LevelsWorker and the pure level-selection helpers."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from strategy_service.engine.triggers import level_condition_met, price_condition_met, select_level
from strategy_service.engine.workers.base import WorkerState
from strategy_service.engine.workers.levels import LevelsWorker
from strategy_service.errors import ExecutionError
from strategy_service.schemas.jobs import Level, LevelsJob
from strategy_service.services.solana_rpc import TokenBalance
from strategy_service.utils.constants import SOL_MINT, USDC_MINT


def _job(wallet, levels, mode="sell", **kwargs):
    pk, secret = wallet
    return LevelsJob(
        trading_wallet_public_key=pk,
        trading_wallet_secret_key=secret,
        levels=levels,
        mode=mode,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# 1. Pure helpers
# ---------------------------------------------------------------------------

def test_price_condition_boundaries():
    assert price_condition_met(150.0, 150.0, "above")
    assert not price_condition_met(149.9, 150.0, "above")
    assert price_condition_met(150.0, 150.0, "below")
    assert not price_condition_met(150.1, 150.0, "below")
    with pytest.raises(ValueError):
        price_condition_met(1.0, 1.0, "sideways")


def test_level_conditions_by_type():
    assert level_condition_met(Level(price=100, type="stop_loss", sol_percentage=10), 99)
    assert level_condition_met(Level(price=100, type="limit_buy", usdc_amount=10), 100)
    assert not level_condition_met(Level(price=100, type="take_profit", sol_percentage=10), 99)


def test_select_level_prefers_lowest_price(clock):
    high = Level(price=200, type="take_profit", sol_percentage=10)
    low = Level(price=150, type="take_profit", sol_percentage=10)
    assert select_level([high, low], 250, clock(), max_retriggers=3) is low


def test_mode_must_match_level_types(wallet):
    with pytest.raises(ValidationError):
        _job(wallet, [Level(price=100, type="limit_buy", usdc_amount=10)], mode="sell")
    with pytest.raises(ValidationError):
        _job(wallet, [Level(price=100, type="stop_loss", sol_percentage=10)], mode="buy")


def test_level_requires_amount_for_type():
    with pytest.raises(ValidationError):
        Level(price=100, type="limit_buy")
    with pytest.raises(ValidationError):
        Level(price=100, type="take_profit", usdc_amount=5)


# ---------------------------------------------------------------------------
# 2. Worker
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_one_level_per_tick_then_cooldown(wallet, ctx, swap_gateway):
    levels = [
        Level(price=200, type="take_profit", sol_percentage=25),
        Level(price=150, type="take_profit", sol_percentage=10),
    ]
    worker = LevelsWorker(_job(wallet, levels), ctx)
    await worker.start()

    first = await worker.evaluate(250.0)
    assert first.price == 150
    assert len(swap_gateway.executed) == 1
    assert swap_gateway.executed[0].in_amount == 1_000_000_000  # 10% of 10 SOL

    second = await worker.evaluate(250.0)
    assert second.price == 200
    assert await worker.evaluate(250.0) is None
    assert len(swap_gateway.executed) == 2
    assert first.executed and first.executed_count == 1
    assert first.cooldown_until is not None


@pytest.mark.asyncio
async def test_retrigger_budget_exhaustion_completes_job(wallet, ctx, swap_gateway, clock):
    on_complete = AsyncMock()
    level = Level(price=100, type="stop_loss", sol_percentage=10)
    worker = LevelsWorker(_job(wallet, [level], max_retriggers=2, cooldown_hours=1), ctx, on_complete=on_complete)
    await worker.start()

    await worker.evaluate(90.0)
    clock.now += timedelta(minutes=30)
    assert await worker.evaluate(90.0) is None

    clock.now += timedelta(minutes=31)
    await worker.evaluate(90.0)

    assert level.executed_count == 2
    assert level.permanently_disabled
    assert worker.state == WorkerState.COMPLETED
    assert worker.job.is_active is False
    on_complete.assert_awaited_once_with(worker)

    clock.now += timedelta(days=2)
    assert await worker.evaluate(50.0) is None
    assert len(swap_gateway.executed) == 2


@pytest.mark.asyncio
async def test_failed_execution_does_not_consume_budget(wallet, ctx, swap_gateway):
    swap_gateway.error = ExecutionError("route not found")
    level = Level(price=100, type="stop_loss", sol_percentage=10)
    worker = LevelsWorker(_job(wallet, [level]), ctx)
    await worker.start()

    await worker.evaluate(90.0)
    assert level.executed_count == 0
    assert level.cooldown_until is None
    assert level.execution_history[-1].success is False

    swap_gateway.error = None
    await worker.evaluate(90.0)
    assert level.executed_count == 1


@pytest.mark.asyncio
async def test_limit_buy_spends_usdc(wallet, ctx, rpc, swap_gateway):
    rpc.get_token_balance = AsyncMock(return_value=TokenBalance(amount=100_000_000, decimals=6))
    level = Level(price=120, type="limit_buy", usdc_amount=50)
    worker = LevelsWorker(_job(wallet, [level], mode="buy"), ctx)
    await worker.start()

    assert await worker.evaluate(121.0) is None
    await worker.evaluate(119.5)
    quote = swap_gateway.executed[0]
    assert (quote.input_mint, quote.output_mint) == (USDC_MINT, SOL_MINT)
    assert quote.in_amount == 50_000_000


@pytest.mark.asyncio
async def test_limit_buy_insufficient_usdc(wallet, ctx, rpc, swap_gateway):
    rpc.get_token_balance = AsyncMock(return_value=TokenBalance(amount=10_000_000, decimals=6))
    level = Level(price=120, type="limit_buy", usdc_amount=50)
    worker = LevelsWorker(_job(wallet, [level], mode="buy"), ctx)
    await worker.start()

    await worker.evaluate(100.0)
    assert swap_gateway.quotes == []
    assert "Insufficient USDC" in level.execution_history[-1].error


@pytest.mark.asyncio
async def test_levels_sorted_on_construction(wallet, ctx):
    levels = [
        Level(price=300, type="take_profit", sol_percentage=5),
        Level(price=100, type="stop_loss", sol_percentage=5),
        Level(price=200, type="take_profit", sol_percentage=5),
    ]
    worker = LevelsWorker(_job(wallet, levels), ctx)
    assert [lv.price for lv in worker.job.levels] == [100, 200, 300]
