"""Tests for JobManager lifecycle: registry dispatch, dedupe, toggle, completion."""

from unittest.mock import MagicMock

import pytest

from strategy_service.engine.job_manager import WORKER_TYPES, JobManager
from strategy_service.engine.workers.base import Worker, WorkerState
from strategy_service.engine.workers.price_monitor import PriceMonitorWorker
from strategy_service.engine.workers.wallet_monitor import WalletMonitorWorker
from strategy_service.schemas.jobs import PriceMonitorJob, WalletMonitorJob

WATCHED = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


class RecordingWorker(Worker):
    job_type = "price-monitor"
    starts = 0
    stops = 0

    async def _on_start(self):
        RecordingWorker.starts += 1

    async def _on_stop(self):
        RecordingWorker.stops += 1


@pytest.fixture(autouse=True)
def _reset_counts():
    RecordingWorker.starts = 0
    RecordingWorker.stops = 0


def _price_job(wallet, **kwargs):
    pk, secret = wallet
    return PriceMonitorJob(
        trading_wallet_public_key=pk,
        trading_wallet_secret_key=secret,
        target_price=150,
        direction="above",
        percentage_to_sell=50,
        **kwargs,
    )


def test_registry_covers_every_job_type():
    assert set(WORKER_TYPES) == {"wallet-monitor", "price-monitor", "levels", "pair-trade"}


@pytest.mark.asyncio
async def test_add_job_builds_type_specific_worker(wallet, ctx):
    manager = JobManager(ctx)
    pk, secret = wallet
    wallet_job = WalletMonitorJob(
        trading_wallet_public_key=pk, trading_wallet_secret_key=secret, wallet_address=WATCHED, percentage=10
    )
    price_job = _price_job(wallet)

    assert await manager.add_job(wallet_job)
    assert await manager.add_job(price_job)
    assert isinstance(manager.get_worker(wallet_job.id), WalletMonitorWorker)
    assert isinstance(manager.get_worker(price_job.id), PriceMonitorWorker)
    assert len(manager.active_jobs()) == 2
    assert [j.id for j in manager.active_jobs("price-monitor")] == [price_job.id]


@pytest.mark.asyncio
async def test_duplicate_add_is_noop(wallet, ctx):
    manager = JobManager(ctx, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet)
    assert await manager.add_job(job) is True
    assert await manager.add_job(job) is False
    assert RecordingWorker.starts == 1


@pytest.mark.asyncio
async def test_inactive_job_is_registered_but_not_started(wallet, ctx):
    manager = JobManager(ctx, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet, is_active=False)
    await manager.add_job(job)
    assert manager.get_worker(job.id).state == WorkerState.STOPPED
    assert RecordingWorker.starts == 0


@pytest.mark.asyncio
async def test_toggle_reuses_worker(wallet, ctx):
    store = MagicMock()
    manager = JobManager(ctx, job_store=store, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet)
    await manager.add_job(job)
    worker = manager.get_worker(job.id)

    assert await manager.toggle_job(job.id, False)
    assert worker.state == WorkerState.STOPPED
    assert job.is_active is False
    assert await manager.toggle_job(job.id, True)
    assert manager.get_worker(job.id) is worker
    assert worker.is_running
    assert RecordingWorker.starts == 2
    assert store.save.call_count == 2

    assert await manager.toggle_job("missing", True) is False


@pytest.mark.asyncio
async def test_remove_job_stops_worker(wallet, ctx):
    manager = JobManager(ctx, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet)
    await manager.add_job(job)
    assert await manager.remove_job(job.id)
    assert manager.get_worker(job.id) is None
    assert RecordingWorker.stops == 1
    assert await manager.remove_job(job.id) is False


@pytest.mark.asyncio
async def test_completion_removes_worker_and_persists(wallet, ctx):
    store = MagicMock()
    manager = JobManager(ctx, job_store=store, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet)
    await manager.add_job(job)
    worker = manager.get_worker(job.id)

    await worker.complete("done")

    assert manager.get_worker(job.id) is None
    assert job.is_active is False
    store.save.assert_called_with(job)
    # A completed worker never restarts
    await worker.start()
    assert worker.state == WorkerState.COMPLETED


@pytest.mark.asyncio
async def test_stop_all_stops_workers_and_price_feed(wallet, ctx, price_feed):
    manager = JobManager(ctx, worker_types={"price-monitor": RecordingWorker})
    for _ in range(3):
        await manager.add_job(_price_job(wallet))
    await manager.stop_all()
    assert RecordingWorker.stops == 3
    assert all(not w.is_running for w in manager.workers())


@pytest.mark.asyncio
async def test_load_jobs_skips_failures(wallet, ctx):
    class FlakyWorker(RecordingWorker):
        async def _on_start(self):
            if self.job.name == "bad":
                raise RuntimeError("boom")

    bad, good = _price_job(wallet, name="bad"), _price_job(wallet, name="good")
    store = MagicMock()
    store.load_all.return_value = [bad, good]
    manager = JobManager(ctx, job_store=store, worker_types={"price-monitor": FlakyWorker})

    assert await manager.load_jobs() == 1
    assert manager.get_worker(bad.id) is None
    assert manager.get_worker(good.id).is_running


@pytest.mark.asyncio
async def test_status_snapshot(wallet, ctx):
    manager = JobManager(ctx, worker_types={"price-monitor": RecordingWorker})
    job = _price_job(wallet, name="sol-150")
    await manager.add_job(job)
    status = manager.get_status()
    assert status["total"] == 1
    assert status["running"] == 1
    assert status["jobs"][0]["name"] == "sol-150"
    assert status["jobs"][0]["state"] == "running"
