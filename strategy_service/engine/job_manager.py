"""JobManager: owns the set of running strategy workers.

There is exactly one Worker per job id. Workers are built from the
WORKER_TYPES registry, started when their job is active, and dropped when
they complete or the job is removed.
"""

import asyncio
import logging

from strategy_service.engine.workers.base import Worker, WorkerContext, WorkerState
from strategy_service.engine.workers.levels import LevelsWorker
from strategy_service.engine.workers.pair_trade import PairTradeWorker
from strategy_service.engine.workers.price_monitor import PriceMonitorWorker
from strategy_service.engine.workers.wallet_monitor import WalletMonitorWorker
from strategy_service.errors import PersistenceError, ValidationError
from strategy_service.schemas.jobs import Job
from strategy_service.services.job_store import JobStore

logger = logging.getLogger(__name__)

WORKER_TYPES: dict[str, type[Worker]] = {
    WalletMonitorWorker.job_type: WalletMonitorWorker,
    PriceMonitorWorker.job_type: PriceMonitorWorker,
    LevelsWorker.job_type: LevelsWorker,
    PairTradeWorker.job_type: PairTradeWorker,
}


class JobManager:
    def __init__(
        self,
        ctx: WorkerContext,
        job_store: JobStore | None = None,
        worker_types: dict[str, type[Worker]] | None = None,
    ):
        self.ctx = ctx
        self.job_store = job_store
        self.worker_types = worker_types or WORKER_TYPES
        self._workers: dict[str, Worker] = {}

    # -- lookups -----------------------------------------------------------

    def get_worker(self, job_id: str) -> Worker | None:
        return self._workers.get(job_id)

    def get_job(self, job_id: str) -> Job | None:
        worker = self._workers.get(job_id)
        return worker.job if worker else None

    def workers(self, job_type: str | None = None, running_only: bool = False) -> list[Worker]:
        return [
            w for w in self._workers.values()
            if (job_type is None or w.job_type == job_type) and (not running_only or w.is_running)
        ]

    def active_jobs(self, job_type: str | None = None) -> list[Job]:
        return [w.job for w in self.workers(job_type, running_only=True)]

    # -- lifecycle ---------------------------------------------------------

    async def add_job(self, job: Job) -> bool:
        """Register a job and start its worker if the job is active.

        Returns False without side effects when the id is already managed.
        """
        if job.id in self._workers:
            logger.warning(f"[{job.id}] Job already managed, ignoring add")
            return False

        worker_cls = self.worker_types.get(job.type)
        if worker_cls is None:
            raise ValidationError(f"Unknown job type: {job.type}")

        worker = worker_cls(job, self.ctx, on_complete=self._handle_completion, on_update=self._persist)
        self._workers[job.id] = worker
        if job.is_active:
            try:
                await worker.start()
            except Exception:
                self._workers.pop(job.id, None)
                logger.error(f"[{job.id}] Failed to start {job.type} worker", exc_info=True)
                raise
        logger.info(f"[{job.id}] Added {job.type} job (active={job.is_active})")
        return True

    async def remove_job(self, job_id: str) -> bool:
        worker = self._workers.pop(job_id, None)
        if worker is None:
            return False
        await worker.stop()
        logger.info(f"[{job_id}] Removed job")
        return True

    async def toggle_job(self, job_id: str, is_active: bool) -> bool:
        """Start or stop an existing worker in place."""
        worker = self._workers.get(job_id)
        if worker is None:
            return False

        if is_active:
            await worker.start()
        else:
            await worker.stop()
        worker.job.is_active = is_active
        self._persist(worker.job)
        logger.info(f"[{job_id}] Toggled job active={is_active}")
        return True

    async def stop_all(self):
        workers = list(self._workers.values())
        results = await asyncio.gather(*(w.stop() for w in workers), return_exceptions=True)
        for worker, result in zip(workers, results):
            if isinstance(result, Exception):
                logger.error(f"[{worker.job.id}] Error stopping worker: {result}")
        await self.ctx.price_feed.stop()
        logger.info(f"Stopped {len(workers)} workers")

    async def load_jobs(self) -> int:
        """Start every active job from the store. Jobs that fail to start are skipped."""
        if self.job_store is None:
            return 0
        started = 0
        for job in self.job_store.load_all(active_only=True):
            try:
                if await self.add_job(job):
                    started += 1
            except Exception as e:
                logger.error(f"[{job.id}] Could not restore job: {e}")
        logger.info(f"Restored {started} active jobs")
        return started

    async def _handle_completion(self, worker: Worker):
        if self._workers.get(worker.job.id) is worker:
            del self._workers[worker.job.id]
        self._persist(worker.job)
        logger.info(f"[{worker.job.id}] Job completed and removed from manager")

    def _persist(self, job: Job):
        if self.job_store is None:
            return
        try:
            self.job_store.save(job)
        except PersistenceError as e:
            logger.error(f"[{job.id}] {e}")

    def get_status(self) -> dict:
        workers = list(self._workers.values())
        return {
            "total": len(workers),
            "running": sum(1 for w in workers if w.state == WorkerState.RUNNING),
            "price_subscribers": self.ctx.price_feed.subscriber_count,
            "jobs": [w.status() for w in workers],
        }
