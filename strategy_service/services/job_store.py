"""Persistence for strategy jobs.

Common fields map to StrategyJob columns; type-specific fields are stored in
the ``config`` JSON column and re-validated through JobAdapter on load.
"""

import logging
from typing import Callable

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from strategy_service.errors import PersistenceError
from strategy_service.models.strategy_job import StrategyJob
from strategy_service.schemas.jobs import COMMON_FIELDS, Job, JobAdapter
from strategy_service.services import encryption

logger = logging.getLogger(__name__)


class JobStore:
    def __init__(
        self,
        engine: Engine,
        encrypt_secret: Callable[[bytes], str] = encryption.encrypt_secret_key,
        decrypt_secret: Callable[[str], bytes] = encryption.decrypt_secret_key,
    ):
        self.engine = engine
        self._encrypt = encrypt_secret
        self._decrypt = decrypt_secret

    def _apply(self, row: StrategyJob, job: Job):
        row.type = job.type
        row.name = job.name
        row.trading_wallet_public_key = job.trading_wallet_public_key
        row.is_active = job.is_active
        row.created_at = job.created_at
        row.last_activity = job.last_activity
        row.profit_tracking = job.profit_tracking.model_dump() if job.profit_tracking else None
        row.config = job.model_dump(mode="json", exclude=COMMON_FIELDS)

    def _to_job(self, row: StrategyJob) -> Job:
        data = {
            **(row.config or {}),
            "id": row.id,
            "type": row.type,
            "name": row.name,
            "trading_wallet_public_key": row.trading_wallet_public_key,
            "trading_wallet_secret_key": self._decrypt(row.trading_wallet_secret_encrypted),
            "is_active": row.is_active,
            "created_at": row.created_at,
            "last_activity": row.last_activity,
            "profit_tracking": row.profit_tracking,
        }
        return JobAdapter.validate_python(data)

    def save(self, job: Job):
        """Insert or update a job. The secret is only written on insert or when it changes."""
        try:
            with Session(self.engine) as session:
                row = session.get(StrategyJob, job.id)
                if row is None:
                    row = StrategyJob(
                        id=job.id,
                        type=job.type,
                        trading_wallet_public_key=job.trading_wallet_public_key,
                        trading_wallet_secret_encrypted=self._encrypt(job.trading_wallet_secret_key),
                    )
                elif job.trading_wallet_secret_key and self._decrypt(row.trading_wallet_secret_encrypted) != job.trading_wallet_secret_key:
                    row.trading_wallet_secret_encrypted = self._encrypt(job.trading_wallet_secret_key)
                self._apply(row, job)
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"[{job.id}] Failed to save job: {e}", exc_info=True)
            raise PersistenceError(f"Job {job.id}: failed to save") from e

    def load(self, job_id: str) -> Job | None:
        with Session(self.engine) as session:
            row = session.get(StrategyJob, job_id)
            return self._to_job(row) if row else None

    def load_all(self, active_only: bool = False, job_type: str | None = None) -> list[Job]:
        with Session(self.engine) as session:
            stmt = select(StrategyJob).order_by(StrategyJob.created_at)
            if active_only:
                stmt = stmt.where(StrategyJob.is_active == True)  # noqa: E712
            if job_type is not None:
                stmt = stmt.where(StrategyJob.type == job_type)
            rows = session.exec(stmt).all()

        jobs = []
        for row in rows:
            try:
                jobs.append(self._to_job(row))
            except ValueError as e:
                logger.error(f"[{row.id}] Skipping job with invalid stored config: {e}")
        return jobs

    def delete(self, job_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(StrategyJob, job_id)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True
