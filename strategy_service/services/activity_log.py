"""Per-job activity rows (job_log table)."""

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from strategy_service.models.job_log import JobLog

logger = logging.getLogger(__name__)


class ActivityLog:
    def __init__(self, engine: Engine):
        self.engine = engine

    def record(
        self,
        job_id: str,
        status: str,
        action: str | None = None,
        message: str | None = None,
        signature: str | None = None,
        details: dict | None = None,
    ):
        """Write a JobLog entry. Failures are logged, never raised to the worker."""
        try:
            with Session(self.engine) as session:
                session.add(JobLog(
                    job_id=job_id,
                    status=status,
                    action=action,
                    message=message,
                    signature=signature,
                    details=details,
                ))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"[{job_id}] Failed to write activity log: {e}")

    def recent(
        self,
        job_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[JobLog]:
        with Session(self.engine) as session:
            stmt = select(JobLog).order_by(JobLog.timestamp.desc(), JobLog.id.desc())
            if job_id is not None:
                stmt = stmt.where(JobLog.job_id == job_id)
            if status is not None:
                stmt = stmt.where(JobLog.status == status)
            return list(session.exec(stmt.offset(offset).limit(limit)).all())
