"""System API: health check, worker status, price feed, valuation cache, job logs."""

from fastapi import APIRouter, Depends

from strategy_service.api.deps import (
    get_activity_log,
    get_job_manager,
    get_price_feed,
    get_valuation_service,
)
from strategy_service.engine.job_manager import JobManager
from strategy_service.services.activity_log import ActivityLog
from strategy_service.services.price_feed import PriceFeedService
from strategy_service.services.valuation import ValuationService

router = APIRouter(prefix="/api/system", tags=["system"])


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get("/jobs")
def job_manager_status(manager: JobManager = Depends(get_job_manager)):
    """Running workers with their state and last activity."""
    return manager.get_status()


@router.get("/prices")
def price_feed_status(price_feed: PriceFeedService = Depends(get_price_feed)):
    return price_feed.status()


@router.get("/valuation-cache")
def valuation_cache(valuation: ValuationService = Depends(get_valuation_service)):
    return valuation.cache_status()


@router.delete("/valuation-cache", status_code=204)
def clear_valuation_cache(valuation: ValuationService = Depends(get_valuation_service)):
    valuation.clear_cache()


@router.get("/logs")
def job_logs(
    job_id: str | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    activity_log: ActivityLog = Depends(get_activity_log),
):
    return activity_log.recent(job_id=job_id, status=status, limit=limit, offset=offset)
