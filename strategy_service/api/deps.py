"""Shared API dependencies.

Services are built once in the application lifespan and stored on
``app.state``; routes pull them from there so tests can swap them out.
"""

from fastapi import HTTPException, Request, status

from strategy_service.engine.job_manager import JobManager
from strategy_service.services.activity_log import ActivityLog
from strategy_service.services.holdings_tracker import HoldingsTracker
from strategy_service.services.job_store import JobStore
from strategy_service.services.price_feed import PriceFeedService
from strategy_service.services.trigger_service import TriggerService
from strategy_service.services.valuation import ValuationService


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not available",
        )
    return service


def get_job_manager(request: Request) -> JobManager:
    return _state(request, "job_manager")


def get_job_store(request: Request) -> JobStore:
    return _state(request, "job_store")


def get_trigger_service(request: Request) -> TriggerService:
    return _state(request, "trigger_service")


def get_holdings_tracker(request: Request) -> HoldingsTracker:
    return _state(request, "holdings_tracker")


def get_valuation_service(request: Request) -> ValuationService:
    return _state(request, "valuation_service")


def get_price_feed(request: Request) -> PriceFeedService:
    return _state(request, "price_feed")


def get_activity_log(request: Request) -> ActivityLog:
    return _state(request, "activity_log")
