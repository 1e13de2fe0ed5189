"""Webhook endpoints for external trade signals."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from strategy_service.api.deps import get_trigger_service
from strategy_service.errors import StrategyServiceError
from strategy_service.schemas.signals import PairTradeSignalIn
from strategy_service.services.trigger_service import TriggerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/triggers", tags=["triggers"])

SIGNAL_ERROR = "Failed to process pair trade signal"


@router.post("/pair-trade")
async def pair_trade_signal(
    body: PairTradeSignalIn,
    service: TriggerService = Depends(get_trigger_service),
):
    if body.timestamp in (None, ""):
        body.timestamp = datetime.now(timezone.utc).isoformat()

    try:
        result = await service.process_pair_trade_signal(body)
    except StrategyServiceError as e:
        return JSONResponse(status_code=400, content={"error": SIGNAL_ERROR, "message": str(e)})

    return {"success": True, "data": result.as_dict()}


@router.get("/status")
def trigger_status(service: TriggerService = Depends(get_trigger_service)):
    return {"success": True, "data": service.get_status()}
