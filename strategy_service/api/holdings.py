"""Holdings, trade ledger and portfolio value for pair-trade strategies."""

from fastapi import APIRouter, Depends, HTTPException

from strategy_service.api.deps import get_holdings_tracker, get_price_feed
from strategy_service.services.holdings_tracker import HoldingsTracker
from strategy_service.services.price_feed import PriceFeedService

router = APIRouter(prefix="/api/holdings", tags=["holdings"])


@router.get("/{strategy_id}")
def get_holdings(strategy_id: str, tracker: HoldingsTracker = Depends(get_holdings_tracker)):
    holdings = tracker.get_holdings(strategy_id)
    if holdings is None:
        raise HTTPException(status_code=404, detail="No holdings for strategy")
    return holdings.as_dict()


@router.get("/{strategy_id}/trades")
def list_trades(
    strategy_id: str,
    limit: int = 50,
    offset: int = 0,
    tracker: HoldingsTracker = Depends(get_holdings_tracker),
):
    return tracker.get_trade_history(strategy_id, limit=min(limit, 500), offset=offset)


@router.get("/{strategy_id}/portfolio")
def portfolio_value(
    strategy_id: str,
    tracker: HoldingsTracker = Depends(get_holdings_tracker),
    price_feed: PriceFeedService = Depends(get_price_feed),
):
    value = tracker.calculate_portfolio_value(strategy_id, price_feed.get_price_for_mint)
    if value is None:
        raise HTTPException(status_code=404, detail="No holdings for strategy")
    return value.as_dict()
