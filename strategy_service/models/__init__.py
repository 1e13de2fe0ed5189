"""Database models."""

from strategy_service.models.strategy_job import StrategyJob
from strategy_service.models.strategy_holdings import StrategyHoldings
from strategy_service.models.trade_history import TradeHistory
from strategy_service.models.signal_log import SignalLog
from strategy_service.models.job_log import JobLog

__all__ = [
    "StrategyJob",
    "StrategyHoldings",
    "TradeHistory",
    "SignalLog",
    "JobLog",
]
