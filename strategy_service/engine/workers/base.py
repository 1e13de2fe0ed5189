"""Worker base class and the dependency bundle handed to every worker."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from strategy_service.config import Settings, settings as default_settings
from strategy_service.errors import UpstreamUnavailable
from strategy_service.schemas.jobs import ProfitTracking
from strategy_service.services.swap_gateway import SwapGateway, TradingWallet
from strategy_service.utils.constants import SOL_DECIMALS, to_ui

if TYPE_CHECKING:
    from strategy_service.services.activity_log import ActivityLog
    from strategy_service.services.holdings_tracker import HoldingsTracker
    from strategy_service.services.pair_trade_executor import PairTradeExecutor
    from strategy_service.services.price_feed import PriceFeedService
    from strategy_service.services.solana_rpc import SolanaRpcClient
    from strategy_service.services.valuation import ValuationService

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    COMPLETED = "completed"  # terminal; one-shot jobs only


@dataclass
class WorkerContext:
    rpc: "SolanaRpcClient"
    swap_gateway: SwapGateway
    price_feed: "PriceFeedService"
    scheduler: AsyncIOScheduler
    activity_log: "ActivityLog | None" = None
    holdings_tracker: "HoldingsTracker | None" = None
    pair_trade_executor: "PairTradeExecutor | None" = None
    valuation: "ValuationService | None" = None
    settings: Settings = field(default_factory=lambda: default_settings)
    clock: Callable[[], datetime] = utcnow


class Worker(ABC):
    """Runs one job. Subclasses implement _on_start/_on_stop.

    ``stop()`` flips the state before tearing down, so any in-flight work that
    checks ``is_running`` right before submitting a swap sees the stop.
    """

    job_type: str = ""

    def __init__(
        self,
        job,
        ctx: WorkerContext,
        on_complete: Callable[["Worker"], Awaitable[None]] | None = None,
        on_update: Callable[[Any], None] | None = None,
    ):
        self.job = job
        self.ctx = ctx
        self.state = WorkerState.STOPPED
        self.wallet = TradingWallet(job.trading_wallet_public_key, job.trading_wallet_secret_key)
        self._on_complete = on_complete
        self._on_update = on_update

    @property
    def is_running(self) -> bool:
        return self.state == WorkerState.RUNNING

    @property
    def last_activity(self) -> datetime | None:
        return self.job.last_activity

    async def start(self):
        if self.state == WorkerState.RUNNING:
            return
        if self.state == WorkerState.COMPLETED:
            logger.warning(f"[{self.job.id}] Completed worker cannot be restarted")
            return
        self.state = WorkerState.RUNNING
        try:
            await self.init_profit_tracking()
            await self._on_start()
        except Exception:
            self.state = WorkerState.STOPPED
            await self._on_stop()
            raise
        logger.info(f"[{self.job.id}] {self.job_type} worker started")

    async def stop(self):
        if self.state != WorkerState.RUNNING:
            return
        self.state = WorkerState.STOPPED
        await self._on_stop()
        logger.info(f"[{self.job.id}] {self.job_type} worker stopped")

    async def complete(self, message: str):
        """Terminal transition for one-shot jobs: deactivate and notify the manager."""
        if self.state != WorkerState.RUNNING:
            return
        self.state = WorkerState.COMPLETED
        self.job.is_active = False
        await self._on_stop()
        logger.info(f"[{self.job.id}] {self.job_type} worker completed: {message}")
        self.record_activity("success", "completed", message)
        if self._on_complete is not None:
            await self._on_complete(self)

    @abstractmethod
    async def _on_start(self):
        ...

    @abstractmethod
    async def _on_stop(self):
        ...

    async def _sol_position(self, sol_price: float | None) -> tuple[float, float]:
        balance = to_ui(await self.ctx.rpc.get_balance(self.wallet.public_key), SOL_DECIMALS)
        if sol_price is None:
            sol_price = self.ctx.price_feed.get_price("sol") or 0.0
        return balance, balance * sol_price

    async def init_profit_tracking(self, sol_price: float | None = None):
        """Record the wallet's SOL balance and USD value the first time the job starts."""
        if self.job.profit_tracking is not None:
            return
        try:
            balance, value = await self._sol_position(sol_price)
        except UpstreamUnavailable as e:
            logger.warning(f"[{self.job.id}] Profit tracking not initialized: {e}")
            return
        self.job.profit_tracking = ProfitTracking(
            initial_balance=balance, initial_value=value, current_balance=balance, current_value=value
        )
        logger.info(f"[{self.job.id}] Profit tracking from {balance:.4f} SOL (${value:.2f})")

    async def update_profit_tracking(self, sol_price: float | None = None):
        """Refresh current balance and value after a successful swap."""
        tracking = self.job.profit_tracking
        if tracking is None:
            return
        try:
            tracking.current_balance, tracking.current_value = await self._sol_position(sol_price)
        except UpstreamUnavailable as e:
            logger.warning(f"[{self.job.id}] Profit tracking not updated: {e}")

    def persist(self):
        if self._on_update is not None:
            self._on_update(self.job)

    def record_activity(
        self,
        status: str,
        action: str | None = None,
        message: str | None = None,
        signature: str | None = None,
        details: dict | None = None,
    ):
        if self.ctx.activity_log is not None:
            self.ctx.activity_log.record(
                self.job.id, status, action=action, message=message, signature=signature, details=details
            )

    def status(self) -> dict:
        return {
            "id": self.job.id,
            "type": self.job_type,
            "name": self.job.name,
            "state": self.state.value,
            "is_active": self.job.is_active,
            "last_activity": self.job.last_activity.isoformat() if self.job.last_activity else None,
        }
