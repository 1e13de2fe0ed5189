"""LevelsWorker: a ladder of limit-buy / stop-loss / take-profit price levels.

At most one level executes per tick. Each level has its own cooldown and
retrigger budget; the job completes once every level is permanently disabled.
"""

import logging
import math

from strategy_service.engine.triggers import all_levels_exhausted, record_level_execution, select_level
from strategy_service.engine.workers.base import Worker
from strategy_service.errors import ExecutionError, UpstreamUnavailable
from strategy_service.schemas.jobs import Level, LevelsJob
from strategy_service.services.price_feed import Subscription
from strategy_service.utils.constants import SOL_MINT, USDC_DECIMALS, USDC_MINT, to_raw

logger = logging.getLogger(__name__)


class LevelsWorker(Worker):
    job_type = "levels"
    job: LevelsJob

    def __init__(self, job: LevelsJob, ctx, on_complete=None, on_update=None):
        super().__init__(job, ctx, on_complete=on_complete, on_update=on_update)
        job.levels.sort(key=lambda lv: lv.price)
        self._subscription: Subscription | None = None
        self._triggering = False

    async def _on_start(self):
        self._subscription = self.ctx.price_feed.subscribe(self.on_price, owner=self.job.id)
        logger.info(f"[{self.job.id}] Watching {len(self.job.levels)} levels ({self.job.mode} mode)")

    async def _on_stop(self):
        self.ctx.price_feed.unsubscribe(self._subscription)
        self._subscription = None

    async def on_price(self, prices: dict[str, float]):
        price = prices.get("sol")
        if price is not None:
            await self.evaluate(price)

    async def evaluate(self, price: float) -> Level | None:
        """Execute at most one level for this tick and return it."""
        if not self.is_running or self._triggering:
            return None
        now = self.ctx.clock()
        level = select_level(self.job.levels, price, now, self.job.max_retriggers)
        if level is None:
            return None

        self._triggering = True
        try:
            signature, error = await self._execute_level(level, price)
        finally:
            self._triggering = False

        success = error is None
        record_level_execution(
            level,
            success=success,
            price=price,
            now=now,
            cooldown_hours=self.job.cooldown_hours,
            max_retriggers=self.job.max_retriggers,
            signature=signature,
            error=error,
        )
        if success:
            self.job.last_trigger_price = price
            self.job.touch()
            await self.update_profit_tracking(price)
            self.record_activity(
                "success",
                "level_trigger",
                f"{level.type} @ ${level.price} executed at ${price:.4f} ({level.executed_count}/{self.job.max_retriggers})",
                signature=signature,
                details={"level_id": level.id},
            )
        else:
            self.record_activity("error", "level_trigger", error, details={"level_id": level.id})
        self.persist()

        if all_levels_exhausted(self.job.levels):
            await self.complete("All levels exhausted")
        return level

    async def _execute_level(self, level: Level, price: float) -> tuple[str | None, str | None]:
        """Returns (signature, error). Exactly one is set."""
        owner = self.wallet.public_key
        slippage_bps = self.ctx.settings.default_slippage_bps
        try:
            if level.type == "limit_buy":
                amount = to_raw(level.usdc_amount, USDC_DECIMALS)
                usdc = await self.ctx.rpc.get_token_balance(owner, USDC_MINT)
                if usdc.amount < amount:
                    raise ExecutionError(f"Insufficient USDC: have {usdc.ui_amount:.2f}, need {level.usdc_amount}")
                input_mint, output_mint = USDC_MINT, SOL_MINT
            else:
                fee_reserve = self.ctx.settings.fee_reserve_lamports
                balance = await self.ctx.rpc.get_balance(owner)
                amount = math.floor(balance * level.sol_percentage / 100)
                if amount <= 0 or amount >= balance - fee_reserve:
                    raise ExecutionError(f"Invalid trade amount {amount} for balance {balance} lamports")
                input_mint, output_mint = SOL_MINT, USDC_MINT

            logger.info(f"[{self.job.id}] Level {level.type} @ ${level.price} hit at ${price:.4f}")
            quote = await self.ctx.swap_gateway.quote(input_mint, output_mint, amount, slippage_bps)
            if not self.is_running:
                return None, "Worker stopped before submission"
            result = await self.ctx.swap_gateway.execute(quote, self.wallet, self.ctx.settings.fee_account)
        except (ExecutionError, UpstreamUnavailable) as e:
            logger.error(f"[{self.job.id}] Level {level.id} failed: {e}")
            return None, str(e)
        return result.signature, None
