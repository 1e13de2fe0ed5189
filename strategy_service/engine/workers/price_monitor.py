"""PriceMonitorWorker: one-shot sell of SOL into USDC when a price target is crossed."""

import logging
import math
from datetime import timedelta

from strategy_service.engine.triggers import price_condition_met
from strategy_service.engine.workers.base import Worker
from strategy_service.errors import ExecutionError, UpstreamUnavailable
from strategy_service.schemas.jobs import PriceMonitorJob, TriggerRecord
from strategy_service.services.price_feed import Subscription
from strategy_service.utils.constants import SOL_MINT, USDC_MINT

logger = logging.getLogger(__name__)


class PriceMonitorWorker(Worker):
    job_type = "price-monitor"
    job: PriceMonitorJob

    def __init__(self, job: PriceMonitorJob, ctx, on_complete=None, on_update=None):
        super().__init__(job, ctx, on_complete=on_complete, on_update=on_update)
        self._subscription: Subscription | None = None
        self._triggering = False
        self._cooldown_until = None

    async def _on_start(self):
        self._subscription = self.ctx.price_feed.subscribe(self.on_price, owner=self.job.id)
        logger.info(
            f"[{self.job.id}] Waiting for SOL {self.job.direction} ${self.job.target_price} "
            f"to sell {self.job.percentage_to_sell}%"
        )

    async def _on_stop(self):
        self.ctx.price_feed.unsubscribe(self._subscription)
        self._subscription = None

    async def on_price(self, prices: dict[str, float]):
        price = prices.get("sol")
        if price is not None:
            await self.evaluate(price)

    async def evaluate(self, price: float) -> bool:
        """Check one tick. Returns True when the job fired and completed."""
        if not self.is_running or self._triggering:
            return False
        now = self.ctx.clock()
        if self._cooldown_until is not None and now < self._cooldown_until:
            return False
        if not price_condition_met(price, self.job.target_price, self.job.direction):
            return False

        # Claim the trigger before the first await so overlapping ticks bail out
        self._triggering = True
        self._cooldown_until = now + timedelta(seconds=self.ctx.settings.price_trigger_cooldown_seconds)
        try:
            fired = await self._sell(price)
        finally:
            self._triggering = False

        if fired:
            await self.complete(f"Triggered at ${price:.4f}")
        return fired

    async def _sell(self, price: float) -> bool:
        fee_reserve = self.ctx.settings.fee_reserve_lamports
        try:
            balance = await self.ctx.rpc.get_balance(self.wallet.public_key)
            if balance < fee_reserve:
                raise ExecutionError(f"Insufficient SOL balance for fees: {balance} lamports")

            amount = math.floor(balance * self.job.percentage_to_sell / 100)
            if amount <= 0 or amount >= balance - fee_reserve:
                raise ExecutionError(f"Invalid trade amount {amount} for balance {balance} lamports")

            logger.info(f"[{self.job.id}] Price ${price:.4f} hit target, selling {amount} lamports")
            quote = await self.ctx.swap_gateway.quote(
                SOL_MINT, USDC_MINT, amount, self.ctx.settings.default_slippage_bps
            )
            if not self.is_running:
                return False
            result = await self.ctx.swap_gateway.execute(quote, self.wallet, self.ctx.settings.fee_account)
        except (ExecutionError, UpstreamUnavailable) as e:
            logger.error(f"[{self.job.id}] Price trigger failed: {e}")
            self.job.trigger_history.append(TriggerRecord(price=price, success=False, error=str(e)))
            self.record_activity("error", "price_trigger", str(e))
            self.persist()
            return False

        self.job.last_trigger_price = price
        self.job.trigger_history.append(TriggerRecord(price=price, success=True, signature=result.signature))
        self.job.touch()
        await self.update_profit_tracking(price)
        self.record_activity(
            "success",
            "price_trigger",
            f"Sold {result.input_amount} lamports at ${price:.4f}",
            signature=result.signature,
            details={"input_amount": result.input_amount, "output_amount": result.output_amount},
        )
        return True
