"""PairTradeWorker: holds a signal-driven allocation between two tokens.

Starting the worker rehydrates holdings from the database; a strategy with
no holdings yet gets its initial allocation into whichever side the
valuation oracle (or its fallback) recommends. Signals arrive through
TriggerService, not through a subscription.
"""

import logging

from strategy_service.engine.workers.base import Worker
from strategy_service.errors import ExecutionError
from strategy_service.schemas.jobs import PairTradeJob
from strategy_service.schemas.signals import PairTradeSignal
from strategy_service.services.pair_trade_executor import TradeOutcome

logger = logging.getLogger(__name__)


class PairTradeWorker(Worker):
    job_type = "pair-trade"
    job: PairTradeJob

    async def _on_start(self):
        tracker = self.ctx.holdings_tracker
        executor = self.ctx.pair_trade_executor
        if tracker is None or executor is None or self.ctx.valuation is None:
            raise ExecutionError("Pair trading services are not configured")

        holdings = tracker.get_holdings(self.job.id)
        if holdings is not None:
            if holdings.token_a.amount > 0 and holdings.token_b.amount == 0:
                self.job.current_token = "A"
            elif holdings.token_b.amount > 0 and holdings.token_a.amount == 0:
                self.job.current_token = "B"
            logger.info(
                f"[{self.job.id}] Rehydrated holdings A={holdings.token_a.amount} B={holdings.token_b.amount}"
            )
            return

        valuation = await self.ctx.valuation.get_recommendation(self.job.token_a_mint, self.job.token_b_mint)
        outcome = await executor.execute_initial_allocation(self.job, self.wallet, valuation.recommended_token)
        await self.update_profit_tracking()
        self.record_activity(
            "success",
            "initial_allocation",
            f"Allocated {outcome.input_amount} lamports into token {valuation.recommended_token}",
            signature=outcome.signature,
            details={"valuation": valuation.as_dict(), "output_amount": outcome.output_amount},
        )
        self.persist()

    async def _on_stop(self):
        pass

    async def execute_signal(self, signal: PairTradeSignal) -> TradeOutcome:
        if not self.is_running:
            raise ExecutionError("Strategy is not running")
        try:
            outcome = await self.ctx.pair_trade_executor.execute_signal_trade(self.job, self.wallet, signal)
        except ExecutionError as e:
            self.record_activity("error", "signal_trade", str(e), details={"signal": signal.raw})
            raise
        await self.update_profit_tracking()
        self.record_activity(
            "success",
            "signal_trade",
            f"Sold {outcome.input_amount} of token {signal.target_token}"
            + (" (partial fill)" if outcome.partial_fill else ""),
            signature=outcome.signature,
            details={
                "requested_amount": outcome.requested_amount,
                "output_amount": outcome.output_amount,
                "actual_percentage": outcome.actual_percentage,
            },
        )
        self.persist()
        return outcome
