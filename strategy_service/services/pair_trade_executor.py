"""Pair-trade execution: initial allocation and signal-driven rebalancing.

Every execution attempt writes a ``pending`` ledger row first and finalizes
it once (completed, partial or failed). Holdings move by the amounts the
swap actually filled, never by the requested amounts.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone

from strategy_service.errors import ExecutionError, PersistenceError, UpstreamUnavailable
from strategy_service.schemas.jobs import PairTradeJob
from strategy_service.schemas.signals import PairTradeSignal
from strategy_service.services.holdings_tracker import HoldingsTracker
from strategy_service.services.solana_rpc import SolanaRpcClient
from strategy_service.services.swap_gateway import SwapGateway, TradingWallet
from strategy_service.utils.constants import SOL_MINT

logger = logging.getLogger(__name__)


@dataclass
class TradeOutcome:
    strategy_id: str
    trade_id: int | None
    signature: str | None
    requested_amount: int
    input_amount: int
    output_amount: int
    partial_fill: bool = False
    actual_percentage: float | None = None


def _other(token: str) -> str:
    return "B" if token == "A" else "A"


class PairTradeExecutor:
    def __init__(
        self,
        rpc: SolanaRpcClient,
        swap_gateway: SwapGateway,
        holdings_tracker: HoldingsTracker,
        fee_account: str | None = None,
        default_slippage_bps: int = 100,
    ):
        self.rpc = rpc
        self.swap_gateway = swap_gateway
        self.holdings = holdings_tracker
        self.fee_account = fee_account
        self.default_slippage_bps = default_slippage_bps
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, strategy_id: str) -> asyncio.Lock:
        lock = self._locks.get(strategy_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[strategy_id] = lock
        return lock

    def _slippage_bps(self, max_slippage_pct: float | None) -> int:
        if not max_slippage_pct:
            return self.default_slippage_bps
        return int(round(max_slippage_pct * 100))

    def _settle(self, strategy_id: str, trade_id: int, signature: str, apply_holdings, status: str, **amounts):
        """Book a landed swap into holdings, then close its ledger row.

        The swap is already on-chain here. If either write fails the row is
        closed as failed with the signature attached, never left pending.
        """
        try:
            apply_holdings()
            self.holdings.finalize_trade(trade_id, status, signature=signature, **amounts)
        except PersistenceError as e:
            logger.error(f"[{strategy_id}] Swap {signature} landed but was not recorded: {e}")
            try:
                self.holdings.finalize_trade(
                    trade_id, "failed", signature=signature, error_message=f"Swap landed, ledger update failed: {e}"
                )
            except PersistenceError as close_error:
                logger.error(f"[{strategy_id}] Trade {trade_id} ({signature}) left open: {close_error}")
            raise ExecutionError(f"Swap {signature} landed but was not recorded: {e}") from e

    async def execute_initial_allocation(
        self, job: PairTradeJob, wallet: TradingWallet, recommended_token: str
    ) -> TradeOutcome:
        """Swap a share of the wallet's SOL into the recommended side."""
        async with self._lock_for(job.id):
            balance = await self.rpc.get_balance(wallet.public_key)
            allocation = math.floor(balance * job.allocation_percentage / 100)
            if allocation <= 0 or allocation > balance:
                raise ExecutionError(f"Invalid allocation amount {allocation} for balance {balance} lamports")

            target_mint = job.token_a_mint if recommended_token == "A" else job.token_b_mint
            slippage_bps = self._slippage_bps(job.max_slippage)
            logger.info(
                f"[{job.id}] Initial allocation: {allocation} lamports -> token {recommended_token} ({target_mint[:8]}...)"
            )

            signature = None
            if target_mint == SOL_MINT:
                output_amount = allocation
                trade_id = self.holdings.record_trade(
                    strategy_id=job.id,
                    trade_type="initial_allocation",
                    from_token="SOL",
                    to_token=recommended_token,
                    from_mint=SOL_MINT,
                    to_mint=target_mint,
                    input_amount=allocation,
                    output_amount=allocation,
                    slippage_bps=slippage_bps,
                    execution_status="completed",
                )
            else:
                trade_id = self.holdings.record_trade(
                    strategy_id=job.id,
                    trade_type="initial_allocation",
                    from_token="SOL",
                    to_token=recommended_token,
                    from_mint=SOL_MINT,
                    to_mint=target_mint,
                    input_amount=allocation,
                    slippage_bps=slippage_bps,
                )
                try:
                    quote = await self.swap_gateway.quote(SOL_MINT, target_mint, allocation, slippage_bps)
                    result = await self.swap_gateway.execute(quote, wallet, self.fee_account)
                except (ExecutionError, UpstreamUnavailable) as e:
                    self.holdings.finalize_trade(trade_id, "failed", error_message=str(e))
                    raise ExecutionError(f"Initial allocation swap failed: {e}") from e
                output_amount = result.output_amount
                signature = result.signature

            a_amount = output_amount if recommended_token == "A" else 0
            b_amount = output_amount if recommended_token == "B" else 0
            def apply():
                self.holdings.update_holdings(
                    job.id, job.token_a_mint, a_amount, job.token_b_mint, b_amount, total_allocated_sol=allocation
                )

            if signature is None:
                apply()
            else:
                self._settle(job.id, trade_id, signature, apply, "completed", output_amount=output_amount)

            job.current_token = recommended_token
            job.touch()
            return TradeOutcome(
                strategy_id=job.id,
                trade_id=trade_id,
                signature=signature,
                requested_amount=allocation,
                input_amount=allocation,
                output_amount=output_amount,
            )

    async def execute_signal_trade(
        self, job: PairTradeJob, wallet: TradingWallet, signal: PairTradeSignal
    ) -> TradeOutcome:
        """Sell ``signal.percentage`` of the target side into the other side."""
        async with self._lock_for(job.id):
            holdings = self.holdings.get_holdings(job.id)
            if holdings is None:
                raise ExecutionError("No holdings found; initial allocation has not run")

            from_token = signal.target_token
            to_token = _other(from_token)
            source = holdings.side(from_token)
            dest = holdings.side(to_token)

            max_tradeable_amount = source.amount
            if max_tradeable_amount <= 0:
                raise ExecutionError(f"No token {from_token} holdings to trade")

            trade_amount = min(math.floor(source.amount * signal.percentage / 100), max_tradeable_amount)
            if trade_amount <= 0:
                raise ExecutionError(f"Trade amount for {signal.percentage}% of {source.amount} rounds to zero")

            slippage_bps = self._slippage_bps(signal.max_slippage or job.max_slippage)
            trade_id = self.holdings.record_trade(
                strategy_id=job.id,
                trade_type="signal_trade",
                from_token=from_token,
                to_token=to_token,
                from_mint=source.mint,
                to_mint=dest.mint,
                input_amount=trade_amount,
                slippage_bps=slippage_bps,
                signal_data=signal.raw or None,
            )

            try:
                quote = await self.swap_gateway.quote(source.mint, dest.mint, trade_amount, slippage_bps)
                result = await self.swap_gateway.execute(quote, wallet, self.fee_account)
            except (ExecutionError, UpstreamUnavailable) as e:
                self.holdings.finalize_trade(trade_id, "failed", error_message=str(e))
                raise ExecutionError(str(e)) from e

            filled = min(result.input_amount, trade_amount)
            partial = filled < trade_amount
            actual_pct = filled / source.amount * 100
            if partial:
                logger.warning(
                    f"[{job.id}] Partial fill: requested {trade_amount}, filled {filled} "
                    f"({actual_pct:.2f}% of token {from_token})"
                )

            new_source = source.amount - filled
            new_dest = dest.amount + result.output_amount
            a_amount, b_amount = (new_source, new_dest) if from_token == "A" else (new_dest, new_source)
            self._settle(
                job.id,
                trade_id,
                result.signature,
                lambda: self.holdings.update_holdings(
                    job.id, holdings.token_a.mint, a_amount, holdings.token_b.mint, b_amount,
                    total_allocated_sol=holdings.total_allocated_sol,
                ),
                "partial" if partial else "completed",
                input_amount=filled,
                output_amount=result.output_amount,
            )

            job.current_token = to_token
            job.swap_history.append({
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "from": from_token,
                "to": to_token,
                "inputAmount": filled,
                "outputAmount": result.output_amount,
                "signature": result.signature,
            })
            job.touch()
            logger.info(
                f"[{job.id}] Signal trade {from_token}->{to_token}: {filled} in, {result.output_amount} out ({result.signature})"
            )
            return TradeOutcome(
                strategy_id=job.id,
                trade_id=trade_id,
                signature=result.signature,
                requested_amount=trade_amount,
                input_amount=filled,
                output_amount=result.output_amount,
                partial_fill=partial,
                actual_percentage=actual_pct,
            )
