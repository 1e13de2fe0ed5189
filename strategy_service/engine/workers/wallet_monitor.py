"""WalletMonitorWorker: mirror another wallet's swaps proportionally.

The monitored wallet's signature history is polled on the shared scheduler.
The first poll only records a cursor so history is never replayed. Each new
signature is handled at most once: it is marked seen before any await and
dropped if it is already seen or in flight.
"""

import asyncio
import logging

from apscheduler.triggers.interval import IntervalTrigger

from strategy_service.engine.mirror import DetectedSwap, MirrorPolicy, compute_mirror_amount, detect_swap
from strategy_service.engine.workers.base import Worker
from strategy_service.errors import ExecutionError, UpstreamUnavailable
from strategy_service.schemas.jobs import MirroredToken, WalletMonitorJob
from strategy_service.services.swap_gateway import SwapResult
from strategy_service.utils.constants import LAMPORTS_PER_SOL, SOL_MINT, to_raw
from strategy_service.utils.ttl_cache import BoundedTTLCache

logger = logging.getLogger(__name__)


class WalletMonitorWorker(Worker):
    job_type = "wallet-monitor"
    job: WalletMonitorJob

    def __init__(self, job: WalletMonitorJob, ctx, on_complete=None, on_update=None):
        super().__init__(job, ctx, on_complete=on_complete, on_update=on_update)
        s = ctx.settings
        self.policy = MirrorPolicy.from_settings(s)
        self._seen = BoundedTTLCache(s.signature_cache_size, s.signature_cache_ttl_seconds)
        for signature in job.recent_transactions[-s.signature_cache_size:]:
            self._seen.set(signature)
        self._processing: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._cursor: str | None = None
        self._baseline_set = False

    @property
    def scheduler_job_id(self) -> str:
        return f"wallet_monitor_{self.job.id}"

    async def _on_start(self):
        self._cursor = None
        self._baseline_set = False
        self.ctx.scheduler.add_job(
            self.poll,
            trigger=IntervalTrigger(seconds=self.ctx.settings.wallet_poll_seconds),
            id=self.scheduler_job_id,
            name=f"Wallet monitor {self.job.id}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )
        logger.info(f"[{self.job.id}] Watching {self.job.wallet_address} at {self.job.percentage}%")

    async def _on_stop(self):
        if self.ctx.scheduler.get_job(self.scheduler_job_id):
            self.ctx.scheduler.remove_job(self.scheduler_job_id)
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._sync_recent_transactions()
        self.persist()

    # -- subscription ------------------------------------------------------

    async def poll(self):
        if not self.is_running:
            return
        try:
            entries = await self.ctx.rpc.get_signatures_for_address(self.job.wallet_address, until=self._cursor)
        except UpstreamUnavailable as e:
            logger.warning(f"[{self.job.id}] Signature poll failed: {e}")
            return

        if not entries:
            self._baseline_set = True
            return

        self._cursor = entries[0]["signature"]
        if not self._baseline_set:
            self._baseline_set = True
            logger.info(f"[{self.job.id}] Baseline set at {self._cursor}")
            return

        # Newest first from RPC; mirror in chronological order
        for entry in reversed(entries):
            if entry.get("err"):
                continue
            self.handle_signature(entry["signature"])

    def handle_signature(self, signature: str) -> asyncio.Task | None:
        """Schedule processing of one signature. Returns None when it is dropped."""
        if not self.is_running:
            return None
        if signature in self._processing or signature in self._seen:
            logger.debug(f"[{self.job.id}] Duplicate signature {signature}, dropped")
            return None

        self._seen.set(signature)
        self._processing.add(signature)
        task = asyncio.create_task(self._process(signature))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _process(self, signature: str):
        try:
            await self.mirror(signature)
        except (ExecutionError, UpstreamUnavailable) as e:
            logger.error(f"[{self.job.id}] Mirror of {signature} failed: {e}")
            self.record_activity("error", "mirror", str(e), signature=signature)
        except Exception as e:
            logger.error(f"[{self.job.id}] Unexpected error mirroring {signature}: {e}", exc_info=True)
            self.record_activity("error", "mirror", str(e), signature=signature)
        finally:
            self._processing.discard(signature)
            self._sync_recent_transactions()

    def _sync_recent_transactions(self):
        self.job.recent_transactions = list(self._seen)

    # -- mirror pipeline ---------------------------------------------------

    async def mirror(self, signature: str) -> SwapResult | None:
        tx = await self.ctx.rpc.get_transaction(signature)
        swap = detect_swap(tx, self.job.wallet_address)
        if swap is None:
            logger.debug(f"[{self.job.id}] {signature} is not a swap")
            return None

        logger.info(
            f"[{self.job.id}] Detected swap {swap.input_mint[:8]}... -> {swap.output_mint[:8]}... "
            f"({swap.pct_of_their_balance:.2f}% of their balance)"
        )

        owner = self.wallet.public_key
        input_balance = await self.ctx.rpc.get_token_balance(owner, swap.input_mint)
        if swap.input_is_native:
            native_balance = input_balance.ui_amount
        else:
            native_balance = await self.ctx.rpc.get_balance(owner) / LAMPORTS_PER_SOL

        sizing = compute_mirror_amount(
            swap, input_balance.ui_amount, self.job.percentage, self.policy, native_balance
        )
        if not sizing.should_mirror:
            logger.info(f"[{self.job.id}] Skipping {signature}: {sizing.skip_reason}")
            self.record_activity("skipped", "mirror", sizing.skip_reason, signature=signature)
            return None

        if sizing.sell_entire_balance and not swap.input_is_native:
            amount = input_balance.amount
        else:
            amount = min(to_raw(sizing.amount, input_balance.decimals), input_balance.amount)
        if amount <= 0:
            self.record_activity("skipped", "mirror", "Mirror amount rounds to zero", signature=signature)
            return None

        quote = await self.ctx.swap_gateway.quote(
            swap.input_mint, swap.output_mint, amount, self.ctx.settings.default_slippage_bps
        )
        if not self.is_running:
            logger.info(f"[{self.job.id}] Stopped before submitting mirror of {signature}")
            return None
        result = await self.ctx.swap_gateway.execute(quote, self.wallet, self.ctx.settings.fee_account)

        self._update_mirrored_tokens(swap, result)
        self.job.touch()
        await self.update_profit_tracking()
        logger.info(f"[{self.job.id}] Mirrored {signature}: {result.signature}")
        self.record_activity(
            "success",
            "mirror",
            f"Mirrored {sizing.pct_of_their_balance:.2f}% swap",
            signature=result.signature,
            details={
                "source_signature": signature,
                "input_mint": swap.input_mint,
                "output_mint": swap.output_mint,
                "input_amount": result.input_amount,
                "output_amount": result.output_amount,
                "sell_entire_balance": sizing.sell_entire_balance,
            },
        )
        self.persist()
        return result

    def _update_mirrored_tokens(self, swap: DetectedSwap, result: SwapResult):
        tokens = self.job.mirrored_tokens
        if swap.output_mint != SOL_MINT:
            decimals = swap.output_decimals or 0
            entry = tokens.get(swap.output_mint) or MirroredToken(decimals=decimals)
            entry.balance += result.output_amount / (10 ** entry.decimals)
            tokens[swap.output_mint] = entry
        if swap.input_mint != SOL_MINT and swap.input_mint in tokens:
            entry = tokens[swap.input_mint]
            entry.balance -= result.input_amount / (10 ** entry.decimals)
            if entry.balance <= 0:
                del tokens[swap.input_mint]
