"""Signal ingestion for pair-trade strategies.

A signal is validated once, then fanned out to every running pair-trade
strategy on the same (token A, token B) pair. Strategies execute
concurrently and in isolation: one failing strategy is reported in
``errors`` and never prevents the others from trading.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from strategy_service.engine.job_manager import JobManager
from strategy_service.errors import ValidationError
from strategy_service.models.signal_log import SignalLog
from strategy_service.schemas.signals import REQUIRED_SIGNAL_FIELDS, PairTradeSignal, PairTradeSignalIn
from strategy_service.services.pair_trade_executor import TradeOutcome
from strategy_service.utils.validation import is_valid_mint, is_valid_percentage

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    processed_strategies: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    errors: list[str] = field(default_factory=list)
    total_volume: int = 0  # sum of filled input amounts, smallest units

    def as_dict(self) -> dict[str, Any]:
        return {
            "processedStrategies": self.processed_strategies,
            "successfulTrades": self.successful_trades,
            "failedTrades": self.failed_trades,
            "errors": list(self.errors),
            "totalVolume": self.total_volume,
        }


def _parse_timestamp(value: Any) -> datetime:
    if value is None or value == "":
        return datetime.now(timezone.utc)
    try:
        if isinstance(value, bool):
            raise ValueError
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)  # epoch milliseconds
        if isinstance(value, str):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass
    raise ValidationError("Invalid timestamp format")


def validate_signal(data: PairTradeSignalIn) -> PairTradeSignal:
    """Check a raw signal and return its validated form. Raises ValidationError."""
    if data.missing_fields():
        raise ValidationError(f"Missing required fields: {', '.join(REQUIRED_SIGNAL_FIELDS)}")
    if not data.token_a_mint or not data.token_b_mint:
        raise ValidationError("Invalid signal format: missing token addresses")
    if not is_valid_mint(data.token_a_mint) or not is_valid_mint(data.token_b_mint):
        raise ValidationError("Invalid token mint addresses")
    if data.action not in ("buy", "sell"):
        raise ValidationError("Invalid action: must be buy or sell")
    if data.target_token not in ("A", "B"):
        raise ValidationError("Invalid target token: must be A or B")
    if not is_valid_percentage(data.percentage):
        raise ValidationError("Invalid percentage: must be between 1 and 100")

    max_slippage = data.max_slippage
    if max_slippage is not None:
        if isinstance(max_slippage, bool) or not isinstance(max_slippage, (int, float)) or not 0 < max_slippage <= 50:
            raise ValidationError("Invalid maxSlippage: must be between 0 and 50")

    return PairTradeSignal(
        token_a_mint=data.token_a_mint,
        token_b_mint=data.token_b_mint,
        action=data.action,
        target_token=data.target_token,
        percentage=float(data.percentage),
        timestamp=_parse_timestamp(data.timestamp),
        max_slippage=float(max_slippage) if max_slippage is not None else None,
        raw=data.as_signal_data(),
    )


class TriggerService:
    def __init__(self, job_manager: JobManager, engine: Engine | None = None):
        self.job_manager = job_manager
        self.engine = engine
        self._signals_processed = 0
        self._signals_rejected = 0
        self._last_signal_at: datetime | None = None

    async def process_pair_trade_signal(self, data: PairTradeSignalIn) -> ProcessingResult:
        try:
            signal = validate_signal(data)
        except ValidationError as e:
            self._signals_rejected += 1
            logger.warning(f"Rejected pair-trade signal: {e}")
            self._audit(data, "rejected", message=str(e))
            raise

        self._last_signal_at = datetime.now(timezone.utc)
        workers = [
            w for w in self.job_manager.workers("pair-trade", running_only=True)
            if w.job.token_a_mint == signal.token_a_mint and w.job.token_b_mint == signal.token_b_mint
        ]
        logger.info(
            f"Signal {signal.action} {signal.percentage}% of token {signal.target_token} "
            f"for {signal.token_a_mint[:8]}/{signal.token_b_mint[:8]}: {len(workers)} strategies"
        )

        result = ProcessingResult(processed_strategies=len(workers))
        outcomes = await asyncio.gather(*(self._execute_for(w, signal) for w in workers))
        for outcome, error in outcomes:
            if error is not None:
                result.failed_trades += 1
                result.errors.append(error)
            else:
                result.successful_trades += 1
                result.total_volume += outcome.input_amount

        self._signals_processed += 1
        self._audit(data, "processed", result=result)
        return result

    async def _execute_for(self, worker, signal: PairTradeSignal) -> tuple[TradeOutcome | None, str | None]:
        strategy_id = worker.job.id
        try:
            return await worker.execute_signal(signal), None
        except Exception as e:
            logger.error(f"[{strategy_id}] Signal trade failed: {e}", exc_info=not isinstance(e, ValidationError))
            return None, f"Strategy {strategy_id}: {e}"

    def _audit(
        self,
        data: PairTradeSignalIn,
        status: str,
        result: ProcessingResult | None = None,
        message: str | None = None,
    ):
        if self.engine is None:
            return
        token_a = data.token_a_mint if isinstance(data.token_a_mint, str) else None
        token_b = data.token_b_mint if isinstance(data.token_b_mint, str) else None
        try:
            with Session(self.engine) as session:
                session.add(SignalLog(
                    token_a_mint=token_a,
                    token_b_mint=token_b,
                    status=status,
                    signal=data.model_dump(mode="json", by_alias=True),
                    result=result.as_dict() if result else None,
                    message=message,
                ))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write signal log: {e}")

    def get_status(self) -> dict:
        strategies = self.job_manager.active_jobs("pair-trade")
        return {
            "activeStrategies": len(strategies),
            "pairs": sorted({f"{j.token_a_mint}/{j.token_b_mint}" for j in strategies}),
            "signalsProcessed": self._signals_processed,
            "signalsRejected": self._signals_rejected,
            "lastSignalAt": self._last_signal_at.isoformat() if self._last_signal_at else None,
        }
