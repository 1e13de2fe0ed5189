"""Persistent holdings and the append-only trade ledger for pair-trade strategies."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from strategy_service.errors import PersistenceError
from strategy_service.models.strategy_holdings import StrategyHoldings
from strategy_service.models.trade_history import (
    EXECUTION_STATUSES,
    TERMINAL_STATUSES,
    TRADE_TYPES,
    TradeHistory,
)
from strategy_service.utils.constants import DEFAULT_TOKEN_DECIMALS, KNOWN_DECIMALS, LAMPORTS_PER_SOL, SOL_MINT

logger = logging.getLogger(__name__)


@dataclass
class TokenPosition:
    mint: str
    amount: int


@dataclass
class Holdings:
    strategy_id: str
    token_a: TokenPosition
    token_b: TokenPosition
    total_allocated_sol: int  # lamports
    last_updated: datetime | None = None

    def side(self, token: str) -> TokenPosition:
        return self.token_a if token == "A" else self.token_b

    @classmethod
    def from_row(cls, row: StrategyHoldings) -> "Holdings":
        return cls(
            strategy_id=row.strategy_id,
            token_a=TokenPosition(row.token_a_mint, row.token_a_amount),
            token_b=TokenPosition(row.token_b_mint, row.token_b_amount),
            total_allocated_sol=row.total_allocated_sol,
            last_updated=row.last_updated,
        )

    def as_dict(self) -> dict:
        return {
            "strategyId": self.strategy_id,
            "tokenA": {"mint": self.token_a.mint, "amount": self.token_a.amount},
            "tokenB": {"mint": self.token_b.mint, "amount": self.token_b.amount},
            "totalAllocatedSol": self.total_allocated_sol,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass
class PortfolioValue:
    token_a_value_usd: float
    token_b_value_usd: float
    total_value_usd: float
    initial_allocation_value_usd: float
    allocation_utilized: float

    def as_dict(self) -> dict:
        return {
            "tokenAValueUsd": self.token_a_value_usd,
            "tokenBValueUsd": self.token_b_value_usd,
            "totalValueUsd": self.total_value_usd,
            "initialAllocationValueUsd": self.initial_allocation_value_usd,
            "allocationUtilized": self.allocation_utilized,
        }


class HoldingsTracker:
    def __init__(self, engine: Engine):
        self.engine = engine

    def update_holdings(
        self,
        strategy_id: str,
        token_a_mint: str,
        token_a_amount: int,
        token_b_mint: str,
        token_b_amount: int,
        total_allocated_sol: int,
    ) -> Holdings:
        """Insert or replace the holdings row for a strategy."""
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    select(StrategyHoldings).where(StrategyHoldings.strategy_id == strategy_id)
                ).first()
                if row is None:
                    row = StrategyHoldings(strategy_id=strategy_id, token_a_mint=token_a_mint, token_b_mint=token_b_mint)
                row.token_a_mint = token_a_mint
                row.token_a_amount = int(token_a_amount)
                row.token_b_mint = token_b_mint
                row.token_b_amount = int(token_b_amount)
                row.total_allocated_sol = int(total_allocated_sol)
                row.last_updated = datetime.now(timezone.utc)
                session.add(row)
                session.commit()
                session.refresh(row)
                return Holdings.from_row(row)
        except SQLAlchemyError as e:
            logger.error(f"[{strategy_id}] Failed to update holdings: {e}", exc_info=True)
            raise PersistenceError(f"Strategy {strategy_id}: failed to update holdings") from e

    def get_holdings(self, strategy_id: str) -> Holdings | None:
        try:
            with Session(self.engine) as session:
                row = session.exec(
                    select(StrategyHoldings).where(StrategyHoldings.strategy_id == strategy_id)
                ).first()
                return Holdings.from_row(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Strategy {strategy_id}: failed to read holdings") from e

    def record_trade(
        self,
        strategy_id: str,
        trade_type: str,
        from_token: str,
        to_token: str,
        from_mint: str,
        to_mint: str,
        input_amount: int,
        output_amount: int = 0,
        slippage_bps: int | None = None,
        signature: str | None = None,
        signal_data: dict[str, Any] | None = None,
        execution_status: str = "pending",
        error_message: str | None = None,
    ) -> int:
        """Append a ledger row and return its id."""
        if trade_type not in TRADE_TYPES:
            raise ValueError(f"Unknown trade_type: {trade_type}")
        if execution_status not in EXECUTION_STATUSES:
            raise ValueError(f"Unknown execution_status: {execution_status}")

        now = datetime.now(timezone.utc)
        try:
            with Session(self.engine) as session:
                row = TradeHistory(
                    strategy_id=strategy_id,
                    trade_type=trade_type,
                    from_token=from_token,
                    to_token=to_token,
                    from_mint=from_mint,
                    to_mint=to_mint,
                    input_amount=int(input_amount),
                    output_amount=int(output_amount),
                    slippage_bps=slippage_bps,
                    signature=signature,
                    signal_data=signal_data,
                    execution_status=execution_status,
                    error_message=error_message,
                    created_at=now,
                    completed_at=now if execution_status == "completed" else None,
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return row.id
        except SQLAlchemyError as e:
            logger.error(f"[{strategy_id}] Failed to record trade: {e}", exc_info=True)
            raise PersistenceError(f"Strategy {strategy_id}: failed to record trade") from e

    def finalize_trade(
        self,
        trade_id: int,
        execution_status: str,
        input_amount: int | None = None,
        output_amount: int | None = None,
        signature: str | None = None,
        error_message: str | None = None,
    ):
        """Move a pending ledger row to its final status. Terminal rows are immutable."""
        if execution_status not in EXECUTION_STATUSES or execution_status == "pending":
            raise ValueError(f"Invalid final status: {execution_status}")
        try:
            with Session(self.engine) as session:
                row = session.get(TradeHistory, trade_id)
                if row is None:
                    raise PersistenceError(f"Trade {trade_id} not found")
                if row.execution_status in TERMINAL_STATUSES:
                    raise PersistenceError(
                        f"Strategy {row.strategy_id}: trade {trade_id} is already {row.execution_status}"
                    )
                row.execution_status = execution_status
                if input_amount is not None:
                    row.input_amount = int(input_amount)
                if output_amount is not None:
                    row.output_amount = int(output_amount)
                if signature is not None:
                    row.signature = signature
                if error_message is not None:
                    row.error_message = error_message
                if execution_status == "completed":
                    row.completed_at = datetime.now(timezone.utc)
                session.add(row)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to finalize trade {trade_id}") from e

    def get_trade_history(self, strategy_id: str, limit: int = 50, offset: int = 0) -> list[TradeHistory]:
        try:
            with Session(self.engine) as session:
                stmt = (
                    select(TradeHistory)
                    .where(TradeHistory.strategy_id == strategy_id)
                    .order_by(TradeHistory.created_at.desc(), TradeHistory.id.desc())
                    .offset(offset)
                    .limit(limit)
                )
                return list(session.exec(stmt).all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Strategy {strategy_id}: failed to read trade history") from e

    def calculate_portfolio_value(
        self,
        strategy_id: str,
        price_lookup: Callable[[str], float | None],
    ) -> PortfolioValue | None:
        """Value current holdings in USD.

        ``price_lookup`` maps a mint to a USD price; a missing price values
        that side at 0. Unknown mints are assumed to have
        DEFAULT_TOKEN_DECIMALS decimals.
        """
        holdings = self.get_holdings(strategy_id)
        if holdings is None:
            return None

        def side_value(pos: TokenPosition) -> float:
            price = price_lookup(pos.mint) or 0.0
            decimals = KNOWN_DECIMALS.get(pos.mint, DEFAULT_TOKEN_DECIMALS)
            return pos.amount / (10 ** decimals) * price

        a_value = side_value(holdings.token_a)
        b_value = side_value(holdings.token_b)
        total = a_value + b_value

        sol_price = price_lookup(SOL_MINT) or 0.0
        initial_value = holdings.total_allocated_sol / LAMPORTS_PER_SOL * sol_price
        utilized = total / initial_value if initial_value > 0 else 0.0

        return PortfolioValue(
            token_a_value_usd=a_value,
            token_b_value_usd=b_value,
            total_value_usd=total,
            initial_allocation_value_usd=initial_value,
            allocation_utilized=utilized,
        )
