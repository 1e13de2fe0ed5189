"""TradeHistory model: append-only ledger of pair-trade executions."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON, BigInteger

TRADE_TYPES = ("initial_allocation", "signal_trade")
EXECUTION_STATUSES = ("pending", "completed", "failed", "partial")
TERMINAL_STATUSES = ("completed", "failed")


class TradeHistory(SQLModel, table=True):
    __tablename__ = "trade_history"

    id: int | None = Field(default=None, primary_key=True)
    strategy_id: str = Field(index=True)
    trade_type: str  # see TRADE_TYPES
    from_token: str  # "A", "B", or "SOL" for an initial allocation
    to_token: str
    from_mint: str
    to_mint: str
    input_amount: int = Field(sa_column=Column(BigInteger, nullable=False))
    output_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    slippage_bps: int | None = None
    signature: str | None = None
    signal_data: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    execution_status: str = Field(default="pending", index=True)  # see EXECUTION_STATUSES
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    completed_at: datetime | None = None
