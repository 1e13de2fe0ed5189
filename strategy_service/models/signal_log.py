"""SignalLog model: audit trail of every pair-trade signal received."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class SignalLog(SQLModel, table=True):
    __tablename__ = "signal_log"

    id: int | None = Field(default=None, primary_key=True)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)
    token_a_mint: str | None = None
    token_b_mint: str | None = None
    status: str  # "processed", "rejected"
    signal: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    result: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    message: str | None = None
