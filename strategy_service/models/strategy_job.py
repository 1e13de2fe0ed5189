"""StrategyJob model: persisted configuration and runtime state for one strategy."""

from datetime import datetime, timezone
from typing import Any

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import JSON


class StrategyJob(SQLModel, table=True):
    __tablename__ = "strategy_job"

    id: str = Field(primary_key=True)  # uuid, shared with the JobManager and the UI
    type: str = Field(index=True)  # "wallet-monitor", "price-monitor", "levels", "pair-trade"
    name: str | None = None
    trading_wallet_public_key: str
    trading_wallet_secret_encrypted: str = ""  # Fernet-encrypted base58 secret key
    is_active: bool = True
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime | None = None

    # Type-specific fields (wallet_address, levels, token mints, ...)
    config: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    profit_tracking: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
