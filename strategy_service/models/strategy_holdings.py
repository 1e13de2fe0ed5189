"""StrategyHoldings model: current token amounts held by a pair-trade strategy."""

from datetime import datetime, timezone

from sqlmodel import SQLModel, Field, Column
from sqlalchemy import BigInteger


class StrategyHoldings(SQLModel, table=True):
    __tablename__ = "strategy_holdings"

    id: int | None = Field(default=None, primary_key=True)
    strategy_id: str = Field(unique=True, index=True)
    token_a_mint: str
    token_a_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    token_b_mint: str
    token_b_amount: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    total_allocated_sol: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))  # lamports
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
