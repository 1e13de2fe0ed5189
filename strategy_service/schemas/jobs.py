"""Pydantic schemas for strategy jobs.

A job is a discriminated union on ``type``. The same models are used for the
jobs API, for persistence (see services/job_store.py) and as the in-memory
state each Worker mutates.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

import base58
from pydantic import BaseModel, Field, TypeAdapter, computed_field, field_validator, model_validator

from strategy_service.utils.validation import is_valid_mint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProfitTracking(BaseModel):
    initial_balance: float = 0.0
    initial_value: float = 0.0
    current_balance: float = 0.0
    current_value: float = 0.0

    @computed_field
    @property
    def profit_pct(self) -> float:
        if self.initial_value <= 0:
            return 0.0
        return (self.current_value - self.initial_value) / self.initial_value * 100


class JobBase(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str | None = Field(default=None, max_length=120)
    trading_wallet_public_key: str
    # Raw 64-byte ed25519 secret; never serialized
    trading_wallet_secret_key: bytes = Field(default=b"", exclude=True, repr=False)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity: datetime | None = None
    profit_tracking: ProfitTracking | None = None

    @field_validator("trading_wallet_public_key")
    @classmethod
    def _validate_public_key(cls, value: str) -> str:
        key = value.strip()
        if not is_valid_mint(key):
            raise ValueError("must be a base58 Solana public key")
        return key

    @field_validator("trading_wallet_secret_key", mode="before")
    @classmethod
    def _decode_secret_key(cls, value: Any) -> Any:
        if isinstance(value, str):
            if not value:
                return b""
            try:
                return base58.b58decode(value.strip())
            except ValueError:
                raise ValueError("must be a base58-encoded secret key")
        return value

    @field_validator("trading_wallet_secret_key")
    @classmethod
    def _validate_secret_length(cls, value: bytes) -> bytes:
        if value and len(value) != 64:
            raise ValueError("secret key must decode to 64 bytes")
        return value

    def touch(self):
        self.last_activity = _utcnow()


# ---------------------------------------------------------------------------
# Wallet mirroring
# ---------------------------------------------------------------------------

class MirroredToken(BaseModel):
    balance: float = 0.0
    decimals: int = 0


class WalletMonitorJob(JobBase):
    type: Literal["wallet-monitor"] = "wallet-monitor"
    wallet_address: str
    percentage: float = Field(gt=0, le=100)
    mirrored_tokens: dict[str, MirroredToken] = Field(default_factory=dict)
    recent_transactions: list[str] = Field(default_factory=list)

    @field_validator("wallet_address")
    @classmethod
    def _validate_wallet(cls, value: str) -> str:
        if not is_valid_mint(value.strip()):
            raise ValueError("must be a base58 Solana address")
        return value.strip()


# ---------------------------------------------------------------------------
# Price-triggered jobs
# ---------------------------------------------------------------------------

class TriggerRecord(BaseModel):
    timestamp: datetime = Field(default_factory=_utcnow)
    price: float
    success: bool
    signature: str | None = None
    error: str | None = None


class PriceMonitorJob(JobBase):
    type: Literal["price-monitor"] = "price-monitor"
    target_price: float = Field(gt=0)
    direction: Literal["above", "below"]
    percentage_to_sell: float = Field(gt=0, le=100)
    last_trigger_price: float | None = None
    trigger_history: list[TriggerRecord] = Field(default_factory=list)


class Level(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex[:8])
    price: float = Field(gt=0)
    type: Literal["limit_buy", "stop_loss", "take_profit"]
    usdc_amount: float | None = Field(default=None, gt=0)
    sol_percentage: float | None = Field(default=None, gt=0, le=100)
    executed: bool = False
    executed_count: int = Field(default=0, ge=0)
    cooldown_until: datetime | None = None
    permanently_disabled: bool = False
    execution_history: list[TriggerRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_amounts(self):
        if self.type == "limit_buy" and self.usdc_amount is None:
            raise ValueError("limit_buy levels require usdc_amount")
        if self.type != "limit_buy" and self.sol_percentage is None:
            raise ValueError(f"{self.type} levels require sol_percentage")
        return self


class LevelsJob(JobBase):
    type: Literal["levels"] = "levels"
    levels: list[Level] = Field(min_length=1)
    mode: Literal["buy", "sell"] = "sell"
    cooldown_hours: float = Field(default=24.0, ge=0)
    max_retriggers: int = Field(default=3, ge=1)
    last_trigger_price: float | None = None

    @model_validator(mode="after")
    def _validate_mode(self):
        for level in self.levels:
            if self.mode == "buy" and level.type != "limit_buy":
                raise ValueError("buy mode only accepts limit_buy levels")
            if self.mode == "sell" and level.type == "limit_buy":
                raise ValueError("sell mode only accepts stop_loss and take_profit levels")
            if level.executed_count > self.max_retriggers:
                raise ValueError("level executed_count exceeds max_retriggers")
        return self


# ---------------------------------------------------------------------------
# Signal-driven pair trading
# ---------------------------------------------------------------------------

class PairTradeJob(JobBase):
    type: Literal["pair-trade"] = "pair-trade"
    token_a_mint: str
    token_b_mint: str
    token_a_symbol: str | None = None
    token_b_symbol: str | None = None
    allocation_percentage: float = Field(gt=0, le=100)
    max_slippage: float = Field(default=1.0, gt=0, le=50)  # percent
    current_token: Literal["A", "B"] | None = None
    swap_history: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("token_a_mint", "token_b_mint")
    @classmethod
    def _validate_mint(cls, value: str) -> str:
        if not is_valid_mint(value.strip()):
            raise ValueError("must be a base58 token mint")
        return value.strip()

    @model_validator(mode="after")
    def _validate_distinct(self):
        if self.token_a_mint == self.token_b_mint:
            raise ValueError("token_a_mint and token_b_mint must differ")
        return self


Job = Annotated[
    Union[WalletMonitorJob, PriceMonitorJob, LevelsJob, PairTradeJob],
    Field(discriminator="type"),
]
JobAdapter: TypeAdapter[Job] = TypeAdapter(Job)

JOB_TYPES = ("wallet-monitor", "price-monitor", "levels", "pair-trade")

# Fields shared by every job type; everything else lives in StrategyJob.config
COMMON_FIELDS = {
    "id",
    "type",
    "name",
    "trading_wallet_public_key",
    "trading_wallet_secret_key",
    "is_active",
    "created_at",
    "last_activity",
    "profit_tracking",
}


class JobToggle(BaseModel):
    is_active: bool
