"""Pydantic schemas for pair-trade signals.

The request model is deliberately loose: type and range checks happen in
TriggerService so that the webhook returns the same messages regardless of
which layer rejects a signal.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

REQUIRED_SIGNAL_FIELDS = ("tokenAMint", "tokenBMint", "action", "targetToken", "percentage")


class PairTradeSignalIn(BaseModel):
    token_a_mint: Any = Field(default=None, alias="tokenAMint")
    token_b_mint: Any = Field(default=None, alias="tokenBMint")
    action: Any = None
    target_token: Any = Field(default=None, alias="targetToken")
    percentage: Any = None
    timestamp: Any = None
    max_slippage: Any = Field(default=None, alias="maxSlippage")

    model_config = {"populate_by_name": True}

    def missing_fields(self) -> list[str]:
        data = self.model_dump(by_alias=True)
        return [name for name in REQUIRED_SIGNAL_FIELDS if data.get(name) in (None, "")]

    def as_signal_data(self) -> dict[str, Any]:
        """camelCase dict stored alongside trades and in the signal log."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class PairTradeSignal:
    """A signal that passed validation."""

    token_a_mint: str
    token_b_mint: str
    action: str  # "buy" or "sell"
    target_token: str  # "A" or "B": the side that is sold
    percentage: float
    timestamp: datetime
    max_slippage: float | None = None  # percent
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
