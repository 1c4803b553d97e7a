"""Per-market payout ratios (X:1)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.bet import BetType


class PayoutConfig(BaseModel):
    """Read-only input to settlement: rupees paid per rupee staked, by bet type."""
    model_config = ConfigDict(frozen=True)

    market_id: str
    jodi: Decimal
    haruf: Decimal
    crossing: Decimal
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @field_validator("jodi", "haruf", "crossing", mode="before")
    @classmethod
    def _check_ratio(cls, value) -> Decimal:
        try:
            ratio = Decimal(str(value))
        except InvalidOperation as exc:
            raise ValueError(f"invalid payout ratio {value!r}") from exc
        if not ratio.is_finite() or ratio <= 0:
            raise ValueError("payout ratio must be positive")
        return ratio

    def ratio_for(self, bet_type: BetType) -> Decimal:
        return getattr(self, BetType(bet_type).value)


class PayoutConfigUpdate(BaseModel):
    """Request body for changing a market's ratios."""
    jodi: Decimal = Field(..., gt=0)
    haruf: Decimal = Field(..., gt=0)
    crossing: Decimal = Field(..., gt=0)
    updated_by: str
