"""Draw models: declared results, per-bet outcomes and draw summaries."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.bet import TWO_DIGITS, BetStatus, BetType
from app.utils.money import ZERO


class ResultMethod(str, Enum):
    manual = "manual"
    automatic = "automatic"


class DeclaredResult(BaseModel):
    """The one authoritative result of a draw. Immutable once stored."""
    model_config = ConfigDict(frozen=True)

    draw_id: str
    market_id: str
    winning_number: str
    declared_at: datetime
    method: ResultMethod = ResultMethod.manual
    declared_by: str

    @field_validator("winning_number")
    @classmethod
    def _check_winning_number(cls, value: str) -> str:
        if not isinstance(value, str) or not TWO_DIGITS.match(value):
            raise ValueError(f"winning number must be exactly two digits, got {value!r}")
        return value

    @property
    def first_digit(self) -> str:
        return self.winning_number[0]

    @property
    def last_digit(self) -> str:
        return self.winning_number[1]


class DeclareResultRequest(BaseModel):
    """Request body for declaring a draw result."""
    market_id: str
    winning_number: str = Field(..., min_length=2, max_length=2)
    method: ResultMethod = ResultMethod.manual
    declared_by: str


# ---------- Evaluation / settlement outputs ----------

class CombinationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: str
    stake: Decimal
    won: bool
    payout: Decimal = ZERO


class BetEvaluation(BaseModel):
    """Matching-engine output for one bet."""
    model_config = ConfigDict(frozen=True)

    bet_id: str
    bet_type: BetType
    outcome: BetStatus
    combinations: tuple[CombinationResult, ...] = ()

    @property
    def won(self) -> bool:
        return self.outcome == BetStatus.won


class SettlementResult(BaseModel):
    bet_id: str
    user_id: str
    bet_type: str  # "unknown" for bets whose type could not be read
    outcome: BetStatus
    payout_amount: Decimal = ZERO
    payout_status: str
    applied_at: Optional[datetime] = None
    combinations: list[CombinationResult] = Field(default_factory=list)


class TypeBreakdown(BaseModel):
    total_bets: int = 0
    total_amount: Decimal = ZERO
    winning_bets: int = 0
    winning_amount: Decimal = ZERO


class DrawSettlement(BaseModel):
    """Settlement marker and statistics for one draw."""
    draw_id: str
    market_id: str
    winning_number: str
    total_bets: int = 0
    winning_bets: int = 0
    losing_bets: int = 0
    total_bet_amount: Decimal = ZERO
    total_winning_amount: Decimal = ZERO
    net_profit: Decimal = ZERO
    bet_distribution: dict[str, TypeBreakdown] = Field(default_factory=dict)
    anomalies: int = 0
    payouts_pending: int = 0
    settled_at: datetime
    already_settled: bool = False
