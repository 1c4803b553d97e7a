"""Bet models: bet types, normalized selections and the settlement lifecycle."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.utils.money import ZERO, to_money

TWO_DIGITS = re.compile(r"^[0-9]{2}$")
ONE_DIGIT = re.compile(r"^[0-9]$")


class BetType(str, Enum):
    jodi = "jodi"
    haruf = "haruf"
    crossing = "crossing"


class BetStatus(str, Enum):
    pending = "pending"
    won = "won"      # terminal
    lost = "lost"    # terminal


class PayoutStatus(str, Enum):
    """Outbox state of a settled bet's wallet credit."""
    none = "none"          # lost bet, nothing to pay
    pending = "pending"    # won, credit not yet confirmed by the ledger
    credited = "credited"  # ledger confirmed


class HarufPosition(str, Enum):
    first = "first"  # andhar
    last = "last"    # bahar


def _two_digit(value: str) -> str:
    if not isinstance(value, str) or not TWO_DIGITS.match(value):
        raise ValueError(f"expected two digits 00-99, got {value!r}")
    return value


# ---------- Selections ----------

class JodiSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["jodi"] = "jodi"
    number: str

    @field_validator("number")
    @classmethod
    def _check_number(cls, value: str) -> str:
        return _two_digit(value)


class HarufSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["haruf"] = "haruf"
    digit: str
    position: HarufPosition

    @field_validator("digit")
    @classmethod
    def _check_digit(cls, value: str) -> str:
        if not isinstance(value, str) or not ONE_DIGIT.match(value):
            raise ValueError(f"expected a single digit 0-9, got {value!r}")
        return value


class CrossingCombination(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: str
    stake: Decimal

    @field_validator("number")
    @classmethod
    def _check_number(cls, value: str) -> str:
        return _two_digit(value)

    @field_validator("stake", mode="before")
    @classmethod
    def _check_stake(cls, value) -> Decimal:
        amount = to_money(value)
        if amount <= ZERO:
            raise ValueError("combination stake must be positive")
        return amount


class CrossingSelection(BaseModel):
    """Stored combinations are authoritative; they are never regenerated."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["crossing"] = "crossing"
    combinations: tuple[CrossingCombination, ...]

    @field_validator("combinations")
    @classmethod
    def _check_combinations(cls, value: tuple[CrossingCombination, ...]):
        if not value:
            raise ValueError("crossing bet needs at least one combination")
        numbers = [combo.number for combo in value]
        if len(set(numbers)) != len(numbers):
            raise ValueError("crossing combinations must be unique")
        return value

    @property
    def total_stake(self) -> Decimal:
        return sum((combo.stake for combo in self.combinations), ZERO)


Selection = Annotated[
    Union[JodiSelection, HarufSelection, CrossingSelection],
    Field(discriminator="kind"),
]


# ---------- Bet ----------

class Bet(BaseModel):
    """A placed wager, normalized for settlement. Immutable."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    draw_id: str
    market_id: str
    bet_type: BetType
    stake: Decimal
    selection: Selection
    status: BetStatus = BetStatus.pending
    placed_at: Optional[datetime] = None

    @field_validator("stake", mode="before")
    @classmethod
    def _check_stake(cls, value) -> Decimal:
        amount = to_money(value)
        if amount <= ZERO:
            raise ValueError("stake must be positive")
        return amount

    @model_validator(mode="after")
    def _check_selection(self) -> "Bet":
        if self.selection.kind != self.bet_type.value:
            raise ValueError(
                f"selection kind {self.selection.kind} does not match bet type {self.bet_type.value}"
            )
        if isinstance(self.selection, CrossingSelection) and self.selection.total_stake != self.stake:
            raise ValueError(
                f"crossing stake {self.stake} != sum of combination stakes {self.selection.total_stake}"
            )
        return self
