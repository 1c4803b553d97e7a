"""
backend/app/services/event_models.py

Purpose:
    Domain event contracts for in-process reactive workflows. Defines a compact
    ID-first payload set to decouple result declaration from settlement.

Dependencies:
    - pydantic
    - app.utils
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from app.utils import ensure_utc, utcnow

EventType = Literal[
    "result.declared",
    "draw.settled",
]


def make_event_id() -> str:
    return str(uuid.uuid4())


def make_correlation_id() -> str:
    return str(uuid.uuid4())


class BaseEvent(BaseModel):
    event_id: str = Field(default_factory=make_event_id)
    event_type: EventType
    occurred_at: datetime = Field(default_factory=utcnow)
    correlation_id: str = Field(default_factory=make_correlation_id)
    source: str


class ResultDeclaredEvent(BaseEvent):
    event_type: Literal["result.declared"] = "result.declared"
    draw_id: str
    market_id: str
    winning_number: str
    method: str


class DrawSettledEvent(BaseEvent):
    event_type: Literal["draw.settled"] = "draw.settled"
    draw_id: str
    total_bets: int = 0
    winning_bets: int = 0
    total_winning_amount: Decimal = Decimal("0.00")
    payouts_pending: int = 0


def normalize_event_time(event: BaseEvent) -> BaseEvent:
    event.occurred_at = ensure_utc(event.occurred_at)
    return event
