"""
backend/tests/test_result_service.py

Purpose:
    Result declaration: validation, immutability, audit trail and the
    result.declared event.
"""

from __future__ import annotations

import pytest

from app.config import settings
from app.services import event_bus as event_bus_module
from app.services import result_service
from app.services.errors import InvalidResultError, ResultAlreadyDeclaredError
from fake_mongo import make_db


class _RecordingBus:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture
def fake_db(monkeypatch):
    db = make_db()
    monkeypatch.setattr(result_service._db, "db", db, raising=False)
    return db


@pytest.fixture
def bus(monkeypatch):
    recorder = _RecordingBus()
    monkeypatch.setattr(event_bus_module, "event_bus", recorder)
    monkeypatch.setattr(settings, "EVENT_BUS_ENABLED", True)
    return recorder


@pytest.mark.asyncio
async def test_declare_result_stores_audits_and_publishes(fake_db, bus):
    result = await result_service.declare_result(
        draw_id="draw-1", market_id="kalyan", winning_number="07", declared_by="admin",
    )

    assert result.winning_number == "07"
    assert fake_db.declared_results.docs[0]["_id"] == "draw-1"
    assert fake_db.audit_logs.docs[0]["action"] == "RESULT_DECLARED"
    assert len(bus.events) == 1
    assert bus.events[0].event_type == "result.declared"
    assert bus.events[0].draw_id == "draw-1"


@pytest.mark.asyncio
async def test_result_is_immutable(fake_db, bus):
    await result_service.declare_result(
        draw_id="draw-1", market_id="kalyan", winning_number="45", declared_by="admin",
    )
    with pytest.raises(ResultAlreadyDeclaredError):
        await result_service.declare_result(
            draw_id="draw-1", market_id="kalyan", winning_number="46", declared_by="admin",
        )

    stored = await result_service.get_declared_result("draw-1")
    assert stored.winning_number == "45"
    assert len(bus.events) == 1


@pytest.mark.parametrize("number", ["4", "456", "4x", ""])
@pytest.mark.asyncio
async def test_invalid_number_is_rejected_before_storing(fake_db, bus, number):
    with pytest.raises(InvalidResultError):
        await result_service.declare_result(
            draw_id="draw-1", market_id="kalyan", winning_number=number, declared_by="admin",
        )
    assert fake_db.declared_results.docs == []
    assert bus.events == []


@pytest.mark.asyncio
async def test_corrupt_stored_result_raises_invalid(fake_db):
    fake_db.declared_results.docs.append({
        "_id": "draw-9", "market_id": "kalyan", "winning_number": "9",
        "declared_at": None, "declared_by": "admin",
    })
    with pytest.raises(InvalidResultError):
        await result_service.get_declared_result("draw-9")


@pytest.mark.asyncio
async def test_no_event_when_bus_disabled(fake_db, bus, monkeypatch):
    monkeypatch.setattr(settings, "EVENT_BUS_ENABLED", False)
    await result_service.declare_result(
        draw_id="draw-1", market_id="kalyan", winning_number="12", declared_by="admin",
    )
    assert bus.events == []
