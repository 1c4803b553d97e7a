"""
backend/tests/test_settlement_sweeper.py

Purpose:
    Scheduled sweep of declared-but-unsettled draws and payout reconciliation.
"""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from app.services.errors import SettlementInProgressError
from app.utils import utcnow
from app.workers import settlement_sweeper
from fake_mongo import make_db


@pytest.fixture
def fake_db(monkeypatch):
    db = make_db()
    monkeypatch.setattr(settlement_sweeper._db, "db", db, raising=False)
    return db


@pytest.mark.asyncio
async def test_sweeper_settles_each_unsettled_draw(fake_db, monkeypatch):
    settled: list[str] = []

    async def _unsettled():
        return [SimpleNamespace(draw_id="d1"), SimpleNamespace(draw_id="d2"), SimpleNamespace(draw_id="d3")]

    async def _settle(draw_id):
        if draw_id == "d2":
            raise SettlementInProgressError("busy")
        if draw_id == "d3":
            raise RuntimeError("corrupt draw")
        settled.append(draw_id)

    monkeypatch.setattr(settlement_sweeper, "list_unsettled_results", _unsettled)
    monkeypatch.setattr(settlement_sweeper, "settle_draw", _settle)

    assert await settlement_sweeper.settle_declared_draws() == 1
    assert settled == ["d1"]
    state = fake_db.worker_state.docs[0]
    assert state["_id"] == "settlement_sweeper"
    assert state["last_run"] == {"settled": 1, "skipped": 1}


@pytest.mark.asyncio
async def test_sweeper_smart_sleep(fake_db, monkeypatch):
    fake_db.worker_state.docs.append({"_id": "settlement_sweeper", "synced_at": utcnow()})
    fake_db.declared_results.docs.append({"_id": "old", "declared_at": utcnow() - timedelta(hours=1)})

    async def _unexpected():
        raise AssertionError("sweep should have been skipped")

    monkeypatch.setattr(settlement_sweeper, "list_unsettled_results", _unexpected)

    assert await settlement_sweeper.settle_declared_draws() == 0


@pytest.mark.asyncio
async def test_reconcile_payouts(fake_db, monkeypatch):
    async def _retry():
        return 4

    monkeypatch.setattr(settlement_sweeper, "retry_pending_payouts", _retry)

    assert await settlement_sweeper.reconcile_payouts() == 4
    assert fake_db.worker_state.docs[0]["last_run"] == {"credited": 4}
