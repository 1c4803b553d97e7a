"""
backend/tests/test_settlement_lock.py

Purpose:
    Per-draw settlement lock: in-process exclusion and lease takeover.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.services import settlement_lock
from app.services.errors import SettlementInProgressError
from app.services.settlement_lock import draw_lock
from app.utils import utcnow
from fake_mongo import make_db


@pytest.fixture
def fake_db(monkeypatch):
    db = make_db()
    monkeypatch.setattr(settlement_lock._db, "db", db, raising=False)
    return db


@pytest.mark.asyncio
async def test_lock_excludes_second_holder(fake_db):
    async with draw_lock("draw-1"):
        assert fake_db.settlement_locks.docs[0]["_id"] == "draw-1"
        with pytest.raises(SettlementInProgressError):
            async with draw_lock("draw-1"):
                pass
    assert fake_db.settlement_locks.docs == []


@pytest.mark.asyncio
async def test_different_draws_do_not_contend(fake_db):
    async with draw_lock("draw-1"):
        async with draw_lock("draw-2"):
            assert len(fake_db.settlement_locks.docs) == 2


@pytest.mark.asyncio
async def test_live_lease_from_other_process_blocks(fake_db):
    fake_db.settlement_locks.docs.append({
        "_id": "draw-1", "owner": "other", "locked_until": utcnow() + timedelta(minutes=5),
    })
    with pytest.raises(SettlementInProgressError):
        async with draw_lock("draw-1"):
            pass
    assert fake_db.settlement_locks.docs[0]["owner"] == "other"


@pytest.mark.asyncio
async def test_expired_lease_is_taken_over(fake_db):
    fake_db.settlement_locks.docs.append({
        "_id": "draw-1", "owner": "crashed", "locked_until": utcnow() - timedelta(minutes=1),
    })
    async with draw_lock("draw-1") as owner:
        assert fake_db.settlement_locks.docs[0]["owner"] == owner
    assert fake_db.settlement_locks.docs == []


@pytest.mark.asyncio
async def test_lock_released_on_error(fake_db):
    with pytest.raises(RuntimeError):
        async with draw_lock("draw-1"):
            raise RuntimeError("boom")
    async with draw_lock("draw-1"):
        pass
