"""
backend/app/services/settlement_lock.py

Purpose:
    Per-draw settlement lock. Two settlement runs for the same draw must never
    interleave, within one process (asyncio.Lock) or across processes (a
    lease document in `settlement_locks`, `_id` = draw_id). Leases expire
    after SETTLEMENT_LOCK_TTL_SECONDS so a crashed run does not block the
    draw forever.

Dependencies:
    - asyncio
    - app.database
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator

from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.config import settings
from app.services.errors import SettlementInProgressError
from app.utils import utcnow

logger = logging.getLogger("matka.settlement_lock")

_local_locks: dict[str, asyncio.Lock] = {}


async def _acquire_lease(draw_id: str, owner: str) -> None:
    now = utcnow()
    lease = {
        "owner": owner,
        "acquired_at": now,
        "locked_until": now + timedelta(seconds=settings.SETTLEMENT_LOCK_TTL_SECONDS),
    }
    try:
        await _db.db.settlement_locks.insert_one({"_id": draw_id, **lease})
        return
    except DuplicateKeyError:
        pass

    # Take over only an expired lease (previous run crashed or hung).
    taken = await _db.db.settlement_locks.find_one_and_update(
        {"_id": draw_id, "locked_until": {"$lt": now}},
        {"$set": lease},
    )
    if taken is None:
        raise SettlementInProgressError(f"Settlement already running for draw {draw_id}")
    logger.warning(
        "Took over expired settlement lease draw=%s previous_owner=%s", draw_id, taken.get("owner"),
    )


async def _release_lease(draw_id: str, owner: str) -> None:
    try:
        await _db.db.settlement_locks.delete_one({"_id": draw_id, "owner": owner})
    except Exception:
        # The lease expires on its own; a failed release only delays re-runs.
        logger.exception("Failed to release settlement lease draw=%s", draw_id)


@asynccontextmanager
async def draw_lock(draw_id: str) -> AsyncIterator[str]:
    """Hold the settlement lock for `draw_id`. Raises SettlementInProgressError if held."""
    local = _local_locks.setdefault(draw_id, asyncio.Lock())
    if local.locked():
        raise SettlementInProgressError(f"Settlement already running for draw {draw_id}")

    await local.acquire()
    owner = uuid.uuid4().hex
    try:
        await _acquire_lease(draw_id, owner)
        try:
            yield owner
        finally:
            await _release_lease(draw_id, owner)
    finally:
        local.release()
        if _local_locks.get(draw_id) is local and not local.locked():
            _local_locks.pop(draw_id, None)
