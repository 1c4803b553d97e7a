"""Persistent worker state: last run per worker, kept across restarts.

Lets the settlement sweeper skip runs when nothing new was declared.
Uses a lightweight `worker_state` collection in MongoDB.
"""

from datetime import datetime, timedelta

import app.database as _db
from app.utils import ensure_utc, utcnow


async def get_synced_at(worker_id: str) -> datetime | None:
    """Get the last run timestamp for a worker."""
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    return doc["synced_at"] if doc else None


async def set_synced(worker_id: str, **stats) -> None:
    """Mark a worker as just run, storing the run's counters alongside."""
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": {"synced_at": utcnow(), "last_run": stats}},
        upsert=True,
    )


async def recently_synced(worker_id: str, max_age: timedelta) -> bool:
    """Check if a worker ran within the given time window."""
    last = await get_synced_at(worker_id)
    if not last:
        return False
    return (utcnow() - ensure_utc(last)) < max_age
