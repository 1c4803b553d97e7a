from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Make a naive datetime timezone-aware (UTC). Already-aware datetimes pass through.

    MongoDB stores datetimes without tzinfo (naive). When you read a date field
    from a Mongo document and need to do arithmetic or comparison with utcnow()
    (which is tz-aware), wrap it with ensure_utc() first.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(dt: datetime | None) -> datetime | None:
    """None-safe UTC conversion for JSON serialization.

    Use at API response boundaries to ensure naive datetimes from MongoDB
    serialize with '+00:00' suffix.
    """
    if dt is None:
        return None
    return ensure_utc(dt)
