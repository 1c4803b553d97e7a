"""Immutable audit logging and settlement anomaly reporting.

All audit and anomaly entries are insert-only. This module intentionally
exposes NO update or delete operations on either collection.
"""

import logging
from typing import Optional

from fastapi import Request

import app.database as _db
from app.utils import utcnow

logger = logging.getLogger("matka.audit")

# Anomaly kinds reported by settlement
ANOMALY_MALFORMED_BET = "malformed_bet"
ANOMALY_EVALUATION_FAILED = "evaluation_failed"
ANOMALY_PAYOUT_FAILED = "payout_failed"


def _truncate_ip(ip: str) -> str:
    """Anonymize an IP address by replacing the last segment.

    IPv4: 192.168.1.42  -> 192.168.1.xxx
    IPv6: 2001:db8::1   -> 2001:db8::xxx
    """
    if not ip:
        return ""

    if "." in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            parts[-1] = "xxx"
            return ".".join(parts)
        return ip

    if ":" in ip:
        parts = ip.rsplit(":", 1)
        if len(parts) == 2:
            return f"{parts[0]}:xxx"
        return ip

    return ip


def _get_client_ip(request: Optional[Request]) -> str:
    """Extract client IP from request, preferring X-Forwarded-For (behind nginx)."""
    if request is None:
        return ""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return ""


async def log_audit(
    *,
    actor_id: str,
    target_id: str,
    action: str,
    metadata: Optional[dict] = None,
    request: Optional[Request] = None,
) -> None:
    """Write an immutable audit record to the audit_logs collection.

    Args:
        actor_id: Who performed the action (admin id or "SYSTEM").
        target_id: What was affected (draw id, market id, bet id).
        action: Action identifier, e.g. "RESULT_DECLARED", "PAYOUT_CONFIG_UPDATED".
        metadata: Optional dict with before/after values or extra context.
        request: Optional FastAPI request for IP extraction.
    """
    doc = {
        "timestamp": utcnow(),
        "actor_id": actor_id,
        "target_id": target_id,
        "action": action,
        "metadata": metadata or {},
        "ip_truncated": _truncate_ip(_get_client_ip(request)),
    }

    try:
        await _db.db.audit_logs.insert_one(doc)
    except Exception:
        # Audit logging must never crash the caller
        logger.exception("Failed to write audit log: action=%s actor=%s", action, actor_id)


async def report_anomaly(
    *,
    draw_id: str,
    bet_id: str,
    kind: str,
    reason: str,
    details: Optional[dict] = None,
) -> None:
    """Surface a settlement anomaly for manual reconciliation. Never raises."""
    logger.warning(
        "Settlement anomaly draw=%s bet=%s kind=%s: %s", draw_id, bet_id, kind, reason,
    )
    try:
        await _db.db.settlement_anomalies.insert_one({
            "draw_id": draw_id,
            "bet_id": bet_id,
            "kind": kind,
            "reason": reason,
            "details": details or {},
            "created_at": utcnow(),
        })
    except Exception:
        logger.exception("Failed to record settlement anomaly: draw=%s bet=%s", draw_id, bet_id)


async def list_anomalies(
    draw_id: Optional[str] = None, kind: Optional[str] = None, limit: int = 100,
) -> list[dict]:
    query: dict = {}
    if draw_id:
        query["draw_id"] = draw_id
    if kind:
        query["kind"] = kind
    return await _db.db.settlement_anomalies.find(
        query, {"_id": 0},
    ).sort("created_at", -1).limit(limit).to_list(length=limit)
