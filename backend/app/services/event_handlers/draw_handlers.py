"""
backend/app/services/event_handlers/draw_handlers.py

Purpose:
    Subscriber logic for draw events. A declared result triggers settlement
    of the draw; a finished settlement is written to the audit trail.
    Both handlers are idempotent: settlement itself is a no-op for an
    already settled draw.

Dependencies:
    - app.services.settlement_service
    - app.services.audit_service
    - app.services.event_models
"""

from __future__ import annotations

import logging

from app.services.audit_service import log_audit
from app.services.errors import SettlementInProgressError
from app.services.event_models import BaseEvent
from app.services.settlement_service import settle_draw

logger = logging.getLogger("matka.event_handlers.draw")


async def handle_result_declared(event: BaseEvent) -> None:
    draw_id = str(getattr(event, "draw_id", "") or "")
    if not draw_id:
        return
    try:
        summary = await settle_draw(draw_id)
    except SettlementInProgressError:
        # The run holding the lock settles this draw.
        logger.info("Settlement already running for draw_id=%s; event skipped", draw_id)
        return
    logger.info(
        "Processed result.declared event for draw_id=%s (already_settled=%s)",
        draw_id, summary.already_settled,
    )


async def handle_draw_settled(event: BaseEvent) -> None:
    draw_id = str(getattr(event, "draw_id", "") or "")
    if not draw_id:
        return
    await log_audit(
        actor_id="SYSTEM",
        target_id=draw_id,
        action="DRAW_SETTLED",
        metadata={
            "total_bets": getattr(event, "total_bets", 0),
            "winning_bets": getattr(event, "winning_bets", 0),
            "total_winning_amount": str(getattr(event, "total_winning_amount", "0.00")),
            "payouts_pending": getattr(event, "payouts_pending", 0),
            "correlation_id": event.correlation_id,
        },
    )
