"""
backend/app/services/result_service.py

Purpose:
    Result declaration: validates and stores the single, immutable winning
    number of a draw and announces it on the event bus. Settlement reacts to
    the announcement; corrections are an administrative process outside
    this service.

Dependencies:
    - app.database
    - app.services.event_bus
    - app.services.audit_service
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.models.draw import DeclaredResult, ResultMethod
from app.services.audit_service import log_audit
from app.services.errors import InvalidResultError, ResultAlreadyDeclaredError
from app.services.event_models import ResultDeclaredEvent
from app.services.matching_engine import validate_winning_number
from app.utils import as_utc, utcnow

logger = logging.getLogger("matka.result_service")


def _from_doc(doc: dict) -> DeclaredResult:
    try:
        return DeclaredResult(
            draw_id=str(doc["_id"]),
            market_id=doc.get("market_id", ""),
            winning_number=doc.get("winning_number"),
            declared_at=as_utc(doc.get("declared_at")),
            method=doc.get("method", ResultMethod.manual.value),
            declared_by=doc.get("declared_by", "SYSTEM"),
        )
    except ValidationError as exc:
        raise InvalidResultError(f"Stored result for draw {doc.get('_id')} is invalid: {exc}") from exc


async def declare_result(
    *,
    draw_id: str,
    market_id: str,
    winning_number: str,
    method: ResultMethod = ResultMethod.manual,
    declared_by: str,
    request: Optional[Request] = None,
) -> DeclaredResult:
    """Store the draw's result. Raises InvalidResultError / ResultAlreadyDeclaredError."""
    winning_number = validate_winning_number(str(winning_number).strip())
    if not draw_id:
        raise InvalidResultError("draw_id is required")

    result = DeclaredResult(
        draw_id=draw_id,
        market_id=market_id,
        winning_number=winning_number,
        declared_at=utcnow(),
        method=ResultMethod(method),
        declared_by=declared_by,
    )
    try:
        await _db.db.declared_results.insert_one({
            "_id": result.draw_id,
            "market_id": result.market_id,
            "winning_number": result.winning_number,
            "declared_at": result.declared_at,
            "method": result.method.value,
            "declared_by": result.declared_by,
        })
    except DuplicateKeyError:
        raise ResultAlreadyDeclaredError(f"Result already declared for draw {draw_id}") from None

    logger.info(
        "Result declared draw=%s market=%s number=%s method=%s by=%s",
        draw_id, market_id, winning_number, result.method.value, declared_by,
    )
    await log_audit(
        actor_id=declared_by,
        target_id=draw_id,
        action="RESULT_DECLARED",
        metadata={"market_id": market_id, "winning_number": winning_number, "method": result.method.value},
        request=request,
    )
    _publish_declared(result)
    return result


def _publish_declared(result: DeclaredResult) -> None:
    from app.config import settings
    from app.services.event_bus import event_bus

    if not settings.EVENT_BUS_ENABLED:
        return
    event_bus.publish(
        ResultDeclaredEvent(
            source="result_service",
            draw_id=result.draw_id,
            market_id=result.market_id,
            winning_number=result.winning_number,
            method=result.method.value,
        )
    )


async def get_declared_result(draw_id: str) -> DeclaredResult | None:
    doc = await _db.db.declared_results.find_one({"_id": draw_id})
    return _from_doc(doc) if doc else None


async def list_unsettled_results(limit: int = 100) -> list[DeclaredResult]:
    """Declared results that have no settlement marker yet, oldest first."""
    docs = await _db.db.declared_results.aggregate([
        {"$lookup": {
            "from": "draw_settlements",
            "localField": "_id",
            "foreignField": "_id",
            "as": "settlement",
        }},
        {"$match": {"settlement": {"$size": 0}}},
        {"$sort": {"declared_at": 1}},
        {"$limit": limit},
        {"$project": {"settlement": 0}},
    ]).to_list(length=limit)
    return [_from_doc(doc) for doc in docs]
