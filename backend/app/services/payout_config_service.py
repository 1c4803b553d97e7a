"""Per-market payout ratios: DB document first, settings defaults second."""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import Request

import app.database as _db
from app.config import settings
from app.models.payout_config import PayoutConfig
from app.services.audit_service import log_audit
from app.utils import utcnow
from app.utils.money import to_decimal128

logger = logging.getLogger("matka.payout_config")


def default_payout_config(market_id: str) -> PayoutConfig:
    return PayoutConfig(
        market_id=market_id,
        jodi=settings.DEFAULT_JODI_RATIO,
        haruf=settings.DEFAULT_HARUF_RATIO,
        crossing=settings.DEFAULT_CROSSING_RATIO,
    )


async def get_payout_config(market_id: str) -> PayoutConfig:
    """Ratios for a market; markets without a document use the defaults."""
    doc = await _db.db.payout_configs.find_one({"_id": market_id})
    if not doc:
        return default_payout_config(market_id)
    return PayoutConfig(
        market_id=market_id,
        jodi=doc["jodi"],
        haruf=doc["haruf"],
        crossing=doc["crossing"],
        updated_at=doc.get("updated_at"),
        updated_by=doc.get("updated_by"),
    )


async def set_payout_config(
    market_id: str,
    *,
    jodi: Decimal,
    haruf: Decimal,
    crossing: Decimal,
    updated_by: str,
    request: Optional[Request] = None,
) -> PayoutConfig:
    """Replace a market's ratios. Settlements already run keep their payouts."""
    previous = await get_payout_config(market_id)
    config = PayoutConfig(
        market_id=market_id,
        jodi=jodi,
        haruf=haruf,
        crossing=crossing,
        updated_at=utcnow(),
        updated_by=updated_by,
    )
    await _db.db.payout_configs.update_one(
        {"_id": market_id},
        {"$set": {
            "jodi": to_decimal128(config.jodi),
            "haruf": to_decimal128(config.haruf),
            "crossing": to_decimal128(config.crossing),
            "updated_at": config.updated_at,
            "updated_by": updated_by,
        }},
        upsert=True,
    )
    await log_audit(
        actor_id=updated_by,
        target_id=market_id,
        action="PAYOUT_CONFIG_UPDATED",
        metadata={
            "before": {t: str(getattr(previous, t)) for t in ("jodi", "haruf", "crossing")},
            "after": {t: str(getattr(config, t)) for t in ("jodi", "haruf", "crossing")},
        },
        request=request,
    )
    logger.info(
        "Payout config updated market=%s jodi=%s haruf=%s crossing=%s by=%s",
        market_id, config.jodi, config.haruf, config.crossing, updated_by,
    )
    return config
