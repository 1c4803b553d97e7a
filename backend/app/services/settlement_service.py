"""
backend/app/services/settlement_service.py

Purpose:
    Draw settlement. Evaluates every pending bet of a draw against its
    declared result, records each outcome, and credits winnings to the
    wallet ledger. Settlement is idempotent per draw and safe to re-run
    after a crash:

    Phase 1  conditional bet update (pending -> won/lost); winners get
             payout_status "pending".
    Phase 2  every bet of the draw still payout_status "pending" is credited
             through the ledger (unique reference = bet id), then marked
             "credited".

    A `draw_settlements` marker written at the end makes later calls no-ops.

Dependencies:
    - app.services.matching_engine
    - app.services.payout_calculator
    - app.services.wallet_service
    - app.services.settlement_lock
    - app.database
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pymongo.errors import PyMongoError

import app.database as _db
from app.config import settings
from app.models.bet import BetStatus, BetType, PayoutStatus
from app.models.draw import (
    CombinationResult,
    DeclaredResult,
    DrawSettlement,
    SettlementResult,
    TypeBreakdown,
)
from app.models.payout_config import PayoutConfig
from app.models.wallet import CreditInstruction, CreditOutcome
from app.services import wallet_service
from app.services.audit_service import (
    ANOMALY_EVALUATION_FAILED,
    ANOMALY_MALFORMED_BET,
    ANOMALY_PAYOUT_FAILED,
    report_anomaly,
)
from app.services.errors import MalformedSelectionError, ResultNotDeclaredError
from app.services.event_models import DrawSettledEvent
from app.services.matching_engine import evaluate, validate_winning_number
from app.services.payout_calculator import bet_payout
from app.services.payout_config_service import get_payout_config
from app.services.result_service import get_declared_result
from app.services.selection_normalizer import bet_from_document
from app.services.settlement_lock import draw_lock
from app.utils import as_utc, utcnow
from app.utils.money import ZERO, decode_decimals, encode_decimals, to_decimal128, to_money

logger = logging.getLogger("matka.settlement_service")

_TERMINAL = [BetStatus.won.value, BetStatus.lost.value]


async def settle_draw(draw_id: str) -> DrawSettlement:
    """Settle all pending bets of a draw. Safe to call any number of times.

    Raises:
        ResultNotDeclaredError: no result stored for the draw.
        InvalidResultError: stored winning number is not two digits.
        SettlementInProgressError: another run holds the draw lock.
    """
    result = await get_declared_result(draw_id)
    if result is None:
        raise ResultNotDeclaredError(f"No result declared for draw {draw_id}")
    validate_winning_number(result.winning_number)

    existing = await get_settlement(draw_id)
    if existing is not None:
        logger.info("Draw %s already settled at %s", draw_id, existing.settled_at)
        return existing

    async with draw_lock(draw_id):
        # A run that finished while we waited for the lease wrote the marker.
        existing = await get_settlement(draw_id)
        if existing is not None:
            return existing

        config = await get_payout_config(result.market_id)
        settled, won = await _settle_pending_bets(result, config)
        credited, failed = await _credit_pending_payouts(draw_id)

        summary = await _build_summary(result)
        await _db.db.draw_settlements.update_one(
            {"_id": draw_id},
            {"$setOnInsert": encode_decimals(summary.model_dump(exclude={"already_settled"}))},
            upsert=True,
        )

    logger.info(
        "Draw %s settled: number=%s bets=%d won=%d credited=%d payout_failures=%d total_winnings=%s",
        draw_id, result.winning_number, settled, won, credited, failed, summary.total_winning_amount,
    )
    _publish_settled(summary)
    return summary


# ---------- Phase 1: outcomes ----------

async def _settle_pending_bets(result: DeclaredResult, config: PayoutConfig) -> tuple[int, int]:
    settled = 0
    won = 0
    now = utcnow()
    batch_limit = max(1, settings.SETTLEMENT_BATCH_LIMIT)
    # Every bet read below leaves the pending state, so each batch shrinks
    # the query until it comes back empty.
    while True:
        docs = await _db.db.bets.find(
            {"draw_id": result.draw_id, "status": BetStatus.pending.value},
        ).to_list(length=batch_limit)
        if not docs:
            break
        batch_settled, batch_won = await _settle_batch(docs, result, config, now)
        settled += batch_settled
        won += batch_won
    return settled, won


async def _settle_batch(
    docs: list[dict], result: DeclaredResult, config: PayoutConfig, now: datetime,
) -> tuple[int, int]:
    settled = 0
    won = 0
    for doc in docs:
        outcome, payout_amount, combinations = await _evaluate_doc(doc, result, config)
        payout_status = PayoutStatus.pending if payout_amount > ZERO else PayoutStatus.none
        update = await _db.db.bets.update_one(
            {"_id": doc["_id"], "status": BetStatus.pending.value},
            {"$set": {
                "status": outcome.value,
                "payout_amount": to_decimal128(payout_amount),
                "payout_status": payout_status.value,
                "combination_results": [
                    encode_decimals(combo.model_dump()) for combo in combinations
                ],
                "declared_result": result.winning_number,
                "settled_at": now,
            }},
        )
        if update.modified_count == 0:
            # Settled by someone else between our read and this write.
            logger.debug("Bet %s no longer pending; skipped", doc["_id"])
            continue
        settled += 1
        if outcome == BetStatus.won:
            won += 1
    return settled, won


async def _evaluate_doc(
    doc: dict, result: DeclaredResult, config: PayoutConfig,
) -> tuple[BetStatus, Decimal, tuple[CombinationResult, ...]]:
    """Evaluate one stored bet. Unusable bets settle as lost with an anomaly."""
    bet_id = str(doc.get("_id"))
    try:
        bet = bet_from_document(doc)
        evaluation = evaluate(bet, result)
        amount, combinations = bet_payout(bet, evaluation, config)
    except MalformedSelectionError as exc:
        await report_anomaly(
            draw_id=result.draw_id, bet_id=bet_id, kind=ANOMALY_MALFORMED_BET, reason=exc.reason,
        )
        return BetStatus.lost, ZERO, ()
    except Exception as exc:
        await report_anomaly(
            draw_id=result.draw_id,
            bet_id=bet_id,
            kind=ANOMALY_EVALUATION_FAILED,
            reason=f"{type(exc).__name__}: {exc}",
        )
        return BetStatus.lost, ZERO, ()
    return evaluation.outcome, amount, combinations


# ---------- Phase 2: credits ----------

async def _credit_pending_payouts(draw_id: Optional[str] = None) -> tuple[int, int]:
    """Credit every settled bet whose payout is still pending.

    Credits of one user run one after another; different users run
    concurrently, bounded by SETTLEMENT_CREDIT_CONCURRENCY.
    """
    query: dict[str, Any] = {"payout_status": PayoutStatus.pending.value, "status": BetStatus.won.value}
    if draw_id is not None:
        query["draw_id"] = draw_id
    batch_limit = max(1, settings.SETTLEMENT_BATCH_LIMIT)

    credited = 0
    failed = 0
    # Failed credits stay pending, so batches advance by _id instead of
    # re-reading the pending set.
    last_id = None
    while True:
        batch_query = dict(query)
        if last_id is not None:
            batch_query["_id"] = {"$gt": last_id}
        docs = await _db.db.bets.find(batch_query).sort("_id", 1).to_list(length=batch_limit)
        if not docs:
            break
        last_id = docs[-1]["_id"]
        batch_credited, batch_failed = await _credit_batch(docs)
        credited += batch_credited
        failed += batch_failed
    return credited, failed


async def _credit_batch(docs: list[dict]) -> tuple[int, int]:
    by_user: dict[str, list[dict]] = defaultdict(list)
    for doc in docs:
        by_user[str(doc.get("user_id"))].append(doc)

    semaphore = asyncio.Semaphore(max(1, settings.SETTLEMENT_CREDIT_CONCURRENCY))

    async def _credit_user(user_docs: list[dict]) -> list[CreditOutcome]:
        async with semaphore:
            return [await _credit_with_retry(doc) for doc in user_docs]

    per_user = await asyncio.gather(*(_credit_user(user_docs) for user_docs in by_user.values()))
    outcomes = [outcome for user_outcomes in per_user for outcome in user_outcomes]
    failed = sum(1 for outcome in outcomes if outcome == CreditOutcome.failed)
    return len(outcomes) - failed, failed


async def _credit_with_retry(doc: dict) -> CreditOutcome:
    bet_id = str(doc["_id"])
    draw_id = str(doc.get("draw_id"))
    try:
        instruction = CreditInstruction(
            user_id=str(doc["user_id"]),
            amount=to_money(doc["payout_amount"]),
            reference=bet_id,
            draw_id=draw_id,
            description=f"Winning for bet {bet_id} (draw {draw_id})",
        )
    except (KeyError, ValueError) as exc:
        await report_anomaly(
            draw_id=draw_id, bet_id=bet_id, kind=ANOMALY_PAYOUT_FAILED, reason=f"Unusable payout: {exc}",
        )
        return CreditOutcome.failed

    max_retries = max(0, settings.SETTLEMENT_CREDIT_MAX_RETRIES)
    last_error: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            outcome = await wallet_service.apply_credit(instruction)
        except ValueError as exc:
            last_error = exc
            break
        except PyMongoError as exc:
            last_error = exc
            if attempt < max_retries:
                delay = min(
                    settings.SETTLEMENT_CREDIT_BASE_DELAY_SECONDS * (2 ** attempt),
                    settings.SETTLEMENT_CREDIT_MAX_DELAY_SECONDS,
                )
                logger.warning(
                    "Credit for bet %s failed (%s), retry %d/%d in %.1fs",
                    bet_id, exc, attempt + 1, max_retries, delay,
                )
                await asyncio.sleep(delay)
            continue

        await _db.db.bets.update_one(
            {"_id": doc["_id"], "payout_status": PayoutStatus.pending.value},
            {"$set": {"payout_status": PayoutStatus.credited.value, "credited_at": utcnow()}},
        )
        return outcome

    await report_anomaly(
        draw_id=draw_id,
        bet_id=bet_id,
        kind=ANOMALY_PAYOUT_FAILED,
        reason=f"Credit of {instruction.amount} to user {instruction.user_id} failed: {last_error}",
        details={"user_id": instruction.user_id, "amount": str(instruction.amount)},
    )
    return CreditOutcome.failed


async def retry_pending_payouts(draw_id: Optional[str] = None) -> int:
    """Re-drive credits for won bets still awaiting payment. Returns credits made."""
    credited, failed = await _credit_pending_payouts(draw_id)
    if credited or failed:
        logger.info(
            "Payout reconciliation draw=%s credited=%d still_failing=%d",
            draw_id or "*", credited, failed,
        )
        if draw_id is not None:
            await _refresh_pending_count(draw_id)
    return credited


async def _refresh_pending_count(draw_id: str) -> None:
    pending = await _db.db.bets.count_documents(
        {"draw_id": draw_id, "payout_status": PayoutStatus.pending.value},
    )
    await _db.db.draw_settlements.update_one(
        {"_id": draw_id}, {"$set": {"payouts_pending": pending}},
    )


# ---------- Summary ----------

def _stake_of(doc: dict) -> Decimal:
    for key in ("stake", "bet_amount", "betAmount"):
        if doc.get(key) is not None:
            try:
                return to_money(doc[key])
            except ValueError:
                return ZERO
    return ZERO


def _type_of(doc: dict) -> str:
    raw = str(doc.get("bet_type") or doc.get("betType") or doc.get("gameType") or "").lower()
    try:
        return BetType(raw).value
    except ValueError:
        return "unknown"


async def _build_summary(result: DeclaredResult) -> DrawSettlement:
    cursor = _db.db.bets.find(
        {"draw_id": result.draw_id, "status": {"$in": _TERMINAL}},
        {"bet_type": 1, "betType": 1, "gameType": 1, "stake": 1, "bet_amount": 1,
         "betAmount": 1, "status": 1, "payout_amount": 1},
    )

    distribution: dict[str, TypeBreakdown] = {}
    total_amount = ZERO
    total_winnings = ZERO
    total_bets = 0
    winning_bets = 0
    async for doc in cursor:
        total_bets += 1
        stake = _stake_of(doc)
        won = doc.get("status") == BetStatus.won.value
        winnings = to_money(doc.get("payout_amount") or ZERO) if won else ZERO

        breakdown = distribution.setdefault(_type_of(doc), TypeBreakdown())
        breakdown.total_bets += 1
        breakdown.total_amount += stake
        if won:
            breakdown.winning_bets += 1
            breakdown.winning_amount += winnings
            winning_bets += 1
        total_amount += stake
        total_winnings += winnings

    anomalies = await _db.db.settlement_anomalies.count_documents({"draw_id": result.draw_id})
    pending = await _db.db.bets.count_documents(
        {"draw_id": result.draw_id, "payout_status": PayoutStatus.pending.value},
    )
    return DrawSettlement(
        draw_id=result.draw_id,
        market_id=result.market_id,
        winning_number=result.winning_number,
        total_bets=total_bets,
        winning_bets=winning_bets,
        losing_bets=total_bets - winning_bets,
        total_bet_amount=total_amount,
        total_winning_amount=total_winnings,
        net_profit=total_amount - total_winnings,
        bet_distribution=distribution,
        anomalies=anomalies,
        payouts_pending=pending,
        settled_at=utcnow(),
    )


def _publish_settled(summary: DrawSettlement) -> None:
    from app.services.event_bus import event_bus

    if not settings.EVENT_BUS_ENABLED:
        return
    event_bus.publish(
        DrawSettledEvent(
            source="settlement_service",
            draw_id=summary.draw_id,
            total_bets=summary.total_bets,
            winning_bets=summary.winning_bets,
            total_winning_amount=summary.total_winning_amount,
            payouts_pending=summary.payouts_pending,
        )
    )


# ---------- Reads ----------

async def get_settlement(draw_id: str) -> DrawSettlement | None:
    doc = await _db.db.draw_settlements.find_one({"_id": draw_id})
    if not doc:
        return None
    doc = decode_decimals(doc)
    doc.pop("_id", None)
    doc["settled_at"] = as_utc(doc.get("settled_at"))
    return DrawSettlement(**doc, already_settled=True)


async def list_settlement_results(draw_id: str, limit: int = 1000) -> list[SettlementResult]:
    docs = await _db.db.bets.find(
        {"draw_id": draw_id, "status": {"$in": _TERMINAL}},
    ).sort("settled_at", 1).to_list(length=limit)

    results = []
    for doc in docs:
        doc = decode_decimals(doc)
        results.append(SettlementResult(
            bet_id=str(doc["_id"]),
            user_id=str(doc.get("user_id", "")),
            bet_type=_type_of(doc),
            outcome=doc["status"],
            payout_amount=to_money(doc.get("payout_amount") or ZERO),
            payout_status=doc.get("payout_status", PayoutStatus.none.value),
            applied_at=doc.get("credited_at"),
            combinations=doc.get("combination_results") or [],
        ))
    return results
