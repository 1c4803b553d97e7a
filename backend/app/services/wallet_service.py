"""Wallet ledger: idempotent, atomic winning credits with MongoDB sessions."""

import logging
from decimal import Decimal

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import app.database as _db
from app.config import settings
from app.models.wallet import CreditInstruction, CreditOutcome, TransactionType
from app.utils import utcnow
from app.utils.money import ZERO, decode_decimals, to_decimal128, to_money

logger = logging.getLogger("matka.wallet_service")

_MONEY_FIELDS = (
    "balance",
    "deposit_balance",
    "winning_balance",
    "bonus_balance",
    "commission_balance",
    "total_deposits",
    "total_withdrawals",
    "total_winnings",
    "total_bets",
)
_CREDITED_FIELDS = ("balance", "winning_balance", "total_winnings")


def _ledger_doc(instruction: CreditInstruction, amount: Decimal) -> dict:
    return {
        "user_id": instruction.user_id,
        "type": TransactionType.WIN.value,
        "category": instruction.category,
        "amount": to_decimal128(amount),
        "reference": instruction.reference,
        "draw_id": instruction.draw_id,
        "description": instruction.description or f"Winning for bet {instruction.reference}",
        "created_at": utcnow(),
    }


def _wallet_update(amount: Decimal) -> dict:
    now = utcnow()
    credit = to_decimal128(amount)
    return {
        "$inc": {field: credit for field in _CREDITED_FIELDS},
        "$set": {"updated_at": now},
        "$setOnInsert": {
            **{
                field: to_decimal128(ZERO)
                for field in _MONEY_FIELDS
                if field not in _CREDITED_FIELDS
            },
            "is_active": True,
            "created_at": now,
        },
    }


async def apply_credit(instruction: CreditInstruction) -> CreditOutcome:
    """Apply one winning credit exactly once.

    The ledger entry (unique on `reference`) and the wallet `$inc` are written
    in one multi-document transaction, so a crash can never leave a recorded
    credit without its balance change or vice versa. A duplicate reference
    means the credit was already applied and nothing changes.

    Database errors propagate to the caller, which owns the retry policy.
    """
    amount = to_money(instruction.amount)
    if amount <= ZERO:
        raise ValueError(f"Credit amount must be positive, got {amount}")

    if not settings.MONGO_TRANSACTIONS_ENABLED:
        return await _apply_credit_without_transaction(instruction, amount)

    try:
        async with await _db.client.start_session() as session:
            async with session.start_transaction():
                await _db.db.wallet_transactions.insert_one(
                    _ledger_doc(instruction, amount), session=session,
                )
                wallet = await _db.db.wallets.find_one_and_update(
                    {"user_id": instruction.user_id},
                    _wallet_update(amount),
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
    except DuplicateKeyError:
        # Wallet upsert races also raise DuplicateKeyError; only a stored
        # ledger reference means the credit already happened.
        if not await has_credit(instruction.reference):
            raise
        logger.info(
            "Credit already applied: user=%s reference=%s", instruction.user_id, instruction.reference,
        )
        return CreditOutcome.duplicate

    logger.info(
        "Credited %s to user=%s reference=%s winning_balance=%s",
        amount, instruction.user_id, instruction.reference,
        (wallet or {}).get("winning_balance"),
    )
    return CreditOutcome.applied


async def _apply_credit_without_transaction(
    instruction: CreditInstruction, amount: Decimal,
) -> CreditOutcome:
    """Standalone-server fallback: ledger insert first, then the balance change.

    Only the ledger guard remains; a crash between the two writes needs manual
    reconciliation, so production deployments keep transactions enabled.
    """
    try:
        await _db.db.wallet_transactions.insert_one(_ledger_doc(instruction, amount))
    except DuplicateKeyError:
        logger.info(
            "Credit already applied: user=%s reference=%s", instruction.user_id, instruction.reference,
        )
        return CreditOutcome.duplicate

    await _db.db.wallets.find_one_and_update(
        {"user_id": instruction.user_id},
        _wallet_update(amount),
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Credited %s to user=%s reference=%s", amount, instruction.user_id, instruction.reference)
    return CreditOutcome.applied


async def get_wallet(user_id: str) -> dict | None:
    wallet = await _db.db.wallets.find_one({"user_id": user_id})
    if not wallet:
        return None
    for field in _MONEY_FIELDS:
        wallet[field] = to_money(wallet.get(field, ZERO))
    return wallet


async def get_wallet_transactions(
    user_id: str, limit: int = 50, skip: int = 0,
) -> list[dict]:
    """Get ledger history for a user, newest first."""
    docs = await _db.db.wallet_transactions.find(
        {"user_id": user_id}, {"_id": 0},
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(length=limit)
    return [decode_decimals(doc) for doc in docs]


async def has_credit(reference: str) -> bool:
    return await _db.db.wallet_transactions.find_one({"reference": reference}, {"_id": 1}) is not None
