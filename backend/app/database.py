"""
backend/app/database.py

Purpose:
    MongoDB connection bootstrap and index management for the settlement
    collections (bets, declared results, settlement markers, wallets, ledger).

Dependencies:
    - motor.motor_asyncio
    - pymongo
    - app.config
"""

import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import OperationFailure

from app.config import settings

client: AsyncIOMotorClient = None
db: AsyncIOMotorDatabase = None

logger = logging.getLogger("matka.database")


async def connect_db() -> None:
    global client, db
    client = AsyncIOMotorClient(
        settings.MONGO_URI,
        maxPoolSize=25,
        minPoolSize=5,
    )
    db = client[settings.MONGO_DB]
    await _ensure_indexes()


async def close_db() -> None:
    global client
    if client:
        client.close()


async def _ensure_indexes() -> None:
    """Create indexes on startup. Idempotent, safe to run repeatedly."""

    # ---- Bets ----

    # Settlement fetch: pending bets of one draw
    await db.bets.create_index([("draw_id", 1), ("status", 1)])
    # Phase-2 credit sweep and reconciliation
    await db.bets.create_index(
        [("payout_status", 1), ("draw_id", 1)],
        partialFilterExpression={"payout_status": "pending"},
        name="bets_payout_pending",
    )
    await db.bets.create_index([("user_id", 1), ("placed_at", -1)])
    await db.bets.create_index([("market_id", 1), ("bet_type", 1)])

    # ---- Declared Results ----
    # _id = draw_id, one result per draw enforced by the primary key.

    await db.declared_results.create_index([("market_id", 1), ("declared_at", -1)])
    await db.declared_results.create_index("declared_at")

    # ---- Settlement markers / locks ----
    # _id = draw_id on both collections.

    await db.draw_settlements.create_index("settled_at")
    await db.settlement_locks.create_index("locked_until")

    # ---- Wallets ----

    await db.wallets.create_index("user_id", unique=True)

    # ---- Wallet Ledger ----

    # One ledger entry per credit reference (bet id): makes credits idempotent.
    try:
        await db.wallet_transactions.create_index(
            "reference",
            unique=True,
            partialFilterExpression={"reference": {"$type": "string"}},
            name="wallet_transactions_reference_unique",
        )
    except OperationFailure as exc:
        logger.warning("Skipped unique ledger reference index: %s", exc)
    await db.wallet_transactions.create_index([("user_id", 1), ("created_at", -1)])
    await db.wallet_transactions.create_index([("draw_id", 1), ("type", 1)])

    # ---- Payout configuration ----
    # _id = market_id

    # ---- Anomalies / Audit ----

    await db.settlement_anomalies.create_index([("draw_id", 1), ("created_at", -1)])
    await db.settlement_anomalies.create_index([("kind", 1), ("created_at", -1)])

    await db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("actor_id", 1), ("timestamp", -1)])
    await db.audit_logs.create_index([("target_id", 1), ("timestamp", -1)])
    await db.audit_logs.create_index("timestamp")

    logger.info("MongoDB indexes ensured for database %s", settings.MONGO_DB)
