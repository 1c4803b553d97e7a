"""Wallet models: balance categories, ledger entries, credit instructions."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel


# ---------- Wallet ----------

class WalletResponse(BaseModel):
    """Wallet data returned to admin clients."""
    user_id: str
    balance: Decimal
    deposit_balance: Decimal
    winning_balance: Decimal
    bonus_balance: Decimal
    commission_balance: Decimal
    total_winnings: Decimal


# ---------- Wallet Transactions ----------

class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    BET = "bet"
    WIN = "win"
    BONUS = "bonus"
    COMMISSION = "commission"


class WalletTransactionInDB(BaseModel):
    """Immutable ledger entry. `reference` is unique, which makes credits idempotent."""
    user_id: str
    type: TransactionType
    category: str  # balance category credited, e.g. "winning"
    amount: Decimal  # positive = credit
    reference: Optional[str] = None  # bet id for winnings
    draw_id: Optional[str] = None
    description: str
    created_at: datetime


# ---------- Credit instructions ----------

class CreditInstruction(BaseModel):
    """Settlement -> ledger: credit `amount` to the user's winning balance."""
    user_id: str
    amount: Decimal
    category: str = "winning"
    reference: str  # bet id
    draw_id: str
    description: str = ""


class CreditOutcome(str, Enum):
    applied = "applied"
    duplicate = "duplicate"  # reference already in the ledger; nothing changed
    failed = "failed"
