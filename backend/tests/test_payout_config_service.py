"""
backend/tests/test_payout_config_service.py

Purpose:
    Per-market payout ratios with configured fallbacks.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from app.services import payout_config_service
from fake_mongo import make_db


@pytest.fixture
def fake_db(monkeypatch):
    db = make_db()
    monkeypatch.setattr(payout_config_service._db, "db", db, raising=False)
    return db


@pytest.mark.asyncio
async def test_defaults_when_market_has_no_config(fake_db):
    config = await payout_config_service.get_payout_config("kalyan")
    assert (config.jodi, config.haruf, config.crossing) == (Decimal("95"), Decimal("9"), Decimal("95"))


@pytest.mark.asyncio
async def test_set_and_read_back(fake_db):
    await payout_config_service.set_payout_config(
        "kalyan", jodi=Decimal("90"), haruf=Decimal("9.5"), crossing=Decimal("85"), updated_by="admin",
    )
    config = await payout_config_service.get_payout_config("kalyan")

    assert config.haruf == Decimal("9.5")
    assert config.updated_by == "admin"
    audit = fake_db.audit_logs.docs[0]
    assert audit["action"] == "PAYOUT_CONFIG_UPDATED"
    assert audit["metadata"]["before"]["jodi"] == "95"
    assert audit["metadata"]["after"]["jodi"] == "90"


@pytest.mark.asyncio
async def test_non_positive_ratio_rejected(fake_db):
    with pytest.raises(ValidationError):
        await payout_config_service.set_payout_config(
            "kalyan", jodi=Decimal("0"), haruf=Decimal("9"), crossing=Decimal("95"), updated_by="admin",
        )
    assert fake_db.payout_configs.docs == []
