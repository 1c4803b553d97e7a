"""
backend/app/routers/draws.py

Purpose:
    Admin endpoints for result declaration, settlement, payout reconciliation
    and per-market payout ratios. Callers authenticate with the admin API key
    header; user authentication happens upstream.

Dependencies:
    - app.services.result_service
    - app.services.settlement_service
    - app.services.payout_config_service
    - app.services.audit_service
    - app.services.wallet_service
"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel

from app.config import settings
from app.models.draw import DeclareResultRequest, DeclaredResult, DrawSettlement, SettlementResult
from app.models.payout_config import PayoutConfig, PayoutConfigUpdate
from app.models.wallet import WalletResponse, WalletTransactionInDB
from app.services import settlement_service, wallet_service
from app.services.audit_service import list_anomalies
from app.services.errors import (
    InvalidResultError,
    ResultAlreadyDeclaredError,
    ResultNotDeclaredError,
    SettlementInProgressError,
)
from app.services.payout_config_service import get_payout_config, set_payout_config
from app.services.result_service import declare_result, get_declared_result

logger = logging.getLogger("matka.routers.draws")
router = APIRouter(prefix="/api/admin", tags=["admin-draws"])


async def verify_admin_key(x_admin_key: str = Header(...)):
    """Verify the admin API key sent by the back office."""
    if not settings.ADMIN_API_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured on server.",
        )
    if not secrets.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key.",
        )


class ReconcileResponse(BaseModel):
    draw_id: Optional[str] = None
    credited: int


@router.post(
    "/draws/{draw_id}/result",
    response_model=DeclaredResult,
    status_code=status.HTTP_201_CREATED,
)
async def declare_draw_result(
    draw_id: str,
    body: DeclareResultRequest,
    request: Request,
    _=Depends(verify_admin_key),
):
    """Declare the winning number. Settlement follows via the event bus."""
    try:
        return await declare_result(
            draw_id=draw_id,
            market_id=body.market_id,
            winning_number=body.winning_number,
            method=body.method,
            declared_by=body.declared_by,
            request=request,
        )
    except InvalidResultError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except ResultAlreadyDeclaredError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Result already declared for this draw.",
        )


@router.get("/draws/{draw_id}/result", response_model=DeclaredResult)
async def get_draw_result(draw_id: str, _=Depends(verify_admin_key)):
    result = await get_declared_result(draw_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No result declared.")
    return result


@router.post("/draws/{draw_id}/settle", response_model=DrawSettlement)
async def settle_draw_now(draw_id: str, _=Depends(verify_admin_key)):
    """Run settlement synchronously. Re-running a settled draw returns its summary."""
    try:
        return await settlement_service.settle_draw(draw_id)
    except ResultNotDeclaredError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No result declared.")
    except InvalidResultError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    except SettlementInProgressError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Settlement already running for this draw.",
        )


@router.get("/draws/{draw_id}/settlement", response_model=DrawSettlement)
async def get_draw_settlement(draw_id: str, _=Depends(verify_admin_key)):
    summary = await settlement_service.get_settlement(draw_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Draw not settled.")
    return summary


@router.get("/draws/{draw_id}/bets", response_model=list[SettlementResult])
async def get_draw_bets(
    draw_id: str,
    limit: int = Query(1000, ge=1, le=10000),
    _=Depends(verify_admin_key),
):
    return await settlement_service.list_settlement_results(draw_id, limit=limit)


@router.post("/payouts/reconcile", response_model=ReconcileResponse)
async def reconcile_payouts(
    draw_id: Optional[str] = Query(None),
    _=Depends(verify_admin_key),
):
    credited = await settlement_service.retry_pending_payouts(draw_id)
    logger.info("Manual payout reconciliation draw=%s credited=%d", draw_id or "*", credited)
    return ReconcileResponse(draw_id=draw_id, credited=credited)


@router.get("/anomalies")
async def get_anomalies(
    draw_id: Optional[str] = Query(None),
    kind: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    _=Depends(verify_admin_key),
):
    return await list_anomalies(draw_id=draw_id, kind=kind, limit=limit)


@router.get("/markets/{market_id}/payout-config", response_model=PayoutConfig)
async def get_market_payout_config(market_id: str, _=Depends(verify_admin_key)):
    return await get_payout_config(market_id)


@router.put("/markets/{market_id}/payout-config", response_model=PayoutConfig)
async def update_market_payout_config(
    market_id: str,
    body: PayoutConfigUpdate,
    request: Request,
    _=Depends(verify_admin_key),
):
    return await set_payout_config(
        market_id,
        jodi=body.jodi,
        haruf=body.haruf,
        crossing=body.crossing,
        updated_by=body.updated_by,
        request=request,
    )


@router.get("/wallets/{user_id}", response_model=WalletResponse)
async def get_user_wallet(user_id: str, _=Depends(verify_admin_key)):
    wallet = await wallet_service.get_wallet(user_id)
    if wallet is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Wallet not found.")
    return wallet


@router.get("/wallets/{user_id}/transactions", response_model=list[WalletTransactionInDB])
async def get_user_wallet_transactions(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    _=Depends(verify_admin_key),
):
    return await wallet_service.get_wallet_transactions(user_id, limit=limit, skip=skip)
