"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.credit_transaction import TRANSACTION_TYPES
from routers.auth_scope import AuthContext, ensure_user, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.credits import (
    CreditLedger,
    LedgerUnavailableError,
    PromoCodeError,
    balance_snapshot,
    transaction_snapshot,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class PurchaseRequest(BaseModel):
    user_id: Optional[str] = None
    package_id: str = Field(min_length=1, max_length=64)
    promo_code: Optional[str] = Field(default=None, max_length=64)
    payment_reference: Optional[str] = Field(default=None, max_length=255)


class PromoRequest(BaseModel):
    user_id: Optional[str] = None
    promo_code: str = Field(min_length=1, max_length=64)


@router.get("/credits")
async def credits_summary(
    user_id: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, user_id)
    await ensure_user(db, auth)
    try:
        return await CreditLedger(db).get_credit_summary(scoped_user_id)
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.get("/transactions")
async def transaction_history(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    transaction_type: Optional[str] = Query(default=None),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if transaction_type and transaction_type not in TRANSACTION_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid transaction type: {transaction_type}")
    try:
        entries = await CreditLedger(db).get_transaction_history(
            auth.user_id,
            limit=limit,
            offset=offset,
            transaction_type=transaction_type,
        )
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {
        "items": [transaction_snapshot(entry) for entry in entries],
        "limit": limit,
        "offset": offset,
    }


@router.get("/usage")
async def usage_stats(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await CreditLedger(db).get_usage_stats(auth.user_id)
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.post("/purchase")
async def purchase_credits(
    request: PurchaseRequest,
    _rate_limit: None = Depends(rate_limit("billing_purchase", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, auth)
    try:
        return await CreditLedger(db).purchase_credits(
            scoped_user_id,
            request.package_id,
            promo_code=request.promo_code,
            payment_reference=request.payment_reference,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@router.post("/promo")
async def redeem_promo(
    request: PromoRequest,
    _rate_limit: None = Depends(rate_limit("billing_promo", limit=20, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, auth)
    try:
        balance = await CreditLedger(db).redeem_promo_code(scoped_user_id, request.promo_code)
    except PromoCodeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LedgerUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"ok": True, "promo_code": request.promo_code.strip().upper(), "balance": balance_snapshot(balance)}
