"""AI visibility scan and tracked keyword router."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Awaitable, Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, ensure_user, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.credits import CreditLedger
from services.crawler_policy import audit_crawler_policy
from services.providers import BaseProviderAdapter, Brand, build_provider_adapters
from services.scan import ScanOrchestrator
from services.scan_cache import ScanResultCache
from services.tracker import (
    TrackedKeywordNotFoundError,
    create_tracked_keyword,
    delete_tracked_keyword,
    get_keyword_scan_result,
    get_scan_history,
    get_tracked_keyword,
    list_tracked_keywords,
    serialize_tracked_keyword,
)
from services.virtual_signals import CrawlerPolicy

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "invalid_input": 400,
    "insufficient_credits": 402,
    "total_failure": 502,
    "ledger_unavailable": 503,
    "refund_failed": 500,
}

CrawlerAuditor = Callable[[str], Awaitable[CrawlerPolicy]]


class ScanRequest(BaseModel):
    query: Optional[str] = Field(default=None, max_length=500)
    brand_name: Optional[str] = Field(default=None, max_length=200)
    brand_domain: Optional[str] = Field(default=None, max_length=255)
    tracked_keyword_id: Optional[str] = None
    user_id: Optional[str] = None
    audit_crawlers: bool = False
    googlebot_allowed: Optional[bool] = None
    gptbot_allowed: Optional[bool] = None
    applebot_allowed: Optional[bool] = None


class TrackedKeywordRequest(BaseModel):
    keyword: str = Field(min_length=1, max_length=500)
    brand_name: str = Field(min_length=1, max_length=200)
    brand_domain: str = Field(min_length=1, max_length=255)


@lru_cache(maxsize=1)
def _configured_adapters() -> tuple:
    return tuple(build_provider_adapters())


def get_provider_adapters() -> List[BaseProviderAdapter]:
    try:
        return list(_configured_adapters())
    except ValueError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


def get_crawler_auditor() -> CrawlerAuditor:
    return audit_crawler_policy


async def _resolve_crawler_policy(request: ScanRequest, domain: str, auditor: CrawlerAuditor) -> CrawlerPolicy:
    policy = await auditor(domain) if request.audit_crawlers else CrawlerPolicy()
    return CrawlerPolicy(
        googlebot_allowed=policy.googlebot_allowed if request.googlebot_allowed is None else request.googlebot_allowed,
        gptbot_allowed=policy.gptbot_allowed if request.gptbot_allowed is None else request.gptbot_allowed,
        applebot_allowed=policy.applebot_allowed if request.applebot_allowed is None else request.applebot_allowed,
    )


@router.post("")
async def run_scan(
    request: ScanRequest,
    _rate_limit: None = Depends(rate_limit("scan_run", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    adapters: List[BaseProviderAdapter] = Depends(get_provider_adapters),
    auditor: CrawlerAuditor = Depends(get_crawler_auditor),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)
    await ensure_user(db, auth)

    query, brand_name, brand_domain = request.query, request.brand_name, request.brand_domain
    if request.tracked_keyword_id:
        try:
            tracked = await get_tracked_keyword(scoped_user_id, request.tracked_keyword_id, db)
        except TrackedKeywordNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        query = query or tracked.keyword
        brand_name = brand_name or tracked.brand_name
        brand_domain = brand_domain or tracked.brand_domain

    brand = Brand(name=brand_name or "", domain=brand_domain or "")
    crawler_policy = await _resolve_crawler_policy(request, brand.domain, auditor) if brand.domain.strip() else None

    orchestrator = ScanOrchestrator(
        ledger=CreditLedger(db),
        cache=ScanResultCache(db),
        adapters=adapters,
    )
    outcome = await orchestrator.run_scan(
        scoped_user_id,
        query or "",
        brand,
        tracked_item_id=request.tracked_keyword_id,
        crawler_policy=crawler_policy,
    )
    if not outcome.success:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(outcome.error_code or "", 500),
            detail=outcome.error,
        )

    response = outcome.as_response()
    if crawler_policy is not None:
        response["crawler_policy"] = crawler_policy.as_response()
    return response


@router.get("/history")
async def scan_history(
    limit: int = Query(default=10, ge=1, le=100),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return {"items": await get_scan_history(auth.user_id, db, limit=limit)}


@router.get("/keywords")
async def tracked_keywords(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    rows = await list_tracked_keywords(auth.user_id, db)
    return {"items": [serialize_tracked_keyword(row) for row in rows]}


@router.post("/keywords", status_code=201)
async def add_tracked_keyword(
    request: TrackedKeywordRequest,
    _rate_limit: None = Depends(rate_limit("scan_keywords", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_user(db, auth)
    try:
        row = await create_tracked_keyword(
            auth.user_id,
            request.keyword,
            request.brand_name,
            request.brand_domain,
            db,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return serialize_tracked_keyword(row)


@router.get("/keywords/{tracked_keyword_id}")
async def keyword_scan_result(
    tracked_keyword_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        tracked = await get_tracked_keyword(auth.user_id, tracked_keyword_id, db)
        result = await get_keyword_scan_result(auth.user_id, tracked_keyword_id, db)
    except TrackedKeywordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"keyword": serialize_tracked_keyword(tracked), "result": result}


@router.delete("/keywords/{tracked_keyword_id}", status_code=204)
async def remove_tracked_keyword(
    tracked_keyword_id: str,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        await delete_tracked_keyword(auth.user_id, tracked_keyword_id, db)
    except TrackedKeywordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
