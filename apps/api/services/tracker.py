"""Tracked keyword management and stored scan history."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.tracked_keyword import TrackedKeyword
from services.providers.matching import normalize_domain

logger = logging.getLogger(__name__)


class TrackedKeywordNotFoundError(LookupError):
    """Raised when a tracked keyword does not exist for the requesting user."""


def serialize_tracked_keyword(row: TrackedKeyword) -> Dict[str, Any]:
    results = row.last_results if isinstance(row.last_results, dict) else None
    return {
        "id": row.id,
        "keyword": row.keyword,
        "brand_name": row.brand_name,
        "brand_domain": row.brand_domain,
        "last_checked_at": row.last_checked_at.isoformat() if row.last_checked_at else None,
        "overall_score": results.get("overall_score") if results else None,
        "visible_platforms": results.get("visible_platforms") if results else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def create_tracked_keyword(
    user_id: str,
    keyword: str,
    brand_name: str,
    brand_domain: str,
    db: AsyncSession,
) -> TrackedKeyword:
    keyword = (keyword or "").strip()
    brand_name = (brand_name or "").strip()
    brand_domain = normalize_domain(brand_domain)
    if not keyword:
        raise ValueError("Keyword is required")
    if not brand_name:
        raise ValueError("Brand name is required")
    if not brand_domain:
        raise ValueError("Brand domain is required")

    row = TrackedKeyword(
        user_id=user_id,
        keyword=keyword,
        brand_name=brand_name,
        brand_domain=brand_domain,
    )
    db.add(row)
    await db.commit()
    await db.refresh(row)
    logger.info("User %s now tracks %r for %s", user_id, keyword, brand_domain)
    return row


async def list_tracked_keywords(user_id: str, db: AsyncSession) -> List[TrackedKeyword]:
    result = await db.execute(
        select(TrackedKeyword)
        .where(TrackedKeyword.user_id == user_id)
        .order_by(TrackedKeyword.created_at.desc())
    )
    return list(result.scalars().all())


async def get_tracked_keyword(user_id: str, tracked_keyword_id: str, db: AsyncSession) -> TrackedKeyword:
    result = await db.execute(
        select(TrackedKeyword).where(
            TrackedKeyword.id == tracked_keyword_id,
            TrackedKeyword.user_id == user_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise TrackedKeywordNotFoundError(f"Tracked keyword {tracked_keyword_id} not found")
    return row


async def delete_tracked_keyword(user_id: str, tracked_keyword_id: str, db: AsyncSession) -> None:
    row = await get_tracked_keyword(user_id, tracked_keyword_id, db)
    await db.delete(row)
    await db.commit()


async def get_scan_history(user_id: str, db: AsyncSession, limit: int = 10) -> List[Dict[str, Any]]:
    """Most recently scanned keywords first; never-scanned keywords are left out."""
    result = await db.execute(
        select(TrackedKeyword)
        .where(
            TrackedKeyword.user_id == user_id,
            TrackedKeyword.last_checked_at.is_not(None),
        )
        .order_by(TrackedKeyword.last_checked_at.desc())
        .limit(max(min(int(limit), 100), 1))
    )
    return [serialize_tracked_keyword(row) for row in result.scalars().all()]


async def get_keyword_scan_result(
    user_id: str,
    tracked_keyword_id: str,
    db: AsyncSession,
) -> Optional[Dict[str, Any]]:
    row = await get_tracked_keyword(user_id, tracked_keyword_id, db)
    if not isinstance(row.last_results, dict):
        return None
    return row.last_results
