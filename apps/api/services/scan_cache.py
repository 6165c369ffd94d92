"""Per tracked-keyword cache of the last full scan result."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.tracked_keyword import TrackedKeyword

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class ScanResultCache:
    """Stores the latest scan payload on its TrackedKeyword row.

    Entries are only ever read by the owning user, and an entry is fresh
    while `now - last_checked_at <= ttl`. Read and write problems are logged
    and treated as a miss; they never fail the scan.
    """

    def __init__(self, db: AsyncSession, ttl_minutes: Optional[int] = None) -> None:
        self.db = db
        minutes = settings.SCAN_CACHE_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        self.ttl = timedelta(minutes=max(int(minutes), 0))

    async def _load(self, user_id: str, tracked_keyword_id: str) -> Optional[TrackedKeyword]:
        result = await self.db.execute(
            select(TrackedKeyword).where(
                TrackedKeyword.id == tracked_keyword_id,
                TrackedKeyword.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get(
        self,
        user_id: str,
        tracked_keyword_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        try:
            row = await self._load(user_id, tracked_keyword_id)
        except SQLAlchemyError as exc:
            # The session is shared with the ledger; clear the failed transaction.
            await self.db.rollback()
            logger.warning("Scan cache read failed for %s: %s", tracked_keyword_id, exc)
            return None

        if row is None or not isinstance(row.last_results, dict) or not isinstance(row.last_checked_at, datetime):
            return None

        current = now or datetime.now(timezone.utc)
        if current - _as_utc(row.last_checked_at) > self.ttl:
            return None
        return row.last_results

    async def set(
        self,
        user_id: str,
        tracked_keyword_id: str,
        payload: Dict[str, Any],
        checked_at: datetime,
    ) -> bool:
        try:
            row = await self._load(user_id, tracked_keyword_id)
            if row is None:
                logger.info("Skipping scan cache write; tracked keyword %s not found for user %s", tracked_keyword_id, user_id)
                return False
            row.last_results = payload
            row.last_checked_at = _as_utc(checked_at)
            await self.db.commit()
            return True
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.warning("Scan cache write failed for %s: %s", tracked_keyword_id, exc)
            return False
