"""Full visibility scan: cache check, credit reservation, provider fan-out, aggregation, refund."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from config import settings
from services.credits import SCAN_FEATURE, CreditLedger, InsufficientCreditsError, LedgerUnavailableError
from services.providers.base import BaseProviderAdapter
from services.providers.types import LLM_PLATFORMS, REAL_PLATFORMS, SEARCH_PLATFORM, Brand, ProviderResult
from services.scan_cache import ScanResultCache
from services.scoring import aggregate_score
from services.virtual_signals import (
    CrawlerPolicy,
    ProxySignal,
    ReadinessSignal,
    VirtualPlatformResult,
    calculate_virtual_platforms,
)

logger = logging.getLogger(__name__)

TOTAL_FAILURE_MESSAGE = "All API calls failed. Credits have been refunded. Please try again later."
REFUND_FAILED_MESSAGE = (
    "All API calls failed and the credit refund could not be recorded. "
    "Support has been notified to restore your credits."
)


class ScanState(str, Enum):
    IDLE = "idle"
    CACHE_CHECK = "cache_check"
    RESERVING = "reserving"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    COMMITTED = "committed"
    REFUNDING = "refunding"
    REFUNDED = "refunded"
    DONE = "done"


@dataclass
class FullScanResult:
    query: str
    brand_name: str
    brand_domain: str
    timestamp: str
    results: Dict[str, ProviderResult]
    virtual: VirtualPlatformResult
    overall_score: int
    visible_platforms: int
    total_platforms: int

    @property
    def failed_platforms(self) -> List[str]:
        return [platform for platform in REAL_PLATFORMS if self.results[platform].failed]

    def as_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "query": self.query,
            "brand_name": self.brand_name,
            "brand_domain": self.brand_domain,
            "timestamp": self.timestamp,
        }
        for platform in REAL_PLATFORMS:
            payload[platform] = self.results[platform].as_response()
        payload["searchgpt"] = self.virtual.searchgpt.as_response()
        payload["siri"] = self.virtual.siri.as_response()
        payload["overall_score"] = self.overall_score
        payload["visible_platforms"] = self.visible_platforms
        payload["total_platforms"] = self.total_platforms
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "FullScanResult":
        searchgpt = payload.get("searchgpt") or {}
        siri = payload.get("siri") or {}
        return cls(
            query=str(payload.get("query") or ""),
            brand_name=str(payload.get("brand_name") or ""),
            brand_domain=str(payload.get("brand_domain") or ""),
            timestamp=str(payload.get("timestamp") or ""),
            results={
                platform: ProviderResult.from_payload(platform, payload.get(platform) or {})
                for platform in REAL_PLATFORMS
            },
            virtual=VirtualPlatformResult(
                searchgpt=ProxySignal(
                    status="visible" if searchgpt.get("status") == "visible" else "hidden",
                    snippet=str(searchgpt.get("snippet") or ""),
                    note=str(searchgpt.get("note") or ""),
                ),
                siri=ReadinessSignal(
                    status=siri.get("status") or "not-ready",
                    score=int(siri.get("score") or 0),
                    factors=list(siri.get("factors") or []),
                ),
            ),
            overall_score=int(payload.get("overall_score") or 0),
            visible_platforms=int(payload.get("visible_platforms") or 0),
            total_platforms=int(payload.get("total_platforms") or 0),
        )


@dataclass
class ScanOutcome:
    success: bool
    result: Optional[FullScanResult] = None
    credits_charged: int = 0
    credits_remaining: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    partial_results: bool = False
    from_cache: bool = False
    scan_id: Optional[str] = None
    states: List[ScanState] = field(default_factory=list)

    def as_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "scan_id": self.scan_id,
            "data": self.result.as_response() if self.result is not None else None,
            "credits_charged": self.credits_charged,
            "credits_remaining": self.credits_remaining,
            "error": self.error,
            "error_code": self.error_code,
            "partial_results": self.partial_results,
            "from_cache": self.from_cache,
        }


def is_total_failure(results: Dict[str, ProviderResult]) -> bool:
    """Every language model errored and search produced no placement."""
    return all(results[platform].failed for platform in LLM_PLATFORMS) and not results[SEARCH_PLATFORM].is_visible


def validate_scan_input(query: str, brand: Brand) -> Optional[str]:
    if not (query or "").strip():
        return "Keyword is required"
    if not (brand.name or "").strip():
        return "Brand name is required"
    if not (brand.domain or "").strip():
        return "Brand domain is required"
    return None


class ScanOrchestrator:
    """Runs one scan per call; holds no per-scan state between calls."""

    def __init__(
        self,
        *,
        ledger: CreditLedger,
        cache: ScanResultCache,
        adapters: Sequence[BaseProviderAdapter],
        credit_cost: Optional[int] = None,
    ) -> None:
        providers = [adapter.provider for adapter in adapters]
        missing = [platform for platform in REAL_PLATFORMS if platform not in providers]
        if missing or len(providers) != len(set(providers)):
            raise ValueError(f"Scan needs exactly one adapter per platform; missing={missing}")
        self.ledger = ledger
        self.cache = cache
        self.adapters = list(adapters)
        self.credit_cost = int(settings.SCAN_CREDIT_COST if credit_cost is None else credit_cost)

    def _enter(self, outcome: ScanOutcome, state: ScanState) -> None:
        outcome.states.append(state)
        logger.debug("Scan %s -> %s", outcome.scan_id, state.value)

    def _finish(self, outcome: ScanOutcome) -> ScanOutcome:
        self._enter(outcome, ScanState.DONE)
        logger.info(
            "Scan %s done success=%s charged=%s error_code=%s cached=%s",
            outcome.scan_id,
            outcome.success,
            outcome.credits_charged,
            outcome.error_code,
            outcome.from_cache,
        )
        return outcome

    async def _fan_out(self, query: str, brand: Brand) -> Dict[str, ProviderResult]:
        settled = await asyncio.gather(
            *(adapter.fetch(query, brand) for adapter in self.adapters),
            return_exceptions=True,
        )
        results: Dict[str, ProviderResult] = {}
        for adapter, item in zip(self.adapters, settled):
            if isinstance(item, ProviderResult):
                results[adapter.provider] = item
                continue
            if isinstance(item, BaseException) and not isinstance(item, Exception):
                raise item
            logger.error("Provider %s raised out of fetch: %r", adapter.provider, item)
            results[adapter.provider] = ProviderResult.failure(
                adapter.provider,
                str(item) or item.__class__.__name__,
            )
        return results

    async def run_scan(
        self,
        user_id: str,
        query: str,
        brand: Brand,
        tracked_item_id: Optional[str] = None,
        crawler_policy: Optional[CrawlerPolicy] = None,
    ) -> ScanOutcome:
        outcome = ScanOutcome(success=False, scan_id=str(uuid.uuid4()))
        self._enter(outcome, ScanState.IDLE)

        query = (query or "").strip()
        brand = Brand(name=(brand.name or "").strip(), domain=(brand.domain or "").strip())
        invalid = validate_scan_input(query, brand)
        if invalid:
            outcome.error = invalid
            outcome.error_code = "invalid_input"
            return self._finish(outcome)

        if tracked_item_id:
            self._enter(outcome, ScanState.CACHE_CHECK)
            cached = await self.cache.get(user_id, tracked_item_id)
            if cached is not None:
                outcome.success = True
                outcome.result = FullScanResult.from_payload(cached)
                outcome.from_cache = True
                return self._finish(outcome)

        self._enter(outcome, ScanState.RESERVING)
        try:
            charge = await self.ledger.reserve_and_charge(
                user_id,
                self.credit_cost,
                f"Full AI Visibility Scan ({self.credit_cost} credits)",
                feature=SCAN_FEATURE,
                reference_id=outcome.scan_id,
                metadata={"query": query, "brand_domain": brand.domain, "tracked_keyword_id": tracked_item_id},
            )
        except InsufficientCreditsError as exc:
            outcome.error = str(exc)
            outcome.error_code = "insufficient_credits"
            outcome.credits_remaining = exc.available
            return self._finish(outcome)
        except LedgerUnavailableError as exc:
            outcome.error = str(exc)
            outcome.error_code = "ledger_unavailable"
            return self._finish(outcome)

        outcome.credits_charged = charge.charged
        outcome.credits_remaining = charge.credits_remaining

        self._enter(outcome, ScanState.FETCHING)
        results = await self._fan_out(query, brand)

        self._enter(outcome, ScanState.AGGREGATING)
        virtual = calculate_virtual_platforms(results, crawler_policy or CrawlerPolicy())
        score, visible, total = aggregate_score(results, virtual)
        scan_result = FullScanResult(
            query=query,
            brand_name=brand.name,
            brand_domain=brand.domain,
            timestamp=datetime.now(timezone.utc).isoformat(),
            results=results,
            virtual=virtual,
            overall_score=score,
            visible_platforms=visible,
            total_platforms=total,
        )

        if is_total_failure(results):
            return await self._refund(outcome, user_id, scan_result)

        self._enter(outcome, ScanState.COMMITTED)
        outcome.success = True
        outcome.result = scan_result
        outcome.partial_results = bool(scan_result.failed_platforms)
        if outcome.partial_results:
            logger.info("Scan %s completed with failed providers: %s", outcome.scan_id, scan_result.failed_platforms)
        if tracked_item_id:
            await self.cache.set(
                user_id,
                tracked_item_id,
                scan_result.as_response(),
                datetime.fromisoformat(scan_result.timestamp),
            )
        return self._finish(outcome)

    async def _refund(self, outcome: ScanOutcome, user_id: str, scan_result: FullScanResult) -> ScanOutcome:
        self._enter(outcome, ScanState.REFUNDING)
        errors = {platform: scan_result.results[platform].error for platform in scan_result.failed_platforms}
        logger.warning("Scan %s: all providers failed (%s); refunding %s credits", outcome.scan_id, errors, outcome.credits_charged)
        try:
            refund = await self.ledger.refund(
                user_id,
                outcome.credits_charged,
                "Refund: AI Visibility Scan failed",
                feature=SCAN_FEATURE,
                reference_id=outcome.scan_id,
                metadata={"query": scan_result.query, "errors": errors},
            )
        except LedgerUnavailableError as exc:
            logger.critical(
                "Refund failed for user %s scan %s amount %s; manual reconciliation required: %s",
                user_id,
                outcome.scan_id,
                outcome.credits_charged,
                exc,
            )
            outcome.error = REFUND_FAILED_MESSAGE
            outcome.error_code = "refund_failed"
            return self._finish(outcome)

        self._enter(outcome, ScanState.REFUNDED)
        outcome.credits_charged = 0
        outcome.credits_remaining = refund.credits_remaining
        outcome.error = TOTAL_FAILURE_MESSAGE
        outcome.error_code = "total_failure"
        return self._finish(outcome)
