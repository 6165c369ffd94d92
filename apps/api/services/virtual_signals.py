"""Virtual platform signals derived from real provider results (no network calls)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

from services.providers.types import ProviderResult, VisibilityStatus


ReadinessStatus = Literal["ready", "at-risk", "not-ready"]

PROXY_NOTE = "Simulated via Perplexity Sonar (shared Bing index)"

RANK_POINTS = ((1, 40), (3, 30), (5, 20), (10, 10))
FEATURED_SOURCES = ("ai_overview", "featured_snippet")
FEATURED_POINTS = 40
LLM_VISIBLE_POINTS = 30
CRAWLER_ALLOWED_POINTS = 30
CRAWLER_BLOCKED_PENALTY = 20
READY_THRESHOLD = 70
AT_RISK_THRESHOLD = 40


@dataclass(frozen=True)
class CrawlerPolicy:
    """Per-bot robots.txt verdicts for the domain being scanned."""

    googlebot_allowed: bool = True
    gptbot_allowed: bool = True
    applebot_allowed: bool = True

    def as_response(self) -> Dict[str, bool]:
        return {
            "googlebot_allowed": self.googlebot_allowed,
            "gptbot_allowed": self.gptbot_allowed,
            "applebot_allowed": self.applebot_allowed,
        }


@dataclass(frozen=True)
class ProxySignal:
    status: VisibilityStatus
    snippet: str
    note: str = PROXY_NOTE

    @property
    def is_visible(self) -> bool:
        return self.status == "visible"

    def as_response(self) -> Dict[str, Any]:
        return {"status": self.status, "snippet": self.snippet, "note": self.note}


@dataclass(frozen=True)
class ReadinessSignal:
    status: ReadinessStatus
    score: int
    factors: List[str] = field(default_factory=list)

    @property
    def is_visible(self) -> bool:
        return self.status == "ready"

    def as_response(self) -> Dict[str, Any]:
        return {"status": self.status, "score": self.score, "factors": list(self.factors)}


@dataclass(frozen=True)
class VirtualPlatformResult:
    searchgpt: ProxySignal
    siri: ReadinessSignal


def calculate_proxy_signal(shared_index_result: ProviderResult) -> ProxySignal:
    """SearchGPT has no public API; Perplexity shares its index, so mirror it."""
    return ProxySignal(status=shared_index_result.status, snippet=shared_index_result.snippet)


def _search_points(search_result: ProviderResult) -> tuple:
    if search_result.rank is not None:
        for max_rank, points in RANK_POINTS:
            if search_result.rank <= max_rank:
                if max_rank == 1:
                    return points, "Google #1 position"
                return points, f"Google Top {max_rank} position"
        return 0, "Not ranking in Google Top 10"
    if search_result.source in FEATURED_SOURCES:
        return FEATURED_POINTS, "Featured in Google AI/Snippet"
    return 0, "Not ranking in Google Top 10"


def calculate_readiness_signal(
    search_result: ProviderResult,
    flagship_result: ProviderResult,
    crawler_policy: CrawlerPolicy,
) -> ReadinessSignal:
    """Voice-assistant readiness from search placement, flagship LLM visibility and Applebot access."""
    factors: List[str] = []

    score, label = _search_points(search_result)
    factors.append(label)

    if flagship_result.is_visible:
        score += LLM_VISIBLE_POINTS
        factors.append("Visible in ChatGPT responses")
    else:
        factors.append("Not visible in ChatGPT")

    if crawler_policy.applebot_allowed:
        score += CRAWLER_ALLOWED_POINTS
        factors.append("Applebot allowed in robots.txt")
    else:
        score = max(0, score - CRAWLER_BLOCKED_PENALTY)
        factors.append("Applebot BLOCKED in robots.txt")

    status: ReadinessStatus
    if not crawler_policy.applebot_allowed:
        status = "not-ready"
    elif score >= READY_THRESHOLD:
        status = "ready"
    elif score >= AT_RISK_THRESHOLD:
        status = "at-risk"
    else:
        status = "not-ready"

    return ReadinessSignal(status=status, score=score, factors=factors)


def calculate_virtual_platforms(
    results: Dict[str, ProviderResult],
    crawler_policy: CrawlerPolicy,
) -> VirtualPlatformResult:
    return VirtualPlatformResult(
        searchgpt=calculate_proxy_signal(results["perplexity"]),
        siri=calculate_readiness_signal(results["google"], results["chatgpt"], crawler_policy),
    )
