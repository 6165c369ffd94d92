"""Deterministic fixture adapters for local development and tests."""

from __future__ import annotations

import asyncio
import hashlib
from typing import Optional, Union

from services.providers.base import BaseProviderAdapter
from services.providers.matching import BrandMatcher, analyze_sentiment
from services.providers.types import Brand, ProviderResult, SEARCH_PLATFORM


FIXTURE_SOURCES = ("ai_overview", "featured_snippet", "organic")

# Share of queries (out of 256) for which a platform reports the brand.
FIXTURE_VISIBILITY_THRESHOLDS = {
    "google": 154,
    "chatgpt": 166,
    "claude": 154,
    "gemini": 141,
    "perplexity": 179,
}


def _digest(*parts: str) -> bytes:
    payload = "|".join(part.strip().lower() for part in parts)
    return hashlib.sha1(payload.encode("utf-8")).digest()


class FixtureProviderAdapter(BaseProviderAdapter):
    """Answers without network access.

    With no `scripted` outcome the answer is derived from a hash of the
    provider, query and brand, so repeated scans of the same input agree.
    A scripted `ProviderResult` is returned as-is and a scripted exception is
    raised, which lets callers exercise the failure paths.
    """

    def __init__(
        self,
        provider: str,
        *,
        timeout_seconds: float = 30.0,
        scripted: Optional[Union[ProviderResult, BaseException]] = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds
        self.scripted = scripted
        self.delay_seconds = delay_seconds
        self.calls = 0

    async def _fetch(self, query: str, brand: Brand) -> ProviderResult:
        self.calls += 1
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if isinstance(self.scripted, BaseException):
            raise self.scripted
        if self.scripted is not None:
            return self.scripted
        return self._derive(query, brand)

    def _derive(self, query: str, brand: Brand) -> ProviderResult:
        digest = _digest(self.provider, query, brand.name)
        threshold = FIXTURE_VISIBILITY_THRESHOLDS.get(self.provider, 128)
        visible = digest[0] < threshold

        if self.provider == SEARCH_PLATFORM:
            if not visible:
                return ProviderResult.hidden(self.provider)
            snippet = (
                f"{brand.name} provides comprehensive solutions for {query}. Their platform includes "
                "advanced analytics, real-time monitoring, and AI-powered insights."
            )
            source = FIXTURE_SOURCES[digest[1] % len(FIXTURE_SOURCES)]
            return ProviderResult(
                provider=self.provider,
                status="visible",
                snippet=snippet,
                mention_context=snippet,
                sentiment=analyze_sentiment(snippet),
                rank=0 if source != "organic" else (digest[2] % 10) + 1,
                source=source,
            )

        if visible:
            text = (
                f"When considering {query}, several options come to mind. {brand.name} is notable for its "
                "robust feature set and is a popular choice among teams."
            )
        else:
            text = f"When considering {query}, compare pricing, integrations and support before committing."
        matcher = BrandMatcher(brand)
        if not matcher.mentions(text):
            return ProviderResult(provider=self.provider, status="hidden", snippet=text)
        context = matcher.mention_context(text)
        return ProviderResult(
            provider=self.provider,
            status="visible",
            snippet=text,
            mention_context=context,
            sentiment=analyze_sentiment(context),
        )
