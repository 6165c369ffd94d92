"""Brand mention detection and keyword-overlap sentiment."""

from __future__ import annotations

import re
from typing import Optional

from services.providers.types import Brand, Sentiment


MENTION_CONTEXT_CHARS = 100

POSITIVE_WORDS = (
    "excellent",
    "best",
    "great",
    "amazing",
    "outstanding",
    "top",
    "recommend",
    "popular",
    "leading",
    "trusted",
    "reliable",
    "favorite",
)
NEGATIVE_WORDS = (
    "avoid",
    "bad",
    "worst",
    "poor",
    "disappointing",
    "issues",
    "problems",
    "expensive",
    "limited",
    "lacking",
    "outdated",
)


def normalize_domain(domain: str) -> str:
    cleaned = re.sub(r"^https?://", "", str(domain or "").strip(), flags=re.IGNORECASE)
    return cleaned.rstrip("/").lower()


def analyze_sentiment(text: Optional[str]) -> Sentiment:
    if not text:
        return "neutral"
    lowered = text.lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


class BrandMatcher:
    """Case-insensitive substring matching against a brand's name and domain."""

    def __init__(self, brand: Brand) -> None:
        self.brand_name = brand.name.strip()
        self.domain = normalize_domain(brand.domain) or self.brand_name.lower().replace(" ", "")

    @property
    def domain_label(self) -> str:
        return self.domain.removeprefix("www.").split(".")[0]

    def mentions(self, text: Optional[str]) -> bool:
        if not text:
            return False
        lowered = text.lower()
        if self.brand_name and self.brand_name.lower() in lowered:
            return True
        if self.domain and self.domain in lowered:
            return True
        label = self.domain_label
        return len(label) > 2 and label in lowered

    def matches_url(self, url: Optional[str]) -> bool:
        if not url:
            return False
        lowered = url.lower()
        if self.domain in lowered:
            return True
        return self.domain.removeprefix("www.") in lowered

    def mention_context(self, text: str) -> Optional[str]:
        """Return the text around the first brand-name hit, with ellipses where truncated."""
        if not text or not self.brand_name:
            return None
        index = text.lower().find(self.brand_name.lower())
        if index == -1:
            return None
        start = max(0, index - MENTION_CONTEXT_CHARS)
        end = min(len(text), index + len(self.brand_name) + MENTION_CONTEXT_CHARS)
        context = text[start:end]
        if start > 0:
            context = "..." + context
        if end < len(text):
            context = context + "..."
        return context
