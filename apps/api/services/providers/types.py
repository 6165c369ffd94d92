"""Provider adapter contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional


PlatformKey = Literal["google", "chatgpt", "claude", "gemini", "perplexity"]
VisibilityStatus = Literal["visible", "hidden"]
Sentiment = Literal["positive", "neutral", "negative"]
SearchSource = Literal["ai_overview", "featured_snippet", "knowledge_graph", "organic"]

SEARCH_PLATFORM: PlatformKey = "google"
LLM_PLATFORMS = ("chatgpt", "claude", "gemini", "perplexity")
REAL_PLATFORMS = (SEARCH_PLATFORM,) + LLM_PLATFORMS


class ProviderError(RuntimeError):
    """Raised inside an adapter when a backend answers with an unusable payload."""


@dataclass(frozen=True)
class Brand:
    name: str
    domain: str


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    status: VisibilityStatus
    snippet: str = ""
    mention_context: Optional[str] = None
    sentiment: Sentiment = "neutral"
    error: Optional[str] = None
    rank: Optional[int] = None
    source: Optional[SearchSource] = None

    @property
    def is_visible(self) -> bool:
        return self.status == "visible"

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def hidden(cls, provider: str) -> "ProviderResult":
        return cls(provider=provider, status="hidden")

    @classmethod
    def failure(cls, provider: str, error: str) -> "ProviderResult":
        return cls(provider=provider, status="hidden", error=error or "Request failed")

    @classmethod
    def from_payload(cls, provider: str, payload: Dict[str, Any]) -> "ProviderResult":
        return cls(
            provider=str(payload.get("platform") or provider),
            status="visible" if payload.get("status") == "visible" else "hidden",
            snippet=str(payload.get("snippet") or ""),
            mention_context=payload.get("mention_context"),
            sentiment=payload.get("sentiment") or "neutral",
            error=payload.get("error"),
            rank=payload.get("rank"),
            source=payload.get("source"),
        )

    def as_response(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "platform": self.provider,
            "status": self.status,
            "snippet": self.snippet,
            "mention_context": self.mention_context,
            "sentiment": self.sentiment,
            "error": self.error,
        }
        if self.provider == SEARCH_PLATFORM:
            payload["rank"] = self.rank
            payload["source"] = self.source
        return payload
