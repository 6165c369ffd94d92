"""Live network adapters: DataForSEO SERP and OpenRouter chat models."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI

from services.providers.base import BaseProviderAdapter
from services.providers.matching import BrandMatcher, analyze_sentiment
from services.providers.types import Brand, ProviderError, ProviderResult, SEARCH_PLATFORM

logger = logging.getLogger(__name__)

SERP_SNIPPET_CHARS = 500
LLM_SNIPPET_CHARS = 1000
DATAFORSEO_OK = 20000

# Featured placements are reported at rank 0.
FEATURED_ITEM_TYPES = (
    ("ai_overview", ("text", "description")),
    ("featured_snippet", ("description", "title")),
    ("knowledge_graph", ("description", "title")),
)

VISIBILITY_PROMPT = (
    "You are a helpful AI assistant acting as a search engine.\n"
    "Provide recommendations and information naturally, citing sources where relevant.\n"
    "If you mention specific products, services, or websites, do so naturally in context."
)


def _first_text(item: Dict[str, Any], fields: tuple) -> str:
    for field_name in fields:
        value = item.get(field_name)
        if value:
            return str(value)
    return ""


class SerpProviderAdapter(BaseProviderAdapter):
    """Google SERP visibility via the DataForSEO live advanced endpoint."""

    def __init__(
        self,
        *,
        login: str,
        password: str,
        base_url: str,
        location_code: int,
        language_code: str,
        timeout_seconds: float,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.provider = SEARCH_PLATFORM
        self.login = login
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.location_code = location_code
        self.language_code = language_code
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def _post_serp(self, query: str) -> Dict[str, Any]:
        payload = [
            {
                "keyword": query,
                "location_code": self.location_code,
                "language_code": self.language_code,
                "depth": 20,
                "calculate_rectangles": False,
            }
        ]
        url = f"{self.base_url}/serp/google/organic/live/advanced"
        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload, auth=(self.login, self.password))
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, json=payload, auth=(self.login, self.password))
        response.raise_for_status()
        return response.json()

    async def _fetch(self, query: str, brand: Brand) -> ProviderResult:
        data = await self._post_serp(query)
        tasks = data.get("tasks") or []
        results = (tasks[0].get("result") or []) if tasks else []
        if data.get("status_code") != DATAFORSEO_OK or not results:
            raise ProviderError(f"DataForSEO error: {data.get('status_message') or 'empty result'}")

        items: List[Dict[str, Any]] = results[0].get("items") or []
        matcher = BrandMatcher(brand)

        for item_type, fields in FEATURED_ITEM_TYPES:
            item = next((row for row in items if row.get("type") == item_type), None)
            if item is None:
                continue
            text = _first_text(item, fields)
            if matcher.mentions(text):
                snippet = str(item.get("text") or item.get("description") or "")[:SERP_SNIPPET_CHARS]
                return ProviderResult(
                    provider=self.provider,
                    status="visible",
                    snippet=snippet,
                    mention_context=matcher.mention_context(text),
                    sentiment=analyze_sentiment(matcher.mention_context(text)),
                    rank=0,
                    source=item_type,
                )

        for item in items:
            if item.get("type") != "organic":
                continue
            if matcher.matches_url(item.get("url") or item.get("domain")):
                description = str(item.get("description") or "")
                return ProviderResult(
                    provider=self.provider,
                    status="visible",
                    snippet=description[:SERP_SNIPPET_CHARS],
                    mention_context=matcher.mention_context(description),
                    sentiment=analyze_sentiment(matcher.mention_context(description)),
                    rank=int(item.get("rank_absolute") or item.get("rank_group") or 99),
                    source="organic",
                )

        return ProviderResult.hidden(self.provider)


class ChatModelProviderAdapter(BaseProviderAdapter):
    """Language-model visibility via an OpenAI-compatible chat completion (OpenRouter)."""

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        api_key: str,
        base_url: str,
        timeout_seconds: float,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.provider = provider
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    def _user_prompt(self, query: str) -> str:
        return (
            f"I am looking for information about: {query}\n\n"
            "Please provide your top recommendations and explain why they are good choices.\n"
            "Include specific product names, services, or websites that would be helpful."
        )

    async def _fetch(self, query: str, brand: Brand) -> ProviderResult:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": VISIBILITY_PROMPT},
                {"role": "user", "content": self._user_prompt(query)},
            ],
            temperature=0.7,
            max_tokens=1000,
        )
        if not response.choices:
            raise ProviderError(f"{self.provider} returned no choices")
        text = response.choices[0].message.content or ""

        matcher = BrandMatcher(brand)
        if not matcher.mentions(text):
            return ProviderResult(provider=self.provider, status="hidden", snippet=text[:LLM_SNIPPET_CHARS])

        context = matcher.mention_context(text)
        return ProviderResult(
            provider=self.provider,
            status="visible",
            snippet=text[:LLM_SNIPPET_CHARS],
            mention_context=context,
            sentiment=analyze_sentiment(context),
        )
