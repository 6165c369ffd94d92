"""Builds the adapter set for the configured provider mode."""

from __future__ import annotations

from typing import List, Optional

from config import require_live_provider_credentials, settings
from services.providers.base import BaseProviderAdapter
from services.providers.fixture import FixtureProviderAdapter
from services.providers.live import ChatModelProviderAdapter, SerpProviderAdapter
from services.providers.types import LLM_PLATFORMS, REAL_PLATFORMS


def _model_for(platform: str) -> str:
    return {
        "chatgpt": settings.OPENROUTER_MODEL_CHATGPT,
        "claude": settings.OPENROUTER_MODEL_CLAUDE,
        "gemini": settings.OPENROUTER_MODEL_GEMINI,
        "perplexity": settings.OPENROUTER_MODEL_PERPLEXITY,
    }[platform]


def build_provider_adapters(mode: Optional[str] = None) -> List[BaseProviderAdapter]:
    """Return one adapter per real platform; the mode is decided here only."""
    selected = str(mode or settings.SCAN_PROVIDER_MODE or "fixture").strip().lower()
    timeout = max(float(settings.PROVIDER_TIMEOUT_SECONDS), 1.0)

    if selected == "fixture":
        return [FixtureProviderAdapter(platform, timeout_seconds=timeout) for platform in REAL_PLATFORMS]
    if selected != "live":
        raise ValueError(f"Unknown SCAN_PROVIDER_MODE: {selected}")

    require_live_provider_credentials()
    adapters: List[BaseProviderAdapter] = [
        SerpProviderAdapter(
            login=settings.DATAFORSEO_LOGIN,
            password=settings.DATAFORSEO_PASSWORD,
            base_url=settings.DATAFORSEO_BASE_URL,
            location_code=int(settings.DATAFORSEO_LOCATION_CODE),
            language_code=settings.DATAFORSEO_LANGUAGE_CODE,
            timeout_seconds=timeout,
        )
    ]
    for platform in LLM_PLATFORMS:
        adapters.append(
            ChatModelProviderAdapter(
                provider=platform,
                model=_model_for(platform),
                api_key=settings.OPENROUTER_API_KEY,
                base_url=settings.OPENROUTER_BASE_URL,
                timeout_seconds=timeout,
            )
        )
    return adapters
