"""Public provider adapter utilities."""

from services.providers.base import BaseProviderAdapter
from services.providers.factory import build_provider_adapters
from services.providers.fixture import FixtureProviderAdapter
from services.providers.live import ChatModelProviderAdapter, SerpProviderAdapter
from services.providers.types import (
    LLM_PLATFORMS,
    REAL_PLATFORMS,
    SEARCH_PLATFORM,
    Brand,
    PlatformKey,
    ProviderError,
    ProviderResult,
)

__all__ = [
    "BaseProviderAdapter",
    "Brand",
    "ChatModelProviderAdapter",
    "FixtureProviderAdapter",
    "LLM_PLATFORMS",
    "PlatformKey",
    "ProviderError",
    "ProviderResult",
    "REAL_PLATFORMS",
    "SEARCH_PLATFORM",
    "SerpProviderAdapter",
    "build_provider_adapters",
]
