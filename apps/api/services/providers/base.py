"""Provider adapter base class with per-call timeout and failure isolation."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

from services.providers.types import Brand, ProviderResult

logger = logging.getLogger(__name__)


class BaseProviderAdapter(ABC):
    """One data source. `fetch` never raises; failures come back as hidden + error."""

    provider: str
    timeout_seconds: float

    async def fetch(self, query: str, brand: Brand) -> ProviderResult:
        try:
            return await asyncio.wait_for(self._fetch(query, brand), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs", self.provider, self.timeout_seconds)
            return ProviderResult.failure(
                self.provider,
                f"{self.provider} timed out after {self.timeout_seconds:g}s",
            )
        except Exception as exc:
            logger.warning("Provider %s failed: %s", self.provider, exc)
            return ProviderResult.failure(self.provider, str(exc) or exc.__class__.__name__)

    @abstractmethod
    async def _fetch(self, query: str, brand: Brand) -> ProviderResult:
        raise NotImplementedError
