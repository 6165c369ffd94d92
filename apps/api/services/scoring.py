"""Overall visibility score: unweighted presence ratio across all platforms."""

from __future__ import annotations

import math
from typing import Dict, Tuple

from services.providers.types import REAL_PLATFORMS, ProviderResult
from services.virtual_signals import VirtualPlatformResult


TOTAL_PLATFORMS = len(REAL_PLATFORMS) + 2


def count_visible_platforms(results: Dict[str, ProviderResult], virtual: VirtualPlatformResult) -> int:
    visible = sum(1 for platform in REAL_PLATFORMS if results[platform].is_visible)
    visible += int(virtual.searchgpt.is_visible)
    visible += int(virtual.siri.is_visible)
    return visible


def overall_score(visible_platforms: int, total_platforms: int = TOTAL_PLATFORMS) -> int:
    if total_platforms <= 0:
        return 0
    # Half-up rounding; round() would send 50.0-style halves to even.
    return int(math.floor((100.0 * visible_platforms / total_platforms) + 0.5))


def aggregate_score(results: Dict[str, ProviderResult], virtual: VirtualPlatformResult) -> Tuple[int, int, int]:
    """Return (overall_score, visible_platforms, total_platforms)."""
    visible = count_visible_platforms(results, virtual)
    return overall_score(visible), visible, TOTAL_PLATFORMS
