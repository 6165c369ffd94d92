import pytest

from services.providers import ProviderResult
from services.scoring import TOTAL_PLATFORMS, aggregate_score, overall_score
from services.virtual_signals import (
    PROXY_NOTE,
    CrawlerPolicy,
    calculate_proxy_signal,
    calculate_readiness_signal,
    calculate_virtual_platforms,
)


def _google(rank=None, source=None, visible=True):
    if not visible:
        return ProviderResult.hidden("google")
    return ProviderResult(provider="google", status="visible", snippet="Acme", rank=rank, source=source)


def _llm(provider, visible=True, error=None):
    if error:
        return ProviderResult.failure(provider, error)
    if visible:
        return ProviderResult(provider=provider, status="visible", snippet=f"{provider} mentions Acme")
    return ProviderResult.hidden(provider)


def test_proxy_signal_mirrors_shared_index_provider():
    visible = calculate_proxy_signal(_llm("perplexity", visible=True))
    assert visible.status == "visible"
    assert visible.snippet == "perplexity mentions Acme"
    assert visible.note == PROXY_NOTE

    failed = calculate_proxy_signal(_llm("perplexity", error="HTTP 500"))
    assert failed.status == "hidden"
    assert failed.snippet == ""


@pytest.mark.parametrize(
    "rank,expected_points",
    [(0, 40), (1, 40), (2, 30), (3, 30), (4, 20), (5, 20), (7, 10), (10, 10), (11, 0)],
)
def test_readiness_search_points_by_rank(rank, expected_points):
    signal = calculate_readiness_signal(
        _google(rank=rank, source="organic"),
        _llm("chatgpt", visible=False),
        CrawlerPolicy(),
    )
    assert signal.score == expected_points + 30


def test_featured_source_without_rank_earns_top_points():
    signal = calculate_readiness_signal(
        _google(rank=None, source="ai_overview"),
        _llm("chatgpt", visible=False),
        CrawlerPolicy(),
    )
    assert signal.score == 70
    assert signal.status == "ready"
    assert "Featured in Google AI/Snippet" in signal.factors


def test_full_readiness_for_featured_visible_and_allowed():
    signal = calculate_readiness_signal(
        _google(rank=0, source="featured_snippet"),
        _llm("chatgpt"),
        CrawlerPolicy(applebot_allowed=True),
    )
    assert signal.score == 100
    assert signal.status == "ready"
    assert signal.factors == [
        "Google #1 position",
        "Visible in ChatGPT responses",
        "Applebot allowed in robots.txt",
    ]


def test_blocked_applebot_forces_not_ready_and_floors_score():
    blocked = calculate_readiness_signal(
        _google(rank=1, source="organic"),
        _llm("chatgpt"),
        CrawlerPolicy(applebot_allowed=False),
    )
    assert blocked.score == 50
    assert blocked.status == "not-ready"
    assert "Applebot BLOCKED in robots.txt" in blocked.factors

    floored = calculate_readiness_signal(_google(visible=False), _llm("chatgpt", visible=False), CrawlerPolicy(applebot_allowed=False))
    assert floored.score == 0
    assert floored.status == "not-ready"


def test_at_risk_band():
    signal = calculate_readiness_signal(_google(visible=False), _llm("chatgpt"), CrawlerPolicy())
    assert signal.score == 60
    assert signal.status == "at-risk"


def test_readiness_is_monotonic_in_each_input():
    ranks = [None, 11, 10, 5, 3, 1]
    for chatgpt_visible in (False, True):
        for applebot_allowed in (False, True):
            scores = [
                calculate_readiness_signal(
                    _google(rank=rank, source="organic", visible=rank is not None),
                    _llm("chatgpt", visible=chatgpt_visible),
                    CrawlerPolicy(applebot_allowed=applebot_allowed),
                ).score
                for rank in ranks
            ]
            assert scores == sorted(scores)

    for rank in ranks:
        google = _google(rank=rank, source="organic", visible=rank is not None)
        hidden = calculate_readiness_signal(google, _llm("chatgpt", visible=False), CrawlerPolicy())
        visible = calculate_readiness_signal(google, _llm("chatgpt"), CrawlerPolicy())
        blocked = calculate_readiness_signal(google, _llm("chatgpt"), CrawlerPolicy(applebot_allowed=False))
        assert visible.score >= hidden.score
        assert visible.score >= blocked.score


@pytest.mark.parametrize("visible,expected", [(0, 0), (1, 14), (2, 29), (3, 43), (4, 57), (5, 71), (6, 86), (7, 100)])
def test_overall_score_rounds_half_up(visible, expected):
    assert overall_score(visible) == expected


def test_overall_score_rounds_exact_half_up():
    assert overall_score(1, 8) == 13
    assert overall_score(1, 200) == 1


def test_aggregate_counts_real_and_virtual_platforms():
    results = {
        "google": _google(rank=0, source="featured_snippet"),
        "chatgpt": _llm("chatgpt"),
        "claude": _llm("claude"),
        "gemini": _llm("gemini", visible=False),
        "perplexity": _llm("perplexity"),
    }
    virtual = calculate_virtual_platforms(results, CrawlerPolicy())

    score, visible, total = aggregate_score(results, virtual)

    assert total == TOTAL_PLATFORMS == 7
    assert visible == 6
    assert score == 86
    assert visible <= total
