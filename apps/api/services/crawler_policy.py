"""robots.txt audit for the crawlers that feed search and assistant surfaces."""

from __future__ import annotations

import logging
from typing import Optional
from urllib import robotparser

import httpx

from config import settings
from services.providers.matching import normalize_domain
from services.virtual_signals import CrawlerPolicy

logger = logging.getLogger(__name__)

AUDIT_USER_AGENT = "BrandVisibilityAudit/1.0 (+robots.txt check)"


def parse_crawler_policy(robots_text: str, base_url: str) -> CrawlerPolicy:
    parser = robotparser.RobotFileParser()
    parser.set_url(f"{base_url}/robots.txt")
    parser.parse(robots_text.splitlines())
    root = f"{base_url}/"
    return CrawlerPolicy(
        googlebot_allowed=parser.can_fetch("Googlebot", root),
        gptbot_allowed=parser.can_fetch("GPTBot", root),
        applebot_allowed=parser.can_fetch("Applebot", root),
    )


async def audit_crawler_policy(
    domain: str,
    *,
    timeout_seconds: Optional[float] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CrawlerPolicy:
    """Fetch https://<domain>/robots.txt; anything other than a readable 200 means all allowed."""
    host = normalize_domain(domain)
    if not host:
        return CrawlerPolicy()
    base_url = f"https://{host}"
    robots_url = f"{base_url}/robots.txt"
    timeout = settings.CRAWLER_AUDIT_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds

    try:
        if http_client is not None:
            response = await http_client.get(robots_url, headers={"User-Agent": AUDIT_USER_AGENT})
        else:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                response = await client.get(robots_url, headers={"User-Agent": AUDIT_USER_AGENT})
    except httpx.HTTPError as exc:
        logger.info("robots.txt fetch failed for %s: %s", host, exc)
        return CrawlerPolicy()

    if response.status_code != 200:
        # 404 is the common case: no robots.txt means nothing is disallowed.
        return CrawlerPolicy()

    policy = parse_crawler_policy(response.text, base_url)
    logger.info("Crawler policy for %s: %s", host, policy.as_response())
    return policy
