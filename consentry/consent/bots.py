"""Crawler detection.

Search engine and link-preview crawlers cannot interact with a consent
banner. They get an ephemeral all-granted decision instead, which is never
persisted.
"""

from typing import Optional

BOT_PATTERNS = (
    "googlebot",
    "bingbot",
    "yandexbot",
    "duckduckbot",
    "slurp",
    "baiduspider",
    "facebookexternalhit",
    "linkedinbot",
    "twitterbot",
    "applebot",
    "msnbot",
    "aolbuild",
    "yahoo",
    "teoma",
    "sogou",
    "exabot",
    "facebot",
    "ia_archiver",
    "semrushbot",
    "ahrefsbot",
    "mj12bot",
    "seznambot",
    "yeti",
    "naverbot",
    "mediapartners-google",
    "adsbot-google",
    "feedfetcher",
    "lighthouse",
    # Generic markers
    "crawler",
    "spider",
    "crawl",
    "bot",
)


def is_bot(user_agent: Optional[str]) -> bool:
    """Whether a user agent string belongs to a known crawler."""
    if not user_agent:
        return False
    agent = user_agent.lower()
    return any(pattern in agent for pattern in BOT_PATTERNS)
