"""Security news adapter (RSS/Atom via rss2json)."""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Sequence
from urllib.parse import quote, urlparse

from ..errors import SourceFailure
from ..models import Article, SourceSpec
from ..parsers import parse_rss2json_items, parse_timestamp
from ..transport import TransportResolver

logger = logging.getLogger(__name__)

PER_SOURCE_LIMIT = 10
MAX_ARTICLES = 20

_OLDEST = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def _fallback_name(source: SourceSpec) -> str:
    return source.name or urlparse(source.url).hostname or source.url


async def _fetch_one(resolver: TransportResolver, source: SourceSpec, api_url: str) -> list[Article]:
    data = await resolver.fetch_json(f"{api_url}?rss_url={quote(source.url, safe='')}", fallback=False)
    return parse_rss2json_items(data, _fallback_name(source), limit=PER_SOURCE_LIMIT)


def article_sort_key(article: Article) -> dt.datetime:
    """Sort key placing articles with unparseable timestamps last (oldest)."""
    return parse_timestamp(article.timestamp) or _OLDEST


async def fetch_security_rss(
    resolver: TransportResolver,
    sources: Sequence[SourceSpec],
    api_url: str = "https://api.rss2json.com/v1/api.json",
    strict: bool = False,
) -> list[Article]:
    """Fetch and merge several feeds.

    Feeds are fetched concurrently; a feed that fails is dropped and the
    rest are still returned.

    Args:
        resolver: Transport resolver.
        sources: Feeds to fetch, in display order (duplicates allowed).
        api_url: rss2json conversion endpoint.
        strict: Raise instead of returning ``[]`` when every feed failed.

    Returns:
        Up to 20 articles, newest first.

    Raises:
        SourceFailure: With ``strict``, when there were feeds and none of
            them could be fetched.
    """
    results = await asyncio.gather(
        *(_fetch_one(resolver, s, api_url) for s in sources),
        return_exceptions=True,
    )

    merged: list[Article] = []
    failed = 0
    for source, r in zip(sources, results):
        if isinstance(r, BaseException):
            logger.warning("RSS source %s failed: %s", source.name or source.url, r)
            failed += 1
            continue
        merged.extend(r)

    if strict and sources and failed == len(sources):
        raise SourceFailure("rss", f"all {failed} feeds failed")

    merged.sort(key=article_sort_key, reverse=True)
    return merged[:MAX_ARTICLES]
