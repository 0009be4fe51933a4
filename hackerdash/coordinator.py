"""Aggregation coordinator.

Runs the four source adapters concurrently on one ``aiohttp`` session,
keeps whatever succeeded, enriches vulnerabilities, and owns the single
``AppState`` that the pure triage and alert functions read and return.

Usage from synchronous code::

    from hackerdash.coordinator import Aggregator, AppState
    aggregator = Aggregator(config, AppState(github_user="octocat"))
    snapshot = aggregator.refresh_all_sync()
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .config import FilterSpec, HackerDashConfig
from .enrichment import enrich, fetch_epss_scores, fetch_kev_ids
from .models import Activity, Article, Competition, SourceSpec, TriageOverlay, Vulnerability
from .sources import fetch_ctf_events, fetch_github_events, fetch_latest_cves, fetch_security_rss
from .state import compute_alerts
from .storage import DashboardStore
from .transport import TransportResolver
from .triage import view

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Everything the dashboard keeps between refreshes.

    Attributes:
        github_user: Login whose public activity is shown.
        token: Optional GitHub token (raises the API rate limit).
        rss_sources: Feeds to aggregate, in display order.
        overlay: Pin/ignore/tag/notified state.
        filters: Current triage filter.
    """

    github_user: str = ""
    token: str | None = None
    rss_sources: list[SourceSpec] = field(default_factory=list)
    overlay: TriageOverlay = field(default_factory=TriageOverlay)
    filters: FilterSpec = field(default_factory=FilterSpec)

    @classmethod
    def from_store(cls, store: DashboardStore, config: HackerDashConfig) -> "AppState":
        """Load persisted state, falling back to configured defaults."""
        defaults = [SourceSpec.from_dict(s) for s in config.feeds.rss_sources]
        return cls(
            github_user=config.feeds.github_user,
            token=store.load_token(),
            rss_sources=store.load_sources(defaults),
            overlay=store.load_overlay(),
            filters=store.load_filters(config.filters),
        )

    def save(self, store: DashboardStore) -> None:
        store.save_overlay(self.overlay)
        store.save_filters(self.filters)
        store.save_sources(self.rss_sources)
        store.save_token(self.token)


@dataclass
class Snapshot:
    """Combined result of one refresh.

    ``errors`` maps a source name to a human-readable failure message;
    sources listed there simply contributed no items.
    """

    activity: list[Activity] = field(default_factory=list)
    articles: list[Article] = field(default_factory=list)
    vulnerabilities: list[Vulnerability] = field(default_factory=list)
    competitions: list[Competition] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "activity": [i.to_dict() for i in self.activity],
            "articles": [i.to_dict() for i in self.articles],
            "vulnerabilities": [i.to_dict() for i in self.vulnerabilities],
            "competitions": [i.to_dict() for i in self.competitions],
            "errors": dict(self.errors),
        }


class Aggregator:
    """Fetches all sources and applies triage and alerting to the result.

    Args:
        config: Application configuration.
        state: The application state owned by this aggregator.
    """

    def __init__(self, config: HackerDashConfig, state: AppState | None = None):
        self.config = config
        self.state = state or AppState(github_user=config.feeds.github_user, filters=config.filters)

    def _session(self) -> aiohttp.ClientSession:
        fetch = self.config.fetch
        timeout = aiohttp.ClientTimeout(total=fetch.timeout, connect=fetch.connect_timeout)
        return aiohttp.ClientSession(headers={"User-Agent": fetch.user_agent}, timeout=timeout)

    async def _vulnerabilities(self, resolver: TransportResolver) -> list[Vulnerability]:
        fetch = self.config.fetch
        base = await fetch_latest_cves(
            resolver,
            nvd_url=fetch.nvd_api_url,
            fallback_url=fetch.cve_fallback_url,
            window_days=fetch.nvd_window_days,
        )
        return await enrich(
            base,
            functools.partial(fetch_epss_scores, resolver, api_url=fetch.epss_api_url),
            functools.partial(fetch_kev_ids, resolver, url=fetch.kev_url),
        )

    async def refresh_all(self, session: aiohttp.ClientSession | None = None) -> Snapshot:
        """Fetch every source concurrently and return the combined snapshot.

        A failing source never prevents the others from being used; its
        error is recorded in ``Snapshot.errors``.

        Args:
            session: Optional client session to reuse.

        Returns:
            ``Snapshot`` with whatever succeeded.
        """
        if session is None:
            async with self._session() as owned:
                return await self.refresh_all(owned)

        fetch = self.config.fetch
        resolver = TransportResolver(session, fetch.proxy_templates)
        # rss and ctf run strict so a total outage shows up in ``errors``;
        # their batches stay empty either way.
        tasks: dict[str, asyncio.Task] = {
            "github": asyncio.create_task(
                fetch_github_events(resolver, self.state.github_user, self.state.token, api_url=fetch.github_api_url)
            ),
            "rss": asyncio.create_task(
                fetch_security_rss(resolver, list(self.state.rss_sources), api_url=fetch.rss2json_url, strict=True)
            ),
            "cve": asyncio.create_task(self._vulnerabilities(resolver)),
            "ctf": asyncio.create_task(fetch_ctf_events(resolver, url=fetch.ctftime_url, strict=True)),
        }
        await asyncio.gather(*tasks.values(), return_exceptions=True)

        snapshot = Snapshot()
        for name, task in tasks.items():
            exc = task.exception()
            if exc is not None:
                msg = f"{name} fetch failed: {exc}"
                logger.error("❌ %s", msg)
                snapshot.errors[name] = str(exc)
                continue
            result = task.result()
            if name == "github":
                snapshot.activity = result
            elif name == "rss":
                snapshot.articles = result
            elif name == "cve":
                snapshot.vulnerabilities = result
            elif name == "ctf":
                snapshot.competitions = result
            logger.info("✅ %s: %d items", name, len(result))
        return snapshot

    def refresh_all_sync(self) -> Snapshot:
        """Synchronous wrapper around ``refresh_all``."""
        return asyncio.run(self.refresh_all())

    def triage(self, snapshot: Snapshot) -> list[Vulnerability]:
        """Apply the current filters and overlay to the snapshot's CVEs."""
        return view(snapshot.vulnerabilities, self.state.filters, self.state.overlay)

    def collect_alerts(self, snapshot: Snapshot) -> list[Vulnerability]:
        """Return new alerts and record every qualifying id as notified."""
        alerts, notified = compute_alerts(snapshot.vulnerabilities, self.state.overlay.notified)
        self.state.overlay = TriageOverlay(
            pinned=self.state.overlay.pinned,
            ignored=self.state.overlay.ignored,
            tags=self.state.overlay.tags,
            notified=notified,
        )
        return alerts
