"""EPSS and CISA KEV enrichment for vulnerability batches.

The scoring feed and the exploited catalog are each fetched once per
batch, concurrently, and joined to the vulnerabilities by CVE id.
Enrichment is best-effort: a failed lookup leaves the affected fields at
``None``/``False`` and never fails the batch.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Sequence
from urllib.parse import quote

from .models import Vulnerability
from .parsers import normalize_cve_id
from .transport import TransportResolver

logger = logging.getLogger(__name__)

EpssMap = Mapping[str, tuple[float | None, float | None]]
EpssLookup = Callable[[Sequence[str]], Awaitable[EpssMap]]
KevLookup = Callable[[], Awaitable[Iterable[str]]]


def _prob(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ─── Lookups ─────────────────────────────────────────────────────────────────


async def fetch_epss_scores(
    resolver: TransportResolver,
    cve_ids: Sequence[str],
    api_url: str = "https://api.first.org/data/v1/epss",
) -> dict[str, tuple[float | None, float | None]]:
    """Fetch EPSS score and percentile for a batch of CVEs in one request.

    Args:
        resolver: Transport resolver.
        cve_ids: CVE identifiers to look up.
        api_url: FIRST EPSS API endpoint.

    Returns:
        CVE-ID → ``(epss, percentile)``.
    """
    ids = sorted({normalize_cve_id(c) for c in cve_ids} - {""})
    if not ids:
        return {}
    url = f"{api_url}?cve={quote(','.join(ids), safe=',')}&limit={len(ids)}"
    data = await resolver.fetch_json(url)
    rows = data.get("data") if isinstance(data, dict) else None
    out: dict[str, tuple[float | None, float | None]] = {}
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        cve = normalize_cve_id(row.get("cve"))
        if cve:
            out[cve] = (_prob(row.get("epss")), _prob(row.get("percentile")))
    return out


async def fetch_kev_ids(
    resolver: TransportResolver,
    url: str = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json",
) -> set[str]:
    """Download the CISA Known Exploited Vulnerabilities catalog as a set of ids."""
    data = await resolver.fetch_json(url)
    vulns: Any = []
    if isinstance(data, dict):
        vulns = data.get("vulnerabilities") or data.get("vulns") or []
    out: set[str] = set()
    if isinstance(vulns, list):
        for v in vulns:
            if not isinstance(v, dict):
                continue
            for key in ("cveID", "cve_id"):
                cve = normalize_cve_id(v.get(key))
                if cve:
                    out.add(cve)
    return out


# ─── Join ────────────────────────────────────────────────────────────────────


def join_enrichment(
    items: Sequence[Vulnerability],
    epss_by_cve: EpssMap,
    kev_ids: Iterable[str],
) -> list[Vulnerability]:
    """Attach EPSS and KEV fields to each vulnerability.

    Each output item depends only on its own id, so the result is
    independent of input order.  Ids are never added or changed.

    Args:
        items: Base vulnerabilities.
        epss_by_cve: CVE-ID → ``(epss, percentile)``.
        kev_ids: CVE ids present in the KEV catalog.

    Returns:
        New ``Vulnerability`` instances in input order.
    """
    kev = {normalize_cve_id(k) for k in kev_ids}
    out: list[Vulnerability] = []
    for it in items:
        key = normalize_cve_id(it.id)
        score, percentile = epss_by_cve.get(key, (None, None))
        out.append(
            dataclasses.replace(
                it,
                epss_score=score,
                epss_percentile=percentile,
                known_exploited=bool(key) and key in kev,
            )
        )
    return out


async def enrich(
    items: Sequence[Vulnerability],
    epss_lookup: EpssLookup,
    kev_lookup: KevLookup,
) -> list[Vulnerability]:
    """Enrich a batch with EPSS and KEV data.

    Both lookups run concurrently, once each, regardless of batch size.
    A lookup that raises degrades to empty data for every item.

    Args:
        items: Base vulnerabilities.
        epss_lookup: ``async (ids) -> {id: (epss, percentile)}``.
        kev_lookup: ``async () -> iterable of KEV ids``.

    Returns:
        Enriched vulnerabilities, in input order.
    """
    if not items:
        return []

    ids = [it.id for it in items if it.id]
    epss_result, kev_result = await asyncio.gather(
        epss_lookup(ids),
        kev_lookup(),
        return_exceptions=True,
    )

    epss_by_cve: EpssMap = {}
    if isinstance(epss_result, BaseException):
        logger.warning("EPSS enrichment unavailable: %s", epss_result)
    else:
        epss_by_cve = epss_result

    kev_ids: Iterable[str] = ()
    if isinstance(kev_result, BaseException):
        logger.warning("KEV enrichment unavailable: %s", kev_result)
    else:
        kev_ids = kev_result

    return join_enrichment(items, epss_by_cve, kev_ids)
