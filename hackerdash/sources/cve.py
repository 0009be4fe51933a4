"""Latest-vulnerabilities adapter.

Primary source is the NVD CVE API (recent publication window).  When NVD
is unreachable or rate-limits us, the CIRCL vulnerability-lookup "last"
feed (CVE JSON 5 records) is used instead, through the proxy chain.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from ..errors import HackerDashError, ParseFailure, SourceFailure
from ..models import Vulnerability
from ..parsers import parse_cve5_record, parse_nvd_payload, parse_timestamp
from ..transport import TransportResolver

logger = logging.getLogger(__name__)

NVD_LIMIT = 50
FALLBACK_LIMIT = 20

_OLDEST = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


def nvd_recent_url(base_url: str, window_days: int, now: dt.datetime | None = None) -> str:
    """Build the NVD API query for CVEs published in the last ``window_days``.

    URLs that already carry a query string, or point at a static ``.json``
    feed, are returned unchanged.
    """
    if "?" in base_url or base_url.endswith(".json"):
        return base_url
    end = (now or dt.datetime.now(dt.timezone.utc)).replace(microsecond=0)
    start = end - dt.timedelta(days=window_days)
    fmt = "%Y-%m-%dT%H:%M:%S.000Z"
    return (
        f"{base_url}?pubStartDate={start.strftime(fmt)}"
        f"&pubEndDate={end.strftime(fmt)}&resultsPerPage={NVD_LIMIT}"
    )


def _newest_first(items: list[Vulnerability]) -> list[Vulnerability]:
    return sorted(items, key=lambda v: parse_timestamp(v.timestamp) or _OLDEST, reverse=True)


def _unique(items: list[Vulnerability]) -> list[Vulnerability]:
    seen: set[str] = set()
    out: list[Vulnerability] = []
    for v in items:
        if v.id in seen:
            continue
        seen.add(v.id)
        out.append(v)
    return out


def parse_fallback_payload(data: Any) -> list[Vulnerability]:
    """Map the CIRCL "last" feed (a list of CVE JSON 5 records)."""
    if isinstance(data, dict):
        data = data.get("data") or data.get("results") or []
    if not isinstance(data, list):
        return []
    out: list[Vulnerability] = []
    for record in data:
        parsed = parse_cve5_record(record)
        if parsed:
            out.append(parsed)
    return out


async def fetch_latest_cves(
    resolver: TransportResolver,
    nvd_url: str = "https://services.nvd.nist.gov/rest/json/cves/2.0",
    fallback_url: str = "https://vulnerability.circl.lu/api/last",
    window_days: int = 3,
) -> list[Vulnerability]:
    """Fetch the latest CVEs, falling back to a second feed on failure.

    Args:
        resolver: Transport resolver.
        nvd_url: NVD API base URL (or a legacy 1.1 ``recent.json`` feed).
        fallback_url: CVE JSON 5 "last" feed.
        window_days: Publication window for the NVD query.

    Returns:
        Up to 50 CVEs from NVD, or up to 20 from the fallback feed.  Not
        yet enriched with EPSS/KEV.

    Raises:
        SourceFailure: if both feeds fail.
    """
    try:
        data = await resolver.fetch_json(nvd_recent_url(nvd_url, window_days), fallback=False)
        if not isinstance(data, dict) or not ("vulnerabilities" in data or "CVE_Items" in data):
            raise ParseFailure("NVD payload has unexpected shape")
        items = parse_nvd_payload(data)
        return _unique(_newest_first(items))[:NVD_LIMIT]
    except HackerDashError as e:
        logger.warning("NVD fetch failed (%s), trying fallback feed", e)

    try:
        data = await resolver.fetch_json(fallback_url)
    except HackerDashError as e:
        raise SourceFailure("cve", f"Primary and fallback CVE feeds failed: {e}") from e
    return _unique(parse_fallback_payload(data))[:FALLBACK_LIMIT]
