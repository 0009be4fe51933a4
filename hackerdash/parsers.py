"""Payload parsing and mapping helpers.

Pure functions for turning upstream JSON (NVD, CVE JSON 5, GitHub events,
rss2json, CTFtime) into canonical records.  No I/O or network calls; all
inputs are in-memory data structures.
"""

import datetime as dt
from email.utils import parsedate_to_datetime
from typing import Any, Iterable

from .models import Activity, Article, Competition, Vulnerability


def normalize_cve_id(value: Any) -> str:
    """Uppercase and strip a CVE identifier; empty string if not a CVE."""
    cve = str(value or "").strip().upper()
    return cve if cve.startswith("CVE-") else ""


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse the date formats seen across feeds into an aware datetime.

    Accepts ISO 8601 (with or without ``Z``), ``YYYY-MM-DD HH:MM:SS`` as
    emitted by rss2json, and RFC 2822 dates from raw RSS.  Naive values
    are assumed to be UTC.

    Args:
        value: Raw timestamp (string or None).

    Returns:
        Timezone-aware datetime, or ``None`` when unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    parsed: dt.datetime | None = None
    try:
        parsed = dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def iso_or_none(value: Any) -> str | None:
    """Return ``value`` as an ISO 8601 UTC string, or ``None`` if unparseable."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(dt.timezone.utc).isoformat()


def dedup_products(values: Iterable[str]) -> tuple[str, ...]:
    """De-duplicate product strings case-insensitively, keeping first spelling."""
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        s = str(v or "").strip()
        key = s.lower()
        if not s or key in seen:
            continue
        seen.add(key)
        out.append(s)
    return tuple(out)


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dicts(value: Any) -> list[dict[str, Any]]:
    """The dict entries of ``value`` when it is a list, else nothing."""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


# ─── CVE JSON 5 (CVE List / CIRCL vulnerability-lookup) ─────────────────────


def pick_best_description(containers_cna: dict[str, Any]) -> str:
    """Select the best English description from CNA container.

    Prefers English (``en``, ``en-US``, etc.), falls back to the first
    description with a value.
    """
    descs = containers_cna.get("descriptions") or []
    if isinstance(descs, list):
        for d in descs:
            if not isinstance(d, dict):
                continue
            if (d.get("lang") or "").lower().startswith("en") and d.get("value"):
                return str(d.get("value"))
        for d in descs:
            if isinstance(d, dict) and d.get("value"):
                return str(d.get("value"))
    return ""


def extract_cvss(containers: list[dict[str, Any]]) -> float | None:
    """Extract the best available CVSS base score from CVE 5 containers.

    Tries CVSS v3.1 → v3.0 → v4.0 → v2.0 in order, first in the CNA
    container and then in any ADP containers.
    """
    for container in containers:
        metrics = container.get("metrics") or []
        if not isinstance(metrics, list):
            continue
        for metric in metrics:
            if not isinstance(metric, dict):
                continue
            for key in ("cvssV3_1", "cvssV3_0", "cvssV4_0", "cvssV2_0"):
                cvss = metric.get(key)
                if isinstance(cvss, dict):
                    score = _float_or_none(cvss.get("baseScore"))
                    if score is not None:
                        return score
    return None


def affected_products(containers_cna: dict[str, Any]) -> tuple[str, ...]:
    """Extract ``vendor:product`` strings from a CNA ``affected`` list."""
    affected = containers_cna.get("affected") or []
    out: list[str] = []
    if not isinstance(affected, list):
        return ()
    for a in affected:
        if not isinstance(a, dict):
            continue
        vendor = str(a.get("vendor") or "").strip()
        product = str(a.get("product") or "").strip()
        if vendor.lower() == "n/a":
            vendor = ""
        if product.lower() == "n/a":
            product = ""
        if vendor and product:
            out.append(f"{vendor}:{product}")
        elif product or vendor:
            out.append(product or vendor)
    return dedup_products(out)


def parse_cve5_record(data: dict[str, Any]) -> Vulnerability | None:
    """Map a CVE JSON 5 record to a ``Vulnerability``.

    Returns:
        The record, or ``None`` if it has no CVE identifier.
    """
    if not isinstance(data, dict):
        return None
    meta = data.get("cveMetadata") or {}
    cve_id = normalize_cve_id(meta.get("cveId") or data.get("cveId"))
    if not cve_id:
        return None

    containers = data.get("containers") or {}
    cna = (containers.get("cna") or {}) if isinstance(containers, dict) else {}
    adp = (containers.get("adp") or []) if isinstance(containers, dict) else []
    adp = [c for c in adp if isinstance(c, dict)] if isinstance(adp, list) else []

    summary = pick_best_description(cna) or "No description"
    return Vulnerability(
        id=cve_id,
        title=cve_id,
        timestamp=iso_or_none(meta.get("datePublished")),
        source_name="CVE",
        url=f"https://www.cve.org/CVERecord?id={cve_id}",
        summary=summary,
        cvss_score=extract_cvss([cna, *adp]),
        products=affected_products(cna),
    )


# ─── NVD (API 2.0 and legacy 1.1 feeds) ─────────────────────────────────────


def _primary_cvss(metric_list: Any) -> dict[str, Any]:
    if not isinstance(metric_list, list):
        return {}
    for m in metric_list:
        if isinstance(m, dict) and m.get("type") == "Primary":
            return _dict(m.get("cvssData"))
    first = metric_list[0] if metric_list else None
    return _dict(first.get("cvssData")) if isinstance(first, dict) else {}


def _cpe_vendor_product(criteria: str) -> str:
    # cpe:2.3:a:apache:log4j:2.14.1:*:*:*:*:*:*:*
    parts = criteria.split(":")
    if len(parts) < 5:
        return ""
    vendor, product = parts[3], parts[4]
    if vendor in ("*", "-"):
        vendor = ""
    if product in ("*", "-"):
        product = ""
    if vendor and product:
        return f"{vendor}:{product}"
    return product or vendor


def parse_nvd2_item(vuln: dict[str, Any]) -> Vulnerability | None:
    """Map one entry of an NVD API 2.0 ``vulnerabilities`` list."""
    cve_data = vuln.get("cve") if isinstance(vuln, dict) else None
    if not isinstance(cve_data, dict):
        return None
    cve_id = normalize_cve_id(cve_data.get("id"))
    if not cve_id or cve_data.get("vulnStatus") == "Rejected":
        return None

    summary = ""
    for desc in _dicts(cve_data.get("descriptions")):
        if desc.get("lang") == "en" and desc.get("value"):
            summary = str(desc["value"])
            break

    metrics = _dict(cve_data.get("metrics"))
    cvss_data = (
        _primary_cvss(metrics.get("cvssMetricV31"))
        or _primary_cvss(metrics.get("cvssMetricV30"))
        or _primary_cvss(metrics.get("cvssMetricV40"))
        or _primary_cvss(metrics.get("cvssMetricV2"))
    )

    products: list[str] = []
    for config in _dicts(cve_data.get("configurations")):
        for node in _dicts(config.get("nodes")):
            for match in _dicts(node.get("cpeMatch")):
                criteria = match.get("criteria")
                if criteria:
                    products.append(_cpe_vendor_product(str(criteria)))

    return Vulnerability(
        id=cve_id,
        title=cve_id,
        timestamp=iso_or_none(cve_data.get("published")),
        source_name="NVD",
        url=f"https://nvd.nist.gov/vuln/detail/{cve_id}",
        summary=summary or "No description",
        cvss_score=_float_or_none(cvss_data.get("baseScore")),
        products=dedup_products(products),
    )


def parse_nvd11_item(item: dict[str, Any]) -> Vulnerability | None:
    """Map one entry of a legacy NVD 1.1 ``CVE_Items`` list."""
    if not isinstance(item, dict):
        return None
    cve = _dict(item.get("cve"))
    cve_id = normalize_cve_id(_dict(cve.get("CVE_data_meta")).get("ID"))
    if not cve_id:
        return None

    desc_data = _dicts(_dict(cve.get("description")).get("description_data"))
    summary = str(desc_data[0].get("value") or "") if desc_data else ""

    impact = _dict(item.get("impact"))
    cvss = _float_or_none(_dict(_dict(impact.get("baseMetricV3")).get("cvssV3")).get("baseScore"))
    if cvss is None:
        cvss = _float_or_none(_dict(_dict(impact.get("baseMetricV2")).get("cvssV2")).get("baseScore"))

    products: list[str] = []
    for v in _dicts(_dict(_dict(cve.get("affects")).get("vendor")).get("vendor_data")):
        vname = str(v.get("vendor_name") or "")
        pdata = _dicts(_dict(v.get("product")).get("product_data"))
        if not pdata and vname:
            products.append(vname)
        for p in pdata:
            pname = str(p.get("product_name") or "")
            if vname and pname:
                products.append(f"{vname}:{pname}")
            elif pname:
                products.append(pname)

    return Vulnerability(
        id=cve_id,
        title=cve_id,
        timestamp=iso_or_none(item.get("publishedDate") or item.get("published")),
        source_name="NVD",
        url=f"https://nvd.nist.gov/vuln/detail/{cve_id}",
        summary=summary or "No description",
        cvss_score=cvss,
        products=dedup_products(products),
    )


def parse_nvd_payload(data: Any) -> list[Vulnerability]:
    """Map an NVD payload in either the 2.0 or the legacy 1.1 shape."""
    if not isinstance(data, dict):
        return []
    out: list[Vulnerability] = []
    if isinstance(data.get("vulnerabilities"), list):
        for v in data["vulnerabilities"]:
            parsed = parse_nvd2_item(v)
            if parsed:
                out.append(parsed)
    elif isinstance(data.get("CVE_Items"), list):
        for v in data["CVE_Items"]:
            parsed = parse_nvd11_item(v)
            if parsed:
                out.append(parsed)
    return out


# ─── GitHub, RSS, CTFtime ───────────────────────────────────────────────────


def parse_github_event(event: dict[str, Any]) -> Activity | None:
    """Map a GitHub public event to an ``Activity``."""
    if not isinstance(event, dict) or not event.get("id"):
        return None
    event_type = str(event.get("type") or "")
    repo = str((event.get("repo") or {}).get("name") or "")
    actor = str((event.get("actor") or {}).get("login") or "")
    title = f"{event_type.removesuffix('Event') or 'Event'} {repo}".strip()
    return Activity(
        id=str(event["id"]),
        title=title,
        timestamp=iso_or_none(event.get("created_at")),
        source_name="GitHub",
        url=f"https://github.com/{repo}" if repo else "https://github.com/",
        event_type=event_type,
        repo=repo,
        actor=actor,
    )


def parse_rss2json_items(data: Any, fallback_name: str, limit: int = 10) -> list[Article]:
    """Map an rss2json response to articles.

    Args:
        data: Decoded rss2json payload.
        fallback_name: Source name used when the feed has no title.
        limit: Maximum items taken from this feed.

    Returns:
        Up to ``limit`` articles; empty when the payload has no items.
    """
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        return []
    feed_title = str((data.get("feed") or {}).get("title") or "") or fallback_name
    out: list[Article] = []
    for i in data["items"][:limit]:
        if not isinstance(i, dict):
            continue
        link = str(i.get("link") or "")
        item_id = str(i.get("guid") or link or i.get("title") or "")
        if not item_id:
            continue
        out.append(
            Article(
                id=item_id,
                title=str(i.get("title") or ""),
                timestamp=iso_or_none(i.get("pubDate") or i.get("pub_date") or i.get("pubdate")),
                source_name=feed_title,
                url=link,
            )
        )
    return out


def parse_ctftime_event(event: dict[str, Any]) -> Competition | None:
    """Map a CTFtime event to a ``Competition``."""
    if not isinstance(event, dict) or event.get("id") in (None, ""):
        return None
    return Competition(
        id=str(event["id"]),
        title=str(event.get("title") or ""),
        timestamp=iso_or_none(event.get("start")),
        source_name="CTFtime",
        url=str(event.get("ctftime_url") or event.get("url") or ""),
        start=event.get("start"),
        finish=event.get("finish"),
        format=str(event.get("format") or ""),
        onsite=bool(event.get("onsite")),
    )
