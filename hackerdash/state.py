"""Alert de-duplication for high-risk vulnerabilities.

A vulnerability is alert-worthy when it is in CISA KEV or its EPSS score
is at least 0.5.  Each id is announced at most once for the lifetime of
the notified set, which only ever grows.
"""

from typing import Iterable, Sequence

from .models import Vulnerability

EPSS_ALERT_THRESHOLD = 0.5
MAX_ALERTS_PER_RUN = 3


def qualifies(item: Vulnerability) -> bool:
    """Return ``True`` if ``item`` crosses the alert threshold."""
    if item.known_exploited:
        return True
    return item.epss_score is not None and item.epss_score >= EPSS_ALERT_THRESHOLD


def compute_alerts(
    items: Sequence[Vulnerability],
    notified: Iterable[str],
    max_alerts: int = MAX_ALERTS_PER_RUN,
) -> tuple[list[Vulnerability], frozenset[str]]:
    """Select new alerts and grow the notified set.

    Only the first ``max_alerts`` qualifying items (input order) are
    returned for delivery, but every qualifying id is added to the
    notified set so items past the cap are not offered again later.

    Args:
        items: Enriched vulnerabilities.
        notified: Ids already announced.
        max_alerts: Delivery cap for this run.

    Returns:
        Tuple of (items to announce, updated notified set).
    """
    already = frozenset(notified)
    fresh: list[Vulnerability] = []
    seen: set[str] = set()
    for it in items:
        if it.id in already or it.id in seen or not qualifies(it):
            continue
        seen.add(it.id)
        fresh.append(it)
    return fresh[:max_alerts], already | seen


def format_alert(item: Vulnerability) -> tuple[str, str]:
    """Build the title and one-line body for an alert.

    Returns:
        ``("CVE Alert: CVE-…", "KEV · EPSS 73.0% — summary…")``.
    """
    parts = []
    if item.known_exploited:
        parts.append("KEV")
    if item.epss_score is not None:
        parts.append(f"EPSS {item.epss_score:.1%}")
    body = " · ".join(parts)
    summary = (item.summary or "")[:80]
    if summary:
        body = f"{body} — {summary}" if body else summary
    return f"CVE Alert: {item.id}", body
