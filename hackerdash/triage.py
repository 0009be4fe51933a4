"""Triage view: filtering, sorting and the pin/ignore/tag overlay.

Everything here is a pure function.  Overlay edits return a new
``TriageOverlay``; ``view`` never mutates its inputs.
"""

import dataclasses
import datetime as dt
from typing import Iterable, Sequence

from .config import FilterSpec
from .models import TriageOverlay, Vulnerability
from .parsers import parse_timestamp

SECONDS_PER_DAY = 86400.0


def _matches_term(products: Iterable[str], term: str) -> bool:
    """True if no term is given or some product contains it (case-insensitive)."""
    t = term.strip().lower()
    if not t:
        return True
    return any(t in p.lower() for p in products)


def _within_age(item: Vulnerability, max_age_days: int, now: dt.datetime) -> bool:
    published = parse_timestamp(item.timestamp)
    if published is None:
        return True
    age_days = (now - published).total_seconds() / SECONDS_PER_DAY
    return age_days <= max_age_days


def sort_value(item: Vulnerability, sort_key: str) -> float | None:
    """Value used to order ``item`` under ``sort_key``; ``None`` sorts last."""
    if sort_key == "known_exploited":
        return 1.0 if item.known_exploited else 0.0
    if sort_key == "published":
        published = parse_timestamp(item.timestamp)
        return published.timestamp() if published else None
    if sort_key == "cvss":
        return item.cvss_score
    return item.epss_score


def apply_filters(
    items: Sequence[Vulnerability],
    spec: FilterSpec,
    overlay: TriageOverlay,
    now: dt.datetime | None = None,
) -> list[Vulnerability]:
    """Apply the ignore list and every filter in ``spec``, keeping order."""
    now = now or dt.datetime.now(dt.timezone.utc)
    out: list[Vulnerability] = []
    for it in items:
        if it.id in overlay.ignored:
            continue
        if not _matches_term(it.products, spec.vendor):
            continue
        if not _matches_term(it.products, spec.product):
            continue
        # Unscored items are never excluded by score bounds.
        if it.cvss_score is not None and not spec.min_cvss <= it.cvss_score <= spec.max_cvss:
            continue
        if spec.only_known_exploited and not it.known_exploited:
            continue
        if it.epss_score is not None and it.epss_score < spec.min_epss:
            continue
        if spec.max_age_days > 0 and not _within_age(it, spec.max_age_days, now):
            continue
        out.append(it)
    return out


def sort_items(
    items: Sequence[Vulnerability],
    spec: FilterSpec,
    pinned: Iterable[str] = (),
) -> list[Vulnerability]:
    """Stable sort: pinned first, then ``spec.sort_key`` in ``spec.sort_dir``.

    Items whose sort value is ``None`` come after all valued items of the
    same pin tier, in either direction.
    """
    pinned_ids = set(pinned)
    descending = spec.sort_dir == "desc"

    def key(it: Vulnerability) -> tuple[int, int, float]:
        value = sort_value(it, spec.sort_key)
        if value is None:
            return (0 if it.id in pinned_ids else 1, 1, 0.0)
        return (0 if it.id in pinned_ids else 1, 0, -value if descending else value)

    return sorted(items, key=key)


def view(
    items: Sequence[Vulnerability],
    spec: FilterSpec,
    overlay: TriageOverlay,
    now: dt.datetime | None = None,
) -> list[Vulnerability]:
    """Build the ordered triage view.

    Args:
        items: Enriched vulnerabilities.
        spec: Filter and sort settings.
        overlay: Pin/ignore/tag state.
        now: Reference time for the age filter (defaults to now, UTC).

    Returns:
        Filtered and ordered vulnerabilities.
    """
    return sort_items(apply_filters(items, spec, overlay, now=now), spec, overlay.pinned)


# ─── Overlay edits ───────────────────────────────────────────────────────────


def toggle_pin(overlay: TriageOverlay, item_id: str) -> TriageOverlay:
    """Pin ``item_id`` or unpin it if already pinned.  Ignore state is untouched."""
    pinned = overlay.pinned - {item_id} if item_id in overlay.pinned else overlay.pinned | {item_id}
    return dataclasses.replace(overlay, pinned=frozenset(pinned))


def toggle_ignore(overlay: TriageOverlay, item_id: str) -> TriageOverlay:
    """Ignore ``item_id`` or un-ignore it.  Pin state is untouched."""
    ignored = overlay.ignored - {item_id} if item_id in overlay.ignored else overlay.ignored | {item_id}
    return dataclasses.replace(overlay, ignored=frozenset(ignored))


def add_tag(overlay: TriageOverlay, item_id: str, tag: str) -> TriageOverlay:
    t = (tag or "").strip()
    current = overlay.tags.get(item_id, ())
    if not t or t in current:
        return overlay
    tags = dict(overlay.tags)
    tags[item_id] = current + (t,)
    return dataclasses.replace(overlay, tags=tags)


def remove_tag(overlay: TriageOverlay, item_id: str, tag: str) -> TriageOverlay:
    current = overlay.tags.get(item_id)
    if not current or tag not in current:
        return overlay
    tags = dict(overlay.tags)
    remaining = tuple(t for t in current if t != tag)
    if remaining:
        tags[item_id] = remaining
    else:
        del tags[item_id]
    return dataclasses.replace(overlay, tags=tags)


# ─── Filter presets ──────────────────────────────────────────────────────────


def reset_filters() -> FilterSpec:
    return FilterSpec()


def quick_kev(spec: FilterSpec) -> FilterSpec:
    return spec.model_copy(update={"only_known_exploited": True})


def quick_high_epss(spec: FilterSpec) -> FilterSpec:
    return spec.model_copy(update={"min_epss": 0.5, "sort_key": "epss", "sort_dir": "desc"})


def quick_high_cvss(spec: FilterSpec) -> FilterSpec:
    return spec.model_copy(update={"min_cvss": 9.0, "sort_key": "cvss", "sort_dir": "desc"})


def quick_recent(spec: FilterSpec) -> FilterSpec:
    return spec.model_copy(update={"max_age_days": 7, "sort_key": "published", "sort_dir": "desc"})
