"""Canonical record types produced by the source adapters.

Every adapter maps its upstream payload to one of the ``CanonicalItem``
variants below.  Records are frozen; enrichment and triage build new
instances with ``dataclasses.replace`` instead of mutating shared state.
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class CanonicalItem:
    """Fields common to every record kind.

    Attributes:
        id: Source-unique identifier, never empty.
        title: Display title.
        timestamp: ISO 8601 timestamp string, or ``None`` if unknown.
        source_name: Human-readable origin (feed title, ``GitHub`` ...).
        url: Link to the item upstream.
    """

    kind: ClassVar[str] = "item"

    id: str
    title: str = ""
    timestamp: str | None = None
    source_name: str = ""
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dict including the record ``kind``."""
        data = dataclasses.asdict(self)
        for key, value in data.items():
            if isinstance(value, tuple):
                data[key] = list(value)
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class Activity(CanonicalItem):
    """A public GitHub event."""

    kind: ClassVar[str] = "activity"

    event_type: str = ""
    repo: str = ""
    actor: str = ""


@dataclass(frozen=True)
class Article(CanonicalItem):
    """A security news article from an RSS/Atom feed."""

    kind: ClassVar[str] = "article"


@dataclass(frozen=True)
class Vulnerability(CanonicalItem):
    """A CVE record, optionally enriched with EPSS and KEV data.

    Attributes:
        summary: Best available English description.
        cvss_score: Base score 0.0–10.0, ``None`` when unscored.
        products: ``vendor:product`` strings, de-duplicated case-insensitively.
        epss_score: EPSS probability 0.0–1.0, ``None`` when unknown.
        epss_percentile: EPSS percentile 0.0–1.0, ``None`` when unknown.
        known_exploited: ``True`` iff listed in CISA KEV.
    """

    kind: ClassVar[str] = "vulnerability"

    summary: str = ""
    cvss_score: float | None = None
    products: tuple[str, ...] = ()
    epss_score: float | None = None
    epss_percentile: float | None = None
    known_exploited: bool = False


@dataclass(frozen=True)
class Competition(CanonicalItem):
    """An upcoming CTF event."""

    kind: ClassVar[str] = "competition"

    start: str | None = None
    finish: str | None = None
    format: str = ""
    onsite: bool = False


@dataclass
class SourceSpec:
    """A named RSS/Atom feed endpoint.

    Lists of these are ordered and may contain duplicates; nothing
    de-duplicates them.
    """

    name: str
    url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceSpec":
        return cls(name=str(data.get("name") or ""), url=str(data.get("url") or data.get("endpoint") or ""))

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "url": self.url}


@dataclass(frozen=True)
class TriageOverlay:
    """User triage decisions layered on top of the vulnerability list.

    ``pinned`` and ``ignored`` are independent; an id in both is hidden
    because the ignore filter runs before sorting.  ``notified`` only
    ever grows.
    """

    pinned: frozenset[str] = frozenset()
    ignored: frozenset[str] = frozenset()
    tags: dict[str, tuple[str, ...]] = field(default_factory=dict)
    notified: frozenset[str] = frozenset()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TriageOverlay":
        """Build an overlay from its persisted JSON form, ignoring bad fields."""
        data = data if isinstance(data, dict) else {}

        def _ids(key: str) -> frozenset[str]:
            raw = data.get(key)
            if not isinstance(raw, list):
                return frozenset()
            return frozenset(str(x) for x in raw if x)

        tags: dict[str, tuple[str, ...]] = {}
        raw_tags = data.get("tags")
        if isinstance(raw_tags, dict):
            for item_id, values in raw_tags.items():
                if isinstance(values, list) and values:
                    tags[str(item_id)] = tuple(str(v) for v in values)

        return cls(
            pinned=_ids("pinned"),
            ignored=_ids("ignored"),
            tags=tags,
            notified=_ids("notified"),
        )

    def to_dict(self, include_notified: bool = True) -> dict[str, Any]:
        """Return the persisted JSON form (sorted lists for stable output)."""
        out: dict[str, Any] = {
            "pinned": sorted(self.pinned),
            "ignored": sorted(self.ignored),
            "tags": {k: list(v) for k, v in sorted(self.tags.items())},
        }
        if include_notified:
            out["notified"] = sorted(self.notified)
        return out


@dataclass(frozen=True)
class DeviceSession:
    """One in-progress GitHub device-flow login.

    Attributes:
        device_code: Opaque code used when polling for the token.
        user_code: Code the user types at ``verification_uri``.
        verification_uri: Page where the user authorizes the device.
        interval: Minimum seconds between polls.
        expires_at: Monotonic-clock deadline (seconds) for this session.
    """

    device_code: str
    user_code: str
    verification_uri: str
    interval: int = 5
    expires_at: float | None = None
