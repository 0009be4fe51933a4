"""Local key-value persistence for dashboard state.

The dashboard only needs an opaque ``get``/``set``/``remove`` blob store.
``DashboardStore`` layers the dashboard's keys and JSON shapes on top of
any ``KeyValueStore``; corrupt or missing blobs load as defaults.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .config import FilterSpec
from .models import SourceSpec, TriageOverlay

logger = logging.getLogger(__name__)

KEY_CVE_STATE = "qc.cve.state"
KEY_CVE_FILTERS = "qc.cve.filters"
KEY_RSS_SOURCES = "qc.rss.sources"
KEY_BOOKMARKS = "qc.bookmarks"
KEY_NOTES = "qc.notes"
KEY_TOKEN = "qc.gh.token"
KEY_GIST_ID = "qc.gist.id"


class KeyValueStore(ABC):
    """Minimal blob store: no transactions, no schema."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, blob: str) -> None: ...

    @abstractmethod
    def remove(self, key: str) -> None: ...


class MemoryStore(KeyValueStore):
    """In-process store, mostly for tests and one-shot CLI runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, blob: str) -> None:
        self.data[key] = blob

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """Store backed by a single JSON object on disk.

    Every write rewrites the file atomically (write-then-rename).

    Attributes:
        path: Path to the JSON file.
    """

    def __init__(self, path: Path):
        self.path = path
        self.data = self._load()

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Could not load store %s (%s), starting fresh", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, blob: str) -> None:
        self.data[key] = blob
        self._save()

    def remove(self, key: str) -> None:
        if key in self.data:
            del self.data[key]
            self._save()


class DashboardStore:
    """Typed access to the dashboard's persisted state.

    Args:
        store: Underlying blob store.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _get_json(self, key: str) -> Any:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring corrupt value for %s", key)
            return None

    def _set_json(self, key: str, value: Any) -> None:
        self.store.set(key, json.dumps(value))

    # Triage overlay (including the notified set)

    def load_overlay(self) -> TriageOverlay:
        return TriageOverlay.from_dict(self._get_json(KEY_CVE_STATE))

    def save_overlay(self, overlay: TriageOverlay) -> None:
        self._set_json(KEY_CVE_STATE, overlay.to_dict())

    def load_filters(self, default: FilterSpec | None = None) -> FilterSpec:
        """Load saved filters on top of ``default``; invalid blobs give ``default``."""
        base = default if default is not None else FilterSpec()
        raw = self._get_json(KEY_CVE_FILTERS)
        if not isinstance(raw, dict):
            return base
        merged = {**base.model_dump(), **_legacy_filter_keys(raw)}
        try:
            return FilterSpec.model_validate(merged)
        except ValueError as e:
            logger.warning("Ignoring invalid saved filters: %s", e)
            return base

    def save_filters(self, spec: FilterSpec) -> None:
        self._set_json(KEY_CVE_FILTERS, spec.model_dump())

    def load_sources(self, default: list[SourceSpec] | None = None) -> list[SourceSpec]:
        raw = self._get_json(KEY_RSS_SOURCES)
        if isinstance(raw, list) and raw:
            return [SourceSpec.from_dict(s) for s in raw if isinstance(s, dict)]
        return list(default or [])

    def save_sources(self, sources: list[SourceSpec]) -> None:
        self._set_json(KEY_RSS_SOURCES, [s.to_dict() for s in sources])

    def load_bookmarks(self) -> list[dict[str, Any]]:
        raw = self._get_json(KEY_BOOKMARKS)
        return raw if isinstance(raw, list) else []

    def save_bookmarks(self, bookmarks: list[dict[str, Any]]) -> None:
        self._set_json(KEY_BOOKMARKS, bookmarks)

    def load_notes(self) -> str:
        return self.store.get(KEY_NOTES) or ""

    def save_notes(self, notes: str) -> None:
        self.store.set(KEY_NOTES, notes)

    def load_token(self) -> str | None:
        return self.store.get(KEY_TOKEN) or None

    def save_token(self, token: str | None) -> None:
        if token:
            self.store.set(KEY_TOKEN, token)
        else:
            self.store.remove(KEY_TOKEN)

    def load_gist_id(self) -> str | None:
        return self.store.get(KEY_GIST_ID) or None

    def save_gist_id(self, gist_id: str) -> None:
        self.store.set(KEY_GIST_ID, gist_id)


def _legacy_filter_keys(raw: dict[str, Any]) -> dict[str, Any]:
    """Map filters saved by the browser dashboard to ``FilterSpec`` fields."""
    renames = {
        "minCvss": "min_cvss",
        "maxCvss": "max_cvss",
        "onlyKEV": "only_known_exploited",
        "minEPSS": "min_epss",
        "days": "max_age_days",
        "sortKey": "sort_key",
        "sortDir": "sort_dir",
    }
    known = set(FilterSpec.model_fields)
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = renames.get(key, key)
        if name in known:
            out[name] = value
    return out
