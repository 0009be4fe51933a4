"""Unit tests for hackerdash.storage: local key-value persistence."""

import json
from pathlib import Path

from hackerdash.config import FilterSpec
from hackerdash.models import SourceSpec, TriageOverlay
from hackerdash.storage import (
    KEY_CVE_FILTERS,
    KEY_CVE_STATE,
    KEY_TOKEN,
    DashboardStore,
    JsonFileStore,
    MemoryStore,
)

# ── JsonFileStore ────────────────────────────────────────────────────────────


class TestJsonFileStore:
    def test_roundtrip_on_disk(self, tmp_path: Path):
        path = tmp_path / "nested" / "state.json"
        JsonFileStore(path).set("k", "v")

        assert JsonFileStore(path).get("k") == "v"
        assert not path.with_suffix(".json.tmp").exists()

    def test_remove(self, tmp_path: Path):
        store = JsonFileStore(tmp_path / "s.json")
        store.set("k", "v")
        store.remove("k")
        store.remove("missing")
        assert JsonFileStore(tmp_path / "s.json").get("k") is None

    def test_corrupt_file_starts_fresh(self, tmp_path: Path):
        path = tmp_path / "s.json"
        path.write_text("{not json", encoding="utf-8")
        assert JsonFileStore(path).get("k") is None


# ── DashboardStore ───────────────────────────────────────────────────────────


class TestDashboardStore:
    def test_overlay_roundtrip(self):
        store = DashboardStore(MemoryStore())
        overlay = TriageOverlay(
            pinned=frozenset({"CVE-1"}),
            ignored=frozenset({"CVE-2"}),
            tags={"CVE-1": ("prod",)},
            notified=frozenset({"CVE-3"}),
        )
        store.save_overlay(overlay)
        assert store.load_overlay() == overlay

    def test_corrupt_overlay_defaults(self):
        store = DashboardStore(MemoryStore({KEY_CVE_STATE: "[[["}))
        assert store.load_overlay() == TriageOverlay()

    def test_filters_default(self):
        assert DashboardStore(MemoryStore()).load_filters() == FilterSpec()

    def test_filters_legacy_keys(self):
        raw = {"minCvss": 7, "onlyKEV": True, "sortKey": "kev", "days": 14, "unknown": 1}
        store = DashboardStore(MemoryStore({KEY_CVE_FILTERS: json.dumps(raw)}))

        spec = store.load_filters()

        assert spec.min_cvss == 7.0
        assert spec.only_known_exploited is True
        assert spec.sort_key == "known_exploited"
        assert spec.max_age_days == 14
        assert spec.sort_dir == "desc"

    def test_invalid_filters_default(self):
        store = DashboardStore(MemoryStore({KEY_CVE_FILTERS: json.dumps({"min_cvss": 99})}))
        assert store.load_filters() == FilterSpec()

    def test_filters_fall_back_to_given_default(self):
        default = FilterSpec(min_cvss=7.0)
        assert DashboardStore(MemoryStore()).load_filters(default) == default

    def test_partial_saved_filters_merge_onto_default(self):
        store = DashboardStore(MemoryStore({KEY_CVE_FILTERS: json.dumps({"sortKey": "cvss"})}))
        spec = store.load_filters(FilterSpec(min_cvss=7.0))
        assert spec.min_cvss == 7.0
        assert spec.sort_key == "cvss"

    def test_invalid_filters_give_given_default(self):
        store = DashboardStore(MemoryStore({KEY_CVE_FILTERS: json.dumps({"min_cvss": 99})}))
        assert store.load_filters(FilterSpec(min_epss=0.5)).min_epss == 0.5

    def test_sources(self):
        store = DashboardStore(MemoryStore())
        default = [SourceSpec("d", "https://d")]
        assert store.load_sources(default) == default

        sources = [SourceSpec("a", "https://a"), SourceSpec("a", "https://a")]
        store.save_sources(sources)
        assert store.load_sources(default) == sources

    def test_token_removed_on_none(self):
        kv = MemoryStore()
        store = DashboardStore(kv)
        store.save_token("t")
        assert store.load_token() == "t"
        store.save_token(None)
        assert KEY_TOKEN not in kv.data

    def test_notes_and_bookmarks(self):
        store = DashboardStore(MemoryStore())
        store.save_notes("<p>hi</p>")
        store.save_bookmarks([{"title": "x", "url": "https://x"}])
        assert store.load_notes() == "<p>hi</p>"
        assert store.load_bookmarks()[0]["url"] == "https://x"
