"""Unit tests for hackerdash.enrichment: EPSS and KEV join."""

import asyncio
import itertools

import pytest
from conftest import FakeResolver

from hackerdash.enrichment import enrich, fetch_epss_scores, fetch_kev_ids, join_enrichment
from hackerdash.errors import TransportFailure
from hackerdash.models import Vulnerability

EPSS = "https://api.first.org/data/v1/epss"
KEV = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"

# ── Helpers ──────────────────────────────────────────────────────────────────


def _vuln(cve_id: str, **kw) -> Vulnerability:
    return Vulnerability(id=cve_id, title=cve_id, **kw)


class _Counter:
    """Async lookups that count invocations."""

    def __init__(self, epss=None, kev=None, epss_error=None, kev_error=None):
        self.epss = epss or {}
        self.kev = kev or set()
        self.epss_error = epss_error
        self.kev_error = kev_error
        self.epss_calls = 0
        self.kev_calls = 0

    async def epss_lookup(self, ids):
        self.epss_calls += 1
        if self.epss_error:
            raise self.epss_error
        return self.epss

    async def kev_lookup(self):
        self.kev_calls += 1
        if self.kev_error:
            raise self.kev_error
        return self.kev


# ── fetch_epss_scores / fetch_kev_ids ────────────────────────────────────────


class TestLookups:
    def test_epss_single_batched_call(self):
        resolver = FakeResolver(
            {EPSS: {"data": [{"cve": "CVE-2024-1", "epss": "0.91", "percentile": "0.99"}, {"cve": "junk"}]}}
        )

        out = asyncio.run(fetch_epss_scores(resolver, ["cve-2024-2", "CVE-2024-1", "CVE-2024-1"]))

        assert out == {"CVE-2024-1": (0.91, 0.99)}
        assert len(resolver.calls) == 1
        assert resolver.calls[0][0] == f"{EPSS}?cve=CVE-2024-1,CVE-2024-2&limit=2"

    def test_epss_no_ids(self):
        resolver = FakeResolver({})
        assert asyncio.run(fetch_epss_scores(resolver, [])) == {}
        assert resolver.calls == []

    def test_kev_both_key_spellings(self):
        resolver = FakeResolver({KEV: {"vulnerabilities": [{"cveID": "CVE-2024-1"}, {"cve_id": "cve-2024-2"}, {}]}})
        assert asyncio.run(fetch_kev_ids(resolver)) == {"CVE-2024-1", "CVE-2024-2"}


# ── join_enrichment ──────────────────────────────────────────────────────────


class TestJoinEnrichment:
    def test_join(self):
        items = [_vuln("CVE-2024-1"), _vuln("CVE-2024-2")]

        out = join_enrichment(items, {"CVE-2024-1": (0.7, 0.95)}, {"CVE-2024-2"})

        assert out[0].epss_score == 0.7
        assert out[0].epss_percentile == 0.95
        assert out[0].known_exploited is False
        assert out[1].epss_score is None
        assert out[1].known_exploited is True

    def test_input_not_mutated(self):
        original = _vuln("CVE-2024-1")
        join_enrichment([original], {"CVE-2024-1": (0.5, 0.5)}, {"CVE-2024-1"})
        assert original.epss_score is None
        assert original.known_exploited is False

    def test_order_independent(self):
        items = [_vuln(f"CVE-2024-{i}") for i in range(4)]
        epss = {"CVE-2024-0": (0.1, 0.2), "CVE-2024-3": (0.9, 0.99)}
        kev = {"CVE-2024-2"}
        expected = {v.id: v for v in join_enrichment(items, epss, kev)}
        for perm in itertools.permutations(items):
            out = join_enrichment(list(perm), epss, kev)
            assert [v.id for v in out] == [v.id for v in perm]
            assert all(v == expected[v.id] for v in out)


# ── enrich ───────────────────────────────────────────────────────────────────


class TestEnrich:
    def test_each_lookup_called_once(self):
        items = [_vuln(f"CVE-2024-{i}") for i in range(50)]
        lookups = _Counter(epss={"CVE-2024-3": (0.8, 0.9)}, kev={"CVE-2024-4"})

        out = asyncio.run(enrich(items, lookups.epss_lookup, lookups.kev_lookup))

        assert lookups.epss_calls == 1
        assert lookups.kev_calls == 1
        assert [v.id for v in out] == [v.id for v in items]
        assert out[3].epss_score == 0.8
        assert out[4].known_exploited is True

    def test_epss_failure_degrades(self):
        lookups = _Counter(kev={"CVE-2024-1"}, epss_error=TransportFailure("u", None, 3))

        out = asyncio.run(enrich([_vuln("CVE-2024-1")], lookups.epss_lookup, lookups.kev_lookup))

        assert out[0].epss_score is None
        assert out[0].known_exploited is True

    def test_kev_failure_degrades(self):
        lookups = _Counter(epss={"CVE-2024-1": (0.6, 0.8)}, kev_error=ValueError("bad json"))

        out = asyncio.run(enrich([_vuln("CVE-2024-1")], lookups.epss_lookup, lookups.kev_lookup))

        assert out[0].epss_score == pytest.approx(0.6)
        assert out[0].known_exploited is False

    def test_empty_batch_skips_lookups(self):
        lookups = _Counter()
        assert asyncio.run(enrich([], lookups.epss_lookup, lookups.kev_lookup)) == []
        assert lookups.epss_calls == 0
