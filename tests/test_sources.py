"""Unit tests for hackerdash.sources: the four upstream adapters."""

import asyncio
import datetime as dt

import pytest
from conftest import FakeResolver

from hackerdash.errors import SourceFailure, TransportFailure, UpstreamFailure
from hackerdash.models import SourceSpec
from hackerdash.sources import fetch_ctf_events, fetch_github_events, fetch_latest_cves, fetch_security_rss
from hackerdash.sources.cve import nvd_recent_url, parse_fallback_payload
from hackerdash.sources.github import github_headers

API = "https://api.github.com"
RSS2JSON = "https://api.rss2json.com/v1/api.json"
NVD = "https://services.nvd.nist.gov/rest/json/cves/2.0"
CIRCL = "https://vulnerability.circl.lu/api/last"
CTFTIME = "https://ctftime.org/api/v1/events/?limit=20"


def _event(i: int) -> dict:
    return {"id": str(i), "type": "WatchEvent", "repo": {"name": f"o/r{i}"}, "actor": {"login": "o"}}


# ── GitHub ───────────────────────────────────────────────────────────────────


class TestGithubEvents:
    def test_headers(self):
        assert "Authorization" not in github_headers(None)
        assert github_headers("t")["Authorization"] == "Bearer t"

    def test_caps_at_twenty(self):
        resolver = FakeResolver({f"{API}/users/octo/events/public": [_event(i) for i in range(30)]})

        items = asyncio.run(fetch_github_events(resolver, "@octo", token="tok"))

        assert len(items) == 20
        assert items[0].id == "0"
        url, kwargs = resolver.calls[0]
        assert kwargs["fallback"] is False
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_status_carried(self):
        failure = TransportFailure("u", UpstreamFailure("HTTP 403", status=403), attempts=1)
        resolver = FakeResolver({f"{API}/users/octo": failure})

        with pytest.raises(SourceFailure) as exc_info:
            asyncio.run(fetch_github_events(resolver, "octo"))

        assert exc_info.value.status == 403
        assert exc_info.value.source == "github"

    def test_non_list_payload(self):
        resolver = FakeResolver({f"{API}/users/octo": {"message": "Not Found"}})
        with pytest.raises(SourceFailure):
            asyncio.run(fetch_github_events(resolver, "octo"))

    def test_no_user(self):
        with pytest.raises(SourceFailure):
            asyncio.run(fetch_github_events(FakeResolver({}), "  "))


# ── RSS ──────────────────────────────────────────────────────────────────────


def _feed(title: str, dates: list[str]) -> dict:
    return {
        "feed": {"title": title},
        "items": [{"title": f"{title} {d}", "link": f"https://{title}/{d}", "pubDate": d} for d in dates],
    }


class TestSecurityRss:
    def test_one_source_times_out(self):
        sources = [
            SourceSpec("One", "https://one.example/feed"),
            SourceSpec("Two", "https://two.example/feed"),
            SourceSpec("Three", "https://three.example/feed"),
        ]
        one = _feed("one", ["2024-06-01 10:00:00", "2024-06-03 10:00:00"])
        three = _feed("three", ["2024-06-02 10:00:00"])
        resolver = FakeResolver(
            {
                f"{RSS2JSON}?rss_url=https%3A%2F%2Fone.": one,
                f"{RSS2JSON}?rss_url=https%3A%2F%2Ftwo.": TransportFailure("two", asyncio.TimeoutError(), 1),
                f"{RSS2JSON}?rss_url=https%3A%2F%2Fthree.": three,
            }
        )

        articles = asyncio.run(fetch_security_rss(resolver, sources))

        assert [a.source_name for a in articles] == ["one", "three", "one"]
        assert all(kwargs["fallback"] is False for _, kwargs in resolver.calls)

    def test_caps_at_twenty_newest_first(self):
        sources = [SourceSpec("A", "https://a.example/rss"), SourceSpec("B", "https://b.example/rss")]
        dates_a = [f"2024-05-{d:02d} 00:00:00" for d in range(1, 13)]
        dates_b = [f"2024-06-{d:02d} 00:00:00" for d in range(1, 13)]
        resolver = FakeResolver(
            {
                f"{RSS2JSON}?rss_url=https%3A%2F%2Fa.": _feed("a", dates_a),
                f"{RSS2JSON}?rss_url=https%3A%2F%2Fb.": _feed("b", dates_b),
            }
        )

        articles = asyncio.run(fetch_security_rss(resolver, sources))

        # Ten per feed, twenty overall.
        assert len(articles) == 20
        assert articles[0].timestamp.startswith("2024-06-10")
        stamps = [a.timestamp for a in articles]
        assert stamps == sorted(stamps, reverse=True)

    def test_no_sources(self):
        assert asyncio.run(fetch_security_rss(FakeResolver({}), [])) == []

    def test_all_feeds_down_is_empty(self):
        sources = [SourceSpec("A", "https://a.example/rss"), SourceSpec("B", "https://b.example/rss")]
        assert asyncio.run(fetch_security_rss(FakeResolver({}), sources)) == []

    def test_all_feeds_down_strict(self):
        sources = [SourceSpec("A", "https://a.example/rss"), SourceSpec("B", "https://b.example/rss")]
        with pytest.raises(SourceFailure) as exc_info:
            asyncio.run(fetch_security_rss(FakeResolver({}), sources, strict=True))
        assert exc_info.value.source == "rss"

    def test_strict_tolerates_partial_failure(self):
        sources = [SourceSpec("A", "https://a.example/rss"), SourceSpec("B", "https://b.example/rss")]
        resolver = FakeResolver({f"{RSS2JSON}?rss_url=https%3A%2F%2Fa.": _feed("a", ["2024-06-01 00:00:00"])})
        articles = asyncio.run(fetch_security_rss(resolver, sources, strict=True))
        assert [a.source_name for a in articles] == ["a"]

    def test_strict_without_sources(self):
        assert asyncio.run(fetch_security_rss(FakeResolver({}), [], strict=True)) == []


# ── CVE ──────────────────────────────────────────────────────────────────────


class TestLatestCves:
    def test_nvd_recent_url(self):
        now = dt.datetime(2024, 6, 4, 12, 0, 0, tzinfo=dt.timezone.utc)
        url = nvd_recent_url(NVD, 3, now=now)
        assert "pubStartDate=2024-06-01T12:00:00.000Z" in url
        assert "pubEndDate=2024-06-04T12:00:00.000Z" in url
        assert url.endswith("resultsPerPage=50")

    def test_static_feed_unchanged(self):
        assert nvd_recent_url("https://x/nvdcve-1.1-recent.json", 3) == "https://x/nvdcve-1.1-recent.json"

    def test_primary_newest_first(self, sample_nvd2):
        resolver = FakeResolver({NVD: sample_nvd2})

        items = asyncio.run(fetch_latest_cves(resolver))

        assert [v.id for v in items] == ["CVE-2024-0002", "CVE-2024-0001"]
        assert resolver.calls[0][1]["fallback"] is False

    def test_fallback_on_primary_failure(self, sample_cve_v5):
        resolver = FakeResolver(
            {
                NVD: TransportFailure(NVD, UpstreamFailure("HTTP 429", status=429), 1),
                CIRCL: [sample_cve_v5] * 25,
            }
        )

        items = asyncio.run(fetch_latest_cves(resolver))

        # Duplicates collapse to one record.
        assert [v.id for v in items] == ["CVE-2024-12345"]
        assert resolver.calls[1][0] == CIRCL

    def test_fallback_on_bad_shape(self, sample_cve_v5):
        resolver = FakeResolver({NVD: {"message": "rate limited"}, CIRCL: {"data": [sample_cve_v5]}})
        items = asyncio.run(fetch_latest_cves(resolver))
        assert len(items) == 1

    def test_both_fail(self):
        with pytest.raises(SourceFailure) as exc_info:
            asyncio.run(fetch_latest_cves(FakeResolver({})))
        assert exc_info.value.source == "cve"

    def test_parse_fallback_payload_shapes(self, sample_cve_v5):
        assert len(parse_fallback_payload([sample_cve_v5, {"bogus": 1}])) == 1
        assert parse_fallback_payload("nope") == []


# ── CTF ──────────────────────────────────────────────────────────────────────


class TestCtfEvents:
    def test_always_proxied(self):
        resolver = FakeResolver({CTFTIME: [{"id": i, "title": f"CTF {i}"} for i in range(25)]})

        items = asyncio.run(fetch_ctf_events(resolver, CTFTIME))

        assert len(items) == 20
        assert resolver.calls[0][1]["direct"] is False

    def test_failure_is_empty(self):
        assert asyncio.run(fetch_ctf_events(FakeResolver({}), CTFTIME)) == []

    def test_non_list_is_empty(self):
        assert asyncio.run(fetch_ctf_events(FakeResolver({CTFTIME: {"error": 1}}), CTFTIME)) == []

    def test_strict_failure_raises(self):
        with pytest.raises(SourceFailure) as exc_info:
            asyncio.run(fetch_ctf_events(FakeResolver({}), CTFTIME, strict=True))
        assert exc_info.value.source == "ctf"

    def test_strict_non_list_raises(self):
        with pytest.raises(SourceFailure):
            asyncio.run(fetch_ctf_events(FakeResolver({CTFTIME: {"error": 1}}), CTFTIME, strict=True))
