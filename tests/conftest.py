"""Shared fixtures and fakes for the HackerDash test suite."""

import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from hackerdash.errors import TransportFailure, UpstreamFailure
from hackerdash.transport import RawPayload, RequestSpec


class AsyncContextManager:
    """Wraps an async mock to support `async with session.request(...) as resp:`."""

    def __init__(self, mock_resp):
        self.mock_resp = mock_resp

    async def __aenter__(self):
        return self.mock_resp

    async def __aexit__(self, *args):
        pass


def mock_response(status: int = 200, body: bytes = b"", json_data: Any = None, headers=None):
    """Build an aiohttp-like response mock."""
    resp = AsyncMock()
    resp.status = status
    resp.reason = "OK" if status < 400 else "Error"
    resp.headers = headers or {}
    resp.read = AsyncMock(return_value=body)
    resp.json = AsyncMock(return_value=json_data)
    return resp


class FakeResolver:
    """Stand-in for ``TransportResolver`` answering from a URL-prefix table.

    Values are JSON-decodable payloads or exceptions to raise.  Every call
    is recorded in ``calls`` as ``(url, kwargs)``.
    """

    def __init__(self, routes: dict[str, Any]):
        self.routes = routes
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _lookup(self, url: str) -> Any:
        for prefix, value in self.routes.items():
            if url.startswith(prefix):
                if isinstance(value, BaseException):
                    raise value
                return value
        raise TransportFailure(url, UpstreamFailure("HTTP 404", status=404, url=url), attempts=1)

    async def fetch(self, spec: RequestSpec, **kwargs: Any) -> RawPayload:
        self.calls.append((spec.url, {"headers": spec.headers, **kwargs}))
        value = self._lookup(spec.url)
        return RawPayload(status=200, body=json.dumps(value).encode(), url=spec.url)

    async def fetch_json(self, url: str, **kwargs: Any) -> Any:
        self.calls.append((url, kwargs))
        return self._lookup(url)


@pytest.fixture
def sample_cve_v5() -> dict[str, Any]:
    return {
        "cveMetadata": {"cveId": "CVE-2024-12345", "datePublished": "2024-06-01T10:00:00Z"},
        "containers": {
            "cna": {
                "descriptions": [
                    {"lang": "es", "value": "Una vulnerabilidad"},
                    {"lang": "en", "value": "Remote code execution in Log4j"},
                ],
                "affected": [
                    {"vendor": "Apache", "product": "Log4j"},
                    {"vendor": "apache", "product": "log4j"},
                    {"vendor": "n/a", "product": "n/a"},
                ],
                "metrics": [{"cvssV3_1": {"baseScore": 9.8}}],
            }
        },
    }


@pytest.fixture
def sample_nvd2() -> dict[str, Any]:
    return {
        "vulnerabilities": [
            {
                "cve": {
                    "id": "CVE-2024-0001",
                    "published": "2024-06-01T10:00:00.000",
                    "vulnStatus": "Analyzed",
                    "descriptions": [{"lang": "en", "value": "Older bug"}],
                    "metrics": {
                        "cvssMetricV31": [
                            {"type": "Secondary", "cvssData": {"baseScore": 5.0}},
                            {"type": "Primary", "cvssData": {"baseScore": 7.5}},
                        ]
                    },
                    "configurations": [
                        {"nodes": [{"cpeMatch": [{"criteria": "cpe:2.3:a:apache:httpd:2.4.1:*:*:*:*:*:*:*"}]}]}
                    ],
                }
            },
            {
                "cve": {
                    "id": "cve-2024-0002",
                    "published": "2024-06-02T10:00:00.000",
                    "descriptions": [{"lang": "en", "value": "Newer bug"}],
                    "metrics": {},
                }
            },
            {"cve": {"id": "CVE-2024-0003", "vulnStatus": "Rejected"}},
        ]
    }
