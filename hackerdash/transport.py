"""Direct-then-proxy HTTP transport.

Every upstream call goes through ``TransportResolver.fetch``: the direct
request first, then each configured proxy template in order.  The first
2xx response wins.  There is no caching and no retry beyond the chain,
and transports are never raced against each other.

Usage::

    async with aiohttp.ClientSession() as session:
        resolver = TransportResolver(session, ["https://r.jina.ai/http://{bare_url}"])
        payload = await resolver.fetch(RequestSpec(url="https://example.com/feed.json"))
        data = payload.json()
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence
from urllib.parse import quote

import aiohttp

from .errors import ParseFailure, TransportFailure, UpstreamFailure

logger = logging.getLogger(__name__)

DIRECT = "direct"


@dataclass
class RequestSpec:
    """A logical upstream call, independent of the transport used."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | str | None = None


@dataclass
class RawPayload:
    """A successful response, tagged with the transport that produced it."""

    status: int
    body: bytes
    url: str
    transport: str = DIRECT
    headers: dict[str, str] = field(default_factory=dict)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Some text proxies wrap the upstream body in a preamble, so when the
        body is not JSON as a whole the first JSON value found is decoded.

        Raises:
            ParseFailure: if no JSON value can be decoded.
        """
        text = self.text()
        try:
            return json.loads(text)
        except ValueError:
            pass
        m = re.search(r"[\[{]", text)
        if m:
            try:
                value, _ = json.JSONDecoder().raw_decode(text, m.start())
                return value
            except ValueError:
                pass
        raise ParseFailure(f"Response from {self.url} is not JSON", status=self.status, url=self.url)


def proxy_url(template: str, url: str) -> str:
    """Rewrite ``url`` through a proxy template.

    Args:
        template: Template with ``{url}``, ``{quoted_url}`` or ``{bare_url}``.
        url: Target URL.

    Returns:
        The URL to request from the proxy.
    """
    bare = re.sub(r"^https?://", "", url, flags=re.IGNORECASE)
    return template.format(url=url, quoted_url=quote(url, safe=""), bare_url=bare)


class TransportResolver:
    """Performs requests directly and falls back to proxy transports.

    Args:
        session: Shared ``aiohttp.ClientSession``.
        proxy_templates: Fallback transports, in the order they are tried.
    """

    def __init__(self, session: aiohttp.ClientSession, proxy_templates: Sequence[str] = ()):
        self.session = session
        self.proxy_templates = list(proxy_templates)

    def _transports(self, url: str, direct: bool, fallback: bool) -> list[tuple[str, str]]:
        chain: list[tuple[str, str]] = []
        if direct:
            chain.append((DIRECT, url))
        if fallback:
            for template in self.proxy_templates:
                chain.append((template, proxy_url(template, url)))
        return chain

    async def _attempt(self, spec: RequestSpec, target: str, transport: str) -> RawPayload:
        async with self.session.request(
            spec.method,
            target,
            headers=spec.headers or None,
            data=spec.body,
        ) as resp:
            body = await resp.read()
            if not 200 <= resp.status < 300:
                raise UpstreamFailure(f"HTTP {resp.status} from {target}", status=resp.status, url=target)
            return RawPayload(
                status=resp.status,
                body=body,
                url=target,
                transport=transport,
                headers=dict(resp.headers),
            )

    async def fetch(self, spec: RequestSpec, *, direct: bool = True, fallback: bool = True) -> RawPayload:
        """Perform ``spec``, walking the transport chain until one succeeds.

        Args:
            spec: The logical request.
            direct: Try the direct call first.
            fallback: Try the proxy templates after the direct call.

        Returns:
            The first successful ``RawPayload``.

        Raises:
            TransportFailure: if every transport failed.
        """
        chain = self._transports(spec.url, direct, fallback)
        last_error: BaseException | None = None
        for transport, target in chain:
            try:
                payload = await self._attempt(spec, target, transport)
            except (aiohttp.ClientError, asyncio.TimeoutError, UpstreamFailure) as e:
                logger.debug("Transport %s failed for %s: %s", transport, spec.url, e)
                last_error = e
                continue
            if transport != DIRECT:
                logger.info("Fetched %s via proxy %s", spec.url, transport)
            return payload
        raise TransportFailure(spec.url, last_error, attempts=len(chain))

    async def fetch_json(self, url: str, *, headers: dict[str, str] | None = None, **kwargs: Any) -> Any:
        """GET ``url`` through the chain and decode the body as JSON."""
        payload = await self.fetch(RequestSpec(url=url, headers=dict(headers or {})), **kwargs)
        return payload.json()
