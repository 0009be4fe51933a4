"""CTFtime events adapter (best-effort)."""

import logging

from ..errors import HackerDashError, SourceFailure
from ..models import Competition
from ..parsers import parse_ctftime_event
from ..transport import TransportResolver

logger = logging.getLogger(__name__)

MAX_EVENTS = 20


async def fetch_ctf_events(
    resolver: TransportResolver,
    url: str = "https://ctftime.org/api/v1/events/?limit=20",
    strict: bool = False,
) -> list[Competition]:
    """Fetch upcoming CTF events through the proxy chain.

    CTFtime does not serve browser-friendly responses, so this upstream is
    always reached through the proxies.  Any failure yields an empty list
    unless ``strict`` is set.

    Args:
        resolver: Transport resolver.
        url: CTFtime events endpoint.
        strict: Raise ``SourceFailure`` instead of returning ``[]``.

    Returns:
        Up to 20 competitions.
    """
    try:
        data = await resolver.fetch_json(url, direct=False)
    except HackerDashError as e:
        logger.warning("CTFtime fetch failed: %s", e)
        if strict:
            raise SourceFailure("ctf", str(e)) from e
        return []
    if not isinstance(data, list):
        logger.warning("CTFtime payload is not a list")
        if strict:
            raise SourceFailure("ctf", "payload is not a list")
        return []

    out: list[Competition] = []
    for ev in data[:MAX_EVENTS]:
        parsed = parse_ctftime_event(ev)
        if parsed:
            out.append(parsed)
    return out
