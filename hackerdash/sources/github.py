"""GitHub public activity adapter."""

from urllib.parse import quote

from ..errors import HackerDashError, SourceFailure, TransportFailure
from ..models import Activity
from ..parsers import parse_github_event
from ..transport import RequestSpec, TransportResolver

MAX_EVENTS = 20


def github_headers(token: str | None) -> dict[str, str]:
    """Build GitHub API headers, adding the bearer token when provided."""
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def fetch_github_events(
    resolver: TransportResolver,
    username: str,
    token: str | None = None,
    api_url: str = "https://api.github.com",
) -> list[Activity]:
    """Fetch the most recent public events of a GitHub user.

    The call is made directly (never through a proxy, which would leak
    the token).

    Args:
        resolver: Transport resolver.
        username: GitHub login; a leading ``@`` is ignored.
        token: Optional OAuth token to raise the rate limit.
        api_url: GitHub API base URL.

    Returns:
        Up to 20 activities, most recent first as returned by GitHub.

    Raises:
        SourceFailure: on any transport or upstream failure, carrying the
            upstream status code when there was one.
    """
    user = username.strip().lstrip("@")
    if not user:
        raise SourceFailure("github", "No GitHub user configured")
    url = f"{api_url.rstrip('/')}/users/{quote(user, safe='')}/events/public"
    try:
        payload = await resolver.fetch(RequestSpec(url=url, headers=github_headers(token)), fallback=False)
        events = payload.json()
    except TransportFailure as e:
        raise SourceFailure("github", f"GitHub events failed: {e.status or e.last_error}", status=e.status) from e
    except HackerDashError as e:
        raise SourceFailure("github", f"GitHub events failed: {e}") from e

    if not isinstance(events, list):
        raise SourceFailure("github", "GitHub events payload is not a list")

    out: list[Activity] = []
    for ev in events[:MAX_EVENTS]:
        parsed = parse_github_event(ev)
        if parsed:
            out.append(parsed)
    return out
