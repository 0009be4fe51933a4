"""Remote backup of dashboard data to a private GitHub Gist.

The backup holds exactly four named blobs: bookmarks, notes, RSS sources
and the triage overlay.  The overlay blob carries pinned/ignored/tags
only; the notified set stays local.
"""

import json
import logging
from typing import Any

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import UpstreamFailure
from .models import SourceSpec, TriageOverlay
from .storage import DashboardStore

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
DEFAULT_HTTP_TIMEOUT = (10, 60)  # (connect, read)

BOOKMARKS_FILE = "bookmarks.json"
NOTES_FILE = "notes.html"
RSS_SOURCES_FILE = "rss-sources.json"
CVE_STATE_FILE = "cve-state.json"
BACKUP_FILES = (BOOKMARKS_FILE, NOTES_FILE, RSS_SOURCES_FILE, CVE_STATE_FILE)

_transient = retry(
    retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)

# Gist creation is not idempotent: only retry when the request never left.
_unsent = retry(
    retry=retry_if_exception_type(requests.ConnectTimeout),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)


def gist_session(token: str) -> requests.Session:
    """Create a requests session authenticated for the Gists API."""
    s = requests.Session()
    s.headers.update(
        {
            "User-Agent": "HackerDash/0.3 (+https://github.com/)",
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
        }
    )
    return s


class GistBackupStore:
    """Versioned document store backed by the GitHub Gists API.

    Args:
        token: GitHub OAuth token with the ``gist`` scope.
        api_url: GitHub API base URL.
        session: Optional pre-built session (tests inject a mock).
    """

    description = "HackerDashboard data backup"

    def __init__(self, token: str, api_url: str = GITHUB_API, session: requests.Session | None = None):
        if not token:
            raise ValueError("Missing GitHub token")
        self.api_url = api_url.rstrip("/")
        self.session = session or gist_session(token)

    @_transient
    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self.session.request(method, url, timeout=DEFAULT_HTTP_TIMEOUT, **kwargs)

    @_unsent
    def _create(self, url: str, **kwargs: Any) -> requests.Response:
        return self.session.request("POST", url, timeout=DEFAULT_HTTP_TIMEOUT, **kwargs)

    def create_or_update(self, doc_id: str | None, blobs: dict[str, str]) -> str:
        """Create a new private gist, or update ``doc_id`` in place.

        Args:
            doc_id: Existing gist id, or ``None`` to create one.
            blobs: File name → text content.

        Returns:
            The gist id.

        Raises:
            UpstreamFailure: on a non-success response.
        """
        body = {
            "description": self.description,
            "public": False,
            "files": {name: {"content": content} for name, content in blobs.items()},
        }
        if doc_id:
            resp = self._request("PATCH", f"{self.api_url}/gists/{doc_id}", json=body)
        else:
            resp = self._create(f"{self.api_url}/gists", json=body)
        if not resp.ok:
            raise UpstreamFailure(f"Gist save failed: {resp.status_code}", status=resp.status_code)
        return str(resp.json()["id"])

    def _file_content(self, meta: dict[str, Any]) -> str | None:
        # Gists truncate large inline content; raw_url has the full text.
        raw_url = meta.get("raw_url")
        if raw_url:
            try:
                r = self._request("GET", raw_url)
                if r.ok:
                    return r.text
            except requests.RequestException as e:
                logger.debug("Raw gist fetch failed for %s: %s", raw_url, e)
        content = meta.get("content")
        return content if isinstance(content, str) else None

    def read(self, doc_id: str) -> dict[str, str]:
        """Read the known backup files from gist ``doc_id``.

        Returns:
            File name → content, for the files present in the gist.
        """
        if not doc_id:
            raise ValueError("Missing gist id")
        resp = self._request("GET", f"{self.api_url}/gists/{doc_id}")
        if not resp.ok:
            raise UpstreamFailure(f"Gist fetch failed: {resp.status_code}", status=resp.status_code)
        files = resp.json().get("files") or {}
        out: dict[str, str] = {}
        for name in BACKUP_FILES:
            meta = files.get(name)
            if isinstance(meta, dict):
                content = self._file_content(meta)
                if content is not None:
                    out[name] = content
        return out


def export_blobs(store: DashboardStore) -> dict[str, str]:
    """Serialize the four backup blobs from local state."""
    overlay = store.load_overlay()
    return {
        BOOKMARKS_FILE: json.dumps(store.load_bookmarks(), indent=2),
        NOTES_FILE: store.load_notes(),
        RSS_SOURCES_FILE: json.dumps([s.to_dict() for s in store.load_sources()], indent=2),
        CVE_STATE_FILE: json.dumps(overlay.to_dict(include_notified=False), indent=2),
    }


def _loads(text: str | None, default: Any) -> Any:
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed backup blob")
        return default


def import_blobs(store: DashboardStore, blobs: dict[str, str]) -> None:
    """Restore local state from backup blobs.

    Missing blobs leave the corresponding local state untouched.  The
    local notified set is always preserved.
    """
    if BOOKMARKS_FILE in blobs:
        bookmarks = _loads(blobs[BOOKMARKS_FILE], [])
        if isinstance(bookmarks, list):
            store.save_bookmarks(bookmarks)
    if NOTES_FILE in blobs:
        store.save_notes(blobs[NOTES_FILE])
    if RSS_SOURCES_FILE in blobs:
        sources = _loads(blobs[RSS_SOURCES_FILE], [])
        if isinstance(sources, list):
            store.save_sources([SourceSpec.from_dict(s) for s in sources if isinstance(s, dict)])
    if CVE_STATE_FILE in blobs:
        restored = TriageOverlay.from_dict(_loads(blobs[CVE_STATE_FILE], {}))
        current = store.load_overlay()
        store.save_overlay(
            TriageOverlay(
                pinned=restored.pinned,
                ignored=restored.ignored,
                tags=restored.tags,
                notified=current.notified,
            )
        )


def backup_dashboard(store: DashboardStore, remote: GistBackupStore) -> str:
    """Push local state to the remote backup and remember its id."""
    gist_id = remote.create_or_update(store.load_gist_id(), export_blobs(store))
    store.save_gist_id(gist_id)
    return gist_id


def restore_dashboard(store: DashboardStore, remote: GistBackupStore, gist_id: str | None = None) -> None:
    """Pull the remote backup into local state."""
    doc_id = gist_id or store.load_gist_id()
    if not doc_id:
        raise ValueError("Missing gist id")
    import_blobs(store, remote.read(doc_id))
    store.save_gist_id(doc_id)
