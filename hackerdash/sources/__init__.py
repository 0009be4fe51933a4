"""Source adapters.

Each adapter knows one upstream schema, fetches it through a
``TransportResolver`` and returns canonical records.  Best-effort sources
(CTF events, individual RSS feeds) degrade to empty results; the GitHub
and CVE adapters raise ``SourceFailure`` for the coordinator to record.
"""

from .ctf import fetch_ctf_events
from .cve import fetch_latest_cves
from .github import fetch_github_events
from .rss import fetch_security_rss

__all__ = [
    "fetch_ctf_events",
    "fetch_github_events",
    "fetch_latest_cves",
    "fetch_security_rss",
]
