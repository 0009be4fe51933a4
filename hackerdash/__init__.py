"""HackerDash: security signal aggregation for a personal dashboard.

This package fetches GitHub activity, security news feeds, the latest CVEs
and CTF events, enriches vulnerabilities with EPSS and CISA KEV data, and
runs a small GitHub OAuth broker so the dashboard can authenticate.
"""

__version__ = "0.3.0"
