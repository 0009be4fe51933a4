"""Configuration models using Pydantic.

All endpoints, proxy templates and OAuth credentials are supplied from a
YAML/JSON file or the environment; nothing secret is hard-coded.
"""

import json
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_PROXY_TEMPLATES = [
    "https://r.jina.ai/http://{bare_url}",
    "https://api.allorigins.win/raw?url={quoted_url}",
]

DEFAULT_RSS_SOURCES = [
    {"name": "TheHackerNews", "url": "https://feeds.feedburner.com/TheHackersNews"},
    {"name": "Krebs on Security", "url": "https://krebsonsecurity.com/feed/"},
    {"name": "HN Security", "url": "https://hnrss.org/frontpage?points=150&count=20"},
]


class FetchConfig(BaseModel):
    """Upstream endpoints and transport settings.

    Attributes:
        proxy_templates: Fallback transports, tried in order after the
            direct call.  Each is a ``str.format`` template with ``{url}``,
            ``{quoted_url}`` and ``{bare_url}`` fields.
        timeout: Total seconds allowed per transport attempt.
        connect_timeout: Seconds allowed to establish a connection.
    """

    proxy_templates: list[str] = Field(default_factory=lambda: list(DEFAULT_PROXY_TEMPLATES))
    timeout: float = Field(default=20.0, gt=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = "HackerDash/0.3 (+https://github.com/)"

    github_api_url: str = "https://api.github.com"
    rss2json_url: str = "https://api.rss2json.com/v1/api.json"
    nvd_api_url: str = "https://services.nvd.nist.gov/rest/json/cves/2.0"
    nvd_window_days: int = Field(default=3, ge=1, le=120)
    cve_fallback_url: str = "https://vulnerability.circl.lu/api/last"
    epss_api_url: str = "https://api.first.org/data/v1/epss"
    kev_url: str = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"
    ctftime_url: str = "https://ctftime.org/api/v1/events/?limit=20"

    @field_validator("proxy_templates", mode="before")
    @classmethod
    def _drop_blank_templates(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(t).strip() for t in v if str(t).strip()]


class BrokerConfig(BaseModel):
    """OAuth token broker settings.

    Attributes:
        client_id: GitHub OAuth app client id.
        client_secret: GitHub OAuth app client secret (server-side only).
        allowed_origin: Origin of the dashboard page that receives the
            token via ``postMessage``.
        scope: OAuth scope requested by the popup flow.
        github_base_url: Base URL of the identity provider.
        public_base_url: Externally visible base URL of the broker, used
            to build the OAuth callback URL.
    """

    client_id: str = ""
    client_secret: str = ""
    allowed_origin: str = ""
    scope: str = "read:user gist"
    github_base_url: str = "https://github.com"
    public_base_url: str = ""
    host: str = "127.0.0.1"
    port: int = Field(default=8787, ge=1, le=65535)

    @field_validator("github_base_url", "public_base_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, v: Any) -> str:
        return str(v or "").strip().rstrip("/")


class FeedConfig(BaseModel):
    """Default feed list used when no saved RSS sources exist."""

    rss_sources: list[dict[str, str]] = Field(default_factory=lambda: [dict(s) for s in DEFAULT_RSS_SOURCES])
    github_user: str = ""


class FilterSpec(BaseModel):
    """Triage filter and sort settings.

    Attributes:
        vendor: Case-insensitive substring matched against ``products``.
        product: Case-insensitive substring matched against ``products``.
        min_cvss: Lower CVSS bound; unscored items always pass.
        max_cvss: Upper CVSS bound; unscored items always pass.
        only_known_exploited: Keep only CISA KEV entries.
        min_epss: Lower EPSS bound; items without EPSS always pass.
        max_age_days: Publication age limit in days, ``0`` for no limit.
        sort_key: One of ``epss``, ``cvss``, ``published``, ``known_exploited``.
        sort_dir: ``asc`` or ``desc``.
    """

    vendor: str = ""
    product: str = ""
    min_cvss: float = Field(default=0.0, ge=0.0, le=10.0)
    max_cvss: float = Field(default=10.0, ge=0.0, le=10.0)
    only_known_exploited: bool = False
    min_epss: float = Field(default=0.0, ge=0.0, le=1.0)
    max_age_days: int = Field(default=30, ge=0)
    sort_key: Literal["epss", "cvss", "published", "known_exploited"] = "epss"
    sort_dir: Literal["asc", "desc"] = "desc"

    @field_validator("vendor", "product", mode="before")
    @classmethod
    def _normalize_term(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("sort_key", mode="before")
    @classmethod
    def _legacy_sort_key(cls, v: Any) -> Any:
        # Saved filters from the browser dashboard use "kev".
        return "known_exploited" if v == "kev" else v


class HackerDashConfig(BaseModel):
    """Root configuration.

    Example YAML::

        fetch:
          proxy_templates:
            - https://r.jina.ai/http://{bare_url}
        feeds:
          github_user: octocat
        broker:
          client_id: $GITHUB_CLIENT_ID
          allowed_origin: https://dash.example.com
        filters:
          min_cvss: 7.0
    """

    fetch: FetchConfig = Field(default_factory=FetchConfig)
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    feeds: FeedConfig = Field(default_factory=FeedConfig)
    filters: FilterSpec = Field(default_factory=FilterSpec)


def _resolve_env(value: Any) -> Any:
    """Resolve ``$ENV_VAR`` string values, recursing into dicts and lists."""
    if isinstance(value, dict):
        return {k: _resolve_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env(v) for v in value]
    if isinstance(value, str) and value.startswith("$") and len(value) > 1:
        return os.environ.get(value[1:], "")
    return value


def load_config(path: Path) -> HackerDashConfig:
    """Load configuration from a YAML or JSON file.

    String values of the form ``$NAME`` are replaced by the environment
    variable ``NAME`` (empty when unset).

    Args:
        path: Path to the configuration file.

    Returns:
        Validated ``HackerDashConfig`` instance.

    Raises:
        FileNotFoundError: if the file doesn't exist.
        pydantic.ValidationError: if content fails validation.
    """
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        raw = json.loads(content)
    else:
        raw = yaml.safe_load(content) or {}
    return HackerDashConfig.model_validate(_resolve_env(raw))


_ENV_OVERRIDES = {
    "GITHUB_CLIENT_ID": ("broker", "client_id"),
    "GITHUB_CLIENT_SECRET": ("broker", "client_secret"),
    "ALLOWED_ORIGIN": ("broker", "allowed_origin"),
    "OAUTH_SCOPE": ("broker", "scope"),
    "BROKER_PUBLIC_URL": ("broker", "public_base_url"),
    "HACKERDASH_GITHUB_USER": ("feeds", "github_user"),
}


def config_from_env(base: HackerDashConfig | None = None) -> HackerDashConfig:
    """Overlay environment variables on top of ``base``.

    Args:
        base: Starting configuration (defaults when ``None``).

    Returns:
        A new validated ``HackerDashConfig``.
    """
    data = (base or HackerDashConfig()).model_dump()
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data[section][key] = value
    return HackerDashConfig.model_validate(data)


def find_config() -> Path | None:
    """Find a configuration file in the working directory, preferring YAML."""
    for name in ("hackerdash.yaml", "hackerdash.yml", "hackerdash.json"):
        if Path(name).exists():
            return Path(name)
    return None


def github_token_from_env() -> str | None:
    """Return ``GITHUB_TOKEN`` or ``GH_TOKEN`` if set."""
    return os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN") or None
