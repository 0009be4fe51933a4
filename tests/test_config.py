"""Unit tests for hackerdash.config: Pydantic configuration models."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from pydantic import ValidationError

from hackerdash.config import (
    BrokerConfig,
    FetchConfig,
    FilterSpec,
    HackerDashConfig,
    config_from_env,
    find_config,
    github_token_from_env,
    load_config,
)

# ── FetchConfig ──────────────────────────────────────────────────────────────


class TestFetchConfig:
    def test_defaults(self):
        c = FetchConfig()
        assert len(c.proxy_templates) == 2
        assert c.timeout == 20.0
        assert c.nvd_window_days == 3

    def test_blank_templates_dropped(self):
        assert FetchConfig(proxy_templates=["", "  ", "https://p/{url}"]).proxy_templates == ["https://p/{url}"]

    def test_single_template_string(self):
        assert FetchConfig(proxy_templates="https://p/{url}").proxy_templates == ["https://p/{url}"]

    def test_no_proxies(self):
        assert FetchConfig(proxy_templates=None).proxy_templates == []

    def test_timeout_positive(self):
        with pytest.raises(ValidationError):
            FetchConfig(timeout=0)


# ── BrokerConfig ─────────────────────────────────────────────────────────────


class TestBrokerConfig:
    def test_trailing_slashes_stripped(self):
        c = BrokerConfig(github_base_url="https://github.com/", public_base_url="https://b.example//")
        assert c.github_base_url == "https://github.com"
        assert c.public_base_url == "https://b.example"

    def test_port_bounds(self):
        with pytest.raises(ValidationError):
            BrokerConfig(port=0)


# ── FilterSpec ───────────────────────────────────────────────────────────────


class TestFilterSpec:
    def test_defaults(self):
        f = FilterSpec()
        assert f.max_age_days == 30
        assert f.sort_key == "epss"
        assert f.sort_dir == "desc"

    def test_legacy_kev_sort_key(self):
        assert FilterSpec(sort_key="kev").sort_key == "known_exploited"

    @pytest.mark.parametrize("field,value", [("min_cvss", 11), ("min_epss", 1.5), ("sort_key", "x"), ("sort_dir", "up")])
    def test_invalid(self, field, value):
        with pytest.raises(ValidationError):
            FilterSpec(**{field: value})

    def test_terms_stripped(self):
        assert FilterSpec(vendor="  apache ", product=None).vendor == "apache"


# ── load_config / config_from_env ────────────────────────────────────────────


class TestLoadConfig:
    def test_yaml_with_env(self, tmp_path: Path):
        path = tmp_path / "hackerdash.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "broker": {"client_id": "$TEST_CLIENT_ID", "allowed_origin": "https://dash.example"},
                    "feeds": {"github_user": "octocat"},
                    "filters": {"min_cvss": 7},
                }
            )
        )
        with patch.dict(os.environ, {"TEST_CLIENT_ID": "abc"}):
            cfg = load_config(path)
        assert cfg.broker.client_id == "abc"
        assert cfg.feeds.github_user == "octocat"
        assert cfg.filters.min_cvss == 7.0

    def test_json(self, tmp_path: Path):
        path = tmp_path / "hackerdash.json"
        path.write_text(json.dumps({"fetch": {"nvd_window_days": 7}}))
        assert load_config(path).fetch.nvd_window_days == 7

    def test_empty_yaml(self, tmp_path: Path):
        path = tmp_path / "hackerdash.yaml"
        path.write_text("")
        assert load_config(path) == HackerDashConfig()

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_env_overrides(self):
        env = {"GITHUB_CLIENT_ID": "cid", "ALLOWED_ORIGIN": "https://d.example", "HACKERDASH_GITHUB_USER": "me"}
        with patch.dict(os.environ, env):
            cfg = config_from_env()
        assert cfg.broker.client_id == "cid"
        assert cfg.broker.allowed_origin == "https://d.example"
        assert cfg.feeds.github_user == "me"

    def test_find_config(self, tmp_path: Path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert find_config() is None
        (tmp_path / "hackerdash.json").write_text("{}")
        (tmp_path / "hackerdash.yml").write_text("")
        assert find_config() == Path("hackerdash.yml")

    def test_github_token_from_env(self):
        with patch.dict(os.environ, {"GH_TOKEN": "gh"}, clear=True):
            assert github_token_from_env() == "gh"
        with patch.dict(os.environ, {}, clear=True):
            assert github_token_from_env() is None
