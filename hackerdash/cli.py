"""Command-line entry points.

``hackerdash aggregate``     refresh every source and print the dashboard as JSON
``hackerdash serve``         run the OAuth token broker
``hackerdash device-login``  obtain a GitHub token with the device flow
``hackerdash backup``        push local state to a private gist
``hackerdash restore``       pull local state back from a gist
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

import aiohttp

from . import __version__
from .auth import poll_device_token, start_device_login
from .backup import GistBackupStore, backup_dashboard, restore_dashboard
from .broker import run_broker
from .config import HackerDashConfig, config_from_env, find_config, github_token_from_env, load_config
from .coordinator import Aggregator, AppState
from .errors import AuthFailure, HackerDashError
from .state import format_alert
from .storage import DashboardStore, JsonFileStore

logger = logging.getLogger("hackerdash")

DEFAULT_STATE_PATH = Path.home() / ".hackerdash" / "state.json"


def configure_logging(default_level: str = "INFO") -> None:
    """Configure root logging from ``HACKERDASH_LOG_LEVEL``."""
    level_name = os.environ.get("HACKERDASH_LOG_LEVEL", default_level).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, level_name, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
            stream=sys.stderr,
        )


def _load_config(path: Optional[Path]) -> HackerDashConfig:
    path = path or find_config()
    base = load_config(path) if path else None
    return config_from_env(base)


def _open_store(path: Path) -> DashboardStore:
    return DashboardStore(JsonFileStore(path))


# ─── aggregate ───────────────────────────────────────────────────────────────


def _dashboard_json(aggregator: Aggregator, snapshot: Any) -> dict[str, Any]:
    alerts = aggregator.collect_alerts(snapshot)
    return {
        **snapshot.to_dict(),
        "triage": [v.to_dict() for v in aggregator.triage(snapshot)],
        "alerts": [dict(zip(("title", "body"), format_alert(a))) for a in alerts],
    }


def cmd_aggregate(args: argparse.Namespace, config: HackerDashConfig) -> int:
    store = _open_store(args.state)
    state = AppState.from_store(store, config)
    if args.user:
        state.github_user = args.user
    state.token = state.token or github_token_from_env()

    aggregator = Aggregator(config, state)
    snapshot = aggregator.refresh_all_sync()
    out = _dashboard_json(aggregator, snapshot)
    store.save_overlay(aggregator.state.overlay)

    text = json.dumps(out, indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(text + "\n", encoding="utf-8")
        logger.info("Wrote %s", args.output)
    else:
        print(text)
    # Non-zero only when every source failed.
    return 1 if len(snapshot.errors) == 4 else 0


# ─── serve ───────────────────────────────────────────────────────────────────


def cmd_serve(args: argparse.Namespace, config: HackerDashConfig) -> int:
    broker = config.broker.model_copy(
        update={k: v for k, v in (("host", args.host), ("port", args.port)) if v is not None}
    )
    run_broker(broker)
    return 0


# ─── device-login ────────────────────────────────────────────────────────────


async def _device_login(client_id: str, scope: str, broker_url: Optional[str]) -> str:
    async with aiohttp.ClientSession() as session:
        device = await start_device_login(session, client_id, scope=scope, base_url=broker_url)
        print(f"Open {device.verification_uri} and enter code: {device.user_code}", file=sys.stderr)
        return await poll_device_token(session, client_id, device, base_url=broker_url)


def cmd_device_login(args: argparse.Namespace, config: HackerDashConfig) -> int:
    client_id = args.client_id or config.broker.client_id
    if not client_id:
        logger.error("A GitHub OAuth client id is required (--client-id or GITHUB_CLIENT_ID)")
        return 2
    try:
        token = asyncio.run(_device_login(client_id, args.scope, args.broker_url))
    except AuthFailure as e:
        logger.error("Device login failed: %s (%s)", e.description or e.code, e.code)
        return 1
    _open_store(args.state).save_token(token)
    logger.info("GitHub token saved to %s", args.state)
    return 0


# ─── backup / restore ────────────────────────────────────────────────────────


def _remote(store: DashboardStore, config: HackerDashConfig) -> GistBackupStore:
    token = store.load_token() or github_token_from_env()
    if not token:
        raise ValueError("Missing GitHub token; run device-login or set GITHUB_TOKEN")
    return GistBackupStore(token, api_url=config.fetch.github_api_url)


def cmd_backup(args: argparse.Namespace, config: HackerDashConfig) -> int:
    store = _open_store(args.state)
    gist_id = backup_dashboard(store, _remote(store, config))
    print(gist_id)
    return 0


def cmd_restore(args: argparse.Namespace, config: HackerDashConfig) -> int:
    store = _open_store(args.state)
    restore_dashboard(store, _remote(store, config), gist_id=args.gist_id)
    logger.info("Restored dashboard state from gist %s", store.load_gist_id())
    return 0


# ─── Entry point ─────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hackerdash", description="Security dashboard aggregator")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("--config", type=Path, default=None, help="YAML/JSON config file")
    p.add_argument("--state", type=Path, default=DEFAULT_STATE_PATH, help="Local state file")
    sub = p.add_subparsers(dest="command", required=True)

    agg = sub.add_parser("aggregate", help="Fetch all sources and print the dashboard as JSON")
    agg.add_argument("--user", default="", help="GitHub user whose activity is shown")
    agg.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    agg.set_defaults(func=cmd_aggregate)

    serve = sub.add_parser("serve", help="Run the OAuth token broker")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    dev = sub.add_parser("device-login", help="Log in to GitHub with the device flow")
    dev.add_argument("--client-id", default="")
    dev.add_argument("--scope", default="read:user gist")
    dev.add_argument("--broker-url", default=None, help="Broker base URL (default: GitHub directly)")
    dev.set_defaults(func=cmd_device_login)

    bk = sub.add_parser("backup", help="Back up bookmarks, notes, feeds and triage state to a gist")
    bk.set_defaults(func=cmd_backup)

    rs = sub.add_parser("restore", help="Restore local state from a gist")
    rs.add_argument("--gist-id", default=None)
    rs.set_defaults(func=cmd_restore)
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        config = _load_config(args.config)
        return args.func(args, config)
    except (HackerDashError, ValueError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
