"""GitHub OAuth token broker.

A small aiohttp service that lets a static dashboard page obtain a GitHub
token:

- ``POST /login/device/code`` and ``POST /login/oauth/access_token`` are
  forwarded to GitHub unchanged (device flow); the broker only adds CORS
  headers and forces a JSON ``Accept``.  The client secret is never used
  here and all polling is the caller's business.
- ``GET /oauth/start`` redirects to GitHub's authorize page and
  ``GET /oauth/callback`` exchanges the code with the client secret, then
  renders a page that posts one ``gh_token`` message to the opener.

Every other request is answered with ``404 {"error": "Not found"}``.

The callback does not verify an OAuth ``state`` parameter, so nothing ties
a callback to the ``/oauth/start`` request that initiated it.

Usage::

    app = create_app(BrokerConfig(client_id="...", client_secret="...",
                                  allowed_origin="https://dash.example.com"))
    web.run_app(app, port=8787)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, AsyncIterator
from urllib.parse import urlencode

import aiohttp
from aiohttp import web
from jinja2 import Environment, FileSystemLoader, select_autoescape

from .auth import MESSAGE_TYPE
from .config import BrokerConfig
from .errors import AuthFailure

logger = logging.getLogger(__name__)

_TEMPLATES_DIR = Path(__file__).parent / "templates"

DEVICE_FLOW_PATHS = frozenset({"/login/device/code", "/login/oauth/access_token"})

# Never forwarded in either direction.
_HOP_HEADERS = frozenset(
    {
        "host",
        "connection",
        "keep-alive",
        "content-length",
        "content-encoding",
        "transfer-encoding",
        "upgrade",
    }
)

CONFIG_KEY = web.AppKey("config", BrokerConfig)
HTTP_KEY = web.AppKey("http", aiohttp.ClientSession)

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATES_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html", "j2")),
    keep_trailing_newline=True,
)


def cors_headers(origin: str | None) -> dict[str, str]:
    """CORS headers echoing the caller's origin (``*`` for none or ``null``)."""
    allow = origin if origin and origin != "null" else "*"
    return {
        "Access-Control-Allow-Origin": allow,
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "content-type, accept, authorization, x-requested-with",
        "Access-Control-Max-Age": "86400",
        "Vary": "Origin",
    }


def not_found(origin: str | None) -> web.Response:
    return web.json_response({"error": "Not found"}, status=404, headers=cors_headers(origin))


@web.middleware
async def cors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Answer preflights, map unknown routes to JSON 404s, add CORS headers."""
    origin = request.headers.get("Origin")
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=cors_headers(origin))
    try:
        resp = await handler(request)
    except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
        return not_found(origin)
    if request.path in DEVICE_FLOW_PATHS:
        resp.headers["Access-Control-Allow-Origin"] = cors_headers(origin)["Access-Control-Allow-Origin"]
        resp.headers["Vary"] = "Origin"
    return resp


# ─── Device flow pass-through ────────────────────────────────────────────────


async def proxy_device_flow(request: web.Request) -> web.Response:
    """Forward a device-flow POST to GitHub and relay the answer verbatim."""
    config = request.app[CONFIG_KEY]
    session = request.app[HTTP_KEY]

    headers = {k: v for k, v in request.headers.items() if k.lower() not in _HOP_HEADERS | {"accept"}}
    headers["Accept"] = "application/json"
    body = await request.read()

    upstream_url = f"{config.github_base_url}{request.path}"
    try:
        async with session.post(upstream_url, headers=headers, data=body) as upstream:
            payload = await upstream.read()
            resp_headers = {k: v for k, v in upstream.headers.items() if k.lower() not in _HOP_HEADERS}
            status = upstream.status
            reason = upstream.reason
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("Device flow upstream %s failed: %s", upstream_url, e)
        return web.json_response({"error": "Upstream unavailable"}, status=502)

    if not any(k.lower() == "content-type" for k in resp_headers):
        resp_headers["Content-Type"] = "application/json; charset=utf-8"
    return web.Response(status=status, reason=reason, body=payload, headers=resp_headers)


# ─── Popup (authorization code) flow ────────────────────────────────────────


def callback_url(request: web.Request, config: BrokerConfig) -> str:
    base = config.public_base_url or f"{request.scheme}://{request.host}"
    return f"{base}/oauth/callback"


async def oauth_start(request: web.Request) -> web.StreamResponse:
    """Redirect the popup to GitHub's authorize page."""
    config = request.app[CONFIG_KEY]
    params = {
        "client_id": config.client_id,
        "redirect_uri": callback_url(request, config),
        "scope": config.scope,
    }
    raise web.HTTPFound(f"{config.github_base_url}/login/oauth/authorize?{urlencode(params)}")


async def exchange_code(
    session: aiohttp.ClientSession,
    config: BrokerConfig,
    code: str,
    redirect_uri: str,
) -> str:
    """Exchange an authorization code for an access token.

    Args:
        session: HTTP session.
        config: Broker configuration holding the client secret.
        code: Authorization code from the callback.
        redirect_uri: The callback URL used in the authorize request.

    Returns:
        The access token.

    Raises:
        AuthFailure: if the exchange fails for any reason.
    """
    form = {
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "code": code,
        "redirect_uri": redirect_uri,
    }
    try:
        async with session.post(
            f"{config.github_base_url}/login/oauth/access_token",
            data=form,
            headers={"Accept": "application/json"},
        ) as resp:
            if not 200 <= resp.status < 300:
                raise AuthFailure("http_error", f"Token exchange failed: HTTP {resp.status}")
            data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise AuthFailure("exchange_failed", "Token exchange failed") from e

    if not isinstance(data, dict):
        raise AuthFailure("invalid_response", "Token exchange failed")
    if data.get("error"):
        raise AuthFailure(str(data["error"]), str(data.get("error_description") or data["error"]))
    token = data.get("access_token")
    if not token:
        raise AuthFailure("no_token", "No access token returned")
    return str(token)


def callback_message(token: str = "", error: str = "") -> dict[str, str]:
    """The single message posted to the opener window."""
    return {"type": MESSAGE_TYPE, "token": token, "error": error}


def render_callback_page(message: dict[str, str], target_origin: str) -> str:
    template = _env.get_template("callback.html.j2")
    return template.render(message=message, target_origin=target_origin or "*")


def _callback_response(config: BrokerConfig, token: str = "", error: str = "") -> web.Response:
    if not config.allowed_origin:
        # Without a known origin the token must not be posted anywhere.
        token, error = "", error or "Broker has no allowed origin configured"
    html = render_callback_page(callback_message(token, error), config.allowed_origin)
    return web.Response(
        text=html,
        content_type="text/html",
        headers={"Cache-Control": "no-store"},
    )


async def oauth_callback(request: web.Request) -> web.Response:
    """Exchange the code and hand the token (or error) to the opener."""
    config = request.app[CONFIG_KEY]
    code = request.query.get("code")
    if not code:
        if request.query.get("error"):
            logger.info("OAuth callback without code: %s", request.query.get("error"))
        return _callback_response(config, error="Missing code")

    try:
        token = await exchange_code(request.app[HTTP_KEY], config, code, callback_url(request, config))
    except AuthFailure as e:
        logger.warning("OAuth code exchange failed: %s", e)
        return _callback_response(config, error=e.description or e.code)
    return _callback_response(config, token=token)


# ─── Application ─────────────────────────────────────────────────────────────


def create_app(config: BrokerConfig, session: aiohttp.ClientSession | None = None) -> web.Application:
    """Build the broker application.

    Args:
        config: Broker configuration.
        session: Optional client session for upstream calls; one is created
            (and closed) with the application when omitted.

    Returns:
        The ``aiohttp`` application.
    """
    if not config.client_id:
        logger.warning("Broker started without a GitHub client id")
    if not config.allowed_origin:
        logger.warning("Broker started without an allowed origin; popup login will fail")
    logger.warning("OAuth popup callback does not verify a 'state' parameter (no CSRF binding)")

    app = web.Application(middlewares=[cors_middleware])
    app[CONFIG_KEY] = config

    async def http_session(app: web.Application) -> AsyncIterator[None]:
        if session is not None:
            app[HTTP_KEY] = session
            yield
            return
        timeout = aiohttp.ClientTimeout(total=30, connect=10)
        async with aiohttp.ClientSession(timeout=timeout) as owned:
            app[HTTP_KEY] = owned
            yield

    app.cleanup_ctx.append(http_session)
    for path in sorted(DEVICE_FLOW_PATHS):
        app.router.add_post(path, proxy_device_flow)
    app.router.add_get("/oauth/start", oauth_start, allow_head=False)
    app.router.add_get("/oauth/callback", oauth_callback, allow_head=False)
    return app


def run_broker(config: BrokerConfig) -> None:
    """Serve the broker until interrupted."""
    web.run_app(create_app(config), host=config.host, port=config.port)
