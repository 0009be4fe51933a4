"""Client side of GitHub login: device flow polling and the popup channel.

Device flow: ``start_device_login`` obtains a user code, then
``poll_device_token`` polls until the user authorizes, the session
expires, or the attempt budget is used up.  Polling is cancellable
between intervals with ordinary ``asyncio`` cancellation; the broker holds
no state, so nothing needs cleaning up.

Popup flow: the broker's callback page posts a single ``gh_token``
message.  ``TokenChannel`` turns that message into exactly one result.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_none

from .errors import AuthFailure
from .models import DeviceSession

logger = logging.getLogger(__name__)

GITHUB_BASE = "https://github.com"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_STEP = 5
DEFAULT_MAX_POLLS = 120
MESSAGE_TYPE = "gh_token"


def normalize_base_url(raw: str | None) -> str:
    """Normalize a broker base URL: add ``https://`` and strip trailing slashes.

    Returns:
        The normalized URL, or ``""`` when ``raw`` is blank.
    """
    text = (raw or "").strip()
    if not text:
        return ""
    if not re.match(r"^https?://", text, flags=re.IGNORECASE):
        text = "https://" + text
    return text.rstrip("/")


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for ``url`` (``""`` if not absolute)."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}".lower()


# ─── Device flow ─────────────────────────────────────────────────────────────


async def _post_form(session: aiohttp.ClientSession, url: str, form: dict[str, str]) -> dict[str, Any]:
    async with session.post(url, data=form, headers={"Accept": "application/json"}) as resp:
        if not 200 <= resp.status < 300:
            raise AuthFailure("http_error", f"GitHub answered HTTP {resp.status}")
        data = await resp.json(content_type=None)
    if not isinstance(data, dict):
        raise AuthFailure("invalid_response", "Unexpected response from GitHub")
    return data


async def start_device_login(
    session: aiohttp.ClientSession,
    client_id: str,
    scope: str = "read:user repo",
    base_url: str | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> DeviceSession:
    """Request a device and user code.

    Browsers cannot call GitHub's device endpoints directly, so ``base_url``
    usually points at the broker, which forwards the request unchanged.

    Args:
        session: HTTP session.
        client_id: OAuth app client id.
        scope: Requested scope.
        base_url: Broker base URL, or ``None`` to call GitHub directly.
        clock: Monotonic clock used for the expiry deadline.

    Returns:
        A new ``DeviceSession``.

    Raises:
        AuthFailure: if GitHub refuses the request.
    """
    base = normalize_base_url(base_url) or GITHUB_BASE
    data = await _post_form(session, f"{base}/login/device/code", {"client_id": client_id, "scope": scope})
    if data.get("error"):
        raise AuthFailure(str(data["error"]), data.get("error_description"))
    try:
        expires_in = float(data.get("expires_in") or 900)
        return DeviceSession(
            device_code=str(data["device_code"]),
            user_code=str(data["user_code"]),
            verification_uri=str(data.get("verification_uri") or f"{GITHUB_BASE}/login/device"),
            interval=int(data.get("interval") or 5),
            expires_at=clock() + expires_in,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise AuthFailure("invalid_response", "Device code response is incomplete") from e


class _Pending(Exception):
    """The user has not authorized yet; poll again."""


async def poll_device_token(
    session: aiohttp.ClientSession,
    client_id: str,
    device: DeviceSession,
    base_url: str | None = None,
    max_attempts: int = DEFAULT_MAX_POLLS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Poll for the access token of a device-flow login.

    Waits ``device.interval`` seconds before every poll.  ``slow_down``
    raises the interval by five seconds (or to the interval GitHub
    returns); ``authorization_pending`` simply polls again.

    Args:
        session: HTTP session.
        client_id: OAuth app client id.
        device: Session returned by ``start_device_login``.
        base_url: Broker base URL, or ``None`` to call GitHub directly.
        max_attempts: Upper bound on polls.
        sleep: Awaitable sleep (injected in tests).
        clock: Monotonic clock compared against ``device.expires_at``.

    Returns:
        The access token.

    Raises:
        AuthFailure: on a terminal OAuth error, an HTTP error, session
            expiry, or when ``max_attempts`` polls were not enough.
    """
    base = normalize_base_url(base_url) or GITHUB_BASE
    endpoint = f"{base}/login/oauth/access_token"
    form = {"client_id": client_id, "device_code": device.device_code, "grant_type": DEVICE_GRANT_TYPE}
    interval = max(int(device.interval), 1)

    async def poll_once() -> str:
        nonlocal interval
        await sleep(interval)
        if device.expires_at is not None and clock() >= device.expires_at:
            raise AuthFailure("expired_token", "The device code has expired")
        data = await _post_form(session, endpoint, form)
        token = data.get("access_token")
        if token:
            return str(token)
        error = data.get("error")
        if error == "authorization_pending":
            raise _Pending()
        if error == "slow_down":
            interval = int(data.get("interval") or interval + SLOW_DOWN_STEP)
            logger.info("GitHub asked to slow down; polling every %ss", interval)
            raise _Pending()
        raise AuthFailure(str(error or "invalid_response"), data.get("error_description"))

    token = ""
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_Pending),
            stop=stop_after_attempt(max_attempts),
            wait=wait_none(),
            reraise=True,
        ):
            with attempt:
                token = await poll_once()
    except _Pending as e:
        raise AuthFailure("expired_token", f"No authorization after {max_attempts} polls") from e
    return token


# ─── Popup flow ──────────────────────────────────────────────────────────────


class TokenChannel:
    """One-shot channel for the popup's ``gh_token`` message.

    Messages from any origin other than ``expected_origin``, and messages
    of another type, are ignored.  The first accepted message settles the
    channel; later ones are ignored.  Must be created inside a running
    event loop.
    """

    def __init__(self, expected_origin: str):
        self.expected_origin = origin_of(expected_origin) or expected_origin
        self._future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def failed(self) -> bool:
        return self._future.done() and self._future.exception() is not None

    def deliver(self, origin: str, message: Any) -> bool:
        """Offer a message to the channel.

        Returns:
            ``True`` if the message settled the channel.
        """
        if self._future.done() or origin_of(origin) != self.expected_origin:
            return False
        if not isinstance(message, dict) or message.get("type") != MESSAGE_TYPE:
            return False
        error = message.get("error")
        token = message.get("token")
        if error:
            self._future.set_exception(AuthFailure("oauth_error", str(error)))
        elif token:
            self._future.set_result(str(token))
        else:
            self._future.set_exception(AuthFailure("no_token", "Login failed."))
        return True

    async def wait(self, timeout: float | None = None) -> str:
        """Wait for the token.

        Raises:
            AuthFailure: if the popup reported an error.
            asyncio.TimeoutError: if nothing arrived within ``timeout``.
        """
        return await asyncio.wait_for(self._future, timeout)


class PopupState(enum.Enum):
    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    TOKEN_DELIVERED = "token_delivered"
    ERROR_DELIVERED = "error_delivered"


@dataclass
class PopupLogin:
    """Popup login attempt against the broker.

    ``IDLE → AWAITING_REDIRECT → TOKEN_DELIVERED | ERROR_DELIVERED``.  Both
    outcomes are terminal; a new attempt needs a new ``PopupLogin``.
    """

    broker_url: str
    state: PopupState = PopupState.IDLE
    channel: TokenChannel | None = None

    def __post_init__(self) -> None:
        self.broker_url = normalize_base_url(self.broker_url)
        if not self.broker_url:
            raise ValueError("Set the broker URL for OAuth login.")

    def start(self) -> str:
        """Open the attempt and return the URL the popup should load."""
        if self.state is not PopupState.IDLE:
            raise RuntimeError("Popup login already used; open a fresh popup to retry")
        self.channel = TokenChannel(self.broker_url)
        self.state = PopupState.AWAITING_REDIRECT
        return f"{self.broker_url}/oauth/start"

    def on_message(self, origin: str, message: Any) -> bool:
        """Feed a window message to the attempt."""
        if self.state is not PopupState.AWAITING_REDIRECT or self.channel is None:
            return False
        if not self.channel.deliver(origin, message):
            return False
        self.state = PopupState.ERROR_DELIVERED if self.channel.failed else PopupState.TOKEN_DELIVERED
        return True

    async def result(self, timeout: float | None = None) -> str:
        if self.channel is None:
            raise RuntimeError("Popup login not started")
        return await self.channel.wait(timeout)
