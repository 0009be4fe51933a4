"""Exception types shared across HackerDash.

Transport and source failures are caught at the adapter or coordinator
boundary; nothing in this module is expected to escape ``refresh_all``.
"""

from typing import Any


class HackerDashError(Exception):
    """Base class for all HackerDash errors."""


class UpstreamFailure(HackerDashError):
    """An upstream answered, but with a non-success status.

    Attributes:
        status: HTTP status code returned by the upstream (``None`` when
            the failure was detected after a successful status, e.g. a
            malformed body).
        url: The URL that was requested.
    """

    def __init__(self, message: str, status: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status = status
        self.url = url


class ParseFailure(UpstreamFailure):
    """The payload did not match the expected shape."""


class TransportFailure(HackerDashError):
    """Every transport in the fallback chain failed.

    Attributes:
        url: Target URL of the logical request.
        last_error: The exception raised by the final transport attempt.
        attempts: Number of transports tried.
    """

    def __init__(self, url: str, last_error: BaseException | None, attempts: int = 0):
        super().__init__(f"All {attempts} transport(s) failed for {url}: {last_error}")
        self.url = url
        self.last_error = last_error
        self.attempts = attempts

    @property
    def status(self) -> int | None:
        """HTTP status of the last attempt, when it failed on status."""
        if isinstance(self.last_error, UpstreamFailure):
            return self.last_error.status
        return None


class SourceFailure(HackerDashError):
    """A source adapter could not produce a batch.

    Attributes:
        source: Adapter name (``github``, ``cve`` ...).
        status: Upstream HTTP status, when known.
    """

    def __init__(self, source: str, message: str, status: int | None = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status


class AuthFailure(HackerDashError):
    """A terminal OAuth error (anything but ``authorization_pending``/``slow_down``).

    Attributes:
        code: OAuth error code (e.g. ``access_denied``, ``expired_token``).
        description: Optional human-readable description from the provider.
    """

    def __init__(self, code: str, description: str | None = None, details: Any = None):
        super().__init__(description or code)
        self.code = code
        self.description = description
        self.details = details
