"""Errors surfaced by the rate-limited API client."""

import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

TIMEOUT_ERROR = "TIMEOUT_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
HTTP_ERROR = "HTTP_ERROR"

DEFAULT_RETRY_AFTER_SECONDS = 60.0


class UpstreamRequestError(Exception):
    """Terminal failure of a call to the upstream API.

    Carries the final HTTP status and body when the upstream answered,
    or only a `code` when no response was received at all.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: dict | str | None = None,
        headers: dict[str, str] | None = None,
        code: str = HTTP_ERROR,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.code = code
        self.attempts = 0

    @classmethod
    def from_response(cls, response: httpx.Response) -> "UpstreamRequestError":
        try:
            body = response.json()
        except ValueError:
            body = response.text
        return cls(
            f"Upstream returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=body,
            headers=dict(response.headers),
            code=HTTP_ERROR,
        )

    @classmethod
    def from_request_error(cls, exc: httpx.RequestError) -> "UpstreamRequestError":
        code = TIMEOUT_ERROR if isinstance(exc, httpx.TimeoutException) else NETWORK_ERROR
        return cls(f"{type(exc).__name__}: {exc}", code=code)

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def retryable(self) -> bool:
        """Network failures, timeouts, 5xx, 408 and 429 are transient."""
        if self.status_code is None or self.code == TIMEOUT_ERROR:
            return True
        return self.status_code >= 500 or self.status_code in (408, 429)

    @property
    def retry_after(self) -> float:
        """Seconds the upstream asked us to wait (60 when unstated)."""
        return parse_retry_after(self.headers.get("retry-after"))


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if value is None or not str(value).strip():
        return default
    value = str(value).strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds) if math.isfinite(seconds) else default
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when is None:
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())
