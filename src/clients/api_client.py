"""Rate-limited, retrying client for the KYC / credit-bureau API.

Every attempt of a call goes through the shared sliding window limiter
before it is dispatched. Transient failures are retried with exponential
backoff and jitter; a 429 waits for the larger of its Retry-After header
and the client's own backoff. Callers only ever see the final response
or one UpstreamRequestError.
"""

import asyncio
from collections.abc import Awaitable, Callable

import httpx

from src.clients.errors import UpstreamRequestError
from src.clients.ratelimit import SlidingWindowRateLimiter
from src.clients.retry import RetryPolicy
from src.config.settings import Settings
from src.logging.audit import (
    RequestTimer,
    generate_request_id,
    get_audit_logger,
    request_id_var,
)

DEFAULT_TIMEOUT_MS = 30000
CREDIT_CHECK_TIMEOUT_MS = 45000

# Methods whose payload goes into the query string instead of the body
_QUERY_METHODS = {"GET", "DELETE"}


class RateLimitedApiClient:
    """Outbound client for one remote API account."""

    def __init__(
        self,
        limiter: SlidingWindowRateLimiter | None = None,
        retry_attempts: int = 3,
        retry_delay_ms: float = 2000,
        timeout_ms: float = DEFAULT_TIMEOUT_MS,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
    ):
        self.limiter = limiter or SlidingWindowRateLimiter()
        self.retry_attempts = retry_attempts
        self.retry_delay_ms = retry_delay_ms
        self.timeout_ms = timeout_ms
        self._client = http_client
        self._sleep = sleep
        self._jitter = jitter

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RateLimitedApiClient":
        limiter = SlidingWindowRateLimiter(
            requests_per_window=settings.surepass_max_requests_per_window,
            window_ms=settings.surepass_rate_limit_window_ms,
            min_delay_ms=settings.surepass_min_delay_ms,
        )
        return cls(
            limiter=limiter,
            retry_attempts=settings.surepass_retry_attempts,
            retry_delay_ms=settings.surepass_retry_delay_ms,
            timeout_ms=settings.surepass_timeout_ms,
            **kwargs,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient()
        return self._client

    @staticmethod
    def _build_headers(api_key: str, extra: dict[str, str] | None) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            **(extra or {}),
        }

    async def _send(
        self, method: str, endpoint: str, payload, headers: dict[str, str], timeout_s: float
    ) -> httpx.Response:
        client = await self._get_client()
        if method in _QUERY_METHODS:
            return await client.request(
                method, endpoint, params=payload, headers=headers, timeout=timeout_s
            )
        return await client.request(
            method, endpoint, json=payload, headers=headers, timeout=timeout_s
        )

    async def make_request(
        self,
        api_key: str,
        endpoint: str,
        payload: dict | None = None,
        *,
        method: str = "POST",
        max_retries: int | None = None,
        retry_delay_ms: float | None = None,
        timeout_ms: float | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Call `endpoint` with rate limiting and retries.

        Args:
            api_key: Bearer credential for the Authorization header.
            endpoint: Absolute URL to call.
            payload: JSON body (query parameters for GET/DELETE).
            method: HTTP method.
            max_retries: Retries after the first attempt (defaults to retry_attempts).
            retry_delay_ms: Base backoff delay (defaults to the instance's).
            timeout_ms: Per-attempt HTTP timeout.
            headers: Extra headers merged over the defaults.

        Returns:
            The first successful (2xx) httpx.Response.

        Raises:
            UpstreamRequestError: The last error once retries are exhausted
                or a non-retryable error occurred.
        """
        policy = RetryPolicy(
            max_retries=self.retry_attempts if max_retries is None else max_retries,
            retry_delay_ms=self.retry_delay_ms if retry_delay_ms is None else retry_delay_ms,
        )
        request_headers = self._build_headers(api_key, headers)
        timeout_s = (self.timeout_ms if timeout_ms is None else timeout_ms) / 1000

        # All attempts of one call share a request id; an id set by the caller wins
        token = None if request_id_var.get() else request_id_var.set(generate_request_id())
        try:
            return await self._call_with_retries(
                method.upper(), endpoint, payload, request_headers, timeout_s, policy
            )
        finally:
            if token is not None:
                request_id_var.reset(token)

    async def _call_with_retries(
        self,
        method: str,
        endpoint: str,
        payload,
        request_headers: dict[str, str],
        timeout_s: float,
        policy: RetryPolicy,
    ) -> httpx.Response:
        logger = get_audit_logger()
        last_error: UpstreamRequestError | None = None

        for attempt in range(policy.max_retries + 1):
            slot = await self.limiter.enforce_rate_limit()

            try:
                with RequestTimer() as timer:
                    response = await self._send(method, endpoint, payload, request_headers, timeout_s)
            except httpx.RequestError as e:
                error = UpstreamRequestError.from_request_error(e)
            except BaseException:
                self.limiter.release(slot)
                raise
            else:
                if response.is_success:
                    self.limiter.record_successful_request(slot)
                    logger.info(
                        "Upstream request succeeded",
                        extra={"audit_data": {
                            "endpoint": endpoint,
                            "method": method,
                            "attempt": attempt + 1,
                            "upstream_status": response.status_code,
                            "latency_ms": timer.elapsed_ms,
                        }},
                    )
                    return response
                error = UpstreamRequestError.from_response(response)

            self.limiter.release(slot)
            error.attempts = attempt + 1
            last_error = error

            if not policy.should_retry(error, attempt):
                break

            jitter_ms = self._jitter() if self._jitter else policy.jitter_ms()
            delay_ms = policy.delay_ms(error, attempt) + jitter_ms
            logger.warning(
                "Upstream rate limit hit, backing off" if error.is_rate_limited
                else "Upstream request failed, retrying",
                extra={"audit_data": {
                    "endpoint": endpoint,
                    "method": method,
                    "attempt": attempt + 1,
                    "max_attempts": policy.max_retries + 1,
                    "upstream_status": error.status_code,
                    "error_code": error.code,
                    "delay_ms": round(delay_ms, 1),
                }},
            )
            await self._sleep(delay_ms / 1000)

        logger.error(
            "Upstream request failed",
            extra={"audit_data": {
                "endpoint": endpoint,
                "method": method,
                "attempts": last_error.attempts,
                "upstream_status": last_error.status_code,
                "error_code": last_error.code,
                "retryable": last_error.retryable,
            }},
        )
        raise last_error

    async def make_credit_check_request(
        self, api_key: str, endpoint: str, payload: dict
    ) -> httpx.Response:
        # Bureau report generation is slower than plain verification
        return await self.make_request(
            api_key, endpoint, payload, timeout_ms=CREDIT_CHECK_TIMEOUT_MS
        )

    async def make_pan_verification_request(
        self, api_key: str, endpoint: str, payload: dict
    ) -> httpx.Response:
        return await self.make_request(api_key, endpoint, payload, timeout_ms=DEFAULT_TIMEOUT_MS)

    async def make_bank_verification_request(
        self, api_key: str, endpoint: str, payload: dict
    ) -> httpx.Response:
        return await self.make_request(api_key, endpoint, payload, timeout_ms=DEFAULT_TIMEOUT_MS)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
