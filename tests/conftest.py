"""Shared fixtures for the KYC API client test suite."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from src.clients.api_client import RateLimitedApiClient
from src.clients.ratelimit import SlidingWindowRateLimiter
from src.config.settings import get_settings

ENDPOINT = "https://kyc-api.example.test/api/v1/credit-report-cibil/fetch-report-pdf"


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        # Still yield so concurrent callers interleave
        await asyncio.sleep(0)


class ScriptedUpstream:
    """Scripted stand-in for the upstream API.

    Plays back `outcomes` in order (responses are returned, exceptions
    raised); the last outcome repeats once the script runs out. Records
    the fake-clock time of every call.
    """

    def __init__(self, clock: FakeClock, outcomes: list):
        self.clock = clock
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    @property
    def call_times(self) -> list[float]:
        return [c["time"] for c in self.calls]

    async def request(self, method, url, **kwargs):
        self.calls.append({"time": self.clock(), "method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        await asyncio.sleep(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_response(status_code: int, json_body=None, headers: dict | None = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        json=json_body if json_body is not None else {},
        headers=headers,
        request=httpx.Request("POST", ENDPOINT),
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def build_client(fake_clock):
    """Factory fixture: a client wired to a fake clock and scripted upstream.

    Usage:
        client, upstream = build_client([make_response(200)], min_delay_ms=0)
    """
    def _build(outcomes, requests_per_window=20, window_ms=60000, min_delay_ms=1500, **client_kwargs):
        limiter = SlidingWindowRateLimiter(
            requests_per_window=requests_per_window,
            window_ms=window_ms,
            min_delay_ms=min_delay_ms,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )
        upstream = ScriptedUpstream(fake_clock, outcomes)
        http_client = AsyncMock()
        http_client.is_closed = False
        http_client.request.side_effect = upstream.request
        client_kwargs.setdefault("jitter", lambda: 0.0)
        client = RateLimitedApiClient(
            limiter=limiter,
            http_client=http_client,
            sleep=fake_clock.sleep,
            **client_kwargs,
        )
        return client, upstream

    return _build


@pytest.fixture
def override_settings(monkeypatch):
    """Factory fixture: set env vars and clear settings cache.

    Usage:
        override_settings(SUREPASS_MIN_DELAY_MS="500", LOG_LEVEL="DEBUG")
    """
    def _override(**kwargs):
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        # Clear lru_cache so Settings re-reads env
        get_settings.cache_clear()

    yield _override

    # Always clear cache on teardown so other tests get fresh settings
    get_settings.cache_clear()
