"""Shared fixtures for crawler tests."""

import asyncio

import pytest

from sitecrawler.core import FetchError, Response
from sitecrawler.scheduler import RequestProcessorOptions


class FakeFetcher:
    """Fetcher returning scripted responses per URL.

    Each URL maps to a list of Response objects or exceptions, consumed in
    order; the last entry is repeated once the list is exhausted.
    """

    def __init__(self, script: dict[str, list] | None = None, latency: float = 0.0):
        self.script = script or {}
        self.latency = latency
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str, timeout: float) -> Response:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            entries = self.script.get(url)
            if not entries:
                return page(url, status=404)
            entry = entries.pop(0) if len(entries) > 1 else entries[0]
            if isinstance(entry, BaseException):
                raise entry
            return entry
        finally:
            self.in_flight -= 1

    async def close(self):
        pass


def page(url: str, status: int = 200, body: str = "", headers: dict | None = None) -> Response:
    return Response(url=url, status=status, content=body.encode("utf-8"), headers=headers or {})


def redirect(url: str, location: str, status: int = 301) -> Response:
    return page(url, status=status, headers={"location": location})


def timeout_error(url: str) -> FetchError:
    return FetchError(url, "ReadTimeout: timed out")


@pytest.fixture
def fast_options() -> RequestProcessorOptions:
    """Options without start delays or throttling."""
    return RequestProcessorOptions(
        max_simultaneous_requests=3,
        delay_between_request_start=0.0,
        delay_jitter=0.0,
        request_timeout=5.0,
        timeout_before_throttle=0.0,
        throttling_request_backoff=0.0,
    )
