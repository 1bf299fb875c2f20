"""Request processor: runs fetches concurrently with pacing and adaptive backoff."""

import asyncio
import logging
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from .core import FetchError, Fetcher
from .models import RequestResult

logger = logging.getLogger(__name__)


class CrawlCancelledError(Exception):
    """Raised when a run is stopped through its cancellation event."""


@dataclass
class RequestProcessorOptions:
    """Concurrency and pacing options. Durations are in seconds."""

    max_simultaneous_requests: int = 10
    delay_between_request_start: float = 1.0
    delay_jitter: float = 1.0
    request_timeout: float = 20.0
    timeout_before_throttle: float = 2.5
    throttling_request_backoff: float = 5.0
    min_sequential_successes_to_minimise_throttling: int = 5


@dataclass
class Backoff:
    """Additive delay raised on slow fetches and lowered after a run of fast ones."""

    timeout_before_throttle: float
    step: float
    min_sequential_successes: int
    current: float = 0.0
    successes_since_last_throttle: int = 0

    @classmethod
    def from_options(cls, options: RequestProcessorOptions) -> "Backoff":
        return cls(
            timeout_before_throttle=options.timeout_before_throttle,
            step=options.throttling_request_backoff,
            min_sequential_successes=options.min_sequential_successes_to_minimise_throttling,
        )

    def record(self, elapsed: float):
        """Update the backoff from the duration of a completed fetch."""
        if self.timeout_before_throttle > 0 and elapsed > self.timeout_before_throttle:
            self.successes_since_last_throttle = 0
            self.current += self.step
            logger.info("Increased backoff to %.3fs.", self.current)
        elif self.current > 0:
            self.successes_since_last_throttle += 1
            if self.successes_since_last_throttle >= self.min_sequential_successes:
                self.current = max(0.0, self.current - self.step)
                self.successes_since_last_throttle = 0
                logger.info("Decreased backoff to %.3fs.", self.current)


@dataclass
class RequestContext:
    """Bookkeeping for one in-flight fetch."""

    request_number: int
    request_uri: str
    request_start_delay: float
    request_timeout: float
    elapsed_time: float = 0.0
    finished_at: float = 0.0


ResponseAction = Callable[[RequestResult], Awaitable[None]]


class RequestProcessor:
    """FIFO frontier plus a bounded window of concurrently running fetches."""

    def __init__(self, fetcher: Fetcher, rng: random.Random | None = None):
        self.fetcher = fetcher
        self._queue: deque[str] = deque()
        self._pending = 0
        self._rng = rng or random.Random()

    def add(self, uri: str):
        """Queue a URI for fetching."""
        self._queue.append(uri)
        self._pending += 1

    @property
    def pending_requests(self) -> int:
        """Queued plus in-flight requests."""
        return self._pending

    async def process(
        self,
        response_action: ResponseAction,
        options: RequestProcessorOptions,
        cancel_event: asyncio.Event | None = None,
    ):
        """Fetch until the queue is empty and nothing is in flight.

        response_action is awaited once per completed fetch, in completion
        order, and may queue further URIs. A fetch task that raises anything
        other than a transport failure aborts the whole run.
        """
        if options.max_simultaneous_requests < 1:
            raise ValueError("max_simultaneous_requests must be >= 1")

        active: dict[asyncio.Task, RequestContext] = {}
        backoff = Backoff.from_options(options)
        request_count = 0

        try:
            while active or self._queue:
                self._check_cancelled(cancel_event)

                while self._queue and len(active) < options.max_simultaneous_requests:
                    self._check_cancelled(cancel_event)
                    request_uri = self._queue.popleft()

                    start_delay = max(
                        0.0,
                        options.delay_between_request_start
                        + self._rng.uniform(0, options.delay_jitter),
                    )
                    start_delay += backoff.current

                    request_count += 1
                    context = RequestContext(
                        request_number=request_count,
                        request_uri=request_uri,
                        request_start_delay=start_delay,
                        request_timeout=options.request_timeout,
                    )
                    logger.debug(
                        "Request #%d (%s) starting with a %.3fs delay.",
                        context.request_number, request_uri, start_delay,
                    )
                    task = asyncio.create_task(self._perform_request(context))
                    active[task] = context

                done, _ = await asyncio.wait(set(active), return_when=asyncio.FIRST_COMPLETED)

                self._check_cancelled(cancel_event)

                for task in sorted(done, key=lambda t: active[t].finished_at):
                    context = active.pop(task)
                    self._pending -= 1

                    # Faults propagate with their original traceback
                    result = task.result()

                    await response_action(result)
                    backoff.record(context.elapsed_time)
        except BaseException:
            await self._cancel_all(active)
            raise

        logger.debug("Completed processing %d requests.", request_count)

    def _check_cancelled(self, cancel_event: asyncio.Event | None):
        if cancel_event is not None and cancel_event.is_set():
            raise CrawlCancelledError("Crawl was cancelled")

    async def _cancel_all(self, active: dict[asyncio.Task, RequestContext]):
        for task in active:
            task.cancel()
        if active:
            await asyncio.gather(*active, return_exceptions=True)
        active.clear()

    async def _perform_request(self, context: RequestContext) -> RequestResult:
        if context.request_start_delay > 0:
            await asyncio.sleep(context.request_start_delay)

        request_start = datetime.now(timezone.utc)
        timer = time.perf_counter()

        try:
            response = await self.fetcher.fetch(context.request_uri, context.request_timeout)
        except (FetchError, asyncio.TimeoutError) as e:
            context.elapsed_time = time.perf_counter() - timer
            context.finished_at = time.perf_counter()
            logger.debug(
                "Request #%d completed with error in %.3fs: %s",
                context.request_number, context.elapsed_time, e,
            )
            return RequestResult(
                request_uri=context.request_uri,
                request_start=request_start,
                request_start_delay=context.request_start_delay,
                elapsed_time=context.elapsed_time,
                exception=e,
            )

        # Only the fetch is timed, not the handling of the response
        context.elapsed_time = time.perf_counter() - timer
        context.finished_at = time.perf_counter()
        logger.debug(
            "Request #%d completed with status %d in %.3fs.",
            context.request_number, response.status, context.elapsed_time,
        )

        return RequestResult(
            request_uri=context.request_uri,
            request_start=request_start,
            request_start_delay=context.request_start_delay,
            elapsed_time=context.elapsed_time,
            status_code=response.status,
            headers=response.headers,
            content=response.text,
        )
