"""Priority request queue with throttling, timeouts and retries.

A single worker task drains the queue one request at a time. Between
dispatches it honours a global rate-limit backoff (raised whenever the
remote throttles us) and a jittered minimum spacing. Failures are
classified by the ErrorClassifier; network, timeout and throttling
failures are retried with exponential backoff at a boosted priority.
"""

import asyncio
import heapq
import logging
import math
import random
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

# Domain Layer Imports
from connsync.domain.events.queue_events import (
    DomainEvent,
    RateLimitBackoffApplied,
    RequestDispatched,
    RequestEnqueued,
    RequestFailed,
    RequestSucceeded,
    RetryScheduled,
)
from connsync.domain.interfaces.transport import (
    RateLimitedError,
    RequestTarget,
    Transport,
    TransportResponse,
    TransportStatusError,
    TransportTimeoutError,
)
from connsync.domain.models.errors import ClassifiedError, QueueClearedError
from connsync.domain.models.stats import HealthReport, HealthStatus, QueueStats

# Infrastructure Layer Imports
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Default Configuration Constants
DEFAULT_MIN_DELAY = 0.3
DEFAULT_MAX_DELAY = 1.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRY_BASE_DELAY = 1.0
DEFAULT_RETRY_JITTER = 1.0
DEFAULT_RETRY_PRIORITY_BOOST = 10
DEFAULT_RATE_LIMIT_DELAY = 5.0
DEFAULT_BACKOFF_DECAY_STEP = 1.0
DEFAULT_LATENCY_WINDOW = 100
DEFAULT_MAX_WAIT = 30.0

# Health thresholds
QUEUE_LENGTH_WARNING = 50
FAILURE_RATE_WARNING = 20.0
FAILURE_RATE_CRITICAL = 50.0
RATE_LIMIT_HITS_WARNING = 5
LATENCY_WARNING_SECONDS = 10.0


@dataclass
class RequestOptions:
    """Per-request overrides. None means "use the queue default"."""
    priority: int = 0  # higher first
    timeout: Optional[float] = None
    retry_base_delay: Optional[float] = None
    max_retries: Optional[int] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class QueueItem:
    target: RequestTarget
    priority: int
    sequence: int
    max_retries: int
    timeout: float
    retry_base_delay: float
    headers: Dict[str, str]
    completion: "asyncio.Future[TransportResponse]"
    enqueued_at: float
    retry_count: int = 0
    started_at: Optional[float] = None


# Heap rows: (-priority, sequence, item). Sequences are unique so items are never compared.
_HeapRow = Tuple[int, int, QueueItem]


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class RequestQueue:
    """Serializes outbound requests through one worker task."""

    def __init__(
        self,
        transport: Transport,
        classifier: ErrorClassifier,
        *,
        min_delay: float = DEFAULT_MIN_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        max_retries: int = DEFAULT_MAX_RETRIES,
        default_timeout: float = DEFAULT_TIMEOUT,
        default_retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_jitter: float = DEFAULT_RETRY_JITTER,
        retry_priority_boost: int = DEFAULT_RETRY_PRIORITY_BOOST,
        default_rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        backoff_decay_step: float = DEFAULT_BACKOFF_DECAY_STEP,
        latency_window: int = DEFAULT_LATENCY_WINDOW,
        rate_limiter: Optional[RateLimiter] = None,
        default_headers: Optional[Dict[str, str]] = None,
        event_listener: Optional[Callable[[DomainEvent], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the RequestQueue.

        Args:
            transport: Executes the actual requests.
            classifier: Classifies failures for the retry decision.
            min_delay: Lower bound in seconds of the spacing between dispatches.
            max_delay: Upper bound in seconds of the spacing between dispatches.
            max_retries: Default number of retries for retryable failures.
            default_timeout: Default per-request timeout in seconds.
            default_retry_base_delay: Default base of the exponential retry delay.
            retry_jitter: Upper bound of the random extra retry delay.
            retry_priority_boost: Added to an item's priority when it is retried.
            default_rate_limit_delay: Backoff used when a throttled response has no Retry-After.
            backoff_decay_step: Amount the global backoff shrinks after each wait.
            latency_window: Number of latency samples kept for the average.
            rate_limiter: Optional hard cap on requests per time window.
            default_headers: Headers sent with every request.
            event_listener: Receives every queue domain event.
            sleep: Awaitable sleep, injectable for tests.
            clock: Monotonic time source, injectable for tests.
            rng: Random source for jitter, injectable for tests.
        """
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError("Require 0 <= min_delay <= max_delay.")
        self.transport = transport
        self.classifier = classifier
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.default_timeout = default_timeout
        self.default_retry_base_delay = default_retry_base_delay
        self.retry_jitter = retry_jitter
        self.retry_priority_boost = retry_priority_boost
        self.default_rate_limit_delay = default_rate_limit_delay
        self.backoff_decay_step = backoff_decay_step
        self.rate_limiter = rate_limiter
        self.default_headers = dict(default_headers or {})
        self.event_listener = event_listener
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

        self._heap: List[_HeapRow] = []
        self._sequence = 0
        self._paused = False
        self._worker_task: Optional[asyncio.Task] = None
        self._last_dispatch: Optional[float] = None
        self._rate_limit_backoff = 0.0

        self._latencies: Deque[float] = deque(maxlen=latency_window)
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._rate_limit_hits = 0

        logger.info(
            f"RequestQueue initialized: delay={min_delay}-{max_delay}s, max_retries={max_retries}, "
            f"timeout={default_timeout}s"
        )

    # --- Events ---

    def _dispatch_event(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is None:
            return
        try:
            self.event_listener(event)
        except Exception as e:
            logger.error(f"Queue event listener failed on {type(event).__name__}: {e}", exc_info=True)

    # --- Public API ---

    def enqueue(self, target: RequestTarget, options: Optional[RequestOptions] = None) -> "asyncio.Future[TransportResponse]":
        """Adds a request to the queue.

        Must be called from within the running event loop.

        Returns:
            A future resolved with the TransportResponse, or failed with the
            last ClassifiedError (or QueueClearedError if the queue is cleared).
        """
        options = options or RequestOptions()
        loop = asyncio.get_running_loop()
        item = QueueItem(
            target=target,
            priority=options.priority,
            sequence=self._sequence,
            max_retries=self.max_retries if options.max_retries is None else options.max_retries,
            timeout=options.timeout or self.default_timeout,
            retry_base_delay=options.retry_base_delay or self.default_retry_base_delay,
            headers=dict(options.headers),
            completion=loop.create_future(),
            enqueued_at=self._clock(),
        )
        self._sequence += 1
        self._push(item)
        self._total_requests += 1
        self._dispatch_event(RequestEnqueued(target=target.describe(), priority=item.priority, queue_length=len(self._heap)))
        self._ensure_worker()
        return item.completion

    def pause(self) -> None:
        """Stops dispatching after the in-flight request (if any)."""
        self._paused = True
        logger.info("Request queue paused")

    def resume(self) -> None:
        self._paused = False
        if self._heap:
            logger.info("Request queue resumed")
            self._ensure_worker()

    def clear(self) -> int:
        """Rejects every pending item with QueueClearedError.

        Returns:
            The number of items that were pending.
        """
        pending = [row[2] for row in self._heap]
        self._heap = []
        for item in pending:
            if not item.completion.done():
                item.completion.set_exception(QueueClearedError("Queue cleared"))
        if pending:
            logger.info(f"Request queue cleared, {len(pending)} pending requests rejected")
        return len(pending)

    async def close(self) -> None:
        """Clears the queue and stops the worker."""
        self.clear()
        task = self._worker_task
        self._worker_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.debug("Request queue closed")

    @property
    def queue_length(self) -> int:
        return len(self._heap)

    @property
    def rate_limit_backoff(self) -> float:
        """Remaining global backoff in seconds."""
        return self._rate_limit_backoff

    @property
    def is_processing(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def get_stats(self) -> QueueStats:
        average = sum(self._latencies) / len(self._latencies) if self._latencies else 0.0
        return QueueStats(
            total_requests=self._total_requests,
            successful_requests=self._successful_requests,
            failed_requests=self._failed_requests,
            average_latency=average,
            queue_length=len(self._heap),
            is_processing=self.is_processing,
            is_paused=self._paused,
            rate_limit_hits=self._rate_limit_hits,
            rate_limit_backoff=self._rate_limit_backoff,
        )

    def reset_stats(self) -> None:
        self._total_requests = 0
        self._successful_requests = 0
        self._failed_requests = 0
        self._rate_limit_hits = 0
        self._latencies.clear()
        logger.info("Queue statistics reset")

    def get_queue_info(self) -> List[Dict[str, Any]]:
        """Pending items in dispatch order."""
        now = self._clock()
        return [
            {
                "target": item.target.describe(),
                "priority": item.priority,
                "retries": item.retry_count,
                "wait_time": now - item.enqueued_at,
            }
            for _, _, item in sorted(self._heap)
        ]

    def optimize_queue(self, max_wait: float = DEFAULT_MAX_WAIT) -> int:
        """Boosts items that waited longer than `max_wait` by one point per 10s waited.

        Returns:
            The number of boosted items.
        """
        now = self._clock()
        boosted = 0
        for _, _, item in self._heap:
            waited = now - item.enqueued_at
            if waited > max_wait:
                item.priority += math.floor(waited / 10)
                boosted += 1
        if boosted:
            self._heap = [(-item.priority, item.sequence, item) for _, _, item in self._heap]
            heapq.heapify(self._heap)
            logger.info(f"Boosted priority of {boosted} long-waiting requests")
        return boosted

    def get_health_status(self) -> HealthReport:
        stats = self.get_stats()
        report = HealthReport(stats={"queue": stats})

        if stats.queue_length > QUEUE_LENGTH_WARNING:
            report.add(
                f"Queue is backed up with {stats.queue_length} pending requests",
                "Consider pausing new requests or increasing processing speed",
            )

        failure_rate = stats.failure_rate
        if failure_rate > FAILURE_RATE_WARNING:
            report.add(
                f"High failure rate: {failure_rate:.1f}%",
                "Check network connectivity and the session credentials",
                HealthStatus.CRITICAL if failure_rate > FAILURE_RATE_CRITICAL else HealthStatus.WARNING,
            )

        if stats.rate_limit_hits > RATE_LIMIT_HITS_WARNING:
            report.add(
                f"Frequent rate limiting: {stats.rate_limit_hits} hits",
                "Increase delays between requests or reduce request frequency",
            )

        if stats.average_latency > LATENCY_WARNING_SECONDS:
            report.add(
                f"Slow response times: {stats.average_latency:.1f}s average",
                "Check network conditions or remote server performance",
            )
        return report

    # --- Worker ---

    def _push(self, item: QueueItem) -> None:
        heapq.heappush(self._heap, (-item.priority, item.sequence, item))

    def _ensure_worker(self) -> None:
        if self._paused or self.is_processing:
            return
        self._worker_task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._heap and not self._paused:
            _, _, item = heapq.heappop(self._heap)
            if item.completion.done():
                logger.debug(f"Skipping {item.target.describe()}, already completed")
                continue
            try:
                await self._process(item)
            except asyncio.CancelledError:
                if not item.completion.done():
                    item.completion.cancel()
                raise
            except Exception as e:
                logger.error(f"Queue worker failed on {item.target.describe()}: {e}", exc_info=True)
                if not item.completion.done():
                    item.completion.set_exception(self.classifier.classify_exception(e))

    async def _wait_for_turn(self) -> None:
        if self._rate_limit_backoff > 0:
            wait = self._rate_limit_backoff
            logger.info(f"Rate limit backoff: waiting {wait:.2f}s")
            await self._sleep(wait)
            self._rate_limit_backoff = max(0.0, self._rate_limit_backoff - self.backoff_decay_step)
            self._dispatch_event(RateLimitBackoffApplied(
                wait_time_seconds=wait, remaining_backoff_seconds=self._rate_limit_backoff
            ))

        required = self._rng.uniform(self.min_delay, self.max_delay)
        if self._last_dispatch is not None:
            elapsed = self._clock() - self._last_dispatch
            if elapsed < required:
                await self._sleep(required - elapsed)

        if self.rate_limiter is not None:
            await self.rate_limiter.wait_for_permission()

    async def _execute(self, item: QueueItem) -> TransportResponse:
        headers = {**self.default_headers, **item.headers}
        try:
            response = await asyncio.wait_for(
                self.transport.execute(item.target, headers, item.timeout), item.timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportTimeoutError(f"Request timed out after {item.timeout}s") from e

        if response.status == 429:
            raise RateLimitedError(_parse_retry_after(response.header("retry-after")))
        if response.status >= 400:
            raise TransportStatusError(response.status)
        return response

    async def _process(self, item: QueueItem) -> None:
        await self._wait_for_turn()
        if item.completion.done():
            return

        item.started_at = self._clock()
        self._last_dispatch = item.started_at
        self._dispatch_event(RequestDispatched(
            target=item.target.describe(), priority=item.priority, attempt_number=item.retry_count + 1
        ))
        try:
            response = await self._execute(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, RateLimitedError):
                self._rate_limit_hits += 1
                backoff = e.retry_after if e.retry_after is not None else self.default_rate_limit_delay
                self._rate_limit_backoff = max(self._rate_limit_backoff, backoff)
                logger.warning(f"Rate limited on {item.target.describe()}, backoff now {self._rate_limit_backoff:.2f}s")
            error = self.classifier.classify_exception(
                e, {"target": item.target.describe(), "attempt": item.retry_count + 1}
            )
            await self._handle_failure(item, error)
            return

        latency = self._clock() - item.started_at
        self._latencies.append(latency)
        self._successful_requests += 1
        self._dispatch_event(RequestSucceeded(
            target=item.target.describe(), latency_seconds=latency, status=response.status
        ))
        if not item.completion.done():
            item.completion.set_result(response)

    async def _handle_failure(self, item: QueueItem, error: ClassifiedError) -> None:
        if self.classifier.is_retryable(error) and item.retry_count < item.max_retries:
            item.retry_count += 1
            delay = item.retry_base_delay * 2 ** (item.retry_count - 1) + self._rng.uniform(0, self.retry_jitter)
            logger.warning(
                f"Request {item.target.describe()} failed ({error.kind.value}), "
                f"retrying ({item.retry_count}/{item.max_retries}) after {delay:.2f}s"
            )
            self._dispatch_event(RetryScheduled(
                target=item.target.describe(),
                attempt_number=item.retry_count,
                delay_seconds=delay,
                error_kind=error.kind.value,
            ))
            await self._sleep(delay)
            item.priority += self.retry_priority_boost
            self._push(item)
            return

        self._failed_requests += 1
        logger.error(
            f"Request {item.target.describe()} failed after {item.retry_count} retries: {error.message}"
        )
        self._dispatch_event(RequestFailed(
            target=item.target.describe(),
            error_kind=error.kind.value,
            error_message=error.message,
            attempts=item.retry_count + 1,
        ))
        if not item.completion.done():
            item.completion.set_exception(error)
