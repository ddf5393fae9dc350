"""Domain Events emitted by the request queue.

Examples include events for when requests are enqueued, deferred by
throttling, retried, fail, or succeed.
"""

from dataclasses import dataclass, field
import time
from typing import Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class RequestEnqueued(DomainEvent):
    """Event triggered when a request enters the queue."""
    target: str
    priority: int
    queue_length: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class RequestDispatched(DomainEvent):
    """Event triggered right before a request is handed to the transport."""
    target: str
    priority: int
    attempt_number: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class RequestSucceeded(DomainEvent):
    """Event triggered when a request completes successfully."""
    target: str
    latency_seconds: float
    status: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a failed request is scheduled for another attempt."""
    target: str
    attempt_number: int
    delay_seconds: float
    error_kind: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RateLimitBackoffApplied(DomainEvent):
    """Event triggered when the global throttling backoff delays dispatch."""
    wait_time_seconds: float
    remaining_backoff_seconds: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class RequestFailed(DomainEvent):
    """Event triggered when a request fails definitively (after retries)."""
    target: str
    error_kind: str
    error_message: str
    attempts: int
    timestamp: float = field(default_factory=time.time)
