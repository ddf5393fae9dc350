"""Read-only snapshots describing cache, queue and error health.

These are recomputed on demand and never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from connsync.domain.models.errors import ErrorKind


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


@dataclass
class CacheStats:
    total_items: int = 0
    total_size_bytes: int = 0
    oldest_timestamp: Optional[float] = None
    newest_timestamp: Optional[float] = None
    expired_count: int = 0


@dataclass
class EntryInfo:
    """Per-entry detail for cache inspection."""
    key: str
    size_bytes: int
    age_seconds: float
    ttl: float
    expired: bool
    compressed: bool


@dataclass
class ValidationReport:
    valid: int = 0
    invalid: int = 0
    repaired: int = 0


@dataclass
class QueueStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency: float = 0.0  # seconds, over the sliding window
    queue_length: int = 0
    is_processing: bool = False
    is_paused: bool = False
    rate_limit_hits: int = 0
    rate_limit_backoff: float = 0.0

    @property
    def failure_rate(self) -> float:
        """Failure percentage over finished requests (0 when nothing finished)."""
        finished = self.successful_requests + self.failed_requests
        if finished == 0:
            return 0.0
        return self.failed_requests / finished * 100


@dataclass
class ErrorAnalysis:
    total_errors: int = 0
    counts_by_kind: Dict[ErrorKind, int] = field(default_factory=dict)
    recent_errors: int = 0
    critical_errors: int = 0
    recovery_rate_percent: int = 100


@dataclass
class HealthReport:
    """Tri-state verdict with the reasons behind it."""
    status: HealthStatus = HealthStatus.HEALTHY
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def escalate(self, status: HealthStatus) -> None:
        """Raises the verdict to `status`; never lowers it."""
        if status.severity > self.status.severity:
            self.status = status

    def add(self, issue: str, recommendation: Optional[str] = None,
            status: Optional[HealthStatus] = HealthStatus.WARNING) -> None:
        self.issues.append(issue)
        if recommendation:
            self.recommendations.append(recommendation)
        if status is not None:
            self.escalate(status)

    def merge(self, other: "HealthReport") -> None:
        """Folds in `other`, skipping issues and recommendations already present."""
        self.issues.extend(i for i in other.issues if i not in self.issues)
        self.recommendations.extend(r for r in other.recommendations if r not in self.recommendations)
        self.escalate(other.status)


@dataclass
class MaintenanceReport:
    expired_removed: int
    validation: ValidationReport
    stats: CacheStats
