"""Periodic cache maintenance and health reporting."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from connsync.domain.interfaces.cache import CacheService
from connsync.domain.models.stats import HealthReport, HealthStatus, MaintenanceReport
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.resilience.request_queue import RequestQueue

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_SIZE_WARNING_RATIO = 0.8
EXPIRED_RATIO_WARNING = 0.3
MAX_ISSUES_BEFORE_CRITICAL = 2
ISSUE_PENALTY = 20


class HealthMonitor:
    """Runs cache maintenance on an interval and builds health reports."""

    def __init__(
        self,
        cache: CacheService,
        queue: Optional[RequestQueue] = None,
        classifier: Optional[ErrorClassifier] = None,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        size_warning_ratio: float = DEFAULT_SIZE_WARNING_RATIO,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.cache = cache
        self.queue = queue
        self.classifier = classifier
        self.interval = interval
        self.size_warning_ratio = size_warning_ratio
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.info("Cache monitoring already started")
            return
        logger.info("Starting cache monitoring...")
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cache monitoring stopped")

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                await self.run_maintenance()
            except Exception as e:
                logger.error(f"Cache monitoring error: {e}", exc_info=True)

    async def run_maintenance(self) -> MaintenanceReport:
        """Removes expired entries, repairs invalid ones and logs the stats."""
        expired = await self.cache.cleanup_expired()
        if expired > 0:
            logger.info(f"Cache maintenance: cleaned up {expired} expired entries")

        validation = await self.cache.validate()
        if validation.invalid > 0:
            logger.info(f"Cache maintenance: repaired {validation.repaired} invalid entries")

        stats = await self.cache.stats()
        logger.info(
            f"Cache stats: {stats.total_items} items, {round(stats.total_size_bytes / 1024)}KB, "
            f"{stats.expired_count} expired"
        )
        return MaintenanceReport(expired_removed=expired, validation=validation, stats=stats)

    async def get_health_report(self) -> HealthReport:
        """Builds a report from the cache state plus queue and error findings.

        Validation repairs invalid entries as a side effect. `stats` carries
        `health_score` = max(0, 100 - 20 per issue).
        """
        stats = await self.cache.stats()
        validation = await self.cache.validate()
        report = HealthReport(stats={"cache": stats, "validation": validation})

        if stats.expired_count > stats.total_items * EXPIRED_RATIO_WARNING:
            report.add(
                f"High number of expired items ({stats.expired_count}/{stats.total_items})",
                "Run cache cleanup to remove expired entries",
            )

        ceiling = self.cache.max_size_bytes
        if ceiling and stats.total_size_bytes > ceiling * self.size_warning_ratio:
            report.add(
                f"Cache size is large ({round(stats.total_size_bytes / 1024)}KB)",
                "Consider clearing old cache entries",
            )

        if validation.invalid > 0:
            report.add(
                f"Found {validation.invalid} corrupted cache entries",
                "Cache validation repaired corrupted entries",
            )

        if stats.total_items == 0:
            report.add("No cached data available", "Fetch records to populate the cache", status=None)

        if self.queue is not None:
            queue_report = self.queue.get_health_status()
            if queue_report.status is HealthStatus.CRITICAL:
                report.merge(queue_report)

        if self.classifier is not None:
            critical = self.classifier.analyze().critical_errors
            if critical > 0:
                report.add(
                    f"{critical} critical errors detected",
                    "Review the error log and refresh the session",
                    HealthStatus.CRITICAL,
                )

        if len(report.issues) > MAX_ISSUES_BEFORE_CRITICAL:
            report.escalate(HealthStatus.CRITICAL)
        report.stats["health_score"] = max(0, 100 - len(report.issues) * ISSUE_PENALTY)
        return report
