"""Command Handler: the boundary between the core and its callers.

Delegates to the RecordsService and the diagnostics components. Fetch
operations return a Result instead of raising, so callers only ever see
ClassifiedError values.
"""

import logging
from typing import Any, Dict, List, Optional

# Core Services Imports
from connsync.core.services.health_monitor import ISSUE_PENALTY, MAX_ISSUES_BEFORE_CRITICAL, HealthMonitor
from connsync.core.services.records_service import RecordsService

# Domain Layer Imports
from connsync.domain.interfaces.cache import CacheService
from connsync.domain.models.common import Result
from connsync.domain.models.errors import ClassifiedError, ErrorKind
from connsync.domain.models.records import Record
from connsync.domain.models.stats import CacheStats, HealthReport, HealthStatus, MaintenanceReport, QueueStats

# Infrastructure Layer Imports
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.resilience.request_queue import RequestQueue

logger = logging.getLogger(__name__)


class CommandHandler:
    """Handles incoming commands and delegates to the appropriate services."""

    def __init__(
        self,
        records_service: RecordsService,
        classifier: ErrorClassifier,
        cache: CacheService,
        queue: RequestQueue,
        monitor: Optional[HealthMonitor] = None,
    ):
        self.records_service = records_service
        self.classifier = classifier
        self.cache = cache
        self.queue = queue
        self.monitor = monitor

    def _failure(self, exc: Exception, operation: str) -> Result:
        if isinstance(exc, ClassifiedError):
            error = exc
        else:
            logger.error(f"Unexpected error during {operation}: {exc}", exc_info=True)
            error = self.classifier.classify(ErrorKind.UNKNOWN, str(exc) or type(exc).__name__, exc,
                                             {"operation": operation})
        return Result.failure(error)

    async def get_records(self, force_refresh: bool = False, with_logos: bool = True) -> Result[List[Record]]:
        """Handles the 'records' command."""
        logger.info(f"Handling 'records' command (force_refresh={force_refresh})")
        try:
            if with_logos:
                records = await self.records_service.get_records_with_logos(force_refresh)
            else:
                records = await self.records_service.get_all(force_refresh)
            return Result.success(records)
        except Exception as e:
            return self._failure(e, "get_records")

    async def refresh(self) -> Result[List[Record]]:
        """Handles the 'refresh' command."""
        logger.info("Handling 'refresh' command")
        try:
            return Result.success(await self.records_service.refresh())
        except Exception as e:
            return self._failure(e, "refresh")

    async def get_cache_stats(self) -> CacheStats:
        return await self.records_service.get_cache_stats()

    async def clear_cache(self) -> Result[None]:
        try:
            await self.records_service.clear_cache()
            return Result.success(None)
        except Exception as e:
            return self._failure(e, "clear_cache")

    def get_queue_stats(self) -> QueueStats:
        return self.queue.get_stats()

    def get_error_log(self, limit: Optional[int] = None) -> List[ClassifiedError]:
        return self.classifier.get_error_log(limit)

    def get_critical_errors(self) -> List[Dict[str, Any]]:
        return self.classifier.get_critical_errors()

    def clear_error_log(self) -> None:
        self.classifier.clear_error_log()
        self.classifier.clear_critical_errors()

    async def get_health_status(self) -> HealthReport:
        """Combines the service health check with the cache monitor's report.

        Both sides look at the error log and the queue, so findings are merged
        once and the score is taken from the combined issue list.
        """
        report = await self.records_service.perform_health_check()
        if self.monitor is not None:
            try:
                cache_report = await self.monitor.get_health_report()
            except Exception as e:
                self.classifier.classify(ErrorKind.CACHE, f"Cache health report failed: {e}", e)
                report.add("Cache health report failed", "Run 'connsync clear-cache'")
            else:
                report.merge(cache_report)
                if len(report.issues) > MAX_ISSUES_BEFORE_CRITICAL:
                    report.escalate(HealthStatus.CRITICAL)
                report.stats["health_score"] = max(0, 100 - len(report.issues) * ISSUE_PENALTY)
        return report

    async def run_maintenance(self) -> MaintenanceReport:
        """Runs one cache maintenance pass (requires a monitor)."""
        if self.monitor is None:
            raise RuntimeError("No health monitor configured")
        return await self.monitor.run_maintenance()

    async def close(self) -> None:
        if self.monitor is not None:
            await self.monitor.stop()
        await self.records_service.close()
