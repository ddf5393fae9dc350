"""Application service for fetching the full record set.

Pages through the remote directory via the DirectoryClient (and therefore
the RequestQueue), caches the aggregate, and enriches records with
affiliation logos in the background.
"""

import asyncio
import dataclasses
import logging
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

# Domain Layer Imports
from connsync.domain.interfaces.cache import CacheService
from connsync.domain.models.common import CacheKey
from connsync.domain.models.errors import ClassifiedError, ErrorKind
from connsync.domain.models.records import Record
from connsync.domain.models.stats import CacheStats, HealthReport, HealthStatus, QueueStats

# Infrastructure Layer Imports
from connsync.infrastructure.api.directory_client import DirectoryClient
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.resilience.request_queue import RequestQueue

logger = logging.getLogger(__name__)

RECORDS_CACHE_KEY = CacheKey("records")
LOGO_CACHE_PREFIX = "affiliation_logo:"

DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_RECORDS = 1000
DEFAULT_MAX_CONSECUTIVE_FAILURES = 3
DEFAULT_FAILURE_BASE_DELAY = 2.0
DEFAULT_BATCH_DELAY = (0.5, 1.0)
DEFAULT_LOGO_TTL = 24 * 60 * 60
DEFAULT_ENRICHMENT_BATCH_SIZE = 5
DEFAULT_ENRICHMENT_DELAY = (1.0, 2.0)
ENRICHMENT_PRIORITY = -1

# Health thresholds
EXPIRED_RATIO_WARNING = 0.5
RECENT_ERRORS_WARNING = 10


def logo_cache_key(affiliation_key: str) -> CacheKey:
    return CacheKey(f"{LOGO_CACHE_PREFIX}{affiliation_key}")


class RecordsService:
    """Fetches, caches and enriches the record set."""

    def __init__(
        self,
        client: DirectoryClient,
        queue: RequestQueue,
        cache: CacheService,
        classifier: ErrorClassifier,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_records: int = DEFAULT_MAX_RECORDS,
        max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES,
        failure_base_delay: float = DEFAULT_FAILURE_BASE_DELAY,
        batch_delay: Tuple[float, float] = DEFAULT_BATCH_DELAY,
        records_ttl: Optional[float] = None,
        logo_ttl: float = DEFAULT_LOGO_TTL,
        enrichment_batch_size: int = DEFAULT_ENRICHMENT_BATCH_SIZE,
        enrichment_delay: Tuple[float, float] = DEFAULT_ENRICHMENT_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initializes the RecordsService.

        Args:
            client: Builds and parses the remote requests.
            queue: The queue every request goes through (used for stats and shutdown).
            cache: Cache for the aggregate and the affiliation logos.
            classifier: Classifies failures.
            batch_size: Records requested per page.
            max_records: Fetching stops once this many records were collected.
            max_consecutive_failures: Failed pages in a row before giving up.
            failure_base_delay: Multiplied by the failure count to get the pause after a failed page.
            batch_delay: Bounds of the random pause between pages.
            records_ttl: TTL of the cached aggregate (cache default if None).
            logo_ttl: TTL of cached logos.
            enrichment_batch_size: Logo lookups issued together.
            enrichment_delay: Bounds of the random pause between lookup batches.
            sleep: Awaitable sleep, injectable for tests.
            rng: Random source for the pauses, injectable for tests.
        """
        if batch_size <= 0 or enrichment_batch_size <= 0:
            raise ValueError("Batch sizes must be positive.")
        self.client = client
        self.queue = queue
        self.cache = cache
        self.classifier = classifier
        self.batch_size = batch_size
        self.max_records = max_records
        self.max_consecutive_failures = max_consecutive_failures
        self.failure_base_delay = failure_base_delay
        self.batch_delay = batch_delay
        self.records_ttl = records_ttl
        self.logo_ttl = logo_ttl
        self.enrichment_batch_size = enrichment_batch_size
        self.enrichment_delay = enrichment_delay
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._enrichment_tasks: Set[asyncio.Task] = set()

    def _classified(self, exc: BaseException, context: Dict[str, Any]) -> ClassifiedError:
        """Classifies `exc` unless the queue already did."""
        if isinstance(exc, ClassifiedError):
            return exc
        return self.classifier.classify_exception(exc, context)

    # --- Fetching ---

    async def get_all(self, force_refresh: bool = False) -> List[Record]:
        """Returns every record, from the cache when possible.

        Raises:
            ClassifiedError: If the records could not be fetched.
        """
        if not force_refresh:
            cached = await self._read_cached_records()
            if cached is not None:
                logger.info(f"Returning {len(cached)} cached records")
                return cached

        logger.info("Fetching fresh records from the remote directory")
        records = await self._fetch_all()
        await self._store_records(records)
        self._start_enrichment(records)
        return records

    async def _read_cached_records(self) -> Optional[List[Record]]:
        try:
            cached = await self.cache.get(RECORDS_CACHE_KEY)
        except Exception as e:
            error = self.classifier.cache_error(e, {"operation": "get_records"})
            logger.warning(f"Cache error, proceeding with fresh fetch: {error.user_message}")
            return None
        if cached is None:
            return None
        try:
            return [Record.from_dict(item) for item in cached]
        except (KeyError, TypeError, AttributeError) as e:
            self.classifier.cache_error(e, {"operation": "decode_records"})
            return None

    async def _fetch_all(self) -> List[Record]:
        records: List[Record] = []
        start = 0
        failures = 0

        while True:
            try:
                batch = await self.client.fetch_page(start, self.batch_size)
            except Exception as e:
                error = self._classified(e, {"operation": "fetch_page", "start": start, "attempt": failures + 1})
                if not error.recoverable:
                    raise error
                failures += 1
                logger.error(f"Failed to fetch batch starting at {start}: {error.user_message}")
                if failures >= self.max_consecutive_failures:
                    raise self.classifier.classify(
                        error.kind,
                        f"Failed to fetch records after {failures} consecutive failures: {error.message}",
                        error,
                        {"operation": "get_all", "start": start},
                    )
                await self._sleep(self.failure_base_delay * failures)
                continue

            failures = 0
            if not batch:
                break
            records.extend(batch)
            start += self.batch_size
            if len(records) >= self.max_records:
                logger.warning(f"Reached the record limit of {self.max_records}, stopping")
                break
            await self._sleep(self._rng.uniform(*self.batch_delay))

        if not records:
            # An empty pull almost always means the session is not authenticated.
            raise self.classifier.classify(
                ErrorKind.NETWORK,
                "No records could be fetched. Please check the session credentials.",
                None,
                {"operation": "get_all"},
            )
        logger.info(f"Fetched {len(records)} records")
        return records

    async def _store_records(self, records: List[Record]) -> None:
        try:
            await self.cache.set(RECORDS_CACHE_KEY, [r.to_dict() for r in records], self.records_ttl)
        except Exception as e:
            error = self.classifier.cache_error(e, {"operation": "set_records"})
            logger.warning(f"Failed to cache records: {error.user_message}")

    async def get_records_with_logos(self, force_refresh: bool = False) -> List[Record]:
        """Like get_all, with cached affiliation logos attached."""
        records = await self.get_all(force_refresh)
        logos: Dict[str, Optional[str]] = {}
        enriched: List[Record] = []
        for record in records:
            key = record.affiliation_key
            if key and key not in logos:
                try:
                    logos[key] = await self.cache.get(logo_cache_key(key))
                except Exception as e:
                    self.classifier.cache_error(e, {"operation": "get_logo", "affiliation": key})
                    logos[key] = None
            logo = logos.get(key) if key else None
            enriched.append(dataclasses.replace(record, affiliation_logo_ref=logo) if logo else record)
        return enriched

    async def refresh(self) -> List[Record]:
        """Drops the cached aggregate and fetches again."""
        try:
            await self.cache.remove(RECORDS_CACHE_KEY)
        except Exception as e:
            raise self.classifier.cache_error(e, {"operation": "refresh_records"}) from e
        return await self.get_all(force_refresh=True)

    # --- Background enrichment ---

    def _start_enrichment(self, records: List[Record]) -> None:
        keys = list(dict.fromkeys(r.affiliation_key for r in records if r.affiliation_key))
        if not keys:
            return
        task = asyncio.get_running_loop().create_task(self._enrich(keys))
        self._enrichment_tasks.add(task)
        task.add_done_callback(self._enrichment_tasks.discard)

    async def _missing_logo_keys(self, keys: List[str]) -> List[str]:
        missing = []
        for key in keys:
            try:
                if await self.cache.get(logo_cache_key(key)) is None:
                    missing.append(key)
            except Exception as e:
                self.classifier.cache_error(e, {"operation": "get_logo", "affiliation": key})
                missing.append(key)
        return missing

    async def _enrich_one(self, key: str) -> None:
        logo = await self.client.fetch_affiliation_logo(key, priority=ENRICHMENT_PRIORITY)
        if logo:
            await self.cache.set(logo_cache_key(key), logo, self.logo_ttl)

    async def _enrich(self, keys: List[str]) -> None:
        try:
            missing = await self._missing_logo_keys(keys)
            logger.info(f"Fetching logos for {len(missing)} of {len(keys)} affiliations")
            for i in range(0, len(missing), self.enrichment_batch_size):
                batch = missing[i:i + self.enrichment_batch_size]
                results = await asyncio.gather(*(self._enrich_one(k) for k in batch), return_exceptions=True)
                for key, result in zip(batch, results):
                    if isinstance(result, Exception):
                        error = self._classified(result, {"operation": "fetch_logo", "affiliation": key})
                        logger.warning(f"Logo lookup for {key} failed: {error.message}")
                if i + self.enrichment_batch_size < len(missing):
                    await self._sleep(self._rng.uniform(*self.enrichment_delay))
        except Exception as e:
            self._classified(e, {"operation": "enrichment"})
            logger.error(f"Background logo enrichment failed: {e}", exc_info=True)

    async def wait_for_enrichment(self) -> None:
        """Waits for every running enrichment task to finish."""
        if self._enrichment_tasks:
            await asyncio.gather(*list(self._enrichment_tasks), return_exceptions=True)

    # --- Diagnostics ---

    async def get_cache_stats(self) -> CacheStats:
        try:
            return await self.cache.stats()
        except Exception as e:
            self.classifier.cache_error(e, {"operation": "get_cache_stats"})
            return CacheStats()

    async def clear_cache(self) -> None:
        try:
            await self.cache.clear()
        except Exception as e:
            raise self.classifier.cache_error(e, {"operation": "clear_cache"}) from e

    def get_queue_stats(self) -> QueueStats:
        return self.queue.get_stats()

    async def perform_health_check(self) -> HealthReport:
        report = HealthReport()
        try:
            cache_stats = await self.get_cache_stats()
            report.stats["cache"] = cache_stats
            if cache_stats.expired_count > cache_stats.total_items * EXPIRED_RATIO_WARNING:
                report.add(
                    f"High number of expired items ({cache_stats.expired_count}/{cache_stats.total_items})",
                    "Run cache cleanup to remove expired entries",
                )

            analysis = self.classifier.analyze()
            report.stats["errors"] = analysis
            if analysis.recent_errors > RECENT_ERRORS_WARNING:
                report.add(
                    f"High error rate: {analysis.recent_errors} errors in the last hour",
                    "Check the network connection and the session credentials",
                )
            if analysis.critical_errors > 0:
                report.add(
                    f"{analysis.critical_errors} critical errors detected",
                    "Review the error log and refresh the session",
                    HealthStatus.CRITICAL,
                )

            queue_report = self.queue.get_health_status()
            report.stats.update(queue_report.stats)
            report.merge(queue_report)
        except Exception as e:
            self.classifier.classify(ErrorKind.UNKNOWN, "Health check failed", e)
            report.add("Health check failed", "Restart the application", HealthStatus.CRITICAL)
        return report

    async def close(self) -> None:
        tasks = list(self._enrichment_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.queue.close()
