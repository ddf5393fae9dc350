"""Concrete implementation of the TTL Caching Service.

Entries live in a KeyValueStore as JSON envelopes carrying their creation
time, TTL, compression flag and stored size. Expired entries are purged
lazily on read and eagerly by `cleanup_expired`. The total number of bytes
written to the store, envelopes included, is kept under a ceiling by
evicting expired entries first and then the oldest 30% of what remains,
inside a single critical section so concurrent writers cannot interleave
their eviction decisions.
"""

import asyncio
import json
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

# Domain Layer Imports
from connsync.domain.interfaces.cache import CacheService
from connsync.domain.interfaces.store import KeyValueStore
from connsync.domain.models.common import CacheKey
from connsync.domain.models.errors import CacheError
from connsync.domain.models.stats import CacheStats, EntryInfo, ValidationReport

from connsync.infrastructure.cache.compression import (
    DEFAULT_COMPRESSION_THRESHOLD,
    compress_payload,
    decompress_payload,
    should_compress,
)

logger = logging.getLogger(__name__)

# Default Configuration Constants
DEFAULT_TTL_SECONDS = 5 * 60  # 5 minutes
DEFAULT_MAX_SIZE_BYTES = 5 * 1024 * 1024  # 5 MiB
DEFAULT_KEY_PREFIX = "connsync_cache:"
DEFAULT_EVICTION_FRACTION = 0.3


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class CacheEntry:
    """Internal representation of a stored entry."""
    data: Any  # the JSON value, or base64 text when compressed
    created_at: float
    ttl: float
    compressed: bool
    size_bytes: int  # length of the encoded envelope

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl

    def decode(self) -> Any:
        """Returns the original value, decompressing if needed."""
        if not self.compressed:
            return self.data
        if not isinstance(self.data, str):
            raise ValueError("Compressed entry payload is not text")
        return json.loads(decompress_payload(self.data))

    def to_bytes(self) -> bytes:
        envelope = {
            "data": self.data,
            "created_at": self.created_at,
            "ttl": self.ttl,
            "compressed": self.compressed,
            "size": self.size_bytes,
        }
        return json.dumps(envelope, separators=(",", ":")).encode("utf-8")

    def seal(self) -> bytes:
        """Encodes the envelope with `size_bytes` set to its own encoded length."""
        while True:
            raw = self.to_bytes()
            if len(raw) == self.size_bytes:
                return raw
            self.size_bytes = len(raw)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        """Parses a stored envelope.

        Raises:
            ValueError: If the envelope is unreadable or structurally invalid.
        """
        envelope = json.loads(raw.decode("utf-8"))
        if not isinstance(envelope, dict):
            raise ValueError("Cache envelope is not an object")
        created_at = envelope.get("created_at")
        ttl = envelope.get("ttl")
        if not _is_number(created_at) or created_at <= 0:
            raise ValueError("Cache envelope has no valid 'created_at'")
        if not _is_number(ttl) or ttl <= 0:
            raise ValueError("Cache envelope has no valid 'ttl'")
        if "data" not in envelope:
            raise ValueError("Cache envelope has no 'data'")
        size = envelope.get("size")
        if not _is_number(size):
            size = len(raw)
        return cls(
            data=envelope["data"],
            created_at=float(created_at),
            ttl=float(ttl),
            compressed=bool(envelope.get("compressed", False)),
            size_bytes=int(size),
        )


# (store key, parsed entry or None when unreadable, accounted size)
_ScanRow = Tuple[str, Optional[CacheEntry], int]


class TTLCache(CacheService):
    """Size-bounded TTL cache over a KeyValueStore."""

    def __init__(
        self,
        store: KeyValueStore,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        eviction_fraction: float = DEFAULT_EVICTION_FRACTION,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ):
        if max_size_bytes <= 0:
            raise ValueError("max_size_bytes must be positive.")
        if not 0 < eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be in (0, 1].")
        self.store = store
        self._max_size_bytes = max_size_bytes
        self.default_ttl = default_ttl
        self.compression_threshold = compression_threshold
        self.eviction_fraction = eviction_fraction
        self.key_prefix = key_prefix
        self._clock = clock
        self._lock = asyncio.Lock()
        logger.info(
            f"TTLCache initialized: max={max_size_bytes} bytes, default_ttl={default_ttl}s, "
            f"compression_threshold={compression_threshold} bytes"
        )

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def storage_key(self, key: CacheKey) -> str:
        """Maps a cache key to its key in the backing store."""
        return f"{self.key_prefix}{key}"

    # --- Store helpers (callers hold the lock) ---

    def _remove_stored(self, store_key: str) -> None:
        try:
            self.store.remove(store_key)
        except Exception as e:
            raise CacheError(f"Failed to remove cache entry {store_key}: {e}") from e

    def _scan(self) -> List[_ScanRow]:
        try:
            keys = self.store.list_keys(self.key_prefix)
        except Exception as e:
            raise CacheError(f"Failed to list cache entries: {e}") from e
        rows: List[_ScanRow] = []
        for store_key in keys:
            try:
                raw = self.store.get(store_key)
            except Exception as e:
                raise CacheError(f"Failed to read cache entry {store_key}: {e}") from e
            if raw is None:
                continue
            try:
                rows.append((store_key, CacheEntry.from_bytes(raw), len(raw)))
            except (ValueError, UnicodeError):
                rows.append((store_key, None, len(raw)))
        return rows

    def _cleanup_expired_locked(self, now: float) -> int:
        expired = [k for k, entry, _ in self._scan() if entry is not None and entry.is_expired(now)]
        for store_key in expired:
            self._remove_stored(store_key)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired cache entries")
        return len(expired)

    def _make_room(self, store_key: str, incoming: int, now: float) -> None:
        """Evicts entries until `incoming` bytes fit under the ceiling.

        The entry being replaced (if any) is excluded from the accounting
        since the write overwrites it.
        """
        rows = [row for row in self._scan() if row[0] != store_key]
        total = sum(size for _, _, size in rows)
        if total + incoming <= self._max_size_bytes:
            return

        logger.warning(
            f"Cache size ({total + incoming}) would exceed limit ({self._max_size_bytes}), cleaning up..."
        )
        # Expired and unreadable entries can never be served, drop them first.
        live: List[Tuple[str, CacheEntry, int]] = []
        for key, entry, size in rows:
            if entry is None or entry.is_expired(now):
                self._remove_stored(key)
                total -= size
            else:
                live.append((key, entry, size))

        live.sort(key=lambda row: row[1].created_at)
        while live and total + incoming > self._max_size_bytes:
            count = max(1, math.ceil(len(live) * self.eviction_fraction))
            victims, live = live[:count], live[count:]
            for key, _, size in victims:
                self._remove_stored(key)
                total -= size
            logger.info(f"Removed {len(victims)} oldest cache entries")

    # --- CacheService Interface Implementation ---

    async def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> bool:
        """Stores `value` under `key`, evicting other entries if needed."""
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl <= 0:
            raise ValueError("ttl must be positive.")
        try:
            serialized = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value for {key} is not serializable: {e}") from e

        compressed = should_compress(serialized, self.compression_threshold)
        data: Any = compress_payload(serialized) if compressed else value

        store_key = self.storage_key(key)
        async with self._lock:
            now = self._clock()
            entry = CacheEntry(data=data, created_at=now, ttl=effective_ttl, compressed=compressed, size_bytes=0)
            raw = entry.seal()
            size = entry.size_bytes
            if size > self._max_size_bytes:
                logger.warning(
                    f"Not caching {key}: {size} bytes exceeds the cache limit of {self._max_size_bytes} bytes"
                )
                return False
            self._make_room(store_key, size, now)
            try:
                self.store.set(store_key, raw)
            except Exception as e:
                raise CacheError(f"Failed to write cache entry {key}: {e}") from e
        logger.debug(f"Cached {key} ({size} bytes, TTL: {effective_ttl}s, compressed={compressed})")
        return True

    async def get(self, key: CacheKey) -> Optional[Any]:
        """Returns the cached value, or None on miss, expiry or corruption."""
        store_key = self.storage_key(key)
        async with self._lock:
            try:
                raw = self.store.get(store_key)
            except Exception as e:
                raise CacheError(f"Failed to read cache entry {key}: {e}") from e
            if raw is None:
                logger.debug(f"Cache miss for key: {key}")
                return None

            try:
                entry = CacheEntry.from_bytes(raw)
            except (ValueError, UnicodeError) as e:
                logger.warning(f"Corrupted cache entry {key}: {e}. Removing.")
                self._remove_stored(store_key)
                return None

            if entry.is_expired(self._clock()):
                self._remove_stored(store_key)
                logger.debug(f"Cache expired for {key}")
                return None

            try:
                value = entry.decode()
            except ValueError as e:
                logger.warning(f"Failed to decompress cache entry {key}: {e}. Removing.")
                self._remove_stored(store_key)
                return None

        logger.debug(f"Cache hit for {key}")
        return value

    async def remove(self, key: CacheKey) -> None:
        async with self._lock:
            self._remove_stored(self.storage_key(key))
        logger.debug(f"Removed cache for {key}")

    async def clear(self) -> None:
        async with self._lock:
            try:
                keys = self.store.list_keys(self.key_prefix)
            except Exception as e:
                raise CacheError(f"Failed to list cache entries: {e}") from e
            for store_key in keys:
                self._remove_stored(store_key)
        logger.info(f"Cleared {len(keys)} cache entries")

    async def stats(self) -> CacheStats:
        async with self._lock:
            rows = self._scan()
        now = self._clock()
        stats = CacheStats(total_items=len(rows))
        for _, entry, size in rows:
            stats.total_size_bytes += size
            if entry is None:
                continue
            if stats.oldest_timestamp is None or entry.created_at < stats.oldest_timestamp:
                stats.oldest_timestamp = entry.created_at
            if stats.newest_timestamp is None or entry.created_at > stats.newest_timestamp:
                stats.newest_timestamp = entry.created_at
            if entry.is_expired(now):
                stats.expired_count += 1
        return stats

    async def detailed_stats(self) -> Tuple[CacheStats, List[EntryInfo]]:
        """Overview plus one EntryInfo per readable entry."""
        overview = await self.stats()
        async with self._lock:
            rows = self._scan()
        now = self._clock()
        entries = [
            EntryInfo(
                key=store_key[len(self.key_prefix):],
                size_bytes=size,
                age_seconds=now - entry.created_at,
                ttl=entry.ttl,
                expired=entry.is_expired(now),
                compressed=entry.compressed,
            )
            for store_key, entry, size in rows
            if entry is not None
        ]
        return overview, entries

    async def cleanup_expired(self) -> int:
        async with self._lock:
            return self._cleanup_expired_locked(self._clock())

    async def validate(self) -> ValidationReport:
        report = ValidationReport()
        async with self._lock:
            try:
                keys = self.store.list_keys(self.key_prefix)
            except Exception as e:
                raise CacheError(f"Failed to list cache entries: {e}") from e
            broken: List[str] = []
            for store_key in keys:
                try:
                    raw = self.store.get(store_key)
                except Exception as e:
                    raise CacheError(f"Failed to read cache entry {store_key}: {e}") from e
                if raw is None:
                    continue
                try:
                    CacheEntry.from_bytes(raw).decode()
                    report.valid += 1
                except (ValueError, UnicodeError) as e:
                    logger.warning(f"Invalid cache entry {store_key}: {e}")
                    broken.append(store_key)
                    report.invalid += 1
            for store_key in broken:
                self._remove_stored(store_key)
            report.repaired = len(broken)
        return report
