"""Interface for caching mechanisms.

Defines the contract for storing, retrieving, and maintaining cached data
with per-entry time-to-live and a bounded total footprint.
"""

import abc
from typing import Any, Optional

# Import relevant domain models
from ..models.common import CacheKey
from ..models.stats import CacheStats, ValidationReport


class CacheService(abc.ABC):
    """Abstract Base Class for caching operations."""

    @property
    def max_size_bytes(self) -> Optional[int]:
        """Footprint ceiling in bytes, None when the cache is unbounded."""
        return None

    @abc.abstractmethod
    async def get(self, key: CacheKey) -> Optional[Any]:
        """Retrieves an item from the cache asynchronously.

        Args:
            key: The cache key to retrieve.

        Returns:
            The cached item if found and not expired, otherwise None.
        """
        pass

    @abc.abstractmethod
    async def set(self, key: CacheKey, value: Any, ttl: Optional[float] = None) -> bool:
        """Stores an item asynchronously.

        Args:
            key: The cache key to store the item under.
            value: The item to store (must be JSON serializable).
            ttl: Time-to-live in seconds (uses the cache default if None).

        Returns:
            True if the item was stored, False if it could not fit.
        """
        pass

    @abc.abstractmethod
    async def remove(self, key: CacheKey) -> None:
        """Deletes an item from the cache asynchronously."""
        pass

    @abc.abstractmethod
    async def clear(self) -> None:
        """Clears all items from the cache asynchronously."""
        pass

    @abc.abstractmethod
    async def stats(self) -> CacheStats:
        """Returns a snapshot of the cache contents without mutating it."""
        pass

    @abc.abstractmethod
    async def cleanup_expired(self) -> int:
        """Deletes every expired entry and returns how many were removed."""
        pass

    @abc.abstractmethod
    async def validate(self) -> ValidationReport:
        """Checks every entry, deleting the ones that cannot be read back."""
        pass
