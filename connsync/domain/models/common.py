"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like cache keys and affiliation keys,
plus the Result wrapper handed back to callers of the core.
"""

from dataclasses import dataclass
from typing import Generic, NewType, Optional, TypeVar

# === Caching Context ===
CacheKey = NewType("CacheKey", str)              # Unique key for a cache entry
CachePrefix = NewType("CachePrefix", str)        # Prefix for categorizing cache keys (e.g., 'affiliation_logo:')

# === Records Context ===
RecordId = NewType("RecordId", str)              # Remote identifier of a record
AffiliationKey = NewType("AffiliationKey", str)  # Secondary lookup key (e.g., company name)

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a core operation: either a value or a classified error."""
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Result[T]":
        return cls(error=error)
