"""Interface for the durable key/value store backing the cache and the
critical-error log."""

import abc
from typing import List, Optional


class KeyValueStore(abc.ABC):
    """Abstract Base Class for a byte-oriented key/value store."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Returns the stored bytes for `key`, or None if absent."""
        pass

    @abc.abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Stores `value` under `key`, replacing any previous value."""
        pass

    @abc.abstractmethod
    def remove(self, key: str) -> None:
        """Deletes `key`. Missing keys are ignored."""
        pass

    @abc.abstractmethod
    def list_keys(self, prefix: str = "") -> List[str]:
        """Lists all keys starting with `prefix`."""
        pass

    def close(self) -> None:
        """Releases any underlying resources."""
        return None
