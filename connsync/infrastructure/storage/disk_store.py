"""Disk-backed KeyValueStore built on diskcache.

Keeps cached pages and the critical-error log across CLI invocations.
"""

import logging
from pathlib import Path
from typing import List, Optional, Union

import diskcache as dc

from connsync.domain.interfaces.store import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_STORE_DIR = Path.home() / ".connsync" / "store"


class DiskStore(KeyValueStore):
    """Persistent store. Expiry is handled by the TTL cache, not by diskcache."""

    def __init__(self, directory: Union[str, Path] = DEFAULT_STORE_DIR, timeout: float = 1.0):
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._cache = dc.Cache(str(self.directory), timeout=timeout)
        except Exception as e:
            logger.error(f"Failed to open disk store at {self.directory}: {e}", exc_info=True)
            raise
        logger.info(f"DiskStore opened at: {self._cache.directory}")

    def get(self, key: str) -> Optional[bytes]:
        value = self._cache.get(key)
        if value is None:
            return None
        return bytes(value)

    def set(self, key: str, value: bytes) -> None:
        self._cache.set(key, bytes(value))

    def remove(self, key: str) -> None:
        self._cache.delete(key)

    def list_keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._cache.iterkeys() if isinstance(k, str) and k.startswith(prefix)]

    def close(self) -> None:
        self._cache.close()
        logger.debug(f"DiskStore closed: {self.directory}")
