"""Maps raw failures into the ErrorKind taxonomy.

Each classification gets fixed, kind-indexed user guidance and is appended
to a bounded in-memory log (newest first). Non-recoverable errors are also
kept in a small durable log in the key/value store so they survive restarts.
"""

import asyncio
import json
import logging
import time
from collections import Counter, deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from connsync.domain.interfaces.cache import CacheService
from connsync.domain.interfaces.store import KeyValueStore
from connsync.domain.interfaces.transport import (
    RateLimitedError,
    TransportError,
    TransportStatusError,
    TransportTimeoutError,
)
from connsync.domain.models.errors import (
    CacheError,
    ClassifiedError,
    ErrorKind,
    ParsingError,
)
from connsync.domain.models.stats import ErrorAnalysis

logger = logging.getLogger(__name__)

MAX_LOG_SIZE = 100
MAX_CRITICAL_LOG_SIZE = 10
CRITICAL_ERRORS_KEY = "critical_errors"
RECENT_WINDOW_SECONDS = 60 * 60

RECOVERABLE: Mapping[ErrorKind, bool] = {
    ErrorKind.AUTH: False,
    ErrorKind.PERMISSION: False,
    ErrorKind.NETWORK: True,
    ErrorKind.TIMEOUT: True,
    ErrorKind.RATE_LIMIT: True,
    ErrorKind.PARSING: True,
    ErrorKind.CACHE: True,
    ErrorKind.UNKNOWN: True,
}

USER_MESSAGES: Mapping[ErrorKind, str] = {
    ErrorKind.AUTH: "Please log in to the remote service and try again.",
    ErrorKind.NETWORK: "Network connection issue. Please check your internet connection.",
    ErrorKind.RATE_LIMIT: "The remote service is limiting requests. Please wait a moment and try again.",
    ErrorKind.PARSING: "Unable to process the remote data. The service format may have changed.",
    ErrorKind.CACHE: "Cache error occurred. Your data may need to be refreshed.",
    ErrorKind.PERMISSION: "Required permissions are missing. Please check your account access.",
    ErrorKind.TIMEOUT: "Request timed out. Please try again.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}

SUGGESTED_ACTIONS: Mapping[ErrorKind, str] = {
    ErrorKind.AUTH: "Log in to the remote service and refresh the session settings",
    ErrorKind.NETWORK: "Check your internet connection and try again",
    ErrorKind.RATE_LIMIT: "Wait 5-10 minutes before making more requests",
    ErrorKind.PARSING: "Clear the cache and refresh",
    ErrorKind.CACHE: "Run 'connsync clear-cache'",
    ErrorKind.PERMISSION: "Check the account permissions for the configured session",
    ErrorKind.TIMEOUT: "Try again with a stable internet connection",
    ErrorKind.UNKNOWN: "Retry the command or check the logs",
}

RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT})


class ErrorClassifier:
    """Classifies failures and keeps the error logs."""

    def __init__(self, store: Optional[KeyValueStore] = None, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock
        self._log: Deque[ClassifiedError] = deque(maxlen=MAX_LOG_SIZE)

    # --- Classification ---

    def classify(
        self,
        kind: ErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> ClassifiedError:
        """Builds a ClassifiedError for `kind` and records it."""
        error = ClassifiedError(
            kind,
            message,
            recoverable=RECOVERABLE[kind],
            user_message=USER_MESSAGES[kind],
            suggested_action=SUGGESTED_ACTIONS.get(kind),
            cause=cause,
            context=context,
            created_at=self._clock(),
        )
        self._record(error)
        return error

    @staticmethod
    def infer_kind(exc: BaseException) -> ErrorKind:
        """Maps a raw exception to an ErrorKind."""
        if isinstance(exc, ClassifiedError):
            return exc.kind
        if isinstance(exc, RateLimitedError):
            return ErrorKind.RATE_LIMIT
        if isinstance(exc, (TransportTimeoutError, asyncio.TimeoutError)):
            return ErrorKind.TIMEOUT
        if isinstance(exc, TransportStatusError):
            if exc.status == 401:
                return ErrorKind.AUTH
            if exc.status == 403:
                return ErrorKind.PERMISSION
            if exc.status == 429:
                return ErrorKind.RATE_LIMIT
            return ErrorKind.NETWORK
        if isinstance(exc, ParsingError):
            return ErrorKind.PARSING
        if isinstance(exc, CacheError):
            return ErrorKind.CACHE
        if isinstance(exc, (TransportError, ConnectionError, OSError)):
            return ErrorKind.NETWORK

        text = str(exc).lower()
        if "timeout" in text or "timed out" in text:
            return ErrorKind.TIMEOUT
        if "429" in text or "rate limit" in text:
            return ErrorKind.RATE_LIMIT
        return ErrorKind.UNKNOWN

    def classify_exception(
        self, exc: BaseException, context: Optional[Dict[str, Any]] = None
    ) -> ClassifiedError:
        """Classifies a raw exception, inferring its kind.

        An already classified error was logged when it was created, so it is
        not recorded again. It is returned as is, or as a copy with the new
        context merged over the old one.
        """
        if isinstance(exc, ClassifiedError):
            if not context:
                return exc
            merged = exc.context
            merged.update(context)
            return ClassifiedError(
                exc.kind,
                exc.message,
                recoverable=exc.recoverable,
                user_message=exc.user_message,
                suggested_action=exc.suggested_action,
                cause=exc.cause,
                context=merged,
                created_at=exc.created_at,
            )
        message = str(exc) or type(exc).__name__
        return self.classify(self.infer_kind(exc), message, exc, context)

    def auth_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
        return self.classify(ErrorKind.AUTH, message, None, context)

    def permission_error(self, message: str, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
        return self.classify(ErrorKind.PERMISSION, message, None, context)

    def parsing_error(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
        return self.classify(ErrorKind.PARSING, str(exc), exc, context)

    def cache_error(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> ClassifiedError:
        return self.classify(ErrorKind.CACHE, str(exc), exc, context)

    @staticmethod
    def is_retryable(error: ClassifiedError) -> bool:
        return error.kind in RETRYABLE_KINDS

    # --- Logs ---

    def _record(self, error: ClassifiedError) -> None:
        self._log.appendleft(error)
        if error.recoverable:
            logger.warning(f"{error.kind.value}: {error.message} context={error.context}")
        else:
            logger.error(f"{error.kind.value}: {error.message} context={error.context}")
            self._store_critical(error)

    def _store_critical(self, error: ClassifiedError) -> None:
        if self.store is None:
            return
        try:
            critical = self._load_critical()
            critical.insert(0, error.to_dict())
            payload = json.dumps(critical[:MAX_CRITICAL_LOG_SIZE]).encode("utf-8")
            self.store.set(CRITICAL_ERRORS_KEY, payload)
        except Exception as e:
            logger.error(f"Failed to store critical error: {e}")

    def _load_critical(self) -> List[Dict[str, Any]]:
        raw = self.store.get(CRITICAL_ERRORS_KEY) if self.store is not None else None
        if not raw:
            return []
        loaded = json.loads(raw.decode("utf-8"))
        return loaded if isinstance(loaded, list) else []

    def get_error_log(self, limit: Optional[int] = None) -> List[ClassifiedError]:
        """Returns logged errors, newest first."""
        errors = list(self._log)
        return errors[:limit] if limit is not None else errors

    def clear_error_log(self) -> None:
        self._log.clear()
        logger.info("Error log cleared")

    def get_critical_errors(self) -> List[Dict[str, Any]]:
        """Returns the durable log of non-recoverable errors, newest first."""
        try:
            return self._load_critical()
        except Exception as e:
            logger.error(f"Failed to get critical errors: {e}")
            return []

    def clear_critical_errors(self) -> None:
        if self.store is None:
            return
        try:
            self.store.remove(CRITICAL_ERRORS_KEY)
        except Exception as e:
            logger.error(f"Failed to clear critical errors: {e}")

    # --- Analysis & recovery ---

    def analyze(self) -> ErrorAnalysis:
        """Summarizes the in-memory log."""
        errors = list(self._log)
        cutoff = self._clock() - RECENT_WINDOW_SECONDS
        critical = sum(1 for e in errors if not e.recoverable)
        total = len(errors)
        recovery_rate = round((total - critical) / total * 100) if total else 100
        return ErrorAnalysis(
            total_errors=total,
            counts_by_kind=dict(Counter(e.kind for e in errors)),
            recent_errors=sum(1 for e in errors if e.created_at > cutoff),
            critical_errors=critical,
            recovery_rate_percent=recovery_rate,
        )

    async def attempt_recovery(self, error: ClassifiedError, cache: Optional[CacheService] = None) -> bool:
        """Applies the local recovery strategy for `error`.

        Returns:
            True if the error is considered recovered or handled elsewhere.
        """
        if not error.recoverable:
            return False
        try:
            if error.kind in (ErrorKind.CACHE, ErrorKind.PARSING):
                if cache is None:
                    return False
                await cache.clear()
                return True
            # Throttling, timeouts and network failures are retried by the request queue.
            return error.kind in RETRYABLE_KINDS
        except Exception as e:
            logger.error(f"Recovery attempt failed: {e}")
            return False
