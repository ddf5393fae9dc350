"""Error taxonomy shared by the queue, the orchestrator and the diagnostics.

`ClassifiedError` is the only error type that crosses the core boundary.
The plain exceptions below are raised by infrastructure code and turned into
`ClassifiedError` instances by the ErrorClassifier.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Closed set of failure categories."""
    AUTH = "auth"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    PARSING = "parsing"
    CACHE = "cache"
    PERMISSION = "permission"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ClassifiedError(Exception):
    """A failure mapped into the taxonomy, with user-facing guidance.

    Fields are exposed as read-only properties; build instances through
    ErrorClassifier.classify so the kind-indexed fields stay consistent.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        recoverable: bool,
        user_message: str,
        suggested_action: Optional[str] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
        created_at: Optional[float] = None,
    ):
        super().__init__(message)
        self._kind = ErrorKind(kind)
        self._message = message
        self._recoverable = recoverable
        self._user_message = user_message
        self._suggested_action = suggested_action
        self._cause = cause
        self._context = dict(context or {})
        self._created_at = created_at if created_at is not None else time.time()

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def recoverable(self) -> bool:
        return self._recoverable

    @property
    def user_message(self) -> str:
        return self._user_message

    @property
    def suggested_action(self) -> Optional[str]:
        return self._suggested_action

    @property
    def cause(self) -> Optional[BaseException]:
        return self._cause

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    @property
    def created_at(self) -> float:
        return self._created_at

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form used by the durable critical-error log."""
        return {
            "kind": self._kind.value,
            "message": self._message,
            "cause": str(self._cause) if self._cause is not None else None,
            "context": {k: str(v) for k, v in self._context.items()},
            "created_at": self._created_at,
            "recoverable": self._recoverable,
            "user_message": self._user_message,
            "suggested_action": self._suggested_action,
        }

    def __repr__(self) -> str:
        return f"ClassifiedError(kind={self._kind.value!r}, message={self._message!r})"


class CacheError(Exception):
    """Raised when the cache cannot read or write its backing store."""


class ParsingError(ValueError):
    """Raised when a remote response does not have the expected shape."""


class QueueClearedError(Exception):
    """Set on pending queue items when the queue is cleared or closed."""
