"""Interface for the outbound transport to the remote service.

The core never talks to the network directly. Every request goes through a
Transport implementation supplied by the host; the transport must make rate
limiting and timeouts distinguishable through the exceptions defined here.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class RequestTarget:
    """Describes one outbound request (the 'request descriptor')."""
    url: str
    params: Mapping[str, Any] = field(default_factory=dict)
    method: str = "GET"
    label: str = ""  # short description for logs and queue inspection

    def describe(self) -> str:
        return self.label or f"{self.method} {self.url}"


@dataclass
class TransportResponse:
    """Raw response handed back by a Transport."""
    status: int
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class TransportError(Exception):
    """Base class for transport failures."""


class TransportNetworkError(TransportError):
    """Connection-level failure (DNS, refused, reset, ...)."""


class TransportTimeoutError(TransportError):
    """The request was cancelled because it ran past its timeout."""


class TransportStatusError(TransportError):
    """The remote answered with an error status."""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"HTTP {status}")


class RateLimitedError(TransportStatusError):
    """The remote signalled throttling (429 or an explicit header)."""

    def __init__(self, retry_after: Optional[float] = None, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(429, message or (
            f"Rate limited. Retry after {retry_after}s" if retry_after is not None else "Rate limited"
        ))


class Transport(abc.ABC):
    """Abstract Base Class for executing one request against the remote service."""

    @abc.abstractmethod
    async def execute(
        self,
        target: RequestTarget,
        headers: Dict[str, str],
        timeout: float,
    ) -> TransportResponse:
        """Executes a single request.

        Cancellation of the awaiting task (e.g. by `asyncio.wait_for`) is the
        cancellation signal; implementations must let CancelledError through.

        Args:
            target: What to request.
            headers: Headers to send, already merged by the caller.
            timeout: Upper bound in seconds for the whole exchange.

        Returns:
            The raw response. Error statuses may be returned or raised.

        Raises:
            RateLimitedError: If the remote throttled the request.
            TransportTimeoutError: If the exchange timed out.
            TransportError: For other transport failures.
        """
        pass
