"""httpx-based implementation of the Transport port."""

import logging
from typing import Dict, Optional

import httpx

from connsync.domain.interfaces.credentials import CredentialProvider
from connsync.domain.interfaces.transport import (
    RequestTarget,
    Transport,
    TransportNetworkError,
    TransportResponse,
    TransportTimeoutError,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "accept": "application/vnd.linkedin.normalized+json+2.1",
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "no-cache",
    "x-li-lang": "en_US",
}


class HttpTransport(Transport):
    """Executes request targets with a shared httpx.AsyncClient.

    Status codes are returned as-is; interpreting them is the queue's job.
    """

    def __init__(
        self,
        credentials: Optional[CredentialProvider] = None,
        base_headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.credentials = credentials
        self.base_headers = dict(DEFAULT_HEADERS if base_headers is None else base_headers)
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None

    def _merge_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        merged = dict(self.base_headers)
        if self.credentials is not None:
            merged.update(self.credentials.get_auth_headers())
        merged.update(headers)
        return merged

    async def execute(self, target: RequestTarget, headers: Dict[str, str], timeout: float) -> TransportResponse:
        try:
            response = await self._client.request(
                target.method,
                target.url,
                params=dict(target.params),
                headers=self._merge_headers(headers),
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Timed out requesting {target.describe()}: {e}") from e
        except httpx.TransportError as e:
            raise TransportNetworkError(f"Failed to fetch {target.describe()}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text
        logger.debug(f"{target.describe()} -> HTTP {response.status_code}")
        return TransportResponse(status=response.status_code, body=body, headers=dict(response.headers))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
