"""HTTP client for the remote sync authority."""

import asyncio
import logging

import httpx

from ..errors import (
    AuthenticationError,
    NetworkError,
    RemoteError,
    SyncTimeoutError,
)
from .protocol import Authority, SyncRequest, SyncResponse

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/sync"
HEALTH_PATH = "/health"


class RemoteAuthority(Authority):
    """Client for the authority's sync endpoint.

    One POST per round; retries are the SyncManager's business, so a
    failure here is reported once as a SyncError subclass.
    """

    def __init__(
        self,
        server_url: str,
        auth_token: str | None = None,
        timeout: float = 30.0,
        probe_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the remote authority client.

        Args:
            server_url: Base URL of the authority (e.g. "https://api.example").
            auth_token: Optional bearer token.
            timeout: Bound on one sync exchange, in seconds.
            probe_timeout: Bound on one health probe, in seconds.
            transport: Optional httpx transport (tests).
        """
        self.server_url = server_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.auth_token:
                headers["Authorization"] = f"Bearer {self.auth_token}"
            self._client = httpx.AsyncClient(
                base_url=self.server_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def health_check(self) -> bool:
        """Check if the authority answers its health endpoint.

        Returns:
            True on any 2xx, False otherwise.
        """
        try:
            client = await self._get_client()
            response = await client.get(HEALTH_PATH, timeout=self.probe_timeout)
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    async def exchange(self, request: SyncRequest) -> SyncResponse:
        """POST a batch to the sync endpoint.

        Args:
            request: Batch to submit.

        Returns:
            Parsed SyncResponse.

        Raises:
            SyncTimeoutError: No answer within ``timeout``.
            NetworkError: The authority could not be reached.
            AuthenticationError: The token was refused (401).
            RemoteError: Any other error status or an unreadable body.
        """
        client = await self._get_client()

        logger.debug(
            f"POST {SYNC_PATH} with {len(request.changes)} changes "
            f"(since {request.last_sync_timestamp})"
        )

        try:
            response = await asyncio.wait_for(
                client.post(SYNC_PATH, json=request.to_dict()),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise SyncTimeoutError(
                f"Sync request timed out after {self.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Could not reach {self.server_url}: {e}") from e

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication expired or invalid", status_code=401
            )

        if not response.is_success:
            try:
                message = response.json().get("message") or response.reason_phrase
            except (ValueError, AttributeError):
                message = response.reason_phrase
            raise RemoteError(
                f"HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
            return SyncResponse.from_dict(body)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise RemoteError(f"Malformed sync response: {e}") from e
