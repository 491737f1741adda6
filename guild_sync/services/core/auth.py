"""
OAuth client-credentials token provider for the Blizzard API.

The token is cached until shortly before it expires. ``invalidate()`` drops
it so the next ``get_token()`` fetches a fresh one; adapters call it when a
request comes back 401.
"""
import asyncio
import logging
import time
from typing import Callable, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from guild_sync.core import metrics
from guild_sync.services.sync.types import AuthFailureError, ParseError, ProviderError

logger = logging.getLogger(__name__)


class AuthTokenProvider:
    """Caches and refreshes a client-credentials access token."""

    source = "blizzard-oauth"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        timeout: float = 10.0,
        refresh_margin: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            client_id: OAuth client id
            client_secret: OAuth client secret
            token_url: Token endpoint
            timeout: Request timeout in seconds
            refresh_margin: Refresh this many seconds before expiry
            client: Optional pre-built HTTP client
            clock: Monotonic clock (injectable for tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.timeout = timeout
        self.refresh_margin = refresh_margin
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    @property
    def has_valid_token(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get_token(self) -> str:
        """Return a cached token, fetching a new one when missing or expiring."""
        if self.has_valid_token:
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.has_valid_token:
                return self._token

            payload = await self._request_token()
            try:
                token = payload["access_token"]
                expires_in = float(payload.get("expires_in", 3600))
            except (KeyError, TypeError, ValueError) as e:
                raise ParseError(f"Malformed token response: {e}", self.source, self.token_url) from e

            self._token = token
            self._expires_at = self._clock() + max(0.0, expires_in - self.refresh_margin)
            metrics.auth_token_refresh_total.inc()
            logger.info(f"🔑 Obtained access token (expires in {int(expires_in)}s)")
            return token

    def invalidate(self):
        """Drop the cached token."""
        if self._token is not None:
            logger.info("🔑 Access token invalidated")
        self._token = None
        self._expires_at = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.RequestError, httpx.HTTPStatusError)),
        reraise=True
    )
    async def _post_token(self) -> httpx.Response:
        client = await self._get_client()
        response = await client.post(
            self.token_url,
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.client_secret),
        )
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _request_token(self) -> dict:
        if not self.client_id or not self.client_secret:
            raise AuthFailureError("Client credentials are not configured", self.source, self.token_url)

        try:
            response = await self._post_token()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"Token endpoint error: HTTP {e.response.status_code}",
                self.source, self.token_url, e.response.status_code
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"Token request failed: {e}", self.source, self.token_url) from e

        if response.status_code >= 400:
            raise AuthFailureError(
                f"Token request rejected: HTTP {response.status_code}",
                self.source, self.token_url, response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid token JSON: {e}", self.source, self.token_url) from e

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
