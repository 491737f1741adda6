"""
Base API adapter for the external game-data providers.

The base adapter provides:
- A lazily created, shared httpx.AsyncClient with request timeout
- Rate-limited GET with per-source spacing (RateLimiter)
- Classification of HTTP failures into typed ProviderErrors
- Transport-level retry with exponential backoff for calls that are
  safe and worth retrying inside a cycle (token, roster)

Usage:
    class RaiderIOAdapter(BaseAPIAdapter):
        source = "raiderio"

        async def fetch_profile(self, identity, lookup_handle=None):
            data = await self._get_json(url, params=params)
"""
import time
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from guild_sync.core import metrics
from guild_sync.core.logging import get_logger
from guild_sync.services.sync.rate_limiter import RateLimiter
from guild_sync.services.sync.types import (
    AuthFailureError,
    NotFoundError,
    ParseError,
    ProviderError,
    ProviderTimeoutError,
    RateLimitedError,
)

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_response(
    response: httpx.Response,
    source: str,
    url: Optional[str] = None
) -> Optional[ProviderError]:
    """
    Map a non-success response to a typed provider error.

    Returns:
        None for 2xx responses
    """
    status = response.status_code
    if status < 400:
        return None

    message = f"HTTP {status} from {source}"

    if status == 404:
        return NotFoundError(message, source, url, status)
    if status == 429:
        return RateLimitedError(
            message, source, url, status,
            retry_after=parse_retry_after(response.headers.get("Retry-After"))
        )
    if status in (401, 403):
        return AuthFailureError(message, source, url, status)
    return ProviderError(message, source, url, status)


def is_transient(exc: BaseException) -> bool:
    """Timeouts, network errors and 5xx responses are worth an immediate retry."""
    if isinstance(exc, ProviderTimeoutError):
        return True
    if type(exc) is ProviderError:
        return exc.status_code is None or exc.status_code >= 500
    return False


class BaseAPIAdapter:
    """
    Base class for provider adapters.

    Attributes:
        source: Provider id used for rate limiting, metrics and error records
        rate_limiter: Shared RateLimiter
        timeout: Per-request timeout in seconds
    """

    source: str = "unknown"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            rate_limiter: Shared per-source limiter
            timeout: Request timeout in seconds
            client: Optional pre-built client (tests pass one with a MockTransport)
        """
        self.rate_limiter = rate_limiter
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"User-Agent": "guild-sync/1.0"},
            )
        return self._client

    async def close(self):
        """Close the HTTP client if this adapter created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _classify(self, response: httpx.Response, url: str) -> Optional[ProviderError]:
        return classify_response(response, self.source, url)

    async def _get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Rate-limited GET returning parsed JSON.

        Raises:
            NotFoundError, RateLimitedError, AuthFailureError,
            ProviderTimeoutError, ParseError, ProviderError
        """
        client = await self._get_client()
        await self.rate_limiter.acquire(self.source)

        started = time.monotonic()
        try:
            try:
                response = await client.get(url, params=params, headers=headers)
            except httpx.TimeoutException as e:
                raise ProviderTimeoutError(f"Request timed out: {e}", self.source, url) from e
            except httpx.RequestError as e:
                raise ProviderError(f"Request failed: {e}", self.source, url) from e
            finally:
                metrics.record_provider_request(self.source, time.monotonic() - started)

            error = self._classify(response, url)
            if error is not None:
                if isinstance(error, RateLimitedError):
                    self.rate_limiter.on_rate_limit(self.source, error.retry_after)
                raise error

            try:
                return response.json()
            except ValueError as e:
                raise ParseError(f"Invalid JSON: {e}", self.source, url, response.status_code) from e

        except ProviderError as e:
            metrics.record_provider_failure(self.source, e.category.value)
            raise

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception(is_transient),
        reraise=True
    )
    async def _get_json_with_retry(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """_get_json with up to three attempts on timeouts and 5xx responses."""
        return await self._get_json(url, params=params, headers=headers)
