"""
Base HTTP client with rate limiting, bounded timeouts, and error handling.

Retries are not done here: a failed request surfaces as an
APIError and the sync retry ladder decides whether to try again.
"""

import asyncio
from typing import Any, Optional
from urllib.parse import urljoin

import httpx

from marketplace_sync.core.logging import get_logger

logger = get_logger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded."""

    pass


class AuthenticationError(APIError):
    """Raised when authentication fails."""

    pass


class BaseAPIClient:
    """
    Base class for API clients with common functionality.

    Features:
    - Bounded request timeout
    - Rate limiting
    - Request/response logging
    - Error handling
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10,
        rate_limit: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize API client.

        Args:
            base_url: Base URL for API
            timeout: Request timeout in seconds
            rate_limit: Maximum requests per second
            transport: Optional httpx transport (used to stub the network in tests)
        """
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.rate_limit = rate_limit
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._last_request_time = 0.0

    async def __aenter__(self) -> "BaseAPIClient":
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _rate_limit_wait(self) -> None:
        """Apply rate limiting."""
        loop = asyncio.get_running_loop()
        time_since_last = loop.time() - self._last_request_time
        min_interval = 1.0 / self.rate_limit

        if time_since_last < min_interval:
            await asyncio.sleep(min_interval - time_since_last)

        self._last_request_time = loop.time()

    async def request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> Any:
        """
        Make HTTP request with error handling.

        Args:
            method: HTTP method
            endpoint: API endpoint, relative to base_url, or an absolute URL
            **kwargs: Additional arguments for httpx.request

        Returns:
            Response JSON data

        Raises:
            APIError: On API error, network failure or timeout
            RateLimitError: On rate limit exceeded
            AuthenticationError: On authentication failure
        """
        client = await self._ensure_client()
        await self._rate_limit_wait()

        url = urljoin(self.base_url, endpoint.lstrip("/")) if "://" not in endpoint else endpoint

        logger.debug(f"{method} {url}", extra={"params": str(kwargs.get("params"))})

        try:
            response = await client.request(method, url, **kwargs)

            if response.status_code == 429:
                retry_after = response.headers.get("Retry-After", "unknown")
                logger.warning(f"Rate limit exceeded, retry after {retry_after}s")
                raise RateLimitError("Rate limit exceeded", status_code=429)

            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"Authentication failed: {response.text}",
                    status_code=response.status_code,
                )

            response.raise_for_status()

            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error: {e.response.status_code} - {e.response.text}")
            raise APIError(
                f"HTTP {e.response.status_code}: {e.response.text}",
                status_code=e.response.status_code,
                response=_safe_json(e.response),
            ) from e

        except httpx.RequestError as e:
            logger.error(f"Request error: {e!r}")
            raise APIError(f"Request failed: {e!r}") from e

        except ValueError as e:
            raise APIError(f"Invalid JSON in response from {url}") from e

    async def get(self, endpoint: str, **kwargs: Any) -> Any:
        """Make GET request."""
        return await self.request("GET", endpoint, **kwargs)

    async def post(self, endpoint: str, **kwargs: Any) -> Any:
        """Make POST request."""
        return await self.request("POST", endpoint, **kwargs)


def _safe_json(response: httpx.Response) -> Optional[Any]:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
