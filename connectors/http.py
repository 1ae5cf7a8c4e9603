"""Platform HTTP Client.

Low-level HTTP client shared by all platform adapters.
Handles authentication headers, retries with backoff, rate limits,
token refresh and error classification.
"""

from typing import Any, Dict, Mapping, Optional, Tuple
from dataclasses import dataclass, field
import asyncio
import json

import aiohttp

from connectors.auth import AuthProvider
from core.errors import AuthError, TransportError
from core.observability import get_logger, get_metrics

logger = get_logger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Only transient failures are retried: the statuses below, 429,
    timeouts and connection errors. Other 4xx responses fail immediately.
    """
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (500, 502, 503, 504)
    max_retry_after: float = 60.0  # cap on a server-provided Retry-After

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class HttpResponse:
    """Buffered response. Header names are lower-cased."""
    status: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            TransportError: Body is not valid JSON (not retried)
        """
        try:
            return json.loads(self.text) if self.text else {}
        except ValueError as e:
            raise TransportError(
                f"Malformed JSON payload: {e}",
                self.status,
                self.text[:500],
            )


def _retry_after_seconds(headers: Mapping[str, str], default: float) -> float:
    raw = headers.get("retry-after")
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


class PlatformHttpClient:
    """HTTP client for platform APIs.

    Provides:
    - Authenticated API calls
    - Bounded retries with exponential backoff for transient failures
    - One token refresh on 401
    - Typed errors (TransportError / AuthError)

    Usage:
        client = PlatformHttpClient(auth_provider, RetryConfig(), timeout_seconds=30)
        await client.open()
        response = await client.request("GET", url, params={"limit": 250})
        await client.close()
    """

    def __init__(
        self,
        auth_provider: AuthProvider,
        retry_config: Optional[RetryConfig] = None,
        timeout_seconds: int = 30,
    ):
        self.auth_provider = auth_provider
        self.retry_config = retry_config or RetryConfig()
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        """Initialize HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
    ) -> HttpResponse:
        """Perform a single request attempt."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        async with self._session.request(
            method,
            url,
            headers=headers,
            params=params,
            data=data,
            timeout=timeout,
        ) as response:
            text = await response.text()
            return HttpResponse(
                status=response.status,
                text=text,
                headers={k.lower(): v for k, v in response.headers.items()},
            )

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        """Make an authenticated API request with automatic retries.

        Args:
            method: HTTP method
            url: Absolute URL
            params: Query parameters
            data: Request body (form dict, bytes or str)
            headers: Extra headers merged over the auth headers

        Returns:
            Successful (< 400) response

        Raises:
            AuthError: Token rejected after one refresh, or 403
            TransportError: Non-retryable status, or retries exhausted
        """
        if self._session is None:
            raise TransportError("Not connected. Call open() first.")

        await self.auth_provider.ensure_valid_token()

        retry_config = self.retry_config
        refreshed = False
        attempt = 0

        while True:
            request_headers = dict(self.auth_provider.get_headers())
            request_headers.update(headers or {})

            try:
                response = await self._send(method, url, request_headers, params, data)
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, retrying in {delay:.1f}s",
                        extra_fields={"url": url, "attempt": attempt + 1},
                    )
                    get_metrics().record_http_retry()
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(
                    f"Request failed after {retry_config.max_retries} retries: {type(e).__name__}: {e}",
                    transient=True,
                ) from e

            if response.status < 400:
                return response

            if response.status == 401 and not refreshed:
                logger.warning("Got 401, attempting token refresh...", extra_fields={"url": url})
                refreshed = True
                await self.auth_provider.refresh()
                continue

            if response.status in (401, 403):
                raise AuthError(
                    f"Authentication failed: {response.text[:200]}",
                    response.status,
                    response.text,
                )

            if response.status == 429:
                if attempt < retry_config.max_retries:
                    wait = min(
                        _retry_after_seconds(response.headers, retry_config.get_delay(attempt)),
                        retry_config.max_retry_after,
                    )
                    logger.warning(f"Rate limited, waiting {wait:.1f}s...", extra_fields={"url": url})
                    get_metrics().record_http_retry()
                    await asyncio.sleep(wait)
                    attempt += 1
                    continue
                raise TransportError("Rate limit exceeded", 429, response.text, transient=True)

            if response.status in retry_config.retry_on_status:
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {response.status}, "
                        f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})",
                        extra_fields={"url": url},
                    )
                    get_metrics().record_http_retry()
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue
                raise TransportError(
                    f"API error {response.status} after {retry_config.max_retries} retries",
                    response.status,
                    response.text,
                    transient=True,
                )

            # Non-retryable error
            raise TransportError(
                f"API error {response.status}: {response.text[:200]}",
                response.status,
                response.text,
            )
