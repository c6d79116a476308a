"""
Network client for remote token documents.

One GET per attempt against <base>/<resource>-<token>.json, each attempt
bounded by a timeout, retried with linearly increasing backoff.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx

from .errors import FetchError, FetchTimeout, HttpError, TransportError

logger = logging.getLogger("tokensync.network")

DEFAULT_BASE_URL = "https://minecraftservers.ru/web"
DEFAULT_RESOURCE = "json"
DEFAULT_TIMEOUT_MS = 7000
DEFAULT_MAX_RETRIES = 1
DEFAULT_BACKOFF_BASE_MS = 300

# Same unreserved set as JavaScript's encodeURIComponent
_TOKEN_SAFE_CHARS = "-_.!~*'()"


def build_document_url(base_url: str, resource: str, token: str) -> str:
    """Build the document URL for a token, percent-encoding the token."""
    return f"{base_url.rstrip('/')}/{resource}-{quote(token, safe=_TOKEN_SAFE_CHARS)}.json"


class NetworkClient:
    """
    Async fetcher for token documents.

    Usage:
        async with NetworkClient(base_url="https://example.org/web") as client:
            document = await client.fetch_document("abc")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        resource: str = DEFAULT_RESOURCE,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Endpoint root, without trailing slash
            resource: Resource name placed before the token in the path
            timeout_ms: Default per-attempt timeout
            max_retries: Default number of additional attempts after a failure
            backoff_base_ms: Backoff before retry n is backoff_base_ms * n
            http_client: Shared httpx client; one is created (and owned) if omitted
            sleep: Awaitable sleep used for backoff
        """
        self.base_url = base_url.rstrip("/")
        self.resource = resource
        self.timeout_ms = timeout_ms
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            headers={"Accept": "application/json", "Cache-Control": "no-store"},
        )
        self._sleep = sleep
        self._requests = 0
        self._failures = 0

    async def __aenter__(self) -> "NetworkClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self._http.aclose()

    def url_for(self, token: str) -> str:
        return build_document_url(self.base_url, self.resource, token)

    async def fetch_document(
        self,
        token: str,
        timeout_ms: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Fetch and parse the JSON document for a token.

        Args:
            token: Opaque token
            timeout_ms: Per-attempt timeout (defaults to the client's)
            max_retries: Additional attempts after the first (defaults to the client's)

        Returns:
            Parsed JSON document

        Raises:
            FetchTimeout: Final attempt timed out
            HttpError: Final attempt answered with a non-2xx status
            TransportError: Final attempt failed to connect or returned bad JSON
        """
        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        max_retries = self.max_retries if max_retries is None else max(0, max_retries)
        url = self.url_for(token)

        for attempt in range(max_retries + 1):
            try:
                return await self._attempt(token, url, timeout_ms)
            except FetchError as e:
                self._failures += 1
                if attempt == max_retries:
                    logger.warning(
                        f"Fetch for {token} failed after {attempt + 1} attempt(s): {e}"
                    )
                    raise
                delay_ms = self.backoff_base_ms * (attempt + 1)
                logger.info(
                    f"Fetch for {token} failed ({e}), retrying in {delay_ms}ms"
                )
                await self._sleep(delay_ms / 1000)

        raise RuntimeError("unreachable")

    async def _attempt(self, token: str, url: str, timeout_ms: int) -> Any:
        """Single request; cancelled when the timeout expires."""
        timeout_s = timeout_ms / 1000
        self._requests += 1
        logger.info(f"GET {url}")
        try:
            response = await asyncio.wait_for(
                self._http.get(url, timeout=timeout_s),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeout(
                f"request for {token} timed out after {timeout_ms}ms", token=token
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"request for {token} failed: {e}", token=token) from e

        if not response.is_success:
            raise HttpError(response.status_code, token=token)

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"invalid JSON for {token}: {e}", token=token) from e

    def get_stats(self) -> dict:
        return {"requests": self._requests, "failures": self._failures}
