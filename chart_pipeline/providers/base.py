"""
Base Paginated Source - aiohttp client for page-token APIs.

Every list endpoint of the web-status API answers:

    {"metadata": {"next_page_token": "..."}, "data": [...]}

paginate() follows next_page_token until it is absent and yields each
page's data list, which is exactly the page source shape the aggregation
engine consumes.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, List, Optional, Tuple

import aiohttp

from chart_pipeline.exceptions import FetchError, RateLimitError


logger = logging.getLogger(__name__)

# Ordered (key, value) pairs; repeated keys encode list parameters.
Query = List[Tuple[str, str]]


def build_query(
    params: Optional[dict[str, Any]],
    page_token: Optional[str] = None,
) -> Query:
    """
    Flatten params into query pairs.

    None values are dropped, lists repeat the key, booleans become
    "true"/"false".
    """
    query: Query = []
    for key, value in (params or {}).items():
        values = value if isinstance(value, (list, tuple)) else [value]
        for item in values:
            if item is None:
                continue
            if isinstance(item, bool):
                item = "true" if item else "false"
            query.append((key, str(item)))
    if page_token is not None:
        query.append(("page_token", page_token))
    return query


class BasePaginatedSource:
    """
    Shared HTTP plumbing for paginated API clients.

    Features:
    - Session ownership (creates one lazily unless injected)
    - Retry with exponential backoff on rate limits and server errors
    - Status mapping to FetchError / RateLimitError
    """

    DEFAULT_TIMEOUT = 30.0
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        retry_backoff_base: float = RETRY_BACKOFF_BASE,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff_base = retry_backoff_base
        self._session = session
        self._owns_session = session is None
        self._request_count = 0

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    def request_count(self) -> int:
        return self._request_count

    async def paginate(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
    ) -> AsyncIterator[List[Any]]:
        """
        Yield the data list of every page of a list endpoint.

        Args:
            path: Endpoint path below base_url
            params: Query parameters (page_token is managed here)

        Raises:
            FetchError: If a page cannot be fetched after retries
        """
        next_page_token: Optional[str] = None
        pages = 0

        while True:
            query = build_query(params, page_token=next_page_token)
            page = await self._fetch_with_retry("GET", path, query)
            pages += 1

            yield page.get("data") or []

            next_page_token = (page.get("metadata") or {}).get("next_page_token")
            if next_page_token is None:
                break

        logger.debug(f"[{self.name}] {path}: {pages} pages")

    async def _fetch_with_retry(
        self,
        method: str,
        path: str,
        params: Optional[Query] = None,
    ) -> dict[str, Any]:
        """Fetch with exponential backoff retry."""
        last_error: Optional[Exception] = None

        for attempt in range(self._max_retries):
            try:
                return await self._make_request(method, path, params)

            except RateLimitError as e:
                wait_time = e.retry_after_seconds or self._retry_backoff_base ** attempt
                logger.warning(
                    f"[{self.name}] Rate limited, waiting {wait_time}s "
                    f"(attempt {attempt + 1}/{self._max_retries})"
                )
                last_error = e
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(wait_time)

            except FetchError as e:
                if not e.is_server_error():
                    raise
                wait_time = self._retry_backoff_base ** attempt
                logger.warning(
                    f"[{self.name}] Server error {e.status_code}, "
                    f"retrying in {wait_time}s (attempt {attempt + 1}/{self._max_retries})"
                )
                last_error = e
                if attempt + 1 < self._max_retries:
                    await asyncio.sleep(wait_time)

        raise FetchError(
            message=f"Failed after {self._max_retries} attempts",
            request_url=f"{self._base_url}{path}",
            original_error=last_error,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "webstatus-chart-pipeline/1.0",
        }

    async def _make_request(
        self,
        method: str,
        path: str,
        params: Optional[Query] = None,
    ) -> dict[str, Any]:
        """Make HTTP request with error handling."""
        session = await self._get_session()
        url = f"{self._base_url}{path}"

        start_time = time.time()
        self._request_count += 1
        try:
            async with session.request(method, url, params=params) as response:
                latency_ms = (time.time() - start_time) * 1000

                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        retry_after_seconds=int(retry_after) if retry_after else None,
                        request_url=url,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                data = await response.json()
                logger.debug(f"[{self.name}] {method} {path} completed in {latency_ms:.1f}ms")
                return data

        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                request_url=url,
                original_error=e,
            )

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BasePaginatedSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.name}(base_url={self._base_url})>"
