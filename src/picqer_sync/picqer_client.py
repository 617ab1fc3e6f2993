"""Async HTTP client for the Picqer REST API."""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from .config import Config
from .errors import PicqerAPIError

logger = logging.getLogger(__name__)

# HTTP Status codes
HTTP_OK = 200
HTTP_TOO_MANY_REQUESTS = 429


class PicqerClient:
    """Async HTTP client for the Picqer API with rate-limit handling and concurrency control."""

    def __init__(self, config: Config, max_concurrent: int = 5):
        """
        Initialize Picqer client.

        Args:
            config: Configuration with API URL, key and rate-limit settings
            max_concurrent: Maximum concurrent requests (default: 5)
        """
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._throttle_lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self.stats = {"requests": 0, "rate_limited": 0, "retries": 0, "errors": 0}

    async def __aenter__(self):
        """Async context manager entry."""
        timeout = aiohttp.ClientTimeout(total=120, connect=30)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            auth=aiohttp.BasicAuth(self.config.api_key, ""),
            headers={"User-Agent": self.config.user_agent, "Accept": "application/json"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self.session:
            await self.session.close()
            self.session = None

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.config.api_url}/{endpoint.lstrip('/')}"

    async def _throttle(self):
        """Keep at least request_delay_ms between consecutive requests."""
        delay = self.config.request_delay_ms / 1000
        if delay <= 0:
            return
        async with self._throttle_lock:
            if self._last_request_at is not None:
                elapsed = time.monotonic() - self._last_request_at
                if elapsed < delay:
                    await asyncio.sleep(delay - elapsed)
            self._last_request_at = time.monotonic()

    def _rate_limit_wait(self, response: aiohttp.ClientResponse) -> float:
        """Seconds to wait after a 429, from Retry-After or the configured sleep."""
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass
        return self.config.rate_limit_sleep_ms / 1000

    async def get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Make GET request to the Picqer API.

        HTTP 429 responses are retried after the Retry-After interval (or the
        configured sleep) while rate-limit waiting is enabled and retries remain.

        Args:
            endpoint: API endpoint relative to the base URL (e.g., 'receipts')
            params: Optional query parameters

        Returns:
            Parsed JSON body

        Raises:
            RuntimeError: If the client is used outside its context manager
            PicqerAPIError: If the request fails, returns a non-200 status
                or the body is not valid JSON
        """
        if not self.session:
            msg = "Client not initialized. Use 'async with' context manager."
            raise RuntimeError(msg)

        url = self._build_url(endpoint)
        attempt = 0

        async with self.semaphore:
            while True:
                await self._throttle()
                self.stats["requests"] += 1
                try:
                    async with self.session.get(url, params=params) as response:
                        if response.status == HTTP_TOO_MANY_REQUESTS:
                            self.stats["rate_limited"] += 1
                            if self.config.wait_on_rate_limit and attempt < self.config.max_rate_limit_retries:
                                wait_time = self._rate_limit_wait(response)
                                attempt += 1
                                self.stats["retries"] += 1
                                logger.warning(
                                    "Rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                                    endpoint,
                                    wait_time,
                                    attempt,
                                    self.config.max_rate_limit_retries,
                                )
                                await asyncio.sleep(wait_time)
                                continue
                            self.stats["errors"] += 1
                            msg = f"Rate limited after {attempt + 1} attempts: {endpoint}"
                            raise PicqerAPIError(msg, status=response.status)

                        if response.status != HTTP_OK:
                            self.stats["errors"] += 1
                            error_text = await response.text()
                            msg = f"API request failed with status {response.status}: {error_text[:500]}"
                            raise PicqerAPIError(msg, status=response.status)

                        body = await response.text()

                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    self.stats["errors"] += 1
                    msg = f"HTTP request failed: {e}"
                    raise PicqerAPIError(msg) from e

                try:
                    return json.loads(body)
                except ValueError as e:
                    self.stats["errors"] += 1
                    msg = f"Invalid JSON from {endpoint}: {e}"
                    raise PicqerAPIError(msg, status=HTTP_OK) from e

    async def get_page(
        self,
        endpoint: str,
        offset: int,
        limit: int,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Fetch one page of a list endpoint.

        Args:
            endpoint: List endpoint (e.g., 'receipts', 'picklists/batches')
            offset: Number of records to skip
            limit: Page size
            params: Extra query parameters (e.g., {'updated_after': '2024-01-01 00:00:00'})

        Returns:
            Parsed JSON body, normally a list of records
        """
        query = dict(params or {})
        query["offset"] = offset
        query["limit"] = limit
        return await self.get(endpoint, query)
