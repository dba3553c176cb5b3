"""
Async Graph API client with pagination, throttling, retry, and safety enforcement.
Requests are issued one at a time; the governance flows are strictly sequential.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
)
from ..safety.guardian import SafetyGuardian, SafetyViolation

logger = logging.getLogger("m365_governance.graph")

RETRYABLE_STATUS = (429, 503, 504)


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    service = "Graph API"

    def __init__(self, status_code: int, message: str, url: str, code: str = ""):
        self.status_code = status_code
        self.url = url
        self.code = code
        self.message = message
        label = f"{status_code} {code}".strip()
        super().__init__(f"{self.service} Error {label} for {url}: {message}")


def retry_after_seconds(value: Optional[str], default: float) -> float:
    """Seconds from a numeric Retry-After header; HTTP-date or missing values use `default`."""
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return default


def error_from_response(response: httpx.Response) -> tuple[str, str]:
    """Extract (code, message) from a Graph/OData error body."""
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return "", response.text[:200]
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if isinstance(error, dict):
        message = error.get("message", response.text[:200])
        # SharePoint REST nests the message one level deeper
        if isinstance(message, dict):
            message = message.get("value", "")
        return error.get("code", ""), message
    return "", str(error)


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Safety-validated requests (write allow-list enforcement)
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504 for reads, honouring Retry-After
      - Advanced query support (ConsistencyLevel: eventual + $count)
      - Streaming generators for large result sets
    """

    base_url = GRAPH_BASE_URL
    error_class = GraphAPIError

    def __init__(
        self,
        access_token: str,
        guardian: SafetyGuardian,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.guardian = guardian
        self._transport = transport
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    def _default_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            headers=self._default_headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str) -> str:
        """Build full Graph URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        endpoint = endpoint.lstrip("/")
        return f"{self.base_url}/{GRAPH_API_VERSION}/{endpoint}"

    @staticmethod
    def _advanced_headers(advanced: bool) -> Optional[dict]:
        # Negation, $count and filter+orderby combinations need eventual consistency
        return {"ConsistencyLevel": "eventual"} if advanced else None

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        advanced: bool = False,
    ) -> dict:
        """
        Execute a single GET request with retry/throttle handling.
        """
        url = self._build_url(endpoint)
        self.guardian.validate_request("GET", url)
        return await self._execute_with_retry(
            "GET", url, params=params, headers=self._advanced_headers(advanced)
        )

    async def post(
        self,
        endpoint: str,
        json_body: dict,
    ) -> dict:
        """
        Execute a single POST. Writes are never retried.
        """
        url = self._build_url(endpoint)
        self.guardian.validate_request("POST", url, json_body)
        return await self._execute_with_retry("POST", url, json_body=json_body, retry=False)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        skip_top: bool = False,
        advanced: bool = False,
    ) -> list[dict]:
        """
        Fetch all pages of a paginated endpoint into a list.
        Use get_all_pages_stream() for very large datasets.
        Set skip_top=True for endpoints that don't support $top.
        """
        items = []
        async for item in self.get_all_pages_stream(
            endpoint, params, skip_top=skip_top, advanced=advanced
        ):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        skip_top: bool = False,
        advanced: bool = False,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of a paginated endpoint as an async generator.
        Yields one item at a time.
        Set skip_top=True for endpoints that don't support $top.
        """
        params = dict(params or {})
        if not skip_top:
            params.setdefault("$top", str(DEFAULT_PAGE_SIZE))
        if advanced:
            params.setdefault("$count", "true")

        url = self._build_url(endpoint)
        headers = self._advanced_headers(advanced)
        pages = 0

        while url and pages < MAX_PAGES_PER_ENDPOINT:
            self.guardian.validate_request("GET", url)
            data = await self._execute_with_retry("GET", url, params=params, headers=headers)

            for item in data.get("value", []):
                yield item

            # Follow nextLink for pagination
            url = data.get("@odata.nextLink") or data.get("odata.nextLink")
            params = None  # nextLink contains all params
            pages += 1

        if pages >= MAX_PAGES_PER_ENDPOINT:
            logger.warning(
                f"Pagination safety cap reached ({MAX_PAGES_PER_ENDPOINT} pages) "
                f"for endpoint: {endpoint}"
            )

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
        retry: bool = True,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = INITIAL_BACKOFF_SECONDS
        attempts = MAX_RETRIES + 1 if retry else 1

        for attempt in range(attempts):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body, headers=headers
                )
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(f"{type(e).__name__} on {url}, attempt {attempt + 1}/{attempts}")
                if attempt == attempts - 1:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                continue

            self._request_count += 1

            if response.status_code in (200, 201):
                if not response.content or not response.content.strip():
                    return {}
                return response.json()

            if response.status_code == 204:
                return {}

            if response.status_code in RETRYABLE_STATUS and attempt < attempts - 1:
                self._throttle_count += 1
                retry_after = retry_after_seconds(response.headers.get("Retry-After"), backoff)
                logger.warning(
                    f"Throttled ({response.status_code}) on {url}. "
                    f"Retry {attempt + 1}/{MAX_RETRIES} in {retry_after:.1f}s"
                )
                await asyncio.sleep(retry_after)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                continue

            code, message = error_from_response(response)
            raise self.error_class(response.status_code, message, url, code)

        raise self.error_class(429, "Maximum retries exceeded", url, "TooManyRequests")

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params, headers=headers)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params, headers=headers)
        else:
            raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def get_stats(self) -> dict[str, Any]:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }
