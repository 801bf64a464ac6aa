"""
Synchronous REST client shared by every harvester and detail fetcher.
One explicit session object per run; no ambient authentication state.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx

from ..config import REQUEST_TIMEOUT_SECONDS, CONNECT_TIMEOUT_SECONDS

logger = logging.getLogger("m365_harvest.api")

TokenSupplier = Callable[[], str]


class TransportError(Exception):
    """Raised when a remote endpoint cannot be reached or returns an unusable response."""
    def __init__(self, status_code: Optional[int], message: str, url: str):
        self.status_code = status_code
        self.url = url
        label = f"HTTP {status_code}" if status_code is not None else "Transport error"
        super().__init__(f"{label} for {url}: {message}")


class RateLimitExceeded(TransportError):
    """Raised on HTTP 429 so callers can back off instead of aborting."""
    def __init__(self, message: str, url: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(429, message, url)


class ApiClient:
    """
    Thin session over httpx.Client.
    Features:
      - Bearer token pulled from a supplier before every request
      - JSON body validation (object bodies only)
      - Distinct error for server-side throttling (429)
      - No automatic retry; callers decide
    """

    def __init__(
        self,
        token_supplier: Optional[TokenSupplier] = None,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.token_supplier = token_supplier
        self.headers = {"Accept": "application/json", **(headers or {})}
        self._transport = transport
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.Client] = None

    def __enter__(self):
        self._client = httpx.Client(
            timeout=httpx.Timeout(REQUEST_TIMEOUT_SECONDS, connect=CONNECT_TIMEOUT_SECONDS),
            headers=self.headers,
            transport=self._transport,
        )
        return self

    def __exit__(self, *args):
        self.close()

    def close(self):
        if self._client:
            self._client.close()
            self._client = None

    def get(self, url: str, params: Optional[dict[str, Any]] = None) -> dict:
        """
        Execute a single GET and return the decoded JSON object.
        Raises TransportError (or RateLimitExceeded) on any failure.
        """
        try:
            response = self._execute_raw("GET", url, params=params)
        except httpx.HTTPError as e:
            raise TransportError(None, f"{type(e).__name__}: {e}", url) from e
        self._request_count += 1

        if response.status_code == 429:
            self._throttle_count += 1
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            logger.warning(f"Throttled (429) on {url}; Retry-After={retry_after}")
            raise RateLimitExceeded(_error_message(response), url, retry_after)

        if not response.is_success:
            raise TransportError(response.status_code, _error_message(response), url)

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(response.status_code, f"Malformed JSON body: {e}", url) from e
        if not isinstance(body, dict):
            raise TransportError(
                response.status_code, f"Expected a JSON object, got {type(body).__name__}", url
            )
        return body

    def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError("ApiClient not initialized. Use 'with' context.")

        headers = {}
        if self.token_supplier is not None:
            headers["Authorization"] = f"Bearer {self.token_supplier()}"

        if method == "GET":
            logger.debug(f"GET {url} params={params}")
            return self._client.get(url, params=params, headers=headers)
        raise ValueError(f"Unsupported method: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    """Pull the OData/NVD error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message", str(error))
        if isinstance(error, str):
            return error
        if "message" in body:
            return str(body["message"])
    return response.text[:200]
