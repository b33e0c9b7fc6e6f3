"""Asynchronous HTTP client helper.

This module provides a wrapper around the ``httpx`` asynchronous client used
by every docsmith provider.  It centralises timeouts, headers and per-service
rate limiting, and converts error statuses into ``ProviderHTTPError``.  It
never retries: one call is one request, and retries belong to the fallback
executor.  Sharing one client instance allows for connection pooling across
the whole research pass.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from docsmith.core.error_recovery import MalformedResponse, ProviderHTTPError
from docsmith.core.rate_limiter import RateLimiter, get_rate_limiter

# Cap on a single Retry-After pause
MAX_RETRY_AFTER = 60.0


def retry_after_seconds(response: httpx.Response) -> float:
    """Seconds requested by a ``Retry-After`` header, or 0 when absent.

    Only the delta-seconds form is honoured.
    """
    value = response.headers.get("Retry-After", "").strip()
    try:
        seconds = float(value)
    except ValueError:
        return 0.0
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


class AsyncHTTPClient:
    """A shared async HTTP client with rate limiting and typed HTTP errors."""

    DEFAULT_USER_AGENT = "docsmith/0.1 (+https://github.com/docsmith/docsmith)"

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        """Initialize the HTTP client.

        Parameters
        ----------
        timeout : float
            Default request timeout in seconds.
        user_agent : str, optional
            User-Agent header sent with every request.
        client : httpx.AsyncClient, optional
            Pre-built client (e.g. one using ``httpx.MockTransport``).
        rate_limiter : RateLimiter, optional
            Limiter consulted before each request. Defaults to the process
            limiter.
        """
        self._timeout = timeout
        self._user_agent = user_agent or self.DEFAULT_USER_AGENT
        self._client = client
        self._rate_limiter = rate_limiter
        self.logger = logging.getLogger(self.__class__.__name__)
        self._request_count = 0
        self._error_count = 0
        self._total_request_time = 0.0

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter or get_rate_limiter()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
            )
            self.logger.debug("HTTP client initialized (timeout=%.1fs)", self._timeout)
        return self._client

    async def __aenter__(self) -> "AsyncHTTPClient":
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            if self._request_count > 0:
                self.logger.debug(
                    "HTTP client closed (requests=%d, avg_time=%.2fms)",
                    self._request_count,
                    self._total_request_time / self._request_count * 1000,
                )

    async def request(
        self,
        method: str,
        url: str,
        *,
        service: str = "default",
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Make a single HTTP request.

        Parameters
        ----------
        method : str
            HTTP method (GET, POST, etc.).
        url : str
            The URL to request.
        service : str
            Rate limiter bucket and provider name used in errors.
        headers, params, json, data
            Passed through to ``httpx``.
        timeout : float, optional
            Request timeout override in seconds.

        Returns
        -------
        httpx.Response
            A response with a status below 400.

        Raises
        ------
        ProviderHTTPError
            If the response has an error status.
        httpx.HTTPError
            On transport failures.
        """
        await self.rate_limiter.acquire(service)

        client = self._get_client()
        start_time = time.monotonic()
        self.logger.debug("%s %s", method, url[:100])
        response = await client.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json,
            data=data,
            timeout=timeout if timeout is not None else self._timeout,
        )

        elapsed = time.monotonic() - start_time
        self._request_count += 1
        self._total_request_time += elapsed
        self.logger.debug(
            "%s %s -> %d (%.2fms)",
            method,
            url[:100],
            response.status_code,
            elapsed * 1000,
        )

        if response.status_code >= 400:
            self._error_count += 1
            if response.status_code == 429:
                self.rate_limiter.hold(service, retry_after_seconds(response))
            raise ProviderHTTPError(response.status_code, service, response.text)
        return response

    async def get_json(self, url: str, *, service: str = "default", **kwargs: Any) -> Any:
        """GET ``url`` and decode the JSON body."""
        response = await self.request("GET", url, service=service, **kwargs)
        return self._decode(response, service)

    async def post_json(self, url: str, *, service: str = "default", **kwargs: Any) -> Any:
        """POST to ``url`` and decode the JSON body."""
        response = await self.request("POST", url, service=service, **kwargs)
        return self._decode(response, service)

    async def get_text(self, url: str, *, service: str = "default", **kwargs: Any) -> str:
        """GET ``url`` and return the body as text."""
        response = await self.request("GET", url, service=service, **kwargs)
        return response.text

    @staticmethod
    def _decode(response: httpx.Response, service: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(f"{service} returned invalid JSON: {exc}", service) from exc

    async def is_alive(self, url: str, timeout: float = 5.0) -> bool:
        """Check whether ``url`` answers with a non-error status.

        Uses HEAD and falls back to GET for servers that reject HEAD.
        """
        try:
            await self.request("HEAD", url, service="default", timeout=timeout)
            return True
        except ProviderHTTPError as exc:
            if exc.status not in (403, 405):
                self.logger.debug("Link check failed for %s: HTTP %d", url, exc.status)
                return False
        except httpx.HTTPError as exc:
            self.logger.debug("Link check failed for %s: %s", url, exc)
            return False

        try:
            await self.request("GET", url, service="default", timeout=timeout)
            return True
        except (ProviderHTTPError, httpx.HTTPError) as exc:
            self.logger.debug("Link check failed for %s: %s", url, exc)
            return False

    @property
    def stats(self) -> Dict[str, Any]:
        """Get request statistics.

        Returns
        -------
        dict
            Statistics including request count and average time.
        """
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "total_time_ms": self._total_request_time * 1000,
            "avg_time_ms": (
                (self._total_request_time / self._request_count * 1000)
                if self._request_count > 0
                else 0
            ),
        }
