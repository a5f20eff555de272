"""Synchronous HTTP client used for downstream outbox deliveries.

Errors always propagate: the outbox dispatcher owns retry bookkeeping, so a
failed delivery must reach ``OutboxStore.fail`` rather than be swallowed here.
In-call retries only cover short network blips before the dispatcher sees the
failure.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

import httpx

from config import settings

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for in-call retries with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (including initial attempt)
        retry_status_codes: HTTP status codes that should trigger a retry
        backoff_factor: Base delay; attempt ``n`` waits ``backoff_factor * 2**n``
        max_backoff: Maximum backoff delay in seconds
        retry_exceptions: Exception types that should trigger a retry
    """

    max_attempts: int = 3
    retry_status_codes: set[int] = field(default_factory=lambda: {500, 502, 503, 504})
    backoff_factor: float = 0.5
    max_backoff: float = 10.0
    retry_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ReadTimeout,
        httpx.PoolTimeout,
    )


class HttpClient:
    """Thin wrapper around ``httpx.Client`` with timeouts and optional retries."""

    def __init__(
        self,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        retry_config: RetryConfig | None = None,
        *,
        client_factory: Callable[..., httpx.Client] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the client with timeouts from settings unless overridden."""
        self.timeout = timeout if timeout is not None else settings.http.timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.http.connect_timeout
        )
        self.retry_config = retry_config
        self._client_factory = client_factory or httpx.Client
        self._sleep = sleep

    def post(self, url: str, **kwargs) -> httpx.Response:
        """Perform a POST request, raising ``httpx.HTTPError`` on failure."""
        return self._request("POST", url, **kwargs)

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        attempts = self.retry_config.max_attempts if self.retry_config else 1
        last_exception: Exception | None = None
        for attempt in range(attempts):
            try:
                return self._execute_once(method, url, **kwargs)
            except httpx.HTTPStatusError as exc:
                last_exception = exc
                if (
                    self.retry_config is None
                    or exc.response.status_code not in self.retry_config.retry_status_codes
                ):
                    raise
            except httpx.RequestError as exc:
                last_exception = exc
                if self.retry_config is None or not isinstance(
                    exc, self.retry_config.retry_exceptions
                ):
                    raise
            if attempt + 1 >= attempts:
                break
            delay = min(self.retry_config.backoff_factor * (2**attempt), self.retry_config.max_backoff)
            logger.warning(
                "HTTP %s %s failed with %s, retrying in %.1fs (attempt %s/%s)",
                method,
                url,
                type(last_exception).__name__,
                delay,
                attempt + 1,
                attempts,
            )
            self._sleep(delay)
        assert last_exception is not None
        raise last_exception

    def _execute_once(self, method: str, url: str, **kwargs) -> httpx.Response:
        with self._client_factory(
            timeout=httpx.Timeout(self.timeout, connect=self.connect_timeout)
        ) as client:
            response = client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
