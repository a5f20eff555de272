"""Unit tests for HTTP client wrapper with error handling and retries."""

from __future__ import annotations

import httpx
import pytest

from config import settings
from services.http_client import HttpClient, RetryConfig


class ScriptedTransport:
    """Mock transport handler returning configured responses in order."""

    def __init__(self, responses: list[httpx.Response | Exception]) -> None:
        """Initialize the stub with a sequence of responses or exceptions.

        Args:
            responses: Responses or exceptions to return in order.
                      Each call consumes one item from the list.
        """
        self.responses = list(responses)
        self.call_count = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        """Return the next configured response or raise the next configured error."""
        self.call_count += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(
    transport: ScriptedTransport,
    retry_config: RetryConfig | None = None,
    sleeps: list[float] | None = None,
) -> HttpClient:
    mock = httpx.MockTransport(transport)
    recorded = sleeps if sleeps is not None else []
    return HttpClient(
        retry_config=retry_config,
        client_factory=lambda **kwargs: httpx.Client(transport=mock, **kwargs),
        sleep=recorded.append,
    )


def test_defaults_come_from_settings() -> None:
    """Timeouts default to the configured HTTP settings."""
    client = HttpClient()

    assert client.timeout == settings.http.timeout
    assert client.connect_timeout == settings.http.connect_timeout


def test_post_returns_successful_response() -> None:
    """Successful responses are returned unchanged."""
    transport = ScriptedTransport([httpx.Response(200, json={"ok": True})])

    response = _client(transport).post("http://test.example/hook", json={"a": 1})

    assert response.json() == {"ok": True}
    assert transport.call_count == 1


def test_status_errors_raise_without_retry_config() -> None:
    """Without a retry config the first failure propagates."""
    transport = ScriptedTransport([httpx.Response(503)])

    with pytest.raises(httpx.HTTPStatusError):
        _client(transport).post("http://test.example/hook")

    assert transport.call_count == 1


def test_retries_with_exponential_backoff() -> None:
    """Retryable statuses and network errors back off exponentially."""
    request = httpx.Request("POST", "http://test.example/hook")
    transport = ScriptedTransport(
        [
            httpx.Response(502),
            httpx.ConnectError("refused", request=request),
            httpx.Response(200),
        ]
    )
    sleeps: list[float] = []

    response = _client(
        transport, RetryConfig(max_attempts=3, backoff_factor=0.5), sleeps
    ).post("http://test.example/hook")

    assert response.status_code == 200
    assert sleeps == [0.5, 1.0]


def test_backoff_is_capped() -> None:
    """Delays never exceed max_backoff."""
    transport = ScriptedTransport([httpx.Response(500)] * 3)
    sleeps: list[float] = []

    with pytest.raises(httpx.HTTPStatusError):
        _client(
            transport,
            RetryConfig(max_attempts=3, backoff_factor=5.0, max_backoff=6.0),
            sleeps,
        ).post("http://test.example/hook")

    assert sleeps == [5.0, 6.0]
    assert transport.call_count == 3


def test_non_retryable_status_is_not_retried() -> None:
    """Statuses outside retry_status_codes fail immediately."""
    transport = ScriptedTransport([httpx.Response(404), httpx.Response(200)])

    with pytest.raises(httpx.HTTPStatusError):
        _client(transport, RetryConfig(max_attempts=3)).post("http://test.example/hook")

    assert transport.call_count == 1
