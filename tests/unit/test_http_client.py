"""
Unit tests for the resilient remote-call client.
"""
import json

import httpx
import pytest

from servicehub.lib.http_client import HttpError, NetworkError, RemoteCallClient, is_retryable
from servicehub.lib.logging import set_correlation_id
from servicehub.lib.metrics import get_metrics_collector, reset_metrics
from servicehub.lib.result import Err, Ok


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_client(handler, sleep=None, **kwargs) -> RemoteCallClient:
    return RemoteCallClient(
        base_url="https://api.test",
        base_interval=1.0,
        max_retries=2,
        transport=httpx.MockTransport(handler),
        sleep=sleep or SleepRecorder(),
        **kwargs,
    )


@pytest.mark.unit
def test_is_retryable_classification():
    assert is_retryable(NetworkError("down"))
    assert is_retryable(HttpError(500, "boom"))
    assert is_retryable(HttpError(503, "unavailable"))
    assert not is_retryable(HttpError(404, "missing"))
    assert not is_retryable(HttpError(422, "invalid"))
    assert not is_retryable(ValueError("other"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_succeeds_on_third_attempt_after_two_server_errors():
    """Two 5xx failures then success: three attempts, linear delays 0s and 1s."""
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) < 3:
            return httpx.Response(503, json={"message": "try later"})
        return httpx.Response(200, json={"success": True, "data": [1, 2]})

    sleep = SleepRecorder()
    async with make_client(handler, sleep=sleep) as client:
        result = await client.call("/workers")

    assert result == {"success": True, "data": [1, 2]}
    assert len(attempts) == 3
    assert sleep.delays == [0, 1.0]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_raises_last_error_after_retry_budget():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(500, json={"message": f"failure {len(attempts)}"})

    async with make_client(handler) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.call("/service-requests")

    assert len(attempts) == 3
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "failure 3"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(400, json={"error": "ZIP code is required"})

    async with make_client(handler) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.call("/workers/match")

    assert len(attempts) == 1
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "ZIP code is required"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_error_message_falls_back_to_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not json")

    async with make_client(handler) as client:
        with pytest.raises(HttpError) as exc_info:
            await client.call("/missing")

    assert exc_info.value.message == "HTTP error! status: 404"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_network_errors_are_retried_then_surface_as_network_error():
    reset_metrics()
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(NetworkError):
            await client.call("/health")

    assert len(attempts) == 3
    assert get_metrics_collector().get_counter_value(
        "remote_call_retries_total", {"reason": "transport"}
    ) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_per_call_retry_budget_override():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(502)

    async with make_client(handler) as client:
        with pytest.raises(HttpError):
            await client.call("/health", max_retries=0)

    assert len(attempts) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_headers_and_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["auth"] = request.headers.get("Authorization")
        seen["correlation"] = request.headers.get("X-Correlation-ID")
        seen["body"] = json.loads(request.content) if request.content else None
        return httpx.Response(201, json={"success": True})

    set_correlation_id("corr-123")
    try:
        async with make_client(handler, token="tok") as client:
            await client.call("/service-requests", method="post", body={"name": "Jordan"})
    finally:
        set_correlation_id(None)

    assert seen == {
        "method": "POST",
        "auth": "Bearer tok",
        "correlation": "corr-123",
        "body": {"name": "Jordan"},
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_requests_never_send_a_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["content"] = request.content
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={})

    async with make_client(handler) as client:
        await client.call("/workers", body={"ignored": True})

    assert seen["content"] == b""
    assert seen["auth"] is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_call_result_wraps_outcomes():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok":
            return httpx.Response(200, json={"value": 1})
        return httpx.Response(409, json={"message": "conflict"})

    async with make_client(handler) as client:
        ok = await client.call_result("/ok")
        err = await client.call_result("/conflict")

    assert isinstance(ok, Ok) and ok.unwrap() == {"value": 1}
    assert isinstance(err, Err) and not err.is_ok
    assert err.error.status_code == 409
