"""
Resilient remote-call client.

JSON-over-HTTP client used by the booking flow (and any other service that
talks to the ServiceHub API) with a bounded, linear retry policy:

- HTTP 5xx (503 included) and transport failures (no response) are retried.
- 4xx responses are terminal and surface immediately.
- The n-th retry waits ``(n - 1) * base_interval`` seconds, so the first
  retry fires immediately and each following one waits one interval longer.
- Once the budget is spent the error of the last attempt is re-raised as is.

Credentials are injected at construction time; the client never looks up a
token on its own.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from servicehub.lib.logging import get_logger, get_correlation_id
from servicehub.lib.metrics import get_metrics_collector
from servicehub.lib.result import Err, Ok, Result
from servicehub.lib.settings import settings

logger = get_logger(__name__)


class RemoteCallError(Exception):
    """Base class for remote-call failures."""


class NetworkError(RemoteCallError):
    """The request never produced a response (DNS, connect, reset, timeout)."""


class HttpError(RemoteCallError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, body: Optional[dict] = None):
        self.status_code = status_code
        self.message = message
        self.body = body or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"HttpError(status_code={self.status_code}, message={self.message!r})"


def is_retryable(exc: BaseException) -> bool:
    """Transport failures and server-side (5xx) errors are worth another try."""
    if isinstance(exc, NetworkError):
        return True
    return isinstance(exc, HttpError) and exc.status_code >= 500


class RemoteCallClient:
    """
    Async JSON client with bounded linear retry.

    Usage:
        async with RemoteCallClient(base_url="https://api.example.com", token=token) as client:
            data = await client.call("/service-requests", method="POST", body=payload)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        base_interval: Optional[float] = None,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            base_url: API origin (defaults to settings.api_base_url)
            token: Bearer token sent on every request when present
            base_interval: Linear backoff step in seconds
            max_retries: Default retry budget per call
            timeout: Per-attempt timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Awaitable sleep used between attempts
        """
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token
        self.base_interval = settings.retry_base_interval if base_interval is None else base_interval
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self._sleep = sleep or asyncio.sleep
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "RemoteCallClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def _attempt(self, endpoint: str, method: str, body: Any) -> Any:
        request_kwargs: dict[str, Any] = {"headers": self._headers()}
        if body is not None and method != "GET":
            request_kwargs["json"] = body

        try:
            response = await self._client.request(method, endpoint, **request_kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {endpoint} failed: {e}") from e

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_error:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error")
            raise HttpError(
                response.status_code,
                message or f"HTTP error! status: {response.status_code}",
                payload if isinstance(payload, dict) else None,
            )

        return payload

    def _log_retry(self, retry_state: RetryCallState, total: int) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, HttpError):
            reason = "http_5xx"
            logger.warning(
                f"API request failed with {exc.status_code}, retrying... "
                f"(attempt {retry_state.attempt_number + 1}/{total})"
            )
        else:
            reason = "transport"
            logger.warning(
                f"Network error, retrying... (attempt {retry_state.attempt_number + 1}/{total})",
                extra={"error": str(exc)},
            )
        get_metrics_collector().increment_retries(reason)

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        max_retries: Optional[int] = None,
    ) -> Any:
        """
        Execute a request, retrying transient failures.

        Args:
            endpoint: Path relative to base_url (e.g. "/workers/match?zip=21201")
            method: HTTP method
            body: JSON-serialisable request body (ignored for GET)
            max_retries: Retry budget; total attempts = max_retries + 1

        Returns:
            Decoded JSON body of the successful response

        Raises:
            NetworkError: No response after the retry budget
            HttpError: Non-2xx status (4xx immediately, 5xx after the budget)
        """
        retries = self.max_retries if max_retries is None else max_retries
        method = method.upper()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_incrementing(start=0, increment=self.base_interval),
            retry=retry_if_exception(is_retryable),
            before_sleep=lambda state: self._log_retry(state, retries + 1),
            sleep=self._sleep,
            reraise=True,
        )

        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(endpoint, method, body)
        return result

    async def call_result(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        max_retries: Optional[int] = None,
    ) -> Result[Any, RemoteCallError]:
        """Same as ``call`` but returns ``Ok(data)`` or ``Err(error)``."""
        try:
            return Ok(await self.call(endpoint, method=method, body=body, max_retries=max_retries))
        except RemoteCallError as e:
            return Err(e)
