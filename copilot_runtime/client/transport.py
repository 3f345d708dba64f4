"""Transports carrying a chat request to a runtime and its events back."""

from collections.abc import AsyncIterator, Mapping
from typing import TYPE_CHECKING, Any, Protocol

import httpx
import structlog

from copilot_runtime.core.events import ErrorEvent, StreamEvent, is_terminal, parse_event
from copilot_runtime.core.exceptions import InvalidRequestError, ProviderResponseError
from copilot_runtime.platform.constants import USER_AGENT
from copilot_runtime.providers.base import DEFAULT_TIMEOUT_SECONDS, extract_error_message
from copilot_runtime.providers.framing import iter_sse_json

if TYPE_CHECKING:
    from copilot_runtime.runtime.runtime import Runtime

logger = structlog.get_logger(__name__)

TRANSPORT_ERROR_CODE = "TRANSPORT_ERROR"


class Transport(Protocol):
    def stream(self, body: Mapping[str, Any]) -> AsyncIterator[StreamEvent]: ...


class HttpTransport:
    """Posts chat requests to a runtime endpoint and decodes its SSE stream.

    Failures never raise out of ``stream``: a non-2xx answer, a broken
    connection or a stream that ends without ``done``/``error`` all become a
    single ``error`` event.
    """

    def __init__(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._url = url
        self._headers = dict(headers or {})
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._timeout = timeout

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                headers={"user-agent": USER_AGENT},
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[StreamEvent]:
        headers = {**self._headers, "accept": "text/event-stream"}
        terminal_seen = False
        try:
            async with self.http_client.stream(
                "POST", self._url, json=dict(body), headers=headers
            ) as response:
                if response.is_error:
                    content = await response.aread()
                    message = extract_error_message(content) or response.reason_phrase
                    logger.warning(
                        "runtime_request_failed", status_code=response.status_code, error=message
                    )
                    yield ErrorEvent(
                        message=message or f"HTTP {response.status_code}",
                        code=f"HTTP_{response.status_code}",
                    )
                    return
                async for _, payload in iter_sse_json(response, provider="runtime"):
                    event = parse_event(payload)
                    terminal_seen = terminal_seen or is_terminal(event)
                    yield event
        except (httpx.HTTPError, ProviderResponseError) as e:
            logger.warning("runtime_stream_failed", error=str(e))
            yield ErrorEvent(message=str(e) or type(e).__name__, code=TRANSPORT_ERROR_CODE)
            return
        if not terminal_seen:
            yield ErrorEvent(
                message="Stream ended before a terminal event", code=TRANSPORT_ERROR_CODE
            )


class RuntimeTransport:
    """Runs chat requests against an in-process Runtime."""

    def __init__(self, runtime: "Runtime"):
        self._runtime = runtime

    async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[StreamEvent]:
        try:
            result = self._runtime.stream(body)
        except InvalidRequestError as e:
            yield ErrorEvent(message=str(e), code="INVALID_REQUEST")
            return
        async for event in result:
            yield event
