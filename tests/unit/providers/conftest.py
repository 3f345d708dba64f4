"""Fixtures for vendor adapter tests.

Vendor HTTP calls are intercepted with respx; stream bodies are built with
the ``sse_response`` and ``ndjson_response`` factories.
"""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from tenacity import wait_none

from copilot_runtime.core.events import StreamEvent
from copilot_runtime.core.messages import Message
from copilot_runtime.providers.base import BaseAdapter, ChatRequest


@pytest.fixture(autouse=True)
def disable_tenacity_wait():
    """Disable tenacity wait times to speed up retry tests."""
    original_wait = BaseAdapter._send.retry.wait  # type: ignore[attr-defined]
    BaseAdapter._send.retry.wait = wait_none()  # type: ignore[attr-defined]

    yield

    BaseAdapter._send.retry.wait = original_wait  # type: ignore[attr-defined]


@pytest.fixture
def sse_response() -> Callable[..., httpx.Response]:
    """Factory of a 200 text/event-stream response.

    Payloads are dicts (sent as ``data:`` frames) or ``(event, dict)`` tuples.
    """

    def factory(*payloads: Any, done: bool = False) -> httpx.Response:
        frames = []
        for payload in payloads:
            if isinstance(payload, tuple):
                event, data = payload
                frames.append(f"event: {event}\ndata: {json.dumps(data)}\n\n")
            else:
                frames.append(f"data: {json.dumps(payload)}\n\n")
        if done:
            frames.append("data: [DONE]\n\n")
        return httpx.Response(
            200, text="".join(frames), headers={"content-type": "text/event-stream"}
        )

    return factory


@pytest.fixture
def ndjson_response() -> Callable[..., httpx.Response]:
    """Factory of a 200 application/x-ndjson response."""

    def factory(*chunks: dict[str, Any]) -> httpx.Response:
        body = "".join(json.dumps(chunk) + "\n" for chunk in chunks)
        return httpx.Response(200, text=body, headers={"content-type": "application/x-ndjson"})

    return factory


@pytest.fixture
def chat_request() -> ChatRequest:
    return ChatRequest(messages=(Message.user("Hi"),))


@pytest.fixture
def collect_events() -> Callable[..., Any]:
    """Drain an adapter stream into a list."""

    async def collect(adapter: BaseAdapter, request: ChatRequest) -> list[StreamEvent]:
        try:
            return [event async for event in adapter.stream(request)]
        finally:
            await adapter.aclose()

    return collect
