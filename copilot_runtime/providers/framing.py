"""Incremental parsers for vendor transport framing (SSE and NDJSON)."""

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from copilot_runtime.core.exceptions import ProviderResponseError

SSE_DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEMessage:
    """One server-sent event: optional event name and joined data lines."""

    event: str | None
    data: str

    def json(self) -> Any:
        return json.loads(self.data)


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[SSEMessage]:
    """Group raw lines into SSE messages.

    Multi-line ``data:`` fields are joined with newlines, comment lines are
    skipped and a blank line dispatches the pending message.
    """
    event_name: str | None = None
    data_lines: list[str] = []
    async for line in lines:
        if not line:
            if data_lines:
                yield SSEMessage(event=event_name, data="\n".join(data_lines))
            event_name, data_lines = None, []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if name == "data":
            data_lines.append(value)
        elif name == "event":
            event_name = value
    if data_lines:
        yield SSEMessage(event=event_name, data="\n".join(data_lines))


async def iter_sse_json(response: httpx.Response, provider: str) -> AsyncIterator[tuple[str | None, Any]]:
    """Yield ``(event_name, payload)`` for each JSON SSE message of a response.

    Stops at the ``[DONE]`` sentinel.

    Raises:
        ProviderResponseError: If a data frame is not valid JSON
    """
    async for message in iter_sse(response.aiter_lines()):
        if message.data.strip() == SSE_DONE_SENTINEL:
            return
        try:
            payload = message.json()
        except json.JSONDecodeError as e:
            raise ProviderResponseError(
                f"Malformed stream frame: {message.data[:200]!r}", provider=provider
            ) from e
        yield message.event, payload


async def iter_ndjson(response: httpx.Response, provider: str) -> AsyncIterator[Any]:
    """Yield one decoded JSON value per non-empty line.

    Raises:
        ProviderResponseError: If a line is not valid JSON
    """
    async for line in response.aiter_lines():
        if not line.strip():
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError as e:
            raise ProviderResponseError(
                f"Malformed stream line: {line[:200]!r}", provider=provider
            ) from e
