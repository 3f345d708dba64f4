"""Server-Sent Events framing of unified events."""

import json
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from typing import Any

import structlog

from copilot_runtime.core.events import ErrorEvent, StreamEvent

logger = structlog.get_logger(__name__)

SSE_DONE = "data: [DONE]\n\n"

SSE_HEADERS: Mapping[str, str] = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

STREAM_ERROR_CODE = "STREAM_ERROR"


def format_sse(event: StreamEvent | Mapping[str, Any]) -> str:
    payload = event.to_dict() if hasattr(event, "to_dict") else dict(event)
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def sse_frames(events: AsyncIterable[StreamEvent]) -> AsyncIterator[str]:
    """Frame every event, then the ``[DONE]`` sentinel.

    A failure of the event source after headers were sent cannot become an
    HTTP status any more; it is reported as a final ``error`` frame.
    """
    try:
        async for event in events:
            yield format_sse(event)
    except Exception as e:
        logger.exception("sse_stream_failed", error=str(e))
        yield format_sse(ErrorEvent(message=str(e) or type(e).__name__, code=STREAM_ERROR_CODE))
    yield SSE_DONE
