"""Middleware for request correlation ID propagation."""

import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from copilot_runtime.platform.observability.logging import correlation_id_ctx

REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware:
    """Extracts or generates the correlation id of a request.

    A plain ASGI middleware rather than ``BaseHTTPMiddleware``: the id stays in
    ``correlation_id_ctx`` until the last SSE frame has been sent, so log
    entries and the outbound vendor calls of a streamed chat invocation carry
    it. The id is echoed back in the response headers.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or str(uuid.uuid4())

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = correlation_id
            await send(message)

        token = correlation_id_ctx.set(correlation_id)
        try:
            await self.app(scope, receive, send_with_id)
        finally:
            correlation_id_ctx.reset(token)
