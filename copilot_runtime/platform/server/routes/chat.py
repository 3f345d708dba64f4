"""Chat endpoints exposing the runtime over HTTP.

``POST /api/chat`` streams Server-Sent Events (or returns JSON when the body
sets ``streaming: false``); ``/api/chat/text`` streams plain text and
``/api/chat/generate`` always answers with a buffered JSON result.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from copilot_runtime.core.exceptions import InvalidRequestError
from copilot_runtime.platform.server.dependencies.runtime import get_runtime
from copilot_runtime.runtime.runtime import Runtime

logger = logging.getLogger(__name__)

chat_router = APIRouter(prefix="/api", tags=["chat"])


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        raise InvalidRequestError("Request body must be valid JSON") from e


def _bad_request(error: InvalidRequestError) -> JSONResponse:
    logger.info("chat request rejected: %s", error)
    return JSONResponse({"error": str(error)}, status_code=400)


@chat_router.post("/chat")
async def chat_handler(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Run a chat invocation, as SSE unless the body disables streaming.

    Returns:
        SSE stream of unified events terminated by ``data: [DONE]``, or the
        JSON result of the invocation; 400 with ``{"error"}`` on a bad body
    """
    return await runtime.handle_request(request)


@chat_router.post("/chat/text")
async def chat_text_handler(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Run a chat invocation and stream only the assistant text."""
    try:
        result = runtime.stream(await _read_body(request), headers=dict(request.headers))
    except InvalidRequestError as e:
        return _bad_request(e)
    return result.to_text_response()


@chat_router.post("/chat/generate")
async def chat_generate_handler(request: Request, runtime: Runtime = Depends(get_runtime)):
    """Run a chat invocation to completion and return its JSON result.

    Returns:
        200 with the result, 500 with the result when the invocation ended
        with an error, 400 with ``{"error"}`` on a bad body
    """
    try:
        result = await runtime.generate(await _read_body(request), headers=dict(request.headers))
    except InvalidRequestError as e:
        return _bad_request(e)
    return result.to_response(include_usage=runtime.config.include_usage)


@chat_router.get("/capabilities")
async def capabilities_handler(model: str | None = None, runtime: Runtime = Depends(get_runtime)):
    """Capabilities of the configured model, or of ``model`` on the same provider."""
    handle = runtime.model
    model_id = model or handle.model_id
    return {
        "provider": handle.provider,
        "model": model_id,
        "capabilities": handle.get_capabilities(model_id).to_dict(),
    }
