"""Runtime dependency for FastAPI routes."""

from fastapi import Request

from copilot_runtime.runtime.runtime import Runtime


def get_runtime(request: Request) -> Runtime:
    """Return the runtime built by the application lifespan.

    Example:
        @router.post("/chat")
        async def chat(request: Request, runtime: Runtime = Depends(get_runtime)):
            return await runtime.handle_request(request)
    """
    return request.app.state.runtime
