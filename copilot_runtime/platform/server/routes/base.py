"""Infrastructure endpoints: health, service info and Prometheus metrics."""

import logging
from enum import Enum

from fastapi import APIRouter, Request, Response

from copilot_runtime.platform.observability.metrics import metrics as prom_metrics
from copilot_runtime.platform.server.health import HealthCheck, metadata

logger = logging.getLogger(__name__)

base_router = APIRouter()
base_tags: list[Enum | str] = ["base"]


@base_router.get("/health", tags=base_tags)
async def health(request: Request):
    """Health check endpoint for load balancers and orchestrators.

    Returns:
        200 OK once the runtime is built, 404 while draining or before startup
    """
    if HealthCheck.status() and getattr(request.app.state, "runtime", None) is not None:
        return {"status": "OK"}
    logger.info("health-check: fail. disabled or runtime not ready")
    return Response(status_code=404)


@base_router.get("/info", tags=base_tags)
async def info(request: Request):
    """Container metadata plus the model and loop policy being served."""
    data = metadata.info()
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is not None:
        data["runtime"] = {
            "provider": runtime.model.provider,
            "model": runtime.model.model_id,
            "max_iterations": runtime.config.max_iterations,
            "batch_policy": str(runtime.config.batch_policy),
            "server_tools": [tool.name for tool in runtime.tools],
        }
    return data


@base_router.get("/metrics", tags=base_tags)
async def metrics():
    body, media_type = prom_metrics()
    return Response(body, media_type=media_type)
