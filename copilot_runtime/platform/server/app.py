"""FastAPI application factory and server configuration.

This module creates and configures the FastAPI application with all middleware,
routes, and lifecycle management.
"""

import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from copilot_runtime.platform.constants import SERVICE_NAME, SERVICE_VERSION
from copilot_runtime.platform.factory import build_runtime
from copilot_runtime.platform.observability import errors as bugsnag
from copilot_runtime.platform.observability.logging import configure_logging
from copilot_runtime.platform.observability.metrics import prometheus_middleware
from copilot_runtime.platform.server.health import HealthCheck
from copilot_runtime.platform.server.middlewares import CorrelationIdMiddleware
from copilot_runtime.platform.server.routes import root as root_router
from copilot_runtime.platform.settings import Settings
from copilot_runtime.runtime.runtime import Runtime

logger = logging.getLogger(__name__)


def lifespan_closure(settings: Settings, runtime: Runtime | None = None):
    @asynccontextmanager
    async def lifespan(app):
        """
        Initialize the singleton dependencies shared by every request:
        bugsnag, logging, the vendor HTTP client and the runtime.
        """
        if settings.bugsnag.release_stage in ["production", "development"]:
            signal_handler = SignalHandler(app)
            signal_handler.register_signal_handler()
        await bugsnag.initialize_bugsnag(
            settings.bugsnag.api_key,
            settings.bugsnag.release_stage,
        )

        # JSON in prod/dev, console in local
        if settings.app_http.log_json is not None:
            json_output = settings.app_http.log_json
        else:
            json_output = settings.bugsnag.release_stage != "local"
        configure_logging(settings.app_http.log_level, json_output=json_output)

        app.state.settings = settings

        # Shared by every vendor call; streams may stay open for minutes
        app.state.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(120.0, connect=10.0),
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )
        app.state.runtime = runtime or build_runtime(settings, app.state.http_client)
        logger.info(
            "runtime ready: provider=%s model=%s max_iterations=%s",
            app.state.runtime.model.provider,
            app.state.runtime.model.model_id,
            app.state.runtime.config.max_iterations,
        )

        HealthCheck.enable()
        try:
            yield
        finally:
            HealthCheck.disable()
            await close_resources(app)

    return lifespan


def create_app(settings: Settings, runtime: Runtime | None = None):
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings instance
        runtime: Prebuilt runtime (server tools, on_finish hook); built from
            the settings when omitted

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=SERVICE_NAME,
        version=SERVICE_VERSION,
        lifespan=lifespan_closure(settings, runtime),
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.middleware("http")(prometheus_middleware)

    # health, info, metrics and the chat API
    app.include_router(root_router)

    return app


async def close_resources(app: FastAPI) -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.aclose()
        app.state.runtime = None

    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()
        app.state.http_client = None


class SignalHandler:
    def __init__(self, app: FastAPI):
        self.app = app

    async def handle_exit(self):
        """
        Handle the exit of the server
        Do NOT use FastAPI @app.on_event("shutdown") or lifespan
        The problem with this method is, it is invoked *after* server
        stops accepting request, so it does not give us any time to
        drain requests in progress and DNS cache to refresh
        """
        HealthCheck.disable()
        for _ in range(20):
            logger.info("Shutting down...")
            await asyncio.sleep(1)

        await close_resources(self.app)

        # stop service successfully
        os.kill(os.getpid(), signal.SIGUSR1)

    def signal_handler(self):
        asyncio.create_task(self.handle_exit())

    def register_signal_handler(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in [signal.SIGINT, signal.SIGTERM]:
            loop.add_signal_handler(sig, self.signal_handler)
