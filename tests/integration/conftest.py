"""Integration test fixtures.

This module provides shared fixtures for integration tests:
- Route/handler tests against a runtime driven by a scripted model
  (shallow app setup, no middleware, no lifespan)
- Health-check state toggling
"""

from collections.abc import Callable, Generator
from unittest.mock import Mock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from copilot_runtime.core.tools import ToolDefinition
from copilot_runtime.platform.server.health import HealthCheck
from copilot_runtime.platform.server.routes import root as root_router
from copilot_runtime.runtime.config import RuntimeConfig
from copilot_runtime.runtime.runtime import Runtime

# =============================================================================
# Runtime Fixtures
# =============================================================================


@pytest.fixture
def chat_turns(text_turn, tool_turn) -> list:
    """Default script: one weather lookup, then a text answer."""
    return [
        tool_turn(("call_weather", "get_weather", {"city": "Paris"})),
        text_turn("It is 22", "C in Paris."),
    ]


@pytest.fixture
def stub_runtime(
    scripted_model: Callable, chat_turns: list, weather_tool: ToolDefinition
) -> Runtime:
    """Runtime over a scripted model with the weather tool registered."""
    model, _ = scripted_model(*chat_turns)
    return Runtime(model, tools=[weather_tool], config=RuntimeConfig())


# =============================================================================
# FastAPI App Fixtures (Shallow - no middleware, minimal lifespan)
# =============================================================================


@pytest.fixture
def stub_settings() -> Mock:
    """Create stub settings with canned configuration values."""
    settings = Mock()
    settings.llm.provider = "fake"
    settings.llm.model = "fake-model"
    return settings


@pytest.fixture
def test_app(stub_runtime: Runtime, stub_settings: Mock) -> FastAPI:
    """Create a minimal test FastAPI app for integration tests.

    This is intentionally SHALLOW - no middleware, no full lifespan.
    Tests route handlers and their interaction with dependencies.
    """
    app = FastAPI()

    # Register singletons directly in app.state, as the lifespan would
    app.state.runtime = stub_runtime
    app.state.settings = stub_settings

    app.include_router(root_router)

    return app


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    """Create a test client for the test app.

    No context manager needed since we're not using lifespan.
    """
    return TestClient(test_app)


@pytest.fixture
def client_with_health_enabled(test_app: FastAPI) -> Generator[TestClient]:
    """Create a test client with health checks enabled."""
    HealthCheck.enable()
    yield TestClient(test_app)
    HealthCheck.disable()


@pytest.fixture
def client_with_health_disabled(test_app: FastAPI) -> Generator[TestClient]:
    """Create a test client with health checks disabled."""
    HealthCheck.disable()
    yield TestClient(test_app)
