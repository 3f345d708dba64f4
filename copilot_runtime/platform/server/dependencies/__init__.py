"""FastAPI dependency getters backed by ``app.state``."""

from copilot_runtime.platform.server.dependencies.runtime import get_runtime

__all__ = ["get_runtime"]
