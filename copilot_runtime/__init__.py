"""copilot-runtime - one streaming chat API over many LLM vendors, with server and client tools."""

from .platform.server.app import create_app
from .platform.settings import Settings


def app():
    """Create the FastAPI application instance."""
    settings = Settings()
    return create_app(settings)
