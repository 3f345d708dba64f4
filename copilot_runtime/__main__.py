"""Entry point when the package is executed as a module."""

import sys

import click
import uvicorn

from .platform.settings import Settings


@click.command()
@click.option("--reload", is_flag=True)
@click.option("--host", default=None, help="Override APP_HTTP__HOST")
@click.option("--port", default=None, type=int, help="Override APP_HTTP__PORT")
def main(reload=False, host=None, port=None):
    kwargs = {"reload": reload}

    settings = Settings()

    uvicorn.run(
        "copilot_runtime:app",
        loop="uvloop",
        factory=True,
        host=host or settings.app_http.host,
        port=port or settings.app_http.port,
        log_level=settings.app_http.log_level.lower(),
        **kwargs,
    )


if __name__ == "__main__":
    sys.exit(main())
