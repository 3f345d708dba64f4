"""Bugsnag error reporting integration."""

import logging

import bugsnag
from bugsnag.handlers import BugsnagHandler

from copilot_runtime.platform.constants import SERVICE_VERSION
from copilot_runtime.platform.observability.logging import correlation_id_ctx


def add_correlation_tab(event) -> None:
    """Attach the chat invocation's correlation id to a Bugsnag report."""
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event.add_tab("request", {"correlation_id": correlation_id})


async def initialize_bugsnag(api_key: str, release_stage: str) -> None:
    """Configure Bugsnag and report ERROR-level log entries to it.

    Args:
        api_key: Bugsnag project API key
        release_stage: Environment identifier ("production", "development", "local")

    Note:
        No-op for the "local" release stage or without an API key.
    """
    if release_stage == "local" or not api_key:
        return
    bugsnag.configure(
        api_key=api_key,
        release_stage=release_stage,
        app_version=SERVICE_VERSION,
        auto_notify=True,
    )
    bugsnag.before_notify(add_correlation_tab)
    handler = BugsnagHandler()
    handler.setLevel(logging.ERROR)
    logging.getLogger().addHandler(handler)
