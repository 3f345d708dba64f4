"""Observability infrastructure.

- Structured logging with correlation IDs
- Prometheus metrics
- Bugsnag error reporting
"""

from copilot_runtime.platform.observability.errors import initialize_bugsnag
from copilot_runtime.platform.observability.logging import (
    configure_logging,
    correlation_id_ctx,
)
from copilot_runtime.platform.observability.metrics import (
    BUCKETS,
    metrics,
    prometheus_middleware,
)

__all__ = [
    "BUCKETS",
    "configure_logging",
    "correlation_id_ctx",
    "initialize_bugsnag",
    "metrics",
    "prometheus_middleware",
]
