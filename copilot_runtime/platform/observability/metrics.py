"""Prometheus HTTP metrics and the /metrics exposition."""

from time import monotonic
from typing import NamedTuple

import prometheus_client


class HTTPLabels(NamedTuple):
    method: str
    path: str
    http_status: str


_NXX_LUT = ["1XX", "2XX", "3XX", "4XX", "5XX"]


def http_status_nxx(status: int) -> str:
    """A coarser 2XX, 4XX, 5XX"""
    return _NXX_LUT[status // 100 - 1]


BUCKETS = (
    # log spaced, 3 per decade
    0.0002,
    0.0005,
    0.001,
    0.002,
    0.005,
    0.01,
    0.02,
    0.05,
    0.1,
    0.2,
    0.5,
    1,
    2,
    5,
    10,
    20,
    60,  # long agentic streams
    float("inf"),
)


def get_path(routes, scope) -> str:
    """Return the matched route template, or "path-not-found"."""
    path = "path-not-found"
    for route in routes:
        _, matches = route.matches(scope)
        if len(matches) > 0:
            path = route.path
    return path


async def prometheus_middleware(request, call_next):
    """Record request duration by method, route template and status class.

    For streaming routes the duration covers time to first byte, since the
    body is produced after the middleware returns.
    """
    start_time = monotonic()
    response = await call_next(request)
    elapsed_sec = monotonic() - start_time
    path = get_path(request.app.routes, request.scope)

    labels = HTTPLabels(
        method=request.method,
        path=path,
        http_status=http_status_nxx(response.status_code),
    )
    http_histogram.labels(*labels).observe(elapsed_sec)

    return response


def setup_metrics_factory(registry, name, documentation, labelnames):
    """Create a histogram with the standard bucket layout."""
    return prometheus_client.Histogram(
        name=name,
        documentation=documentation,
        labelnames=labelnames,
        registry=registry,
        buckets=BUCKETS,
    )


http_histogram = setup_metrics_factory(
    prometheus_client.REGISTRY,
    name="http_request_duration_seconds",
    documentation="Request duration (seconds)",
    labelnames=HTTPLabels._fields,
)


def metrics() -> tuple[bytes, str]:
    """Body and content type for the /metrics endpoint."""
    return (
        prometheus_client.generate_latest(prometheus_client.REGISTRY),
        prometheus_client.CONTENT_TYPE_LATEST,
    )
