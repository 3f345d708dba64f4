"""Prometheus metrics for model calls, tool calls and token usage."""

from time import monotonic
from typing import NamedTuple

import prometheus_client

from copilot_runtime.platform.observability.metrics import BUCKETS


class ProviderMetricsLabels(NamedTuple):
    provider: str
    model: str


class ToolMetricsLabels(NamedTuple):
    tool_name: str
    location: str = "server"


provider_request_histogram = prometheus_client.Histogram(
    name="copilot_provider_request_duration_seconds",
    documentation="Duration of one streamed model turn (seconds)",
    labelnames=(*ProviderMetricsLabels._fields, "status"),
    buckets=BUCKETS,
)

tool_call_histogram = prometheus_client.Histogram(
    name="copilot_tool_call_duration_seconds",
    documentation="Duration of one tool handler call (seconds)",
    labelnames=(*ToolMetricsLabels._fields, "status"),
    buckets=BUCKETS,
)

tokens_counter = prometheus_client.Counter(
    name="copilot_tokens_total",
    documentation="Tokens reported by model vendors",
    labelnames=("provider", "model", "direction"),
)

iteration_limit_counter = prometheus_client.Counter(
    name="copilot_iteration_limit_reached_total",
    documentation="Agent loop invocations stopped by the iteration ceiling",
    labelnames=ProviderMetricsLabels._fields,
)


def record_tool_call(labels: ToolMetricsLabels, duration: float, error: bool = False) -> None:
    status = "error" if error else "success"
    tool_call_histogram.labels(*labels, status).observe(duration)


def record_tokens(provider: str, model: str, input_tokens: int, output_tokens: int) -> None:
    """Count tokens; zero counts are skipped."""
    if input_tokens > 0:
        tokens_counter.labels(provider, model, "input").inc(input_tokens)
    if output_tokens > 0:
        tokens_counter.labels(provider, model, "output").inc(output_tokens)


def record_iteration_limit(labels: ProviderMetricsLabels) -> None:
    iteration_limit_counter.labels(*labels).inc()


class collect_provider_metrics:
    """Async context manager timing one model turn.

    The status is "error" when the block raises or ``mark_error()`` was
    called (adapters report failures as events, not exceptions).

        async with collect_provider_metrics(labels) as metrics:
            ...
            metrics.mark_error()
    """

    def __init__(self, labels: ProviderMetricsLabels):
        self.labels = labels
        self.status = "success"
        self._start = 0.0

    def mark_error(self) -> None:
        self.status = "error"

    async def __aenter__(self) -> "collect_provider_metrics":
        self._start = monotonic()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        status = "error" if exc_type is not None else self.status
        provider_request_histogram.labels(*self.labels, status).observe(monotonic() - self._start)
        return False
