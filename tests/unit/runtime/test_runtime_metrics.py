"""Unit tests for the runtime Prometheus metrics."""

import pytest
from prometheus_client import REGISTRY

from copilot_runtime.runtime.metrics import (
    ProviderMetricsLabels,
    ToolMetricsLabels,
    collect_provider_metrics,
    record_iteration_limit,
    record_tokens,
    record_tool_call,
)


def sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestTokenCounter:
    """Tests for record_tokens."""

    def test_counts_by_direction(self):
        labels = {"provider": "metrics-test", "model": "m-tokens"}
        before_in = sample("copilot_tokens_total", direction="input", **labels)
        before_out = sample("copilot_tokens_total", direction="output", **labels)

        record_tokens("metrics-test", "m-tokens", 12, 3)

        assert sample("copilot_tokens_total", direction="input", **labels) == before_in + 12
        assert sample("copilot_tokens_total", direction="output", **labels) == before_out + 3

    def test_zero_counts_are_skipped(self):
        """No sample is created for zero counts."""
        record_tokens("metrics-test", "m-zero", 0, 0)

        assert (
            REGISTRY.get_sample_value(
                "copilot_tokens_total",
                {"provider": "metrics-test", "model": "m-zero", "direction": "input"},
            )
            is None
        )


class TestDurations:
    """Tests for the duration histograms."""

    def test_tool_call_status(self):
        labels = {"tool_name": "metrics_tool", "location": "client"}
        before = sample("copilot_tool_call_duration_seconds_count", status="error", **labels)

        record_tool_call(ToolMetricsLabels("metrics_tool", "client"), duration=0.01, error=True)

        after = sample("copilot_tool_call_duration_seconds_count", status="error", **labels)
        assert after == before + 1

    async def test_provider_turn_marked_error(self):
        """mark_error() records the turn with the error status."""
        labels = {"provider": "metrics-test", "model": "m-turn"}
        before = sample("copilot_provider_request_duration_seconds_count", status="error", **labels)

        async with collect_provider_metrics(ProviderMetricsLabels("metrics-test", "m-turn")) as m:
            m.mark_error()

        after = sample("copilot_provider_request_duration_seconds_count", status="error", **labels)
        assert after == before + 1

    async def test_provider_turn_raising(self):
        """An exception inside the block is recorded as an error and propagates."""
        labels = {"provider": "metrics-test", "model": "m-raise"}

        with pytest.raises(RuntimeError):
            async with collect_provider_metrics(ProviderMetricsLabels("metrics-test", "m-raise")):
                raise RuntimeError("boom")

        assert sample("copilot_provider_request_duration_seconds_count", status="error", **labels)

    def test_iteration_limit_counter(self):
        labels = {"provider": "metrics-test", "model": "m-limit"}
        before = sample("copilot_iteration_limit_reached_total", **labels)

        record_iteration_limit(ProviderMetricsLabels("metrics-test", "m-limit"))

        assert sample("copilot_iteration_limit_reached_total", **labels) == before + 1
