"""
Metrics Reporter for API Responses

Transforms raw aggregated metrics into structured API responses
with computed fields like success rate, averages and percentiles.

The reporter bridges the internal metrics representation to the
Pydantic schemas used by the REST API.
"""

import math

from kubellm.metrics.store import MetricsStore, _Aggregate
from kubellm.schemas.prompts import BreakdownMetrics, MetricsResponse


def percentile(values: list[float], pct: float) -> float:
    """
    Nearest-rank percentile of `values`.

    Returns 0.0 for an empty list.
    """
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100 * len(ordered)))
    return ordered[rank - 1]


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _breakdown(name: str, agg: _Aggregate) -> BreakdownMetrics:
    return BreakdownMetrics(
        name=name,
        dispatch_count=agg.count,
        success_count=agg.successes,
        total_tokens=agg.total_tokens,
        avg_latency_ms=round(_mean(agg.latencies), 2),
    )


class MetricsReporter:
    """
    Generate metrics reports from aggregated data.

    Example:
        reporter = MetricsReporter(store)
        response = reporter.generate_report()
        return response  # Ready for JSON serialization
    """

    def __init__(self, store: MetricsStore):
        self._store = store

    def generate_report(self) -> MetricsResponse:
        """
        Generate a complete metrics report.

        Returns:
            MetricsResponse ready for API serialization
        """
        agg = self._store.get_aggregated()

        if agg.total_dispatches:
            success_rate = agg.successful_dispatches / agg.total_dispatches * 100
            avg_attempts = agg.total_attempts / agg.total_dispatches
        else:
            success_rate = 0.0
            avg_attempts = 0.0

        return MetricsResponse(
            total_dispatches=agg.total_dispatches,
            successful_dispatches=agg.successful_dispatches,
            success_rate=round(success_rate, 2),
            avg_attempts=round(avg_attempts, 2),
            avg_latency_ms=round(_mean(agg.latencies), 2),
            p95_latency_ms=round(percentile(agg.latencies, 95), 2),
            total_input_tokens=agg.total_input_tokens,
            total_output_tokens=agg.total_output_tokens,
            outcomes=dict(agg.outcomes),
            by_provider={k: _breakdown(k, v) for k, v in agg.by_provider.items()},
            by_model={k: _breakdown(k, v) for k, v in agg.by_model.items()},
        )
