"""
Metrics Module: Dispatch Tracking and Reporting

Components:
    MetricsStore: Thread-safe in-memory metrics aggregation
    DispatchMetric: Individual dispatch metric record
    AggregatedMetrics: Pre-computed aggregates for reporting
    MetricsReporter: Generate MetricsResponse for API endpoints

Usage:
    from kubellm.metrics import MetricsStore, MetricsReporter

    store = MetricsStore()
    orchestrator = DispatchOrchestrator(registry, prompt_store, metrics=store)
    ...
    response = MetricsReporter(store).generate_report()
"""

from kubellm.metrics.store import (
    AggregatedMetrics,
    DispatchMetric,
    MetricsStore,
)
from kubellm.metrics.reporter import (
    MetricsReporter,
    percentile,
)


__all__ = [
    "AggregatedMetrics",
    "DispatchMetric",
    "MetricsStore",
    "MetricsReporter",
    "percentile",
]
