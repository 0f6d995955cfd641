"""
Metrics Store for Dispatch Tracking

Aggregates per-dispatch metrics for analysis and reporting.
Uses in-memory storage scoped to the process; the numbers reset on
restart.

The store is thread-safe using threading.Lock to handle
concurrent dispatches from the API and CLI.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field


@dataclass
class DispatchMetric:
    """
    Individual dispatch metric record.

    Captures the outcome of a single dispatch, successful or not,
    for later aggregation.

    Attributes:
        timestamp: Unix timestamp when the dispatch finished
        provider: Provider the request targeted
        model: Model the request ran against (requested name if unresolved)
        outcome: "success" or a DispatchErrorKind value
        attempts: Provider calls made
        latency_ms: Wall time of the whole dispatch in milliseconds
        input_tokens: Prompt tokens reported by the vendor
        output_tokens: Completion tokens reported by the vendor
    """

    timestamp: float
    provider: str
    model: str
    outcome: str
    attempts: int
    latency_ms: float
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"

    @property
    def total_tokens(self) -> int:
        """Total tokens processed (input + output)."""
        return self.input_tokens + self.output_tokens


@dataclass
class _Aggregate:
    """Internal per-provider / per-model aggregate."""

    count: int = 0
    successes: int = 0
    total_tokens: int = 0
    latencies: list[float] = field(default_factory=list)


@dataclass
class AggregatedMetrics:
    """
    Aggregated metrics snapshot for reporting.

    All fields are copies captured at a specific moment.

    Attributes:
        total_dispatches: Total number of dispatches recorded
        successful_dispatches: Dispatches that produced a stored record
        total_attempts: Provider calls across all dispatches
        total_input_tokens: Input tokens across all dispatches
        total_output_tokens: Output tokens across all dispatches
        by_provider: Aggregates keyed by provider
        by_model: Aggregates keyed by "provider/model"
        latencies: Dispatch latencies for percentile calculation
        outcomes: Count of each outcome
    """

    total_dispatches: int = 0
    successful_dispatches: int = 0
    total_attempts: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0

    by_provider: dict[str, _Aggregate] = field(default_factory=dict)
    by_model: dict[str, _Aggregate] = field(default_factory=dict)

    latencies: list[float] = field(default_factory=list)
    outcomes: dict[str, int] = field(default_factory=dict)


def _copy(agg: _Aggregate) -> _Aggregate:
    return _Aggregate(
        count=agg.count,
        successes=agg.successes,
        total_tokens=agg.total_tokens,
        latencies=list(agg.latencies),
    )


class MetricsStore:
    """
    Thread-safe in-memory metrics storage.

    Stores individual dispatch metrics and keeps running aggregates.

    Example:
        store = MetricsStore()
        store.record(DispatchMetric(
            timestamp=time.time(),
            provider="anthropic",
            model="claude-sonnet-4-5",
            outcome="success",
            attempts=1,
            latency_ms=812.4,
        ))
        aggregated = store.get_aggregated()
        print(f"Total dispatches: {aggregated.total_dispatches}")
    """

    def __init__(self, max_history: int = 10000):
        """
        Initialize the metrics store.

        Args:
            max_history: Maximum individual metrics (and latency samples)
                         to retain. Counters are preserved regardless.
        """
        self._lock = threading.Lock()
        self._metrics: list[DispatchMetric] = []
        self._max_history = max_history

        self._total_dispatches: int = 0
        self._successful_dispatches: int = 0
        self._total_attempts: int = 0
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

        self._by_provider: dict[str, _Aggregate] = defaultdict(_Aggregate)
        self._by_model: dict[str, _Aggregate] = defaultdict(_Aggregate)

        self._latencies: list[float] = []
        self._outcomes: dict[str, int] = defaultdict(int)

    def record(self, metric: DispatchMetric) -> None:
        """
        Record a new dispatch metric.

        Thread-safe. Updates both raw history and running aggregates.
        """
        with self._lock:
            self._metrics.append(metric)
            if len(self._metrics) > self._max_history:
                self._metrics = self._metrics[-self._max_history :]

            self._total_dispatches += 1
            self._total_attempts += metric.attempts
            self._total_input_tokens += metric.input_tokens
            self._total_output_tokens += metric.output_tokens
            if metric.succeeded:
                self._successful_dispatches += 1

            for agg in (
                self._by_provider[metric.provider],
                self._by_model[f"{metric.provider}/{metric.model}"],
            ):
                agg.count += 1
                agg.total_tokens += metric.total_tokens
                agg.latencies.append(metric.latency_ms)
                if metric.succeeded:
                    agg.successes += 1
                if len(agg.latencies) > self._max_history:
                    agg.latencies = agg.latencies[-self._max_history :]

            self._latencies.append(metric.latency_ms)
            if len(self._latencies) > self._max_history:
                self._latencies = self._latencies[-self._max_history :]

            self._outcomes[metric.outcome] += 1

    def get_aggregated(self) -> AggregatedMetrics:
        """
        Get current aggregated metrics.

        Thread-safe. The returned object is a copy and safe to use
        outside the lock.
        """
        with self._lock:
            return AggregatedMetrics(
                total_dispatches=self._total_dispatches,
                successful_dispatches=self._successful_dispatches,
                total_attempts=self._total_attempts,
                total_input_tokens=self._total_input_tokens,
                total_output_tokens=self._total_output_tokens,
                by_provider={k: _copy(v) for k, v in self._by_provider.items()},
                by_model={k: _copy(v) for k, v in self._by_model.items()},
                latencies=list(self._latencies),
                outcomes=dict(self._outcomes),
            )

    def get_recent(self, count: int = 100) -> list[DispatchMetric]:
        """Most recent dispatch metrics, oldest first."""
        with self._lock:
            return list(self._metrics[-count:])

    def reset(self) -> None:
        """
        Reset all metrics.

        Primarily used for testing.
        """
        with self._lock:
            self._metrics.clear()
            self._total_dispatches = 0
            self._successful_dispatches = 0
            self._total_attempts = 0
            self._total_input_tokens = 0
            self._total_output_tokens = 0
            self._by_provider.clear()
            self._by_model.clear()
            self._latencies.clear()
            self._outcomes.clear()
