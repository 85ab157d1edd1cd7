"""
Metric samples and read-side aggregation.

Every measurement the harness takes becomes an immutable
:class:`Sample` appended to a :class:`MetricsRegistry`.  Nothing is
pre-aggregated: percentiles, rates and counts are computed on demand
over the full sample set, filtered by tags, when thresholds are
evaluated or the summary is printed.

Four metric kinds mirror the usual load-testing vocabulary:

- **trend**: a distribution of values (durations); avg/min/max/med/p(N)
- **counter**: a running sum; count and per-second rate
- **rate**: fraction of non-zero samples (error rate, check pass rate)
- **gauge**: last observed value (heap usage, GC pause)

Key Concepts Demonstrated:
- Append-only samples with tag-based filtering
- Percentiles by linear interpolation between closest ranks
- Metric declaration with kind conflict detection
"""

from __future__ import annotations

import math
import time
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum


class MetricKind(str, Enum):
    """The four supported metric types."""

    TREND = "trend"
    COUNTER = "counter"
    RATE = "rate"
    GAUGE = "gauge"


@dataclass(frozen=True)
class Sample:
    """One named measurement with its tags and wall-clock timestamp."""

    metric: str
    value: float
    tags: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    timestamp: float = 0.0

    @property
    def tag_dict(self) -> dict[str, str]:
        return dict(self.tags)

    def matches(self, tag_filter: Mapping[str, str] | None) -> bool:
        if not tag_filter:
            return True
        tags = self.tag_dict
        return all(tags.get(key) == value for key, value in tag_filter.items())


def percentile(values: Iterable[float], pct: float) -> float:
    """
    Return the ``pct`` percentile of ``values`` (0-100).

    Uses linear interpolation between the two closest ranks, which
    matches numpy's default.

    Raises:
        ValueError: If ``values`` is empty or ``pct`` is out of range.
    """
    ordered = sorted(values)
    if not ordered:
        raise ValueError("percentile() of empty sequence")
    if not 0 <= pct <= 100:
        raise ValueError(f"Percentile must be within 0..100, got {pct}")

    rank = (len(ordered) - 1) * pct / 100.0
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return ordered[lower]
    return ordered[lower] + (ordered[upper] - ordered[lower]) * (rank - lower)


# Recorded for every run without explicit declaration
BUILTIN_METRICS = {
    "http_req_duration": MetricKind.TREND,
    "http_req_failed": MetricKind.RATE,
    "iterations": MetricKind.COUNTER,
    "iteration_duration": MetricKind.TREND,
    "checks": MetricKind.RATE,
    "timeouts": MetricKind.COUNTER,
}


class Metric:
    """Handle returned by :meth:`MetricsRegistry.trend` and friends."""

    def __init__(self, registry: MetricsRegistry, name: str, kind: MetricKind):
        self.registry = registry
        self.name = name
        self.kind = kind

    def add(self, value: float | bool, tags: Mapping[str, str] | None = None) -> Sample:
        return self.registry.add(self.name, float(value), tags)

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.kind.value})>"


class MetricsRegistry:
    """
    Append-only store of samples keyed by metric name.

    Locust runs every virtual user as a greenlet in one OS thread, so
    appends never interleave and the registry holds no locks.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._kinds: dict[str, MetricKind] = {}
        self._samples: dict[str, list[Sample]] = defaultdict(list)
        self.started_at: float | None = None
        self.finished_at: float | None = None
        for name, kind in BUILTIN_METRICS.items():
            self.declare(name, kind)

    # ---- declaration ----------------------------------------------------

    def declare(self, name: str, kind: MetricKind) -> Metric:
        """
        Declare ``name`` as ``kind`` and return its handle.

        Re-declaring with the same kind is allowed (modules may be
        imported more than once); a different kind raises ``ValueError``.
        """
        existing = self._kinds.get(name)
        if existing is not None and existing is not kind:
            raise ValueError(f"Metric {name} already declared as {existing.value}")
        self._kinds[name] = kind
        return Metric(self, name, kind)

    def trend(self, name: str) -> Metric:
        return self.declare(name, MetricKind.TREND)

    def counter(self, name: str) -> Metric:
        return self.declare(name, MetricKind.COUNTER)

    def rate(self, name: str) -> Metric:
        return self.declare(name, MetricKind.RATE)

    def gauge(self, name: str) -> Metric:
        return self.declare(name, MetricKind.GAUGE)

    def kind(self, name: str) -> MetricKind | None:
        return self._kinds.get(name)

    # ---- recording ------------------------------------------------------

    def add(self, name: str, value: float, tags: Mapping[str, str] | None = None) -> Sample:
        """Append a sample to a declared metric."""
        if name not in self._kinds:
            raise KeyError(f"Metric {name} has not been declared")
        sample = Sample(
            metric=name,
            value=float(value),
            tags=tuple(sorted((str(k), str(v)) for k, v in (tags or {}).items())),
            timestamp=self._clock(),
        )
        self._samples[name].append(sample)
        return sample

    def start(self) -> None:
        self.started_at = self._clock()
        self.finished_at = None

    def finish(self) -> None:
        self.finished_at = self._clock()

    def reset(self) -> None:
        """Drop all samples, keeping metric declarations."""
        self._samples.clear()
        self.started_at = None
        self.finished_at = None

    # ---- reading --------------------------------------------------------

    def names(self) -> list[str]:
        return sorted(self._kinds)

    def samples(self, name: str, tag_filter: Mapping[str, str] | None = None) -> list[Sample]:
        return [s for s in self._samples.get(name, []) if s.matches(tag_filter)]

    def values(self, name: str, tag_filter: Mapping[str, str] | None = None) -> list[float]:
        return [s.value for s in self.samples(name, tag_filter)]

    def all_samples(self) -> Iterable[Sample]:
        for name in self.names():
            yield from self._samples.get(name, [])

    def elapsed(self) -> float:
        """Seconds covered by the run, used to turn counters into per-second rates."""
        start = self.started_at
        end = self.finished_at or self._clock()
        if start is None:
            timestamps = [s.timestamp for s in self.all_samples()]
            if not timestamps:
                return 0.0
            start = min(timestamps)
            end = max(timestamps)
        return max(end - start, 0.0)

    def aggregate(
        self, name: str, aggregation: str, tag_filter: Mapping[str, str] | None = None
    ) -> float | None:
        """
        Compute one aggregation of ``name`` over the matching samples.

        Supported aggregations depend on the metric kind:

        - trend: ``avg``, ``min``, ``max``, ``med``, ``count``, ``p(N)``
        - counter: ``count``, ``rate`` (per second)
        - rate: ``rate``, ``count``
        - gauge: ``value``, ``min``, ``max``

        Returns:
            The aggregated value, or ``None`` when no samples match.

        Raises:
            KeyError: If the metric is unknown.
            ValueError: If the aggregation does not apply to the kind.
        """
        kind = self._kinds.get(name)
        if kind is None:
            raise KeyError(f"Unknown metric: {name}")

        values = self.values(name, tag_filter)
        if not values:
            return None

        if kind is MetricKind.TREND:
            if aggregation == "avg":
                return sum(values) / len(values)
            if aggregation == "min":
                return min(values)
            if aggregation == "max":
                return max(values)
            if aggregation == "med":
                return percentile(values, 50)
            if aggregation == "count":
                return float(len(values))
            if aggregation.startswith("p(") and aggregation.endswith(")"):
                return percentile(values, float(aggregation[2:-1]))
        elif kind is MetricKind.COUNTER:
            if aggregation == "count":
                return sum(values)
            if aggregation == "rate":
                elapsed = self.elapsed()
                return sum(values) / elapsed if elapsed > 0 else 0.0
        elif kind is MetricKind.RATE:
            if aggregation == "rate":
                return sum(1 for v in values if v) / len(values)
            if aggregation == "count":
                return float(len(values))
        elif kind is MetricKind.GAUGE:
            if aggregation == "value":
                return values[-1]
            if aggregation == "min":
                return min(values)
            if aggregation == "max":
                return max(values)

        raise ValueError(f"Aggregation {aggregation!r} is not valid for {kind.value} {name}")

    def summary_lines(self) -> list[str]:
        """Render one human-readable line per metric that has samples."""
        lines = []
        for name in self.names():
            if not self._samples.get(name):
                continue
            kind = self._kinds[name]
            if kind is MetricKind.TREND:
                stats = ", ".join(
                    f"{agg}={self.aggregate(name, agg):.2f}"
                    for agg in ("avg", "min", "med", "max", "p(90)", "p(95)")
                )
            elif kind is MetricKind.COUNTER:
                stats = (
                    f"count={self.aggregate(name, 'count'):.0f}, "
                    f"rate={self.aggregate(name, 'rate'):.2f}/s"
                )
            elif kind is MetricKind.RATE:
                values = self.values(name)
                passes = sum(1 for v in values if v)
                stats = f"{self.aggregate(name, 'rate') * 100:.2f}% ({passes}/{len(values)})"
            else:
                stats = (
                    f"value={self.aggregate(name, 'value'):.2f}, "
                    f"min={self.aggregate(name, 'min'):.2f}, "
                    f"max={self.aggregate(name, 'max'):.2f}"
                )
            lines.append(f"{name:.<32} {stats}")
        return lines


# Process-wide registry shared by the scenario modules and the run hooks
REGISTRY = MetricsRegistry()
