"""
Threshold expressions and end-of-run evaluation.

Thresholds are declared as data (see :file:`performance/thresholds.yml`)
in the form::

    http_req_duration{name:login}: ["p(95)<300", "p(99)<1000"]

The key selects a metric and an optional tag filter; each expression is
``aggregation operator limit``.  After the run, every expression is
evaluated against the :class:`~performance.lib.metrics.MetricsRegistry`
and the run fails if any of them is violated.

Key Concepts Demonstrated:
- Regex-based parsing with precise error messages
- Separation of declaration (YAML) and evaluation (registry)
- Human-readable results table printed for CI logs
"""

from __future__ import annotations

import operator
import re
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TextIO

from performance.lib.metrics import MetricsRegistry

_KEY_PATTERN = re.compile(r"^\s*([A-Za-z_][\w.]*)\s*(?:\{([^}]*)\})?\s*$")
_EXPRESSION_PATTERN = re.compile(
    r"^\s*(avg|min|max|med|count|rate|value|p\(\d+(?:\.\d+)?\))"
    r"\s*(<=|>=|==|!=|<|>)\s*(-?\d+(?:\.\d+)?)\s*$"
)

_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}


@dataclass(frozen=True)
class Threshold:
    """One parsed ``key: expression`` pair."""

    key: str
    metric: str
    tags: tuple[tuple[str, str], ...]
    aggregation: str
    operator: str
    limit: float

    @property
    def tag_filter(self) -> dict[str, str]:
        return dict(self.tags)

    @property
    def expression(self) -> str:
        return f"{self.aggregation}{self.operator}{self.limit:g}"

    def holds(self, actual: float) -> bool:
        return _OPERATORS[self.operator](actual, self.limit)


@dataclass(frozen=True)
class ThresholdResult:
    """Outcome of evaluating one threshold."""

    threshold: Threshold
    actual: float | None

    @property
    def passed(self) -> bool:
        # No samples means nothing to judge, which is not a violation
        return self.actual is None or self.threshold.holds(self.actual)

    @property
    def status(self) -> str:
        if self.actual is None:
            return "NO DATA"
        return "PASS" if self.passed else "FAIL"


def parse_threshold_key(key: str) -> tuple[str, dict[str, str]]:
    """
    Split ``metric{tag:value,...}`` into the metric name and tag filter.

    Raises:
        ValueError: If the key or one of its tag pairs is malformed.
    """
    match = _KEY_PATTERN.match(key)
    if match is None:
        raise ValueError(f"Invalid threshold key: {key!r}")

    metric, raw_tags = match.group(1), match.group(2)
    tags: dict[str, str] = {}
    if raw_tags:
        for pair in raw_tags.split(","):
            name, sep, value = pair.partition(":")
            if not sep or not name.strip() or not value.strip():
                raise ValueError(f"Invalid tag filter {pair!r} in threshold key {key!r}")
            tags[name.strip()] = value.strip()
    return metric, tags


def parse_expression(expression: str) -> tuple[str, str, float]:
    """
    Split ``p(95)<500`` into ``("p(95)", "<", 500.0)``.

    Raises:
        ValueError: If the expression is not ``aggregation op number``.
    """
    match = _EXPRESSION_PATTERN.match(expression)
    if match is None:
        raise ValueError(f"Invalid threshold expression: {expression!r}")
    return match.group(1), match.group(2), float(match.group(3))


def build_thresholds(declared: Mapping[str, list[str]]) -> list[Threshold]:
    """Parse every ``key: [expressions]`` entry into :class:`Threshold` objects."""
    thresholds = []
    for key, expressions in declared.items():
        metric, tags = parse_threshold_key(key)
        for expression in expressions:
            aggregation, op, limit = parse_expression(expression)
            thresholds.append(
                Threshold(
                    key=key,
                    metric=metric,
                    tags=tuple(sorted(tags.items())),
                    aggregation=aggregation,
                    operator=op,
                    limit=limit,
                )
            )
    return thresholds


def evaluate_thresholds(
    registry: MetricsRegistry, thresholds: list[Threshold]
) -> list[ThresholdResult]:
    """
    Evaluate each threshold against the registry.

    A metric that was never declared, or has no samples matching the tag
    filter, yields ``actual=None`` (reported as ``NO DATA``).

    Raises:
        ValueError: If an aggregation does not apply to the metric kind.
    """
    results = []
    for threshold in thresholds:
        try:
            actual = registry.aggregate(
                threshold.metric, threshold.aggregation, threshold.tag_filter
            )
        except KeyError:
            actual = None
        results.append(ThresholdResult(threshold=threshold, actual=actual))
    return results


def has_violations(results: list[ThresholdResult]) -> bool:
    return any(not result.passed for result in results)


def print_summary(results: list[ThresholdResult], *, stream: TextIO | None = None) -> None:
    """Print a results table to stdout (or ``stream``) for CI logs."""
    out = stream or sys.stdout
    width = 86
    print("Threshold Check", file=out)
    print("-" * width, file=out)
    print(f"{'Metric':<44}{'Condition':>14}{'Actual':>16}{'Status':>12}", file=out)
    print("-" * width, file=out)

    for result in results:
        actual = "-" if result.actual is None else f"{result.actual:.4g}"
        print(
            f"{result.threshold.key:<44}{result.threshold.expression:>14}"
            f"{actual:>16}{result.status:>12}",
            file=out,
        )

    print("-" * width, file=out)
    print(f"Overall: {'FAIL' if has_violations(results) else 'PASS'}", file=out)
