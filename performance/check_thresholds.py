"""
Validate Locust CSV output against a scenario's thresholds.

The in-process threshold gate (see :mod:`performance.lib.plan`) sets the
exit code of the Locust run itself.  This script is the second line of
defence for CI jobs that only keep the ``*_stats.csv`` artifact: it
re-checks the request-level thresholds of one scenario from
:file:`thresholds.yml` against that file.

Only request metrics can be recovered from the CSV:

- ``http_req_duration``: ``avg``, ``min``, ``max``, ``med`` and ``p(N)``
  map onto Locust's response-time columns (a percentile Locust does not
  report is read from the next higher column)
- ``http_req_failed``: ``rate`` is ``Failure Count / Request Count``

A tag filter of ``name:<request>`` selects that request's row; an
untagged key reads the ``Aggregated`` row.  Custom metrics and other
tag filters cannot be rebuilt from the CSV and are reported
``NO DATA``.

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: the script itself failed (missing file, bad YAML, etc.)

Usage::

    python -m performance.check_thresholds --stats results/load_stats.csv --scenario load
"""

from __future__ import annotations

import argparse
import csv
import re
import sys
from pathlib import Path
from typing import Any

from performance.config import DEFAULT_THRESHOLDS_FILE, thresholds_for
from performance.lib.thresholds import (
    Threshold,
    ThresholdResult,
    build_thresholds,
    has_violations,
    print_summary,
)

# Three-state exit codes so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2

AGGREGATED = "Aggregated"

_PERCENTILE = re.compile(r"^p\((\d+(?:\.\d+)?)\)$")
_PERCENTILE_COLUMN = re.compile(r"^(\d+(?:\.\d+)?)%(?:ile)?$")

_DURATION_COLUMNS = {
    "avg": "Average Response Time",
    "min": "Min Response Time",
    "max": "Max Response Time",
    "med": "Median Response Time",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the threshold checker."""
    parser = argparse.ArgumentParser(
        description="Check Locust stats CSV against a scenario's performance thresholds."
    )
    parser.add_argument(
        "--stats",
        required=True,
        type=Path,
        help="Path to Locust *_stats.csv file",
    )
    parser.add_argument(
        "--scenario",
        required=True,
        help="Scenario whose thresholds apply (smoke, load, stress, ...)",
    )
    parser.add_argument(
        "--thresholds",
        type=Path,
        default=DEFAULT_THRESHOLDS_FILE,
        help="Path to thresholds YAML file",
    )
    return parser.parse_args(argv)


def load_stats_rows(stats_path: Path) -> dict[str, dict[str, str]]:
    """
    Read a Locust stats CSV into rows keyed by request name.

    Locust writes one row per endpoint plus a final ``Aggregated`` row
    that summarises all traffic.  The aggregated row is found by either
    the ``Name`` or ``Type`` column, since the layout varies between
    Locust versions.

    Raises:
        ValueError: If no ``Aggregated`` row is found.
    """
    with stats_path.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    by_name: dict[str, dict[str, str]] = {}
    for row in rows:
        if row.get("Name") == AGGREGATED or row.get("Type") == AGGREGATED:
            by_name[AGGREGATED] = row
        elif row.get("Name"):
            by_name[row["Name"]] = row

    if AGGREGATED not in by_name:
        raise ValueError("Could not find 'Aggregated' row in stats CSV")
    return by_name


def _parse_float(value: Any, field_name: str) -> float:
    """
    Coerce *value* to ``float``, stripping ``%`` suffixes if present.

    Raises:
        ValueError: If the value is missing, empty, or non-numeric.
    """
    if value is None:
        raise ValueError(f"Missing field: {field_name}")

    text = str(value).strip().replace("%", "")
    if text in ("", "N/A"):
        raise ValueError(f"Empty value for field: {field_name}")

    try:
        return float(text)
    except ValueError as exc:
        raise ValueError(f"Non-numeric value for {field_name}: {value}") from exc


def _percentile_column(row: dict[str, str], wanted: float) -> str:
    """Name of the lowest percentile column at or above ``wanted``."""
    available = []
    for column in row:
        match = _PERCENTILE_COLUMN.match(column.strip()) if column else None
        if match and row[column] not in (None, "", "N/A"):
            available.append((float(match.group(1)), column))

    for level, column in sorted(available):
        if level >= wanted:
            return column
    raise ValueError(f"Could not find a p({wanted:g}) column in stats CSV")


def row_for(threshold: Threshold, rows: dict[str, dict[str, str]]) -> dict[str, str] | None:
    """Row a threshold reads from, or ``None`` when its filter cannot be resolved."""
    tags = threshold.tag_filter
    if not tags:
        return rows[AGGREGATED]
    if set(tags) == {"name"}:
        return rows.get(tags["name"])
    return None


def actual_value(threshold: Threshold, row: dict[str, str]) -> float | None:
    """
    Value of ``threshold``'s aggregation computed from one stats row.

    Returns:
        ``None`` when the metric/aggregation pair has no CSV equivalent
        or the row saw no requests.
    """
    request_count = _parse_float(row.get("Request Count"), "Request Count")
    if request_count <= 0:
        return None

    if threshold.metric == "http_req_failed" and threshold.aggregation == "rate":
        failure_count = _parse_float(row.get("Failure Count"), "Failure Count")
        return failure_count / request_count

    if threshold.metric == "http_req_duration":
        column = _DURATION_COLUMNS.get(threshold.aggregation)
        if column is None:
            match = _PERCENTILE.match(threshold.aggregation)
            if match is None:
                return None
            column = _percentile_column(row, float(match.group(1)))
        return _parse_float(row.get(column), column)

    return None


def check_stats(thresholds: list[Threshold], rows: dict[str, dict[str, str]]) -> list[ThresholdResult]:
    results = []
    for threshold in thresholds:
        row = row_for(threshold, rows)
        actual = actual_value(threshold, row) if row is not None else None
        results.append(ThresholdResult(threshold=threshold, actual=actual))
    return results


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: load thresholds, parse CSV, compare, and print results.

    Returns:
        ``EXIT_PASS`` (0) if all thresholds are met,
        ``EXIT_THRESHOLD_BREACH`` (1) if any are exceeded, or
        ``EXIT_SCRIPT_ERROR`` (2) on unexpected failures.
    """
    args = parse_args(argv)

    try:
        declared = thresholds_for(args.scenario, args.thresholds)
        if not declared:
            raise ValueError(f"No thresholds declared for scenario {args.scenario!r}")
        rows = load_stats_rows(args.stats)
        results = check_stats(build_thresholds(declared), rows)
        print_summary(results)
        return EXIT_THRESHOLD_BREACH if has_violations(results) else EXIT_PASS
    except Exception as exc:
        print(f"Threshold check failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
