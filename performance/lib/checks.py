"""
In-band response checks.

A check is a named boolean assertion on a response.  Every assertion is
recorded as a sample of the ``checks`` rate metric (so thresholds such
as ``checks: rate>0.95`` work), and the response is marked as a Locust
success or failure through the ``catch_response`` protocol so the
request statistics agree with the checks.

Assertions that blow up on a malformed body count as failed checks
rather than exceptions; one bad response must never abort a virtual
user's iteration.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import requests

from performance.lib.metrics import REGISTRY, MetricsRegistry

Assertion = Callable[[Any], bool]


def is_timeout(response: Any) -> bool:
    """Return True when the request behind ``response`` timed out."""
    return isinstance(getattr(response, "error", None), requests.Timeout)


def check(
    response: Any,
    assertions: Mapping[str, Assertion],
    *,
    tags: Mapping[str, str] | None = None,
    registry: MetricsRegistry = REGISTRY,
) -> bool:
    """
    Evaluate ``assertions`` against ``response`` and record the outcome.

    Args:
        response: A Locust ``ResponseContextManager`` (or any object with
            ``status_code``; ``success``/``failure`` are used when present).
        assertions: Mapping of check description to predicate.
        tags: Extra tags attached to each ``checks`` sample.
        registry: Where to record samples.

    Returns:
        ``True`` if every assertion passed.
    """
    failed = []
    for description, assertion in assertions.items():
        try:
            passed = bool(assertion(response))
        except (ValueError, KeyError, TypeError, AttributeError, IndexError):
            passed = False
        registry.add("checks", 1.0 if passed else 0.0, {**(tags or {}), "check": description})
        if not passed:
            failed.append(description)

    if is_timeout(response):
        registry.add("timeouts", 1, tags)

    if failed:
        if callable(getattr(response, "failure", None)):
            status = getattr(response, "status_code", "?")
            response.failure(f"Check failed ({status}): {', '.join(failed)}")
        return False

    if callable(getattr(response, "success", None)):
        response.success()
    return True


def record_failed_checks(
    assertions: Mapping[str, Assertion],
    *,
    tags: Mapping[str, str] | None = None,
    registry: MetricsRegistry = REGISTRY,
) -> None:
    """Record every assertion as failed, for calls that never produced a response to judge."""
    for description in assertions:
        registry.add("checks", 0.0, {**(tags or {}), "check": description})


def status_in(*codes: int) -> Assertion:
    """Predicate: response status is one of ``codes``."""
    return lambda response: response.status_code in codes


def duration_ms(response: Any) -> float:
    """Round-trip time of ``response`` in milliseconds (0 when it never completed)."""
    elapsed = getattr(response, "elapsed", None)
    return elapsed.total_seconds() * 1000 if elapsed is not None else 0.0


def faster_than(milliseconds: float) -> Assertion:
    """Predicate: response arrived within ``milliseconds``."""
    return lambda response: duration_ms(response) < milliseconds
