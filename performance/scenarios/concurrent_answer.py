"""
Concurrent-write race test for statistics aggregation.

Fifty virtual users share a budget of 200 iterations (at most two
minutes).  Every iteration records one answer for the *same* test user
via ``POST /api/v1/statistics/record``, so the backend's per-user
``totalQuestions`` aggregate receives unsynchronised concurrent
read-modify-write traffic.

Setup captures the baseline ``totalQuestions``; teardown waits for
asynchronous commits to land, reads the value again and reports::

    expected = baseline + executed record iterations
    lost updates = expected - actual

Any non-zero shortfall is a lost update in the backend's concurrency
control.  The harness itself never serialises the writes: exposing
that kind of bug is the whole point.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass
from typing import Any, TextIO

from performance.config import settings
from performance.endpoints import endpoints
from performance.helpers import record_answer_payload, safe_json
from performance.lib.auth import AuthSession
from performance.lib.checks import duration_ms, faster_than
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import SharedIterations, parse_duration
from performance.scenarios.base import OK, record_error

logger = logging.getLogger(__name__)

RACE_VUS = 50
RACE_ITERATIONS = 200
RACE_MAX_DURATION = parse_duration("2m")


@dataclass(frozen=True)
class RaceOutcome:
    """Baseline/expected/actual comparison for one race run."""

    baseline: int
    executed: int
    successful: int
    actual: int

    @property
    def expected(self) -> int:
        return self.baseline + self.executed

    @property
    def lost_updates(self) -> int:
        return self.expected - self.actual

    @property
    def unacknowledged(self) -> int:
        """Writes that ran but did not get a ``200`` back."""
        return self.executed - self.successful

    @property
    def accuracy(self) -> float:
        """Share of executed writes reflected in the aggregate, in percent."""
        if self.executed == 0:
            return 100.0 if self.actual == self.baseline else 0.0
        return (self.actual - self.baseline) / self.executed * 100


def evaluate_race(baseline: int, executed: int, actual: int, successful: int | None = None) -> RaceOutcome:
    """
    Compare the post-run aggregate with the baseline plus every executed write.

    Args:
        baseline: ``totalQuestions`` before the run.
        executed: Record iterations run across all VUs.
        actual: ``totalQuestions`` after the settle delay.
        successful: Writes the backend acknowledged with ``200``
            (defaults to ``executed``).
    """
    return RaceOutcome(
        baseline=baseline,
        executed=executed,
        successful=executed if successful is None else successful,
        actual=actual,
    )


def print_race_report(outcome: RaceOutcome, *, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    print("=== Race condition verification ===", file=out)
    print(f"Baseline:          {outcome.baseline}", file=out)
    print(f"Iterations run:    {outcome.executed}", file=out)
    print(f"Successful writes: {outcome.successful}", file=out)
    print(f"Expected:          {outcome.expected}", file=out)
    print(f"Actual:            {outcome.actual}", file=out)
    print(f"Difference:        {outcome.lost_updates} (lost updates)", file=out)
    print(f"Accuracy:          {outcome.accuracy:.1f}%", file=out)
    if outcome.unacknowledged:
        print(f"{outcome.unacknowledged} write(s) got no 200; the difference may include them", file=out)
    if outcome.lost_updates == 0:
        print("Data consistency 100%: no lost updates", file=out)
    else:
        print(f"{outcome.lost_updates} lost update(s): statistics writes need locking", file=out)


def total_questions(response: Any) -> int:
    value = safe_json(response).get("totalQuestions") or 0
    return int(value) if isinstance(value, (int, float)) else 0


def _read_statistics(client: Any, name: str) -> Any:
    auth = AuthSession(client)
    return auth.authenticated_request(
        "GET",
        endpoints.statistics(),
        name=name,
        timeout=settings.timeouts.fast,
        checks={f"{name} status 200": OK},
    )


def race_setup(client: Any) -> dict[str, Any]:
    response = _read_statistics(client, "get-baseline-stats")
    if response.status_code != 200:
        logger.error("Setup failed: could not read baseline statistics (status %s)", response.status_code)
        return {}

    baseline = total_questions(response)
    print(f"Baseline total_questions: {baseline}")
    print(f"Expected after test: {baseline + RACE_ITERATIONS} (once all {RACE_ITERATIONS} iterations run)")
    return {"baseline": baseline}


def race_teardown(client: Any, data: dict[str, Any]) -> None:
    if "baseline" not in data:
        logger.error("No baseline was captured; skipping race verification")
        return

    time.sleep(settings.race_settle_seconds)
    response = _read_statistics(client, "get-final-stats")
    if response.status_code != 200:
        logger.error("Could not read final statistics (status %s)", response.status_code)
        return

    written = plan.registry.counter("successful_records")
    successful = plan.registry.aggregate(written.name, "count") or 0
    outcome = evaluate_race(
        baseline=data["baseline"],
        successful=int(successful),
        actual=total_questions(response),
        executed=plan.executor("concurrent_record").completed,
    )
    print_race_report(outcome)


def record_answer_flow(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "POST",
        vu.endpoints.record_statistics(),
        name="record-answer",
        timeout=vu.config.timeouts.fast,
        json=record_answer_payload(),
        checks={
            "record status 200": OK,
            "record response time < 1000ms": faster_than(1000),
        },
    )
    tags = vu.tags(name="record-answer")
    vu.registry.trend("record_answer_duration").add(duration_ms(response), tags)
    # Counted by status alone: a slow write still lands
    if response.status_code == 200:
        vu.registry.counter("successful_records").add(1, tags)
    else:
        vu.registry.counter("failed_records").add(1, tags)
    record_error(vu, passed, "record-answer")


plan = ScenarioPlan(
    "concurrent_answer",
    [
        Executor(
            "concurrent_record",
            SharedIterations(vus=RACE_VUS, iterations=RACE_ITERATIONS, max_duration=RACE_MAX_DURATION),
            record_answer_flow,
        )
    ],
    setup=race_setup,
    teardown=race_teardown,
)


class ConcurrentAnswerUser(ScenarioUser):
    plan = plan


class ConcurrentAnswerShape(PlanShape):
    plan = plan


install_hooks(plan)
