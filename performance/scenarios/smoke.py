"""
Smoke test: is the system alive at all?

One virtual user for one minute calls one representative endpoint per
backend surface (gateway health, user profile, question list, session
list) in sequence with a fixed one-second pause between calls.  The
goal is a binary viability signal before heavier scenarios are run,
not a load measurement.

Usage::

    locust -f performance/scenarios/smoke.py --headless

Key Concepts Demonstrated:
- Strict thresholds (p95 < 500 ms, < 1 % failures, > 99 % checks)
- One check group per surface so a failure points at the broken service
"""

from __future__ import annotations

from performance.config import VU_PRESETS
from performance.helpers import safe_json, think
from performance.lib.checks import faster_than
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.scenarios.base import OK, OK_OR_EMPTY, completion_teardown, login_setup, record_error

PAUSE_SECONDS = 1.0


def smoke_flow(vu: ScenarioUser) -> None:
    """Health, profile, question list, session list; one second apart."""
    timeouts = vu.config.timeouts

    _, passed = vu.public(
        "GET",
        vu.endpoints.health(),
        name="health-check",
        checks={
            "health check status 200": OK,
            "health check response time < 200ms": faster_than(200),
        },
    )
    record_error(vu, passed, "health-check")
    think(PAUSE_SECONDS)

    _, passed = vu.api(
        "GET",
        vu.endpoints.profile(),
        name="get-profile",
        timeout=timeouts.fast,
        checks={
            "profile status 200": OK,
            "profile has user data": lambda r: "email" in safe_json(r),
        },
    )
    record_error(vu, passed, "get-profile")
    think(PAUSE_SECONDS)

    _, passed = vu.api(
        "GET",
        vu.endpoints.questions(),
        name="list-questions",
        timeout=timeouts.fast,
        params={"page": 0, "size": 10},
        checks={"questions status 200": OK_OR_EMPTY},
    )
    record_error(vu, passed, "list-questions")
    think(PAUSE_SECONDS)

    _, passed = vu.api(
        "GET",
        vu.endpoints.sessions(),
        name="list-sessions",
        timeout=timeouts.fast,
        params={"page": 0, "size": 10},
        checks={"sessions status 200": OK_OR_EMPTY},
    )
    record_error(vu, passed, "list-sessions")
    think(PAUSE_SECONDS)


plan = ScenarioPlan(
    "smoke",
    [Executor("smoke", VU_PRESETS["smoke"], smoke_flow)],
    setup=login_setup,
    teardown=completion_teardown("Smoke"),
)


class SmokeUser(ScenarioUser):
    plan = plan


class SmokeShape(PlanShape):
    plan = plan


install_hooks(plan)
