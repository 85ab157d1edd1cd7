"""
Spike test: how does the system react to sudden traffic bursts?

Two abrupt spikes (10 -> 500 VUs, then 10 -> 300 VUs) separated by a
recovery window.  Iterations classify their own temporal phase from
the wall-clock time elapsed since the run started:

=========  ==============
Phase      Elapsed (s)
=========  ==============
normal     0 - 60
spike1     60 - 150
recovery1  150 - 270
spike2     270 - 360
recovery2  360 -
=========  ==============

During spikes requests and failures are counted separately and virtual
users pace themselves faster.  In a recovery phase, each VU records
how long after the phase began its first successful call happened
(``spike_recovery_time``).  A ``503`` from the domain endpoints is an
acceptable answer (graceful shedding), but never from the health probe.
"""

from __future__ import annotations

import random
import time

from performance.config import VU_PRESETS
from performance.helpers import think
from performance.lib.checks import status_in
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.selection import (
    SPIKE_PHASE_BOUNDARIES,
    classify_phase,
    is_recovery_phase,
    is_spike_phase,
    phase_start,
)
from performance.scenarios.base import OK, login_setup, record_error

SHEDDING_OK = status_in(200, 204, 503)


def call_health(vu: ScenarioUser) -> bool:
    _, passed = vu.public(
        "GET", vu.endpoints.health(), name="health-check", timeout=5, checks={"health check ok": OK}
    )
    return passed


def call_questions(vu: ScenarioUser) -> bool:
    _, passed = vu.api(
        "GET",
        vu.endpoints.questions(),
        name="get-questions",
        timeout=10,
        params={"page": 0, "size": 10},
        checks={"questions ok": SHEDDING_OK},
    )
    return passed


def call_profile(vu: ScenarioUser) -> bool:
    _, passed = vu.api(
        "GET",
        vu.endpoints.profile(),
        name="get-profile",
        timeout=5,
        checks={"profile ok": status_in(200, 503)},
    )
    return passed


def call_search(vu: ScenarioUser) -> bool:
    _, passed = vu.api(
        "GET",
        vu.endpoints.question_search(),
        name="search-questions",
        timeout=15,
        params={"keyword": random.choice(["java", "spring", "kubernetes"])},
        checks={"search ok": SHEDDING_OK},
    )
    return passed


CALLS = {
    "health-check": call_health,
    "get-questions": call_questions,
    "get-profile": call_profile,
    "search-questions": call_search,
}


def spike_flow(vu: ScenarioUser) -> None:
    registry = vu.registry
    phase = classify_phase(vu.plan.elapsed(), SPIKE_PHASE_BOUNDARIES)
    tags = vu.tags(phase=phase)

    if is_spike_phase(phase):
        registry.counter("requests_during_spike").add(1, tags)

    name, call = random.choice(list(CALLS.items()))
    passed = call(vu)
    record_error(vu, passed, name)

    if is_spike_phase(phase) and not passed:
        registry.counter("errors_during_spike").add(1, tags)

    recovered = vu.state.setdefault("recovered_phases", set())
    if is_recovery_phase(phase) and passed and phase not in recovered:
        recovered.add(phase)
        recovery_ms = (vu.plan.elapsed() - phase_start(phase, SPIKE_PHASE_BOUNDARIES)) * 1000
        registry.trend("spike_recovery_time").add(recovery_ms, tags)

    if is_spike_phase(phase):
        think(0.1, 0.6)
    else:
        think(1, 3)


def spike_teardown(_client, data: dict) -> None:
    started = data.get("started_monotonic")
    if started is not None:
        print(f"Spike test completed in {time.monotonic() - started:.2f} seconds")
    print("Review spike_recovery_time and errors_during_spike metrics")


plan = ScenarioPlan(
    "spike",
    [Executor("spike", VU_PRESETS["spike"], spike_flow)],
    setup=login_setup,
    teardown=spike_teardown,
)


class SpikeUser(ScenarioUser):
    plan = plan


class SpikeShape(PlanShape):
    plan = plan


install_hooks(plan)
