"""
Soak test: slow leaks that only show up over hours.

Two executors share the VU pool:

1. **steady**: ramps to 100 VUs over 5 minutes, holds for 4 hours and
   ramps down; each iteration makes one weighted API call (interview
   list, statistics, JD list, interview search, statistics write)
2. **monitor**: a single VU that polls every service's introspection
   endpoints (heap usage, GC pause) on a fixed interval for the whole
   run, independent of the request rate

The monitor records ``jvm_heap_used_mb`` and ``gc_pause_ms`` gauges
tagged by service.  A heap that grows linearly over the run points at a
leak; GC pause spikes point at collector pressure.  Metric names and
the heap tag are configuration (``MONITOR_*`` environment variables),
since they belong to the backend's runtime, not to this harness.
"""

from __future__ import annotations

import logging
import random
import time

from performance.config import VU_PRESETS
from performance.helpers import INTERVIEW_KEYWORDS, safe_json, think
from performance.lib.checks import duration_ms, status_in
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import ConstantVUs
from performance.lib.selection import validate_weights, weighted_choice
from performance.scenarios.base import OK, login_setup, record_error

logger = logging.getLogger(__name__)

CALL_WEIGHTS = (0.3, 0.2, 0.2, 0.15, 0.15)
validate_weights(CALL_WEIGHTS, total=1.0)

BYTES_PER_MB = 1024 * 1024


def _steady_call(vu: ScenarioUser, index: int):
    endpoints = vu.endpoints
    if index == 0:
        return "list-interviews", vu.api(
            "GET", endpoints.interviews(), name="list-interviews", checks={"list ok": OK}
        )
    if index == 1:
        return "get-statistics", vu.api(
            "GET", endpoints.statistics(), name="get-statistics", checks={"stats ok": OK}
        )
    if index == 2:
        return "list-jd", vu.api(
            "GET", endpoints.job_descriptions(), name="list-jd", checks={"jd ok": OK}
        )
    if index == 3:
        return "search", vu.api(
            "GET",
            endpoints.interview_search(),
            name="search",
            params={"keyword": random.choice(INTERVIEW_KEYWORDS)},
            checks={"search ok": OK},
        )
    return "record-stats", vu.api(
        "POST",
        endpoints.record_statistics(),
        name="record-stats",
        json={
            "skillCategory": "Java",
            "isCorrect": random.random() > 0.3,
            "score": random.randrange(100),
        },
        checks={"record ok": OK},
    )


def steady_flow(vu: ScenarioUser) -> None:
    name, (response, passed) = _steady_call(vu, weighted_choice(CALL_WEIGHTS, random.random()))
    tags = vu.tags(name=name)
    vu.registry.trend("api_duration").add(duration_ms(response), tags)
    vu.registry.counter("total_requests").add(1, tags)
    record_error(vu, passed, name)
    think(1, 4)


def heap_used_mb(body: dict) -> float | None:
    """Heap usage in MiB from an actuator metric body, or ``None``."""
    measurements = body.get("measurements") or []
    if not measurements or not isinstance(measurements[0], dict):
        return None
    value = measurements[0].get("value")
    return value / BYTES_PER_MB if isinstance(value, (int, float)) else None


def max_gc_pause_ms(body: dict) -> float | None:
    """Maximum GC pause in milliseconds from an actuator metric body, or ``None``."""
    for measurement in body.get("measurements") or []:
        if isinstance(measurement, dict) and measurement.get("statistic") == "MAX":
            value = measurement.get("value")
            if isinstance(value, (int, float)):
                return value * 1000
    return None


def monitor_flow(vu: ScenarioUser) -> None:
    """Poll heap and GC metrics of every monitored service, then wait one interval."""
    monitor = vu.config.monitor
    for service in monitor.services:
        tags = vu.tags(service=service)

        response, passed = vu.public(
            "GET",
            vu.endpoints.actuator_metric(service, monitor.heap_metric),
            name=f"{service}-heap-memory",
            params={"tag": monitor.heap_tag},
            checks={"heap metric available": status_in(200)},
        )
        heap = heap_used_mb(safe_json(response)) if passed else None
        if heap is not None:
            vu.registry.gauge("jvm_heap_used_mb").add(heap, tags)
            logger.info("[%s] Heap: %.1fMB", service, heap)

        response, passed = vu.public(
            "GET",
            vu.endpoints.actuator_metric(service, monitor.gc_pause_metric),
            name=f"{service}-gc-pause",
            checks={"gc metric available": status_in(200)},
        )
        pause = max_gc_pause_ms(safe_json(response)) if passed else None
        if pause is not None:
            vu.registry.gauge("gc_pause_ms").add(pause, tags)
            logger.info("[%s] Max GC Pause: %.1fms", service, pause)

    think(monitor.interval_seconds)


def soak_teardown(_client, data: dict) -> None:
    started = data.get("started_monotonic")
    minutes = (time.monotonic() - started) / 60 if started is not None else 0.0
    print("=== Soak test completed ===")
    print(f"Elapsed: {minutes:.1f} minutes")
    print("Dashboards to review:")
    print("  - jvm_heap_used_mb per service: linear growth means a leak")
    print("  - gc_pause_ms per service: spikes mean GC pressure")
    print("  - connection pool pending count on the backend: a surge means pool exhaustion")


steady_profile = VU_PRESETS["soak"]

plan = ScenarioPlan(
    "soak",
    [
        Executor("steady", steady_profile, steady_flow),
        Executor(
            "monitor",
            ConstantVUs(vus=1, duration=steady_profile.total_duration),
            monitor_flow,
        ),
    ],
    setup=login_setup,
    teardown=soak_teardown,
)


class SoakUser(ScenarioUser):
    plan = plan


class SoakShape(PlanShape):
    plan = plan


install_hooks(plan)

