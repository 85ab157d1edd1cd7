"""
Search and listing load test.

Measures the read paths most sensitive to indexing and query shape,
with two independently ramped executors sharing the VU pool:

- **search_load**: interview keyword search
  (0 -> 20 -> 50 -> 100 -> 0 VUs over 8 minutes)
- **list_load**: interview list followed by the statistics summary
  (0 -> 30 -> 100 -> 0 VUs over 8 minutes)

Each endpoint feeds its own duration trend (``search_duration``,
``list_duration``, ``stats_duration``) so a before/after comparison of
an index change reads straight off the threshold table.
"""

from __future__ import annotations

import random

from performance.helpers import INTERVIEW_KEYWORDS, safe_json, think
from performance.lib.checks import duration_ms, faster_than
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import ramping
from performance.scenarios.base import OK, completion_teardown, login_setup, record_error


def search_flow(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.interview_search(),
        name="search-interviews",
        timeout=vu.config.timeouts.fast,
        params={"keyword": random.choice(INTERVIEW_KEYWORDS)},
        checks={
            "search status 200": OK,
            "search response time < 500ms": faster_than(500),
            "search has results array": lambda r: "interviews" in safe_json(r),
        },
    )
    vu.registry.trend("search_duration").add(duration_ms(response), vu.tags(name="search-interviews"))
    record_error(vu, passed, "search-interviews")
    think(0.5, 2.5)


def list_flow(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.interviews(),
        name="list-interviews",
        timeout=vu.config.timeouts.fast,
        checks={
            "list status 200": OK,
            "list response time < 500ms": faster_than(500),
        },
    )
    vu.registry.trend("list_duration").add(duration_ms(response), vu.tags(name="list-interviews"))
    record_error(vu, passed, "list-interviews")
    think(1)

    response, passed = vu.api(
        "GET",
        vu.endpoints.statistics(),
        name="get-statistics",
        timeout=vu.config.timeouts.fast,
        checks={
            "stats status 200": OK,
            "stats response time < 300ms": faster_than(300),
        },
    )
    vu.registry.trend("stats_duration").add(duration_ms(response), vu.tags(name="get-statistics"))
    record_error(vu, passed, "get-statistics")
    think(1, 3)


plan = ScenarioPlan(
    "search_load",
    [
        Executor(
            "search_load",
            ramping(("1m", 20), ("3m", 50), ("3m", 100), ("1m", 0)),
            search_flow,
        ),
        Executor(
            "list_load",
            ramping(("1m", 30), ("5m", 100), ("2m", 0)),
            list_flow,
        ),
    ],
    setup=login_setup,
    teardown=completion_teardown("Search load"),
)


class SearchLoadUser(ScenarioUser):
    plan = plan


class SearchLoadShape(PlanShape):
    plan = plan


install_hooks(plan)
