"""
Stress test: where does the system break?

Ramps well past normal traffic (100 -> 200 -> 300 -> 500 VUs, then back
to zero over 22 minutes).  Each iteration hits one of five endpoints
chosen by cumulative weight, then pauses for 0-2 seconds.

=================  ======  ============
Endpoint           Weight  Timeout
=================  ======  ============
health check       30      fast
question page      25      default
keyword search     20      default
user profile       15      fast
RAG similar query  10      llm
=================  ======  ============

Thresholds are deliberately looser than the load test's: the point is
to find the breaking point, not to assert normal-operation SLAs.
"""

from __future__ import annotations

import random

from performance.config import VU_PRESETS
from performance.helpers import SEARCH_KEYWORDS, think
from performance.lib.checks import duration_ms, faster_than
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.selection import validate_weights, weighted_choice
from performance.scenarios.base import OK, OK_OR_EMPTY, completion_teardown, login_setup, record_error

ENDPOINT_WEIGHTS = (30, 25, 20, 15, 10)
validate_weights(ENDPOINT_WEIGHTS, total=100)


def _record(vu: ScenarioUser, response, passed: bool, name: str) -> None:
    vu.registry.trend("response_time_trend").add(duration_ms(response), vu.tags(name=name))
    record_error(vu, passed, name)


def health_check(vu: ScenarioUser) -> None:
    response, passed = vu.public(
        "GET",
        vu.endpoints.health(),
        name="health-check",
        timeout=vu.config.timeouts.fast,
        checks={"health check ok": OK},
    )
    _record(vu, response, passed, "health-check")


def get_questions(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.questions(),
        name="get-questions",
        timeout=vu.config.timeouts.default,
        params={"page": random.randrange(10), "size": 50},
        checks={"questions ok": OK_OR_EMPTY},
    )
    _record(vu, response, passed, "get-questions")


def search_questions(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.question_search(),
        name="search-questions",
        timeout=vu.config.timeouts.default,
        params={"keyword": random.choice(SEARCH_KEYWORDS), "page": 0, "size": 20},
        checks={"search ok": OK_OR_EMPTY},
    )
    _record(vu, response, passed, "search-questions")


def get_profile(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.profile(),
        name="get-profile",
        timeout=vu.config.timeouts.fast,
        checks={"profile ok": OK},
    )
    _record(vu, response, passed, "get-profile")


def rag_search(vu: ScenarioUser) -> None:
    response, passed = vu.api(
        "GET",
        vu.endpoints.similar_questions(),
        name="rag-search",
        timeout=vu.config.timeouts.llm,
        params={"skills": "java,spring,microservices", "limit": 10},
        checks={
            "rag search ok": OK_OR_EMPTY,
            "rag search response time": faster_than(5000),
        },
    )
    _record(vu, response, passed, "rag-search")


ENDPOINTS = (health_check, get_questions, search_questions, get_profile, rag_search)


def stress_flow(vu: ScenarioUser) -> None:
    ENDPOINTS[weighted_choice(ENDPOINT_WEIGHTS, random.random())](vu)
    think(0, 2)


plan = ScenarioPlan(
    "stress",
    [Executor("stress", VU_PRESETS["stress"], stress_flow)],
    setup=login_setup,
    teardown=completion_teardown("Stress", "Check metrics for system breaking point analysis."),
)


class StressUser(ScenarioUser):
    plan = plan


class StressShape(PlanShape):
    plan = plan


install_hooks(plan)
