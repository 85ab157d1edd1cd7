"""
Load test: behaviour under normal production traffic.

Ramps 0 -> 50 VUs, holds, ramps to 100, holds, then ramps down (16
minutes in total).  Each iteration takes a single random draw and runs
one of three user journeys:

- **browse** (70 %): profile, a random question page, category search
- **JD analysis** (20 %): LLM-backed job-description analysis followed
  by a RAG similar-question lookup
- **interview session** (10 %): create a session, add a question,
  read it back

Usage::

    locust -f performance/scenarios/load.py --headless
"""

from __future__ import annotations

import random

from performance.config import VU_PRESETS
from performance.helpers import (
    QUESTION_CATEGORIES,
    json_items,
    random_job_description,
    safe_json,
    session_payload,
    think,
)
from performance.lib.checks import duration_ms, faster_than
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.selection import validate_weights, weighted_choice
from performance.scenarios.base import (
    CREATED,
    OK,
    OK_OR_EMPTY,
    completion_teardown,
    login_setup,
    record_error,
)

FLOW_WEIGHTS = (0.7, 0.2, 0.1)
validate_weights(FLOW_WEIGHTS, total=1.0)


def browse_flow(vu: ScenarioUser) -> None:
    timeouts = vu.config.timeouts

    _, passed = vu.api(
        "GET",
        vu.endpoints.profile(),
        name="get-profile",
        timeout=timeouts.fast,
        checks={"profile status 200": OK},
    )
    record_error(vu, passed, "get-profile")
    think(1)

    _, passed = vu.api(
        "GET",
        vu.endpoints.questions(),
        name="get-questions",
        timeout=timeouts.fast,
        params={"page": random.randrange(5), "size": 20},
        checks={"questions status 200": OK_OR_EMPTY},
    )
    record_error(vu, passed, "get-questions")
    think(2)

    response, passed = vu.api(
        "GET",
        vu.endpoints.question_search(),
        name="search-questions",
        timeout=timeouts.default,
        params={"category": random.choice(QUESTION_CATEGORIES[:4]), "page": 0, "size": 10},
        checks={
            "search status 200": OK_OR_EMPTY,
            "search response time < 1s": faster_than(1000),
        },
    )
    vu.registry.trend("question_search_time").add(duration_ms(response), vu.tags())
    record_error(vu, passed, "search-questions")
    think(1)


def jd_analysis_flow(vu: ScenarioUser) -> None:
    timeouts = vu.config.timeouts
    jd = random_job_description()

    response, passed = vu.api(
        "POST",
        vu.endpoints.analyze_jd(),
        name="analyze-jd",
        timeout=timeouts.llm,
        json=jd,
        checks={
            "JD analysis status 200": OK,
            "JD analysis has questions": lambda r: len(json_items(r, "questions")) > 0,
        },
    )
    vu.registry.trend("jd_analysis_time").add(duration_ms(response), vu.tags())
    record_error(vu, passed, "analyze-jd")
    think(3)

    if response.status_code == 200:
        _, passed = vu.api(
            "GET",
            vu.endpoints.similar_questions(),
            name="rag-search",
            timeout=timeouts.default,
            params={"skills": ",".join(jd["requirements"][:3]), "limit": 5},
            checks={"RAG search status 200": OK_OR_EMPTY},
        )
        record_error(vu, passed, "rag-search")
    think(2)


def interview_session_flow(vu: ScenarioUser) -> None:
    timeouts = vu.config.timeouts

    response, passed = vu.api(
        "POST",
        vu.endpoints.sessions(),
        name="create-session",
        timeout=timeouts.fast,
        json=session_payload(),
        checks={"session created": CREATED},
    )
    record_error(vu, passed, "create-session")
    session_id = safe_json(response).get("id") if passed else None
    think(2)

    if session_id:
        vu.api(
            "POST",
            vu.endpoints.session_questions(session_id),
            name="add-question-to-session",
            timeout=timeouts.fast,
            json={"questionId": random.randint(1, 100)},
            checks={"question added": CREATED},
        )
        think(1)

        vu.api(
            "GET",
            vu.endpoints.session(session_id),
            name="get-session",
            timeout=timeouts.fast,
            checks={"session retrieved": OK},
        )
    think(2)


FLOWS = (browse_flow, jd_analysis_flow, interview_session_flow)


def load_flow(vu: ScenarioUser) -> None:
    """Run one journey picked by a single weighted draw."""
    FLOWS[weighted_choice(FLOW_WEIGHTS, random.random())](vu)


plan = ScenarioPlan(
    "load",
    [Executor("load", VU_PRESETS["load"], load_flow)],
    setup=login_setup,
    teardown=completion_teardown("Load"),
)


class LoadUser(ScenarioUser):
    plan = plan


class LoadShape(PlanShape):
    plan = plan


install_hooks(plan)
