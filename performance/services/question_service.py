"""
Question service suite: LLM-backed JD analysis, RAG search and question reads.

Executors:

- **jd_analysis**: constant arrival rate, 2 analyses per second for
  10 minutes (20 pre-allocated VUs, up to 100); the rate is kept low
  because every call costs LLM tokens
- **rag_search**: ramping 5 -> 20 -> 30 -> 0 VUs over 10 minutes
- **questions_crud**: 30 constant VUs for 10 minutes listing, searching
  by category and occasionally opening a question

Without an executor or ``SCENARIO_NAME`` match an iteration draws a
behaviour: 10% JD analysis, 20% RAG search, 70% CRUD.

``cache_hit_rate`` is estimated per read: an ``X-Cache: HIT`` header,
or a response faster than the endpoint's cache-speed cutoff.
"""

from __future__ import annotations

import random
from typing import Any

from performance.helpers import (
    QUESTION_CATEGORIES,
    SKILL_SETS,
    json_items,
    random_job_description,
    safe_json,
    think,
)
from performance.lib.checks import duration_ms, faster_than, status_in
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import ConstantArrivalRate, ConstantVUs, parse_duration, ramping
from performance.scenarios.base import OK, OK_OR_EMPTY, login_setup
from performance.services.base import dispatch, elapsed_teardown, weighted

BEHAVIOUR_WEIGHTS = (0.1, 0.2, 0.7)

# Responses faster than this (ms) are assumed to come from a cache
RAG_CACHE_CUTOFF_MS = 100
LIST_CACHE_CUTOFF_MS = 50

DETAIL_CHANCE = 0.1

RAG_TIMEOUT = 30


def is_cache_hit(response: Any, cutoff_ms: float) -> bool:
    headers = getattr(response, "headers", None) or {}
    return headers.get("X-Cache") == "HIT" or 0 < duration_ms(response) < cutoff_ms


def _has_questions(response: Any) -> bool:
    questions = safe_json(response).get("questions")
    return isinstance(questions, list) and len(questions) > 0


def _has_results(response: Any) -> bool:
    if response.status_code == 204:
        return True
    try:
        body = response.json()
    except ValueError:
        return False
    if isinstance(body, list):
        return True
    return isinstance(body, dict) and isinstance(body.get("content"), list)


def jd_analysis_flow(vu: ScenarioUser) -> None:
    jd = random_job_description()
    response, _ = vu.api(
        "POST",
        vu.endpoints.analyze_jd(),
        name="jd-analyze",
        timeout=vu.config.timeouts.llm,
        json={
            "title": jd["title"],
            "company": jd["company"],
            "description": jd["description"],
            "requirements": jd["requirements"],
        },
        checks={
            "JD analysis status 200": OK,
            "JD analysis has questions": _has_questions,
            "JD analysis response time < 60s": faster_than(60000),
        },
    )
    tags = vu.tags(name="jd-analyze")
    vu.registry.trend("jd_analysis_duration").add(duration_ms(response), tags)

    if response.status_code == 200:
        body = safe_json(response)
        questions = body.get("questions")
        if isinstance(questions, list) and questions:
            vu.registry.counter("questions_generated").add(len(questions), tags)
        tokens = body.get("tokensUsed")
        if isinstance(tokens, (int, float)) and tokens:
            vu.registry.counter("llm_tokens_used").add(tokens, tags)

    # LLM calls are expensive; give the backend room
    think(5, 10)


def rag_search_flow(vu: ScenarioUser) -> None:
    skills = random.choice(SKILL_SETS)
    response, _ = vu.api(
        "GET",
        vu.endpoints.similar_questions(),
        name="rag-search",
        timeout=RAG_TIMEOUT,
        params={"skills": ",".join(skills), "limit": 10},
        checks={
            "RAG search status 200": OK_OR_EMPTY,
            "RAG search has results": _has_results,
            "RAG search response time < 5s": faster_than(5000),
        },
    )
    tags = vu.tags(name="rag-search")
    vu.registry.trend("rag_search_duration").add(duration_ms(response), tags)
    vu.registry.rate("cache_hit_rate").add(is_cache_hit(response, RAG_CACHE_CUTOFF_MS), tags)
    think(1, 3)


def questions_crud_flow(vu: ScenarioUser) -> None:
    listing, _ = vu.api(
        "GET",
        vu.endpoints.questions(),
        name="list-questions",
        timeout=vu.config.timeouts.fast,
        params={"page": random.randint(0, 10), "size": 20},
        checks={"list questions status 200": OK_OR_EMPTY},
    )
    tags = vu.tags(name="list-questions")
    vu.registry.trend("question_fetch_duration").add(duration_ms(listing), tags)
    vu.registry.rate("cache_hit_rate").add(is_cache_hit(listing, LIST_CACHE_CUTOFF_MS), tags)
    think(1, 2)

    vu.api(
        "GET",
        vu.endpoints.question_search(),
        name="search-by-category",
        timeout=vu.config.timeouts.fast,
        params={"category": random.choice(QUESTION_CATEGORIES), "page": 0, "size": 10},
        checks={
            "search by category status 200": OK_OR_EMPTY,
            "search response time < 500ms": faster_than(500),
        },
    )
    think(1, 2)

    if listing.status_code == 200 and random.random() < DETAIL_CHANCE:
        questions = [q for q in json_items(listing) if isinstance(q, dict) and q.get("id")]
        if questions:
            question = random.choice(questions)
            vu.api(
                "GET",
                vu.endpoints.question(question["id"]),
                name="get-question-detail",
                timeout=vu.config.timeouts.fast,
                checks={"get question detail status 200": status_in(200)},
            )
    think(2, 4)


BEHAVIOURS = {
    "jd_analysis": jd_analysis_flow,
    "rag_search": rag_search_flow,
    "questions_crud": questions_crud_flow,
}

question_service_flow = dispatch(
    BEHAVIOURS,
    weighted([jd_analysis_flow, rag_search_flow, questions_crud_flow], BEHAVIOUR_WEIGHTS),
)

plan = ScenarioPlan(
    "question_service",
    [
        Executor(
            "jd_analysis",
            ConstantArrivalRate(
                rate=2, duration=parse_duration("10m"), pre_allocated_vus=20, max_vus=100
            ),
            question_service_flow,
        ),
        Executor(
            "rag_search",
            ramping(("2m", 20), ("5m", 30), ("3m", 0), start_vus=5),
            question_service_flow,
        ),
        Executor(
            "questions_crud",
            ConstantVUs(vus=30, duration=parse_duration("10m")),
            question_service_flow,
        ),
    ],
    setup=login_setup,
    teardown=elapsed_teardown("Question service"),
)


class QuestionServiceUser(ScenarioUser):
    plan = plan


class QuestionServiceShape(PlanShape):
    plan = plan


install_hooks(plan)
