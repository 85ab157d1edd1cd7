"""
Feedback service suite: streamed AI feedback, feedback reads and statistics.

Executors:

- **streaming_feedback**: ramping 5 -> 20 -> 30 -> 0 VUs over 10
  minutes; each iteration submits an answer and streams its feedback
  over SSE until the server closes the stream
- **feedback_read**: 20 constant VUs for 10 minutes listing feedback
  and opening one entry
- **statistics**: constant arrival rate, 10 iterations per second for
  5 minutes (10 pre-allocated VUs, up to 30) across the user, category
  and timeline statistics endpoints

Without an executor or ``SCENARIO_NAME`` match an iteration draws a
behaviour: 30% streaming, 40% reads, 30% statistics.

Setup submits the canned answers once so a streaming iteration whose
own submission fails can still stream feedback for a known answer.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

from performance.endpoints import endpoints
from performance.helpers import (
    QUESTION_CATEGORIES,
    SAMPLE_ANSWERS,
    json_items,
    random_answer,
    safe_json,
    think,
)
from performance.lib.auth import AuthSession
from performance.lib.checks import check, duration_ms, faster_than, status_in
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import ConstantArrivalRate, ConstantVUs, parse_duration, ramping
from performance.scenarios.base import CREATED, OK, OK_OR_EMPTY
from performance.services.base import dispatch, elapsed_teardown, weighted

logger = logging.getLogger(__name__)

BEHAVIOUR_WEIGHTS = (0.3, 0.4, 0.3)

# Used when neither the iteration's own answer nor a setup answer exists
FALLBACK_ANSWER_ID = 1

TIMELINE_DAYS = 30

STREAM_RESULT_CHECKS = {
    "SSE stream completed": lambda result: result.success,
    "received feedback events": lambda result: len(result.events) > 0,
}


def _answer_id(response: Any) -> Any:
    if response.status_code not in (200, 201):
        return None
    return safe_json(response).get("id")


def feedback_setup(client: Any) -> dict[str, Any]:
    """Submit every canned answer once and keep the ids that came back."""
    auth = AuthSession(client)
    answer_ids = []
    for answer in SAMPLE_ANSWERS:
        response = auth.authenticated_request(
            "POST",
            endpoints.answers(),
            name="setup-submit-answer",
            json=answer,
            checks={"setup answer created": CREATED},
        )
        answer_id = _answer_id(response)
        if answer_id is not None:
            answer_ids.append(answer_id)

    if not answer_ids:
        logger.warning("Setup created no answers; streams fall back to answer %s", FALLBACK_ANSWER_ID)
    return {"token": auth.token, "answer_ids": answer_ids, "started_monotonic": time.monotonic()}


def streaming_feedback_flow(vu: ScenarioUser) -> None:
    submitted, _ = vu.api(
        "POST",
        vu.endpoints.answers(),
        name="submit-answer",
        json=random_answer(),
        checks={"answer submitted": CREATED},
    )
    answer_id = _answer_id(submitted)
    if answer_id is None:
        answer_id = random.choice(vu.data.get("answer_ids") or [FALLBACK_ANSWER_ID])
    think(1)

    result = vu.sse.stream_feedback(
        answer_id,
        token=vu.auth.ensure_valid_token(),
        timeout=vu.config.timeouts.sse,
        tags=vu.context(),
    )
    tags = vu.tags(name="feedback-stream")
    total = result.total_time if result.total_time is not None else result.connection_time
    vu.registry.trend("streaming_duration").add(total, tags)
    vu.registry.trend("feedback_generation_time").add(total, tags)
    vu.registry.rate("stream_connection_success").add(result.success, tags)
    if result.success:
        vu.registry.counter("total_events_received").add(len(result.events), tags)
    check(result, STREAM_RESULT_CHECKS, tags=tags, registry=vu.registry)

    think(3, 5)


def feedback_read_flow(vu: ScenarioUser) -> None:
    listing, _ = vu.api(
        "GET",
        vu.endpoints.feedback_list(),
        name="list-feedback",
        timeout=vu.config.timeouts.fast,
        params={"page": random.randint(0, 5), "size": 20},
        checks={
            "list feedback status 200": OK_OR_EMPTY,
            "list feedback response time < 500ms": faster_than(500),
        },
    )
    vu.registry.trend("feedback_fetch_time").add(duration_ms(listing), vu.tags(name="list-feedback"))
    think(1, 2)

    if listing.status_code == 200:
        entries = [f for f in json_items(listing) if isinstance(f, dict) and f.get("id")]
        if entries:
            vu.api(
                "GET",
                vu.endpoints.feedback(random.choice(entries)["id"]),
                name="get-feedback-detail",
                timeout=vu.config.timeouts.fast,
                checks={"get feedback detail status 200": status_in(200)},
            )
    think(2, 4)


def statistics_flow(vu: ScenarioUser) -> None:
    response, _ = vu.api(
        "GET",
        vu.endpoints.user_statistics(),
        name="user-statistics",
        timeout=vu.config.timeouts.fast,
        checks={
            "user statistics status 200": OK,
            "statistics response time < 1s": faster_than(1000),
        },
    )
    vu.registry.trend("statistics_time").add(duration_ms(response), vu.tags(name="user-statistics"))
    think(1)

    category = random.choice([c for c in QUESTION_CATEGORIES if c != "behavioral"])
    vu.api(
        "GET",
        vu.endpoints.category_statistics(category),
        name="category-statistics",
        timeout=vu.config.timeouts.fast,
        checks={"category statistics status 200": OK_OR_EMPTY},
    )
    think(1)

    vu.api(
        "GET",
        vu.endpoints.timeline_statistics(),
        name="timeline-statistics",
        timeout=vu.config.timeouts.fast,
        params={"days": TIMELINE_DAYS},
        checks={"timeline statistics status 200": OK},
    )
    think(2, 4)


BEHAVIOURS = {
    "streaming_feedback": streaming_feedback_flow,
    "feedback_read": feedback_read_flow,
    "statistics": statistics_flow,
}

feedback_service_flow = dispatch(
    BEHAVIOURS,
    weighted([streaming_feedback_flow, feedback_read_flow, statistics_flow], BEHAVIOUR_WEIGHTS),
)

plan = ScenarioPlan(
    "feedback_service",
    [
        Executor(
            "streaming_feedback",
            ramping(("2m", 20), ("5m", 30), ("3m", 0), start_vus=5),
            feedback_service_flow,
        ),
        Executor(
            "feedback_read",
            ConstantVUs(vus=20, duration=parse_duration("10m")),
            feedback_service_flow,
        ),
        Executor(
            "statistics",
            ConstantArrivalRate(
                rate=10, duration=parse_duration("5m"), pre_allocated_vus=10, max_vus=30
            ),
            feedback_service_flow,
        ),
    ],
    setup=feedback_setup,
    teardown=elapsed_teardown(
        "Feedback service",
        lambda data: f"Created answer IDs: {len(data.get('answer_ids', []))}",
    ),
)


class FeedbackServiceUser(ScenarioUser):
    plan = plan


class FeedbackServiceShape(PlanShape):
    plan = plan


install_hooks(plan)
