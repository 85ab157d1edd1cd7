"""
Integration tests: scenario iterations against the in-process fake backend.

Each test builds a fresh plan and registry, instantiates a real Locust
user bound to a Locust ``Environment`` (without starting a runner) and
drives its iteration directly.  Requests travel over real sockets to
the Flask fake, so the full path (HttpSession, request events, checks,
auth refresh, threshold evaluation) is exercised.

Key Concepts Demonstrated:
- Running Locust users outside a runner for deterministic tests
- Asserting end-of-run thresholds exactly as a real run would
"""

import pytest
from locust.env import Environment

import performance.scenarios.concurrent_answer as concurrent_answer
import performance.scenarios.smoke as smoke
from performance.config import thresholds_for
from performance.lib.metrics import MetricsRegistry
from performance.lib.plan import Executor, ScenarioPlan, ScenarioUser, request_recorder
from performance.lib.profiles import ConstantVUs, SharedIterations
from performance.lib.sse import SSEClient
from performance.lib.thresholds import build_thresholds, evaluate_thresholds, has_violations
from tests.conftest import build_settings


pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def no_think_time(monkeypatch):
    monkeypatch.setattr(smoke, "think", lambda *args: None)


def start_user(plan: ScenarioPlan, backend: str) -> ScenarioUser:
    """Instantiate a user for ``plan`` wired to a fresh Locust environment."""

    class UserUnderTest(ScenarioUser):
        host = backend
        config = build_settings(backend)

    UserUnderTest.plan = plan
    environment = Environment(user_classes=[UserUnderTest], host=backend)
    environment.events.request.add_listener(request_recorder(plan.registry))

    user = UserUnderTest(environment)
    user.on_start()
    return user


def test_smoke_iteration_meets_smoke_thresholds(backend, backend_state):
    # Arrange
    registry = MetricsRegistry()
    plan = ScenarioPlan(
        "smoke",
        [Executor("smoke", ConstantVUs(vus=1, duration=60), smoke.smoke_flow)],
        registry=registry,
    )
    user = start_user(plan, backend)

    # Act
    user.iteration()
    user.iteration()

    # Assert
    results = evaluate_thresholds(registry, build_thresholds(thresholds_for("smoke")))
    assert not has_violations(results)
    assert registry.aggregate("checks", "rate") == 1.0
    assert registry.aggregate("iterations", "count") == 2
    assert registry.aggregate("http_req_duration", "count", {"name": "get-profile"}) == 2
    assert registry.aggregate("errors", "rate") == 0.0
    # Token cached across iterations
    assert backend_state.login_calls == 1


def test_expired_token_is_refreshed_once_and_retried(backend, backend_state):
    # Arrange
    registry = MetricsRegistry()
    plan = ScenarioPlan(
        "smoke",
        [Executor("smoke", ConstantVUs(vus=1, duration=60), smoke.smoke_flow)],
        registry=registry,
    )
    user = start_user(plan, backend)
    user.auth.ensure_valid_token()
    # Server rejects this token; the cached expiry still says it is fine
    user.auth.credential.access_token = "not-a-valid-jwt"

    # Act
    response = user.auth.authenticated_request(
        "GET", user.endpoints.profile(), name="get-profile"
    )

    # Assert
    assert response.status_code == 200
    assert backend_state.refresh_calls == 1
    assert backend_state.login_calls == 1
    assert registry.values("http_req_failed", {"name": "get-profile"}) == [1.0, 0.0]


def test_concurrent_writes_against_consistent_backend_lose_nothing(backend):
    # Arrange
    registry = MetricsRegistry()
    plan = ScenarioPlan(
        "concurrent_answer",
        [
            Executor(
                "concurrent_record",
                SharedIterations(vus=1, iterations=5, max_duration=60),
                concurrent_answer.record_answer_flow,
            )
        ],
        registry=registry,
    )
    user = start_user(plan, backend)
    baseline = user.auth.authenticated_request(
        "GET", user.endpoints.statistics(), name="get-baseline-stats"
    )

    # Act
    for _ in range(7):
        user.iteration()
    final = user.auth.authenticated_request(
        "GET", user.endpoints.statistics(), name="get-final-stats"
    )

    # Assert - budget of five writes, extra iterations idle
    outcome = concurrent_answer.evaluate_race(
        baseline=concurrent_answer.total_questions(baseline),
        successful=int(registry.aggregate("successful_records", "count")),
        actual=concurrent_answer.total_questions(final),
        executed=plan.executor("concurrent_record").completed,
    )
    assert outcome.successful == 5
    assert outcome.executed == 5
    assert outcome.lost_updates == 0


def test_feedback_stream_is_parsed_from_live_server(backend):
    # Arrange
    registry = MetricsRegistry()
    plan = ScenarioPlan(
        "sse", [Executor("sse", ConstantVUs(vus=1, duration=60), lambda vu: None)], registry=registry
    )
    user = start_user(plan, backend)
    sse = SSEClient(user.client, user.config, registry=registry)

    # Act
    result = sse.stream_feedback(7, token=user.auth.ensure_valid_token())

    # Assert
    assert result.success is True
    assert [frame.event for frame in result.events] == ["feedback", None, "complete"]
    assert result.events[0].data == "analysing answer 7"
    assert result.events[1].data == "strengths: clear structure\nweaknesses: no examples"
    assert result.events[2].data == "done"
    assert registry.aggregate("sse_events_received", "count") == 3
