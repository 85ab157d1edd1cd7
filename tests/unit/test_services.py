"""
Unit tests for behaviour dispatch in the per-service suites.
"""

from types import SimpleNamespace

import pytest

from performance.services.base import behaviour_name, dispatch, elapsed_teardown, sequential, weighted
from performance.services.question_service import is_cache_hit
from tests.conftest import FakeResponse


pytestmark = pytest.mark.unit


def make_vu(scenario_name=None, executor=None):
    return SimpleNamespace(
        config=SimpleNamespace(scenario_name=scenario_name),
        executor=SimpleNamespace(name=executor) if executor else None,
        ran=[],
    )


def recorder(label):
    def _flow(vu):
        vu.ran.append(label)

    return _flow


BEHAVIOURS = {"login": recorder("login"), "profile": recorder("profile")}


class TestBehaviourName:
    def test_scenario_name_wins_over_executor(self):
        assert behaviour_name(make_vu("login", executor="profile"), BEHAVIOURS) == "login"

    def test_executor_name_used_without_scenario_name(self):
        assert behaviour_name(make_vu(executor="profile"), BEHAVIOURS) == "profile"

    def test_unknown_scenario_name_falls_through_to_executor(self):
        assert behaviour_name(make_vu("nonsense", executor="login"), BEHAVIOURS) == "login"

    def test_nothing_matches(self):
        assert behaviour_name(make_vu(executor="smoke"), BEHAVIOURS) is None


class TestDispatch:
    def test_selected_behaviour_runs(self):
        vu = make_vu(executor="login")

        dispatch(BEHAVIOURS, recorder("fallback"))(vu)

        assert vu.ran == ["login"]

    def test_fallback_runs_when_no_behaviour_selected(self):
        vu = make_vu()

        dispatch(BEHAVIOURS, sequential(recorder("a"), recorder("b")))(vu)

        assert vu.ran == ["a", "b"]

    def test_weighted_fallback_follows_random_draw(self, monkeypatch):
        # Arrange
        monkeypatch.setattr("performance.services.base.random.random", lambda: 0.95)
        vu = make_vu()

        # Act
        weighted([recorder("a"), recorder("b")], (0.9, 0.1))(vu)

        # Assert
        assert vu.ran == ["b"]

    @pytest.mark.parametrize(
        "weights, message",
        [((0.9, 0.2), "expected 1.0"), ((1.0,), "2 flows but 1 weights")],
    )
    def test_weighted_rejects_mistyped_tables(self, weights, message):
        with pytest.raises(ValueError, match=message):
            weighted([recorder("a"), recorder("b")], weights)


def test_elapsed_teardown_prints_duration_and_extra_lines(monkeypatch, capsys):
    monkeypatch.setattr("performance.services.base.time.monotonic", lambda: 130.0)
    teardown = elapsed_teardown("User service", lambda data: f"Users: {len(data['users'])}")

    teardown(None, {"started_monotonic": 100.0, "users": [1, 2]})

    assert capsys.readouterr().out.splitlines() == [
        "User service test completed in 30.00 seconds",
        "Users: 2",
    ]


@pytest.mark.parametrize(
    "headers, elapsed_ms, expected",
    [
        ({"X-Cache": "HIT"}, 900, True),
        ({}, 20, True),
        ({}, 150, False),
        ({"X-Cache": "MISS"}, 0, False),
    ],
)
def test_cache_hit_detection(headers, elapsed_ms, expected):
    response = FakeResponse(200, {}, headers=headers, elapsed_ms=elapsed_ms)

    assert is_cache_hit(response, 100) is expected
