"""
Unit tests for threshold parsing and evaluation.

Key Concepts Demonstrated:
- Parametrised parsing tests for valid and invalid inputs
- Evaluating declared thresholds against a hand-filled registry
"""

import io

import pytest

from performance.lib.thresholds import (
    build_thresholds,
    evaluate_thresholds,
    has_violations,
    parse_expression,
    parse_threshold_key,
    print_summary,
)


pytestmark = pytest.mark.unit


class TestParsing:
    @pytest.mark.parametrize(
        "key, metric, tags",
        [
            ("http_req_duration", "http_req_duration", {}),
            ("http_req_duration{name:login}", "http_req_duration", {"name": "login"}),
            ("checks{ check : has id , name:x }", "checks", {"check": "has id", "name": "x"}),
        ],
    )
    def test_key_splits_metric_and_tags(self, key, metric, tags):
        assert parse_threshold_key(key) == (metric, tags)

    @pytest.mark.parametrize("key", ["", "{name:x}", "metric{name}", "metric{:x}", "9metric"])
    def test_malformed_key_rejected(self, key):
        with pytest.raises(ValueError):
            parse_threshold_key(key)

    @pytest.mark.parametrize(
        "expression, parsed",
        [
            ("p(95)<500", ("p(95)", "<", 500.0)),
            ("p(99.9) <= 1500", ("p(99.9)", "<=", 1500.0)),
            ("rate>0.99", ("rate", ">", 0.99)),
            ("count>=1", ("count", ">=", 1.0)),
            ("avg<2000", ("avg", "<", 2000.0)),
        ],
    )
    def test_expression_parsed(self, expression, parsed):
        assert parse_expression(expression) == parsed

    @pytest.mark.parametrize("expression", ["p95<500", "rate>", "avg=<3", "median<10", "<5"])
    def test_malformed_expression_rejected(self, expression):
        with pytest.raises(ValueError, match="Invalid threshold expression"):
            parse_expression(expression)

    def test_build_expands_every_expression(self):
        thresholds = build_thresholds(
            {"http_req_duration{name:login}": ["p(95)<300", "p(99)<1000"], "checks": ["rate>0.95"]}
        )

        assert [(t.metric, t.tag_filter, t.expression) for t in thresholds] == [
            ("http_req_duration", {"name": "login"}, "p(95)<300"),
            ("http_req_duration", {"name": "login"}, "p(99)<1000"),
            ("checks", {}, "rate>0.95"),
        ]


class TestEvaluation:
    def test_passing_and_failing_thresholds(self, registry):
        # Arrange
        for value in (100, 200, 300):
            registry.add("http_req_duration", value)
        registry.add("http_req_failed", 1)
        registry.add("http_req_failed", 0)
        thresholds = build_thresholds(
            {"http_req_duration": ["avg<250"], "http_req_failed": ["rate<0.1"]}
        )

        # Act
        results = evaluate_thresholds(registry, thresholds)

        # Assert
        assert [r.status for r in results] == ["PASS", "FAIL"]
        assert results[1].actual == 0.5
        assert has_violations(results) is True

    def test_missing_samples_are_no_data_and_pass(self, registry):
        registry.add("http_req_duration", 100, {"name": "login"})
        thresholds = build_thresholds(
            {"http_req_duration{name:jd-analyze}": ["p(95)<1"], "never_declared": ["count>5"]}
        )

        results = evaluate_thresholds(registry, thresholds)

        assert [r.status for r in results] == ["NO DATA", "NO DATA"]
        assert has_violations(results) is False

    def test_tag_filter_limits_evaluation(self, registry):
        registry.add("http_req_duration", 100, {"name": "login"})
        registry.add("http_req_duration", 5000, {"name": "jd-analyze"})

        results = evaluate_thresholds(
            registry, build_thresholds({"http_req_duration{name:login}": ["max<200"]})
        )

        assert results[0].passed is True
        assert results[0].actual == 100

    def test_wrong_aggregation_for_kind_raises(self, registry):
        registry.add("checks", 1)

        with pytest.raises(ValueError):
            evaluate_thresholds(registry, build_thresholds({"checks": ["p(95)<1"]}))


def test_print_summary_renders_each_result_and_overall_verdict(registry):
    # Arrange
    registry.add("checks", 0)
    results = evaluate_thresholds(
        registry, build_thresholds({"checks": ["rate>0.99"], "http_req_duration": ["p(95)<500"]})
    )
    out = io.StringIO()

    # Act
    print_summary(results, stream=out)

    # Assert
    text = out.getvalue()
    assert "Threshold Check" in text
    assert "rate>0.99" in text
    assert "FAIL" in text
    assert "NO DATA" in text
    assert text.rstrip().endswith("Overall: FAIL")
