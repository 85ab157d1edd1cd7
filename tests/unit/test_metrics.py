"""
Unit tests for the metrics registry and its aggregations.
"""

import pytest

from performance.lib.metrics import MetricKind, MetricsRegistry, percentile


pytestmark = pytest.mark.unit


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestPercentile:
    @pytest.mark.parametrize(
        "pct, expected",
        [(0, 1.0), (50, 3.0), (100, 5.0), (25, 2.0), (90, 4.6)],
    )
    def test_linear_interpolation_between_ranks(self, pct, expected):
        assert percentile([5, 1, 4, 2, 3], pct) == pytest.approx(expected)

    def test_single_value(self):
        assert percentile([42.0], 95) == 42.0

    def test_empty_sequence_rejected(self):
        with pytest.raises(ValueError):
            percentile([], 95)

    @pytest.mark.parametrize("pct", [-1, 101])
    def test_out_of_range_rejected(self, pct):
        with pytest.raises(ValueError):
            percentile([1, 2], pct)


class TestDeclaration:
    def test_builtin_metrics_are_declared(self, registry):
        assert registry.kind("http_req_duration") is MetricKind.TREND
        assert registry.kind("http_req_failed") is MetricKind.RATE
        assert registry.kind("checks") is MetricKind.RATE
        assert registry.kind("timeouts") is MetricKind.COUNTER

    def test_redeclaring_same_kind_is_allowed(self, registry):
        registry.trend("login_time")

        handle = registry.trend("login_time")

        assert handle.kind is MetricKind.TREND

    def test_conflicting_kind_raises(self, registry):
        registry.trend("login_time")

        with pytest.raises(ValueError, match="already declared"):
            registry.counter("login_time")

    def test_adding_to_undeclared_metric_raises(self, registry):
        with pytest.raises(KeyError):
            registry.add("never_declared", 1)

    def test_tags_are_stored_sorted_and_stringified(self, registry):
        sample = registry.trend("t").add(1, {"b": 2, "a": "x"})

        assert sample.tags == (("a", "x"), ("b", "2"))
        assert sample.tag_dict == {"a": "x", "b": "2"}


class TestAggregation:
    def test_trend_aggregations(self, registry):
        # Arrange
        trend = registry.trend("login_time")
        for value in (10, 20, 30, 40):
            trend.add(value)

        # Act / Assert
        assert registry.aggregate("login_time", "avg") == 25
        assert registry.aggregate("login_time", "min") == 10
        assert registry.aggregate("login_time", "max") == 40
        assert registry.aggregate("login_time", "med") == 25
        assert registry.aggregate("login_time", "count") == 4
        assert registry.aggregate("login_time", "p(95)") == pytest.approx(38.5)

    def test_rate_is_fraction_of_non_zero_samples(self, registry):
        errors = registry.rate("errors")
        for value in (True, False, False, False):
            errors.add(value)

        assert registry.aggregate("errors", "rate") == 0.25
        assert registry.aggregate("errors", "count") == 4

    def test_counter_count_sums_values(self, registry):
        registry.counter("llm_tokens_used").add(150)
        registry.counter("llm_tokens_used").add(50)

        assert registry.aggregate("llm_tokens_used", "count") == 200

    def test_counter_rate_uses_run_duration(self):
        # Arrange
        clock = FakeClock()
        registry = MetricsRegistry(clock=clock)
        registry.start()
        registry.counter("questions_generated").add(30)

        # Act
        clock.now += 10
        registry.finish()

        # Assert
        assert registry.aggregate("questions_generated", "rate") == 3.0

    def test_gauge_reports_last_min_max(self, registry):
        heap = registry.gauge("heap_usage")
        for value in (0.4, 0.9, 0.6):
            heap.add(value)

        assert registry.aggregate("heap_usage", "value") == 0.6
        assert registry.aggregate("heap_usage", "min") == 0.4
        assert registry.aggregate("heap_usage", "max") == 0.9

    def test_tag_filter_selects_matching_samples(self, registry):
        registry.add("http_req_duration", 100, {"name": "login"})
        registry.add("http_req_duration", 900, {"name": "jd-analyze"})

        assert registry.aggregate("http_req_duration", "max", {"name": "login"}) == 100
        assert registry.aggregate("http_req_duration", "max") == 900

    def test_no_matching_samples_gives_none(self, registry):
        registry.add("http_req_duration", 100, {"name": "login"})

        assert registry.aggregate("http_req_duration", "avg", {"name": "other"}) is None

    def test_unknown_metric_raises_key_error(self, registry):
        with pytest.raises(KeyError):
            registry.aggregate("no_such_metric", "avg")

    @pytest.mark.parametrize(
        "metric, aggregation",
        [("http_req_duration", "rate"), ("http_req_failed", "p(95)"), ("iterations", "avg")],
    )
    def test_aggregation_must_match_kind(self, registry, metric, aggregation):
        registry.add(metric, 1)

        with pytest.raises(ValueError, match="not valid"):
            registry.aggregate(metric, aggregation)

    def test_reset_keeps_declarations(self, registry):
        registry.trend("login_time").add(5)

        registry.reset()

        assert registry.kind("login_time") is MetricKind.TREND
        assert registry.aggregate("login_time", "avg") is None


def test_summary_lists_only_metrics_with_samples(registry):
    # Arrange
    registry.add("http_req_duration", 120)
    registry.add("checks", 1)
    registry.add("checks", 0)

    # Act
    lines = registry.summary_lines()

    # Assert
    assert len(lines) == 2
    assert lines[0].startswith("checks")
    assert "50.00% (1/2)" in lines[0]
    assert lines[1].startswith("http_req_duration")
    assert "avg=120.00" in lines[1]
