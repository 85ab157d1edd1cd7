"""
Unit tests for scenario iteration bodies, driven by a stand-in virtual user.
"""

from types import SimpleNamespace

import pytest

import performance.scenarios.spike as spike
from performance.scenarios.soak import heap_used_mb, max_gc_pause_ms


pytestmark = pytest.mark.unit


class StubVU:
    """Just enough of a ScenarioUser for flows that only touch registry, state and plan."""

    def __init__(self, registry, elapsed):
        self.registry = registry
        self.state = {}
        self.plan = SimpleNamespace(elapsed=lambda: elapsed[0])

    def tags(self, **extra):
        return {"scenario": "spike", "test_type": "spike", **extra}


@pytest.fixture
def outcomes(monkeypatch):
    """Replace spike calls with one scripted stub and think-time with a no-op."""
    results = []
    monkeypatch.setattr(spike, "CALLS", {"get-questions": lambda vu: results.pop(0)})
    monkeypatch.setattr(spike, "think", lambda *args: None)
    return results


class TestSpikeFlow:
    def test_recovery_time_recorded_once_per_phase_on_first_success(self, registry, outcomes):
        # Arrange - recovery1 starts at 150s
        elapsed = [160.0]
        vu = StubVU(registry, elapsed)
        outcomes.extend([False, True, True])

        # Act
        spike.spike_flow(vu)
        elapsed[0] = 165.0
        spike.spike_flow(vu)
        elapsed[0] = 170.0
        spike.spike_flow(vu)

        # Assert
        samples = registry.samples("spike_recovery_time")
        assert [s.value for s in samples] == [15_000.0]
        assert samples[0].tag_dict["phase"] == "recovery1"

    def test_second_recovery_phase_is_measured_separately(self, registry, outcomes):
        elapsed = [200.0]
        vu = StubVU(registry, elapsed)
        outcomes.extend([True, True])

        spike.spike_flow(vu)
        elapsed[0] = 400.0
        spike.spike_flow(vu)

        assert registry.values("spike_recovery_time") == [50_000.0, 40_000.0]

    def test_spike_phase_counts_requests_and_errors(self, registry, outcomes):
        # Arrange
        vu = StubVU(registry, [90.0])
        outcomes.extend([False, True])

        # Act
        spike.spike_flow(vu)
        spike.spike_flow(vu)

        # Assert
        assert registry.aggregate("requests_during_spike", "count") == 2
        assert registry.aggregate("errors_during_spike", "count") == 1
        assert registry.aggregate("errors", "rate") == 0.5
        assert registry.values("spike_recovery_time") == []

    def test_normal_phase_records_nothing_phase_specific(self, registry, outcomes):
        vu = StubVU(registry, [30.0])
        outcomes.append(True)

        spike.spike_flow(vu)

        assert registry.values("requests_during_spike") == []
        assert registry.values("errors") == [0.0]


class TestActuatorParsing:
    def test_heap_used_in_mebibytes(self):
        assert heap_used_mb({"measurements": [{"statistic": "VALUE", "value": 256 * 1024 * 1024}]}) == 256

    @pytest.mark.parametrize("body", [{}, {"measurements": []}, {"measurements": [{"value": "x"}]}])
    def test_heap_missing_values(self, body):
        assert heap_used_mb(body) is None

    def test_gc_pause_uses_max_statistic(self):
        body = {
            "measurements": [
                {"statistic": "COUNT", "value": 12},
                {"statistic": "MAX", "value": 0.25},
            ]
        }

        assert max_gc_pause_ms(body) == 250

    def test_gc_pause_without_max(self):
        assert max_gc_pause_ms({"measurements": [{"statistic": "COUNT", "value": 3}]}) is None
