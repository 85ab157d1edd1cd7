"""
Execution profiles for scenario executors.

A profile answers two questions for the load shape: how many virtual
users an executor wants at a given moment, and when the executor is
finished.  Four profiles cover every scenario in the suite:

- :class:`ConstantVUs`: fixed VU count for a fixed duration
- :class:`RampingVUs`: VU count linearly interpolated across stages
- :class:`ConstantArrivalRate`: constant iteration start rate with an
  elastic VU pool bounded by ``max_vus``
- :class:`SharedIterations`: fixed total iteration count shared by a
  VU pool, bounded by ``max_duration``

All profiles are immutable and time-agnostic: the caller passes the
elapsed seconds since the executor started, which keeps them pure and
trivially unit-testable.

Key Concepts Demonstrated:
- Compact duration strings (``"30s"``, ``"2m"``, ``"4h10m"``)
- Linear ramp interpolation between stage targets
- Pool sizing from observed throughput rather than fixed guesses
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

# Arrival-rate pools are grown when the achieved start rate drops below
# this fraction of the requested rate.
ARRIVAL_RATE_TOLERANCE = 0.95


def parse_duration(value: str | int | float) -> float:
    """
    Convert a duration into seconds.

    Numbers are taken as seconds already.  Strings are a concatenation of
    ``<number><unit>`` parts where unit is one of ``ms``, ``s``, ``m`` or
    ``h`` (e.g. ``"1m30s"``).

    Raises:
        ValueError: If the value is negative, empty, or not parseable.
    """
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration must be >= 0, got {value}")
        return float(value)

    text = value.strip().lower()
    if not text:
        raise ValueError("Duration string is empty")

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


@dataclass(frozen=True)
class Stage:
    """One ramp stage: move linearly to ``target`` VUs over ``duration`` seconds."""

    duration: float
    target: int

    @classmethod
    def of(cls, duration: str | int | float, target: int) -> Stage:
        return cls(duration=parse_duration(duration), target=int(target))


def ramp_target(stages: tuple[Stage, ...], elapsed: float, start_vus: int = 0) -> int:
    """
    Return the interpolated VU target at ``elapsed`` seconds.

    Each stage starts from the previous stage's target (or ``start_vus``
    for the first stage) and moves linearly toward its own target.  Once
    every stage has elapsed the target is ``0``.
    """
    if elapsed < 0:
        return start_vus

    previous = start_vus
    stage_start = 0.0
    for stage in stages:
        stage_end = stage_start + stage.duration
        if elapsed < stage_end:
            progress = (elapsed - stage_start) / stage.duration
            return round(previous + (stage.target - previous) * progress)
        previous = stage.target
        stage_start = stage_end
    return 0


@dataclass(frozen=True)
class ConstantVUs:
    """A fixed number of VUs looping for ``duration`` seconds."""

    vus: int
    duration: float

    @property
    def total_duration(self) -> float:
        return self.duration

    def target(self, elapsed: float) -> int:
        return self.vus if not self.is_done(elapsed) else 0

    def is_done(self, elapsed: float) -> bool:
        return elapsed >= self.duration


@dataclass(frozen=True)
class RampingVUs:
    """VU count interpolated across ``stages``, starting from ``start_vus``."""

    stages: tuple[Stage, ...]
    start_vus: int = 0

    @property
    def total_duration(self) -> float:
        return sum(stage.duration for stage in self.stages)

    @property
    def peak_vus(self) -> int:
        return max([self.start_vus, *(stage.target for stage in self.stages)])

    def target(self, elapsed: float) -> int:
        return ramp_target(self.stages, elapsed, self.start_vus)

    def is_done(self, elapsed: float) -> bool:
        return elapsed >= self.total_duration


@dataclass(frozen=True)
class ConstantArrivalRate:
    """
    Start ``rate`` iterations per ``time_unit`` seconds for ``duration``.

    The pool starts at ``pre_allocated_vus`` and may grow to ``max_vus``
    when iterations take longer than the pacing interval allows.
    """

    rate: float
    duration: float
    pre_allocated_vus: int
    max_vus: int
    time_unit: float = 1.0

    @property
    def total_duration(self) -> float:
        return self.duration

    @property
    def iterations_per_second(self) -> float:
        return self.rate / self.time_unit

    def target(self, elapsed: float) -> int:
        return self.pre_allocated_vus if not self.is_done(elapsed) else 0

    def is_done(self, elapsed: float) -> bool:
        return elapsed >= self.duration

    def pacing_interval(self, vus: int) -> float:
        """Seconds between iteration starts for one VU when ``vus`` share the rate."""
        return max(vus, 1) / self.iterations_per_second

    def scale_pool(self, current_vus: int, achieved_rate: float) -> int:
        """
        Return the pool size needed to sustain the configured rate.

        Grows proportionally to the shortfall between ``achieved_rate``
        and the requested rate, never below ``pre_allocated_vus`` and
        never above ``max_vus``.
        """
        current_vus = max(current_vus, self.pre_allocated_vus)
        wanted = self.iterations_per_second
        if achieved_rate >= wanted * ARRIVAL_RATE_TOLERANCE:
            return current_vus
        if achieved_rate <= 0:
            return min(self.max_vus, current_vus * 2)
        return min(self.max_vus, math.ceil(current_vus * wanted / achieved_rate))


@dataclass(frozen=True)
class SharedIterations:
    """``iterations`` total iterations shared by ``vus`` VUs, capped at ``max_duration``."""

    vus: int
    iterations: int
    max_duration: float

    @property
    def total_duration(self) -> float:
        return self.max_duration

    def target(self, elapsed: float) -> int:
        return self.vus if not self.is_done(elapsed) else 0

    def is_done(self, elapsed: float) -> bool:
        return elapsed >= self.max_duration


Profile = ConstantVUs | RampingVUs | ConstantArrivalRate | SharedIterations


def ramping(*stages: tuple[str | int | float, int], start_vus: int = 0) -> RampingVUs:
    """Build a :class:`RampingVUs` from ``(duration, target)`` pairs."""
    return RampingVUs(stages=tuple(Stage.of(d, t) for d, t in stages), start_vus=start_vus)
