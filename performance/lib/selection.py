"""
Pure selection helpers used by iteration bodies.

Both helpers take every input explicitly (the random draw, the elapsed
time) so they hold no state and can be unit-tested at their boundary
values without seeding or patching the clock.

Key Concepts Demonstrated:
- Cumulative-weight bucket selection with exact boundary semantics
- Temporal phase classification from wall-clock elapsed time
"""

from __future__ import annotations

import math
from collections.abc import Sequence

# Spike phase boundaries in seconds since test start: the end of the
# normal warm-up, then alternating ends of spike and recovery phases.
SPIKE_PHASE_BOUNDARIES = (60.0, 150.0, 270.0, 360.0)


def validate_weights(weights: Sequence[float], total: float | None = None) -> None:
    """
    Reject empty or negative weight lists.

    Args:
        weights: Relative weights, one per bucket.
        total: When given, the weights must also sum to this value.

    Raises:
        ValueError: If the weights are unusable.
    """
    if not weights:
        raise ValueError("At least one weight is required")
    if any(w < 0 for w in weights):
        raise ValueError(f"Weights must be >= 0, got {list(weights)}")
    weight_sum = math.fsum(weights)
    if weight_sum <= 0:
        raise ValueError("Weights must not all be zero")
    if total is not None and not math.isclose(weight_sum, total, rel_tol=1e-9):
        raise ValueError(f"Weights sum to {weight_sum}, expected {total}")


def weighted_choice(weights: Sequence[float], draw: float) -> int:
    """
    Map a uniform draw in ``[0, 1)`` onto a weighted bucket index.

    Buckets are half-open: with weights ``(0.7, 0.2, 0.1)`` a draw in
    ``[0, 0.7)`` selects 0, ``[0.7, 0.9)`` selects 1 and ``[0.9, 1)``
    selects 2.  A draw equal to a cumulative boundary therefore falls
    into the *next* bucket, never the previous one.  Weights are
    normalised, so ``(30, 25, 20, 15, 10)`` works the same way.

    Raises:
        ValueError: If the weights are invalid or ``draw`` is outside
            ``[0, 1)``.
    """
    validate_weights(weights)
    if not 0.0 <= draw < 1.0:
        raise ValueError(f"Draw must be within [0, 1), got {draw}")

    weight_sum = math.fsum(weights)
    cumulative = 0.0
    for index, weight in enumerate(weights):
        cumulative += weight
        # Rounded so 0.7 + 0.2 compares equal to 0.9
        if draw < round(cumulative / weight_sum, 12):
            return index
    return len(weights) - 1


def classify_phase(
    elapsed: float, boundaries: Sequence[float] = SPIKE_PHASE_BOUNDARIES
) -> str:
    """
    Return the spike-test phase for ``elapsed`` seconds since test start.

    Up to and including the first boundary the phase is ``"normal"``.
    Each following interval (upper bound inclusive) alternates between
    ``spikeN`` and ``recoveryN``; everything past the last boundary is
    the final recovery.  With the default boundaries 90s is ``spike1``,
    200s is ``recovery1`` and 300s is ``spike2``.
    """
    if elapsed <= boundaries[0]:
        return "normal"

    index = len(boundaries)
    for position, boundary in enumerate(boundaries[1:], start=1):
        if elapsed <= boundary:
            index = position
            break
    return _phase_name(index)


def phase_start(phase: str, boundaries: Sequence[float] = SPIKE_PHASE_BOUNDARIES) -> float:
    """
    Return the elapsed second at which ``phase`` begins.

    Raises:
        ValueError: If ``phase`` is not produced by these boundaries.
    """
    if phase == "normal":
        return 0.0
    for index, boundary in enumerate(boundaries, start=1):
        if _phase_name(index) == phase:
            return float(boundary)
    raise ValueError(f"Unknown phase {phase!r} for boundaries {list(boundaries)}")


def is_spike_phase(phase: str) -> bool:
    return phase.startswith("spike")


def is_recovery_phase(phase: str) -> bool:
    return phase.startswith("recovery")


def _phase_name(index: int) -> str:
    # Interval 1 is spike1, 2 is recovery1, 3 is spike2, ...
    number = (index + 1) // 2
    return f"spike{number}" if index % 2 == 1 else f"recovery{number}"
