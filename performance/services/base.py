"""Behaviour dispatch shared by the per-service suites."""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from performance.lib.plan import Flow, ScenarioUser
from performance.lib.selection import validate_weights, weighted_choice


def behaviour_name(vu: ScenarioUser, behaviours: Mapping[str, Flow]) -> str | None:
    """
    Name of the behaviour ``vu`` should run this iteration, if one applies.

    ``SCENARIO_NAME`` wins over the executor the VU is assigned to;
    ``None`` means neither names a known behaviour.
    """
    for candidate in (vu.config.scenario_name, vu.executor.name if vu.executor else None):
        if candidate in behaviours:
            return candidate
    return None


def dispatch(
    behaviours: Mapping[str, Flow],
    fallback: Flow,
) -> Flow:
    """Build an iteration body that runs the selected behaviour, else ``fallback``."""

    def _flow(vu: ScenarioUser) -> None:
        name = behaviour_name(vu, behaviours)
        if name is None:
            fallback(vu)
        else:
            behaviours[name](vu)

    return _flow


def weighted(flows: Sequence[Flow], weights: Sequence[float]) -> Flow:
    """Fallback body that picks one of ``flows`` by weight every iteration."""
    if len(flows) != len(weights):
        raise ValueError(f"{len(flows)} flows but {len(weights)} weights")
    validate_weights(weights, total=1.0)

    def _flow(vu: ScenarioUser) -> None:
        flows[weighted_choice(weights, random.random())](vu)

    return _flow


def sequential(*flows: Flow) -> Flow:
    """Fallback body that runs every flow in order."""

    def _flow(vu: ScenarioUser) -> None:
        for flow in flows:
            flow(vu)

    return _flow


def elapsed_teardown(label: str, *extra: Callable[[dict[str, Any]], str]):
    """Build a teardown hook that prints how long the suite ran plus ``extra`` lines."""

    def _teardown(_client: Any, data: dict[str, Any]) -> None:
        started = data.get("started_monotonic")
        if started is not None:
            print(f"{label} test completed in {time.monotonic() - started:.2f} seconds")
        else:
            print(f"{label} test completed")
        for line in extra:
            print(line(data))

    return _teardown
