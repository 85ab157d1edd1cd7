# ruff: noqa: E402
"""
Locust entrypoint for the performance harness.

This is the file the ``locust`` CLI discovers and loads.  It picks one
scenario module by the ``SCENARIO`` environment variable and exposes
that module's user class and load shape, so a single command line can
run any of them.

Usage examples::

    # Smoke test (the default)
    locust -f performance/locustfile.py --headless

    # Load test against a staging gateway, exporting samples to InfluxDB
    SCENARIO=load GATEWAY_URL=https://staging.example.com INFLUXDB_ENABLED=true \\
        locust -f performance/locustfile.py --headless

    # One behaviour of a per-service suite
    SCENARIO=question_service SCENARIO_NAME=rag_search \\
        locust -f performance/locustfile.py --headless

Every scenario module is also a locustfile on its own
(``locust -f performance/scenarios/spike.py``).

Key Concepts Demonstrated:
- Selecting the workload from the environment instead of separate CLIs
- The load shape owns user counts and run time, so ``--users``,
  ``--spawn-rate`` and ``--run-time`` are not needed
- ``sys.path`` manipulation so imports resolve regardless of the
  working directory Locust is launched from
"""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import sys
from pathlib import Path
from types import ModuleType

# Locust may be invoked from any directory (project root, repo parent,
# CI workspace, etc.).  Inserting the project root onto ``sys.path``
# guarantees that ``from performance.…`` imports always resolve.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from performance.config import settings
from performance.lib.plan import PlanShape, ScenarioUser

SCENARIO_PACKAGES = ("performance.scenarios", "performance.services")

SCENARIOS = (
    "smoke",
    "load",
    "stress",
    "spike",
    "soak",
    "concurrent_answer",
    "search_load",
    "user_service",
    "question_service",
    "feedback_service",
)


def find_scenario_module(name: str) -> ModuleType:
    """
    Import the scenario or service module called ``name``.

    Dashes are accepted in place of underscores (``concurrent-answer``).

    Raises:
        ValueError: When no scenario by that name exists.
    """
    module_name = name.strip().lower().replace("-", "_")
    if module_name in SCENARIOS:
        for package in SCENARIO_PACKAGES:
            qualified = f"{package}.{module_name}"
            if importlib.util.find_spec(qualified) is not None:
                return importlib.import_module(qualified)
    raise ValueError(f"Unknown scenario {name!r}; choose one of: {', '.join(SCENARIOS)}")


def scenario_classes(module: ModuleType) -> tuple[type[ScenarioUser], type[PlanShape]]:
    """Return the concrete user class and load shape defined by ``module``."""

    def defined_here(base: type) -> list[type]:
        return [
            value
            for value in vars(module).values()
            if inspect.isclass(value)
            and issubclass(value, base)
            and value.__module__ == module.__name__
            and not value.__dict__.get("abstract", False)
        ]

    users = defined_here(ScenarioUser)
    shapes = defined_here(PlanShape)
    if len(users) != 1 or len(shapes) != 1:
        raise ValueError(
            f"{module.__name__} must define exactly one user class and one load shape "
            f"(found {len(users)} and {len(shapes)})"
        )
    return users[0], shapes[0]


scenario_module = find_scenario_module(settings.scenario)
ScenarioUserClass, ScenarioShapeClass = scenario_classes(scenario_module)

__all__ = ["ScenarioUserClass", "ScenarioShapeClass"]
