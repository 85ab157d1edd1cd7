"""
Harness configuration module.

Resolves every environment-driven setting the scenarios need: target
service base URLs, test-user credentials, metric-backend connection
info, timeout classes and monitor metric names.  Values are read from
environment variables with localhost defaults so a bare ``locust``
invocation works against a local docker-compose stack.

Named presets live next to the settings:

- :data:`VU_PRESETS`: the execution profiles shared by scenarios
- threshold presets: loaded from :file:`thresholds.yml` so pass/fail
  limits stay data rather than code
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from performance.lib.profiles import ConstantVUs, ramping

# Directory that holds this package's data files
BASE_DIR = Path(__file__).resolve().parent

DEFAULT_THRESHOLDS_FILE = BASE_DIR / "thresholds.yml"


@dataclass(frozen=True)
class ServiceUrls:
    """Base URLs of the backend services under test."""

    base: str
    gateway: str
    user: str
    question: str
    interview: str
    feedback: str


@dataclass(frozen=True)
class Credentials:
    """Email/password pair of the pre-provisioned test user."""

    email: str
    password: str


@dataclass(frozen=True)
class InfluxDBSettings:
    """Connection info for the optional InfluxDB v2 metric export."""

    url: str
    token: str
    organization: str
    bucket: str
    enabled: bool = False


@dataclass(frozen=True)
class MonitorSettings:
    """
    Target-process introspection polled by the soak monitor.

    Metric names are backend-specific (Spring Actuator by default), so
    they are configuration rather than constants.
    """

    interval_seconds: float
    heap_metric: str
    heap_tag: str
    gc_pause_metric: str
    services: tuple[str, ...] = ("interview", "feedback", "question")


@dataclass(frozen=True)
class Timeouts:
    """Per-latency-class request timeouts in seconds."""

    fast: float = 10.0
    default: float = 30.0
    llm: float = 120.0
    sse: float = 60.0


@dataclass(frozen=True)
class Settings:
    """All harness settings resolved from the environment."""

    services: ServiceUrls
    test_user: Credentials
    influxdb: InfluxDBSettings
    monitor: MonitorSettings
    timeouts: Timeouts
    token_lifetime_seconds: float
    token_safety_margin_seconds: float
    race_settle_seconds: float
    scenario: str
    scenario_name: str | None
    thresholds_file: Path


def _env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """
    Build :class:`Settings` from environment variables.

    Args:
        environ: Mapping to read from.  Defaults to ``os.environ``; tests
            pass a plain dict to stay hermetic.

    Returns:
        Fully populated, immutable settings.
    """
    env = os.environ if environ is None else environ
    base = env.get("BASE_URL", "http://localhost:8080")

    services = ServiceUrls(
        base=base,
        gateway=env.get("GATEWAY_URL", base),
        user=env.get("USER_SERVICE_URL", "http://localhost:8081"),
        question=env.get("QUESTION_SERVICE_URL", "http://localhost:8082"),
        interview=env.get("INTERVIEW_SERVICE_URL", "http://localhost:8083"),
        feedback=env.get("FEEDBACK_SERVICE_URL", "http://localhost:8084"),
    )
    test_user = Credentials(
        email=env.get("TEST_USER_EMAIL", "test@example.com"),
        password=env.get("TEST_USER_PASSWORD", "Test1234!"),
    )
    influxdb = InfluxDBSettings(
        url=env.get("INFLUXDB_URL", "http://localhost:8086"),
        token=env.get("INFLUXDB_TOKEN", "my-super-secret-auth-token"),
        organization=env.get("INFLUXDB_ORG", "interview-coach"),
        bucket=env.get("INFLUXDB_BUCKET", "locust"),
        enabled=_env_flag(env.get("INFLUXDB_ENABLED")),
    )
    monitor = MonitorSettings(
        interval_seconds=float(env.get("MONITOR_INTERVAL_SECONDS", "600")),
        heap_metric=env.get("MONITOR_HEAP_METRIC", "jvm.memory.used"),
        heap_tag=env.get("MONITOR_HEAP_TAG", "area:heap"),
        gc_pause_metric=env.get("MONITOR_GC_METRIC", "jvm.gc.pause"),
    )

    return Settings(
        services=services,
        test_user=test_user,
        influxdb=influxdb,
        monitor=monitor,
        timeouts=Timeouts(),
        token_lifetime_seconds=float(env.get("TOKEN_LIFETIME_SECONDS", "3600")),
        token_safety_margin_seconds=float(env.get("TOKEN_SAFETY_MARGIN_SECONDS", "300")),
        race_settle_seconds=float(env.get("RACE_SETTLE_SECONDS", "2")),
        scenario=env.get("SCENARIO", "smoke"),
        scenario_name=env.get("SCENARIO_NAME") or None,
        thresholds_file=Path(env.get("THRESHOLDS_FILE", str(DEFAULT_THRESHOLDS_FILE))),
    )


settings = load_settings()


# VU scenario presets, keyed by test type
VU_PRESETS = {
    "smoke": ConstantVUs(vus=1, duration=60),
    "load": ramping(("2m", 50), ("5m", 50), ("2m", 100), ("5m", 100), ("2m", 0)),
    "stress": ramping(("2m", 100), ("5m", 200), ("5m", 300), ("5m", 500), ("5m", 0)),
    "spike": ramping(
        ("1m", 10),
        ("30s", 500),
        ("1m", 500),
        ("30s", 10),
        ("2m", 10),
        ("30s", 300),
        ("1m", 300),
        ("1m", 0),
    ),
    "soak": ramping(("5m", 100), ("4h", 100), ("5m", 0)),
}


def load_threshold_file(path: Path | None = None) -> dict[str, Any]:
    """
    Read the thresholds YAML file.

    Raises:
        ValueError: If the file does not contain a mapping.
    """
    path = path or settings.thresholds_file
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Thresholds file {path} must contain a mapping")
    return data


def threshold_preset(name: str, path: Path | None = None) -> dict[str, list[str]]:
    """Return one named preset from the ``presets`` section."""
    presets = load_threshold_file(path).get("presets") or {}
    if name not in presets:
        raise KeyError(f"Unknown threshold preset: {name}")
    return _normalise(presets[name])


def thresholds_for(scenario: str, path: Path | None = None) -> dict[str, list[str]]:
    """
    Return the thresholds declared for ``scenario``.

    A scenario section may list presets under ``extends``; their entries
    are merged first and the scenario's own keys override them.  An
    undeclared scenario has no thresholds.
    """
    data = load_threshold_file(path)
    presets = data.get("presets") or {}
    section = dict((data.get("scenarios") or {}).get(scenario) or {})

    merged: dict[str, list[str]] = {}
    for preset_name in section.pop("extends", None) or []:
        if preset_name not in presets:
            raise KeyError(f"Scenario {scenario} extends unknown preset {preset_name}")
        merged.update(_normalise(presets[preset_name]))
    merged.update(_normalise(section))
    return merged


def _normalise(section: Mapping[str, Any]) -> dict[str, list[str]]:
    """Coerce ``metric: expr`` and ``metric: [expr, ...]`` into lists of strings."""
    result: dict[str, list[str]] = {}
    for key, value in section.items():
        if isinstance(value, str):
            result[str(key)] = [value]
        else:
            result[str(key)] = [str(item) for item in value]
    return result
