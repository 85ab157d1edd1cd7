"""
Scenario plans and their Locust plumbing.

A :class:`ScenarioPlan` is the static definition of one test: a name
(which also selects its thresholds), one or more :class:`Executor`
objects each pairing an execution profile with an iteration body, and
optional setup/teardown hooks.  Three Locust pieces bring it to life:

- :class:`PlanShape`: a ``LoadTestShape`` that asks every executor how
  many VUs it wants right now and returns the sum
- :class:`ScenarioUser`: the virtual user; it owns its own
  :class:`~performance.lib.auth.AuthSession` and
  :class:`~performance.lib.sse.SSEClient`, is assigned to the executor
  with the largest shortfall, and runs that executor's body once per
  Locust task invocation
- :func:`install_hooks`: wires request events into the metrics
  registry, runs setup/teardown once per run and gates the exit code on
  thresholds

A scenario module therefore looks like::

    plan = ScenarioPlan("smoke", [Executor("smoke", VU_PRESETS["smoke"], smoke_flow)])

    class SmokeUser(ScenarioUser):
        plan = plan

    class SmokeShape(PlanShape):
        plan = plan

    install_hooks(plan)

Key Concepts Demonstrated:
- Several executors sharing one Locust user pool, split by target share
- Shared-iteration budgets and arrival-rate pacing on top of Locust's
  closed-loop users
- Setup/teardown failures degrade the run instead of aborting it
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from locust import HttpUser, LoadTestShape, events, task
from locust.clients import HttpSession
from locust.runners import MasterRunner

from performance.config import Settings, settings, thresholds_for
from performance.endpoints import Endpoints
from performance.lib.auth import AuthSession
from performance.lib.checks import Assertion, check
from performance.lib.influx import export_registry
from performance.lib.metrics import REGISTRY, MetricsRegistry
from performance.lib.profiles import ConstantArrivalRate, Profile, SharedIterations
from performance.lib.sse import SSEClient
from performance.lib.thresholds import (
    build_thresholds,
    evaluate_thresholds,
    has_violations,
    print_summary,
)

logger = logging.getLogger(__name__)

Flow = Callable[["ScenarioUser"], None]
SetupHook = Callable[[Any], "dict[str, Any] | None"]
TeardownHook = Callable[[Any, "dict[str, Any]"], None]

# Seconds of iteration starts used to measure an arrival-rate executor's
# achieved rate.
RATE_WINDOW_SECONDS = 10.0

# Pause used by a VU whose shared-iteration budget is exhausted while
# other VUs finish their last iterations.
IDLE_SECONDS = 0.5


class Executor:
    """
    One named unit of work: an execution profile plus an iteration body.

    Args:
        name: Executor name; tagged onto every sample as ``scenario``.
        profile: How many VUs the executor wants over time.
        flow: Iteration body, called with the :class:`ScenarioUser`.
    """

    def __init__(self, name: str, profile: Profile, flow: Flow):
        self.name = name
        self.profile = profile
        self.flow = flow
        self.active = 0
        self.claimed = 0
        self.completed = 0
        self.pool_size = profile.pre_allocated_vus if isinstance(profile, ConstantArrivalRate) else 0
        self._starts: deque[float] = deque()

    def __repr__(self) -> str:
        return f"<Executor {self.name} active={self.active}>"

    @property
    def is_arrival_rate(self) -> bool:
        return isinstance(self.profile, ConstantArrivalRate)

    @property
    def iterations_exhausted(self) -> bool:
        return isinstance(self.profile, SharedIterations) and self.completed >= self.profile.iterations

    def target(self, elapsed: float) -> int:
        if self.is_done(elapsed):
            return 0
        if self.is_arrival_rate:
            return self.pool_size
        return self.profile.target(elapsed)

    def is_done(self, elapsed: float) -> bool:
        return self.iterations_exhausted or self.profile.is_done(elapsed)

    # ---- shared-iteration budget ----------------------------------------

    def claim_iteration(self) -> bool:
        """Reserve one iteration; always granted unless the profile has a shared budget."""
        if isinstance(self.profile, SharedIterations):
            if self.claimed >= self.profile.iterations:
                return False
            self.claimed += 1
        return True

    def complete_iteration(self) -> None:
        self.completed += 1

    def reset(self) -> None:
        """Clear per-run counters so a new run starts with a full budget."""
        self.active = 0
        self.claimed = 0
        self.completed = 0
        self.pool_size = self.profile.pre_allocated_vus if self.is_arrival_rate else 0
        self._starts.clear()

    # ---- arrival-rate pool ----------------------------------------------

    def record_start(self, now: float) -> None:
        if self.is_arrival_rate:
            self._starts.append(now)
            while self._starts and self._starts[0] < now - RATE_WINDOW_SECONDS:
                self._starts.popleft()

    def achieved_rate(self, now: float) -> float:
        recent = [t for t in self._starts if t >= now - RATE_WINDOW_SECONDS]
        return len(recent) / RATE_WINDOW_SECONDS

    def grow_pool(self, now: float, elapsed: float) -> None:
        """Resize the elastic pool once a full measurement window has passed."""
        if not self.is_arrival_rate or elapsed < RATE_WINDOW_SECONDS:
            return
        wanted = self.profile.scale_pool(self.pool_size, self.achieved_rate(now))
        if wanted != self.pool_size:
            logger.info("Executor %s pool %d -> %d VUs", self.name, self.pool_size, wanted)
            self.pool_size = wanted

    def pacing(self, iteration_seconds: float) -> float:
        """Seconds a VU should wait so the pool starts iterations at the configured rate."""
        interval = self.profile.pacing_interval(max(self.active, 1))
        return max(0.0, interval - iteration_seconds)


class ScenarioPlan:
    """
    Static definition of one test run.

    Args:
        name: Test type; selects the threshold section and is tagged
            onto samples as ``test_type``.
        executors: Executors sharing the VU pool.
        setup: Called once before the first iteration with an HTTP
            session; its return value becomes :attr:`data`.
        teardown: Called once after the run with the session and
            :attr:`data`.
        registry: Metrics registry for the run.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        name: str,
        executors: Sequence[Executor],
        *,
        setup: SetupHook | None = None,
        teardown: TeardownHook | None = None,
        registry: MetricsRegistry = REGISTRY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not executors:
            raise ValueError(f"Plan {name} needs at least one executor")
        self.name = name
        self.executors = list(executors)
        self.setup = setup
        self.teardown = teardown
        self.registry = registry
        self.clock = clock
        self.data: dict[str, Any] = {}
        self.started_at: float | None = None

    def executor(self, name: str) -> Executor:
        for executor in self.executors:
            if executor.name == name:
                return executor
        raise KeyError(f"Plan {self.name} has no executor {name}")

    # ---- timing ---------------------------------------------------------

    def mark_started(self) -> None:
        self.started_at = self.clock()

    def elapsed(self) -> float:
        if self.started_at is None:
            self.mark_started()
        return self.clock() - self.started_at

    def targets(self, elapsed: float) -> dict[str, int]:
        return {e.name: e.target(elapsed) for e in self.executors}

    def total_target(self, elapsed: float) -> int:
        return sum(self.targets(elapsed).values())

    def is_done(self, elapsed: float) -> bool:
        return all(e.is_done(elapsed) for e in self.executors)

    def grow_pools(self, elapsed: float) -> None:
        now = self.clock()
        for executor in self.executors:
            executor.grow_pool(now, elapsed)

    # ---- VU assignment --------------------------------------------------

    def _fill_ratio(self, executor: Executor, target: int) -> float:
        return executor.active / target if target else float("inf")

    def assign(self) -> Executor:
        """
        Attach a new VU to the executor furthest below its target.

        The ratio ``active / target`` is compared rather than absolute
        counts, so executors fill in proportion to their targets.  When
        nothing has a target (e.g. between stages) the first executor
        that is not done is used.
        """
        elapsed = self.elapsed()
        targets = self.targets(elapsed)
        wanting = [e for e in self.executors if targets[e.name] > 0]
        if wanting:
            chosen = min(wanting, key=lambda e: self._fill_ratio(e, targets[e.name]))
        else:
            chosen = next((e for e in self.executors if not e.is_done(elapsed)), self.executors[0])
        chosen.active += 1
        return chosen

    def release(self, executor: Executor | None) -> None:
        if executor is not None and executor.active > 0:
            executor.active -= 1

    def rebalance(self, current: Executor) -> Executor:
        """
        Move a VU to another executor when ``current`` holds at least one
        VU more than its share and another executor is short at least one.
        """
        if len(self.executors) == 1:
            return current

        targets = self.targets(self.elapsed())
        total_target = sum(targets.values())
        total_active = sum(e.active for e in self.executors)
        if total_target == 0 or total_active == 0:
            return current

        def share(executor: Executor) -> float:
            return targets[executor.name] * total_active / total_target

        if current.active - 1 < share(current):
            return current

        short = [e for e in self.executors if e is not current and e.active + 1 <= share(e)]
        if not short:
            return current

        chosen = max(short, key=lambda e: share(e) - e.active)
        current.active -= 1
        chosen.active += 1
        return chosen

    # ---- run lifecycle --------------------------------------------------

    def run_setup(self, client: Any) -> None:
        """Start a fresh run: clear samples and executor counters, then run setup."""
        self.registry.reset()
        for executor in self.executors:
            executor.reset()
        self.data = {}
        self.registry.start()
        self.mark_started()
        if self.setup is None:
            return
        try:
            self.data = self.setup(client) or {}
        except Exception:
            logger.exception("Setup for %s failed; continuing in degraded mode", self.name)
            self.data = {}

    def run_teardown(self, client: Any) -> None:
        if self.teardown is not None:
            try:
                self.teardown(client, self.data)
            except Exception:
                logger.exception("Teardown for %s failed", self.name)
        self.registry.finish()

    def evaluate(self) -> bool:
        """Print the metric summary and threshold table; return ``True`` when all hold."""
        for line in self.registry.summary_lines():
            print(line)
        results = evaluate_thresholds(self.registry, build_thresholds(thresholds_for(self.name)))
        if results:
            print()
            print_summary(results)
        return not has_violations(results)


class PlanShape(LoadTestShape):
    """Load shape that follows a plan's executor targets."""

    abstract = True
    plan: ScenarioPlan

    def tick(self):
        elapsed = self.get_run_time()
        if self.plan.is_done(elapsed):
            return None

        self.plan.grow_pools(elapsed)
        users = self.plan.total_target(elapsed)
        current = self.runner.user_count if self.runner is not None else 0
        return users, max(1, abs(users - current))


class ScenarioUser(HttpUser):
    """
    Virtual user bound to one executor of :attr:`plan` at a time.

    Attributes:
        config: Settings used for URLs, credentials and timeouts.
        endpoints: URL catalogue built from ``config``.
        auth: This VU's own authentication session.
        sse: This VU's SSE client.
        state: Scratch space that survives between iterations.
    """

    abstract = True
    host = settings.services.gateway
    config: Settings = settings
    plan: ScenarioPlan

    auth: AuthSession
    sse: SSEClient
    executor: Executor | None = None

    def on_start(self) -> None:
        self.endpoints = Endpoints(self.config.services)
        self.auth = AuthSession(self.client, self.config, registry=self.plan.registry)
        self.sse = SSEClient(self.client, self.config, registry=self.plan.registry)
        self.state: dict[str, Any] = {}
        self._last_iteration_seconds = 0.0
        self._idle = False
        self.executor = self.plan.assign()

    def on_stop(self) -> None:
        self.plan.release(self.executor)
        self.executor = None

    @property
    def data(self) -> dict[str, Any]:
        """Whatever the plan's setup hook returned."""
        return self.plan.data

    @property
    def registry(self) -> MetricsRegistry:
        return self.plan.registry

    def context(self) -> dict[str, str]:
        if self.executor is None:
            return {"test_type": self.plan.name}
        return {"scenario": self.executor.name, "test_type": self.plan.name}

    def tags(self, **extra: str) -> dict[str, str]:
        return {**self.context(), **extra}

    def api(
        self,
        method: str,
        url: str,
        *,
        name: str,
        checks: Mapping[str, Assertion] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> tuple[Any, bool]:
        """Authenticated call; returns the response and whether its checks passed."""
        response = self.auth.authenticated_request(
            method, url, name=name, timeout=timeout, checks=checks, **kwargs
        )
        return response, bool(self.auth.last_checks_passed)

    def public(
        self,
        method: str,
        url: str,
        *,
        name: str,
        checks: Mapping[str, Assertion],
        timeout: float | None = None,
        **kwargs: Any,
    ) -> tuple[Any, bool]:
        """Unauthenticated call (health probes, actuator metrics)."""
        timeout = self.config.timeouts.fast if timeout is None else timeout
        with self.client.request(
            method, url, name=name, timeout=timeout, catch_response=True, **kwargs
        ) as response:
            passed = check(response, checks, tags={"name": name}, registry=self.registry)
        return response, passed

    def wait_time(self) -> float:
        if self._idle:
            return IDLE_SECONDS
        if self.executor is not None and self.executor.is_arrival_rate:
            return self.executor.pacing(self._last_iteration_seconds)
        return 0.0

    @task
    def iteration(self) -> None:
        self.executor = self.plan.rebalance(self.executor)
        executor = self.executor

        self._idle = not executor.claim_iteration()
        if self._idle:
            return

        started = time.monotonic()
        executor.record_start(started)
        try:
            executor.flow(self)
        finally:
            self._last_iteration_seconds = time.monotonic() - started
            executor.complete_iteration()
            tags = self.context()
            self.registry.add("iterations", 1, tags)
            self.registry.add("iteration_duration", self._last_iteration_seconds * 1000, tags)


def request_recorder(registry: MetricsRegistry) -> Callable[..., None]:
    """
    Build a ``request`` event listener feeding ``registry``.

    Every request yields one ``http_req_duration`` sample (milliseconds)
    and one ``http_req_failed`` sample (1 when Locust counted it as a
    failure), tagged with the request name, method, status and the
    user's context (executor and test type).
    """

    def _record_request(request_type, name, response_time, response_length, response=None,
                        context=None, exception=None, **_kwargs):
        tags = {"name": name, "method": request_type, **(context or {})}
        status = getattr(response, "status_code", None)
        if status is not None:
            tags["status"] = str(status)
        registry.add("http_req_duration", response_time, tags)
        registry.add("http_req_failed", 1 if exception else 0, tags)

    return _record_request


def install_hooks(plan: ScenarioPlan) -> None:
    """Register the Locust event listeners that drive ``plan``'s run lifecycle."""
    registry = plan.registry
    events.request.add_listener(request_recorder(registry))

    @events.test_start.add_listener
    def _on_test_start(environment, **_kwargs):
        if isinstance(environment.runner, MasterRunner):
            return
        logger.info("Starting %s test", plan.name)
        plan.run_setup(_setup_session(environment))

    @events.test_stop.add_listener
    def _on_test_stop(environment, **_kwargs):
        if isinstance(environment.runner, MasterRunner):
            return
        plan.run_teardown(_setup_session(environment))
        if settings.influxdb.enabled:
            export_registry(registry, settings.influxdb, test_type=plan.name)

    @events.quitting.add_listener
    def _on_quitting(environment, **_kwargs):
        if isinstance(environment.runner, MasterRunner):
            return
        apply_exit_code(plan, environment)


def apply_exit_code(plan: ScenarioPlan, environment) -> bool:
    """
    Set ``environment.process_exit_code`` from ``plan``'s thresholds alone.

    The code is always set: when it is ``None`` Locust exits 1 on any
    recorded request failure, including ones the thresholds tolerate.
    """
    passed = plan.evaluate()
    if not passed:
        logger.error("%s test violated one or more thresholds", plan.name)
    environment.process_exit_code = 0 if passed else 1
    return passed


def _setup_session(environment) -> HttpSession:
    return HttpSession(
        base_url=environment.host or settings.services.gateway,
        request_event=environment.events.request,
        user=None,
    )
