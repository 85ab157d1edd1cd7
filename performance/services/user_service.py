"""
User service suite: registration, login, token refresh and profile reads.

Executors:

- **registration**: constant arrival rate, 5 sign-ups per second for
  5 minutes (10 pre-allocated VUs, up to 50)
- **login**: ramping 0 -> 30 -> 50 -> 0 VUs over 12 minutes; every
  successful login is followed by a token refresh
- **profile**: 20 constant VUs for 10 minutes reading (and
  occasionally renaming) their own profile

Setup pre-creates a handful of accounts so the login and profile
executors do not all hammer the same user row; when none could be
created they fall back to the configured test user.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any

from performance.config import settings
from performance.helpers import safe_json, think, unique_user_identity
from performance.lib.auth import AuthSession
from performance.lib.checks import duration_ms, status_in
from performance.lib.plan import Executor, PlanShape, ScenarioPlan, ScenarioUser, install_hooks
from performance.lib.profiles import ConstantArrivalRate, ConstantVUs, parse_duration, ramping
from performance.scenarios.base import OK
from performance.services.base import dispatch, elapsed_teardown, sequential

logger = logging.getLogger(__name__)

PRE_CREATED_USERS = 10

# Share of profile iterations that also rename the account
PROFILE_UPDATE_CHANCE = 0.1

REGISTRATION_CHECKS = {
    "registration status 2xx": lambda r: 200 <= r.status_code < 300,
    "registration has user id": lambda r: safe_json(r).get("id") is not None,
}


def user_setup(client: Any) -> dict[str, Any]:
    """Register ``PRE_CREATED_USERS`` accounts for the login and profile executors."""
    auth = AuthSession(client)
    users = []
    for _ in range(PRE_CREATED_USERS):
        email, password, name = unique_user_identity()
        response = auth.register(email, password, name)
        if response.status_code in (200, 201):
            users.append({"email": email, "password": password})

    if not users:
        logger.error("Setup could not create any accounts; falling back to %s", settings.test_user.email)
    return {"users": users, "started_monotonic": time.monotonic()}


def pick_account(vu: ScenarioUser) -> dict[str, str]:
    """A random pre-created account, or the configured test user."""
    users = vu.data.get("users") or [
        {"email": vu.config.test_user.email, "password": vu.config.test_user.password}
    ]
    return random.choice(users)


def registration_flow(vu: ScenarioUser) -> None:
    email, password, name = unique_user_identity()
    response = vu.auth.register(email, password, name, checks=REGISTRATION_CHECKS)
    tags = vu.tags(name="register")

    vu.registry.trend("registration_time").add(duration_ms(response), tags)
    vu.registry.rate("registration_success").add(bool(vu.auth.last_checks_passed), tags)
    if response.status_code == 409:
        vu.registry.counter("duplicate_email_errors").add(1, tags)
    think(1, 3)


def login_flow(vu: ScenarioUser) -> None:
    account = pick_account(vu)
    result = vu.auth.login(account["email"], account["password"])
    tags = vu.tags(name="login")

    vu.registry.trend("login_time").add(duration_ms(result.response), tags)
    success = result.success and bool(vu.auth.credential and vu.auth.credential.refresh_token)
    vu.registry.rate("login_success").add(success, tags)

    if success:
        think(1)
        refresh = vu.auth.refresh_token()
        if refresh.response is not None:
            vu.registry.trend("token_refresh_time").add(
                duration_ms(refresh.response), vu.tags(name="refresh-token")
            )
    think(2, 5)


def profile_flow(vu: ScenarioUser) -> None:
    if not vu.auth.has_valid_token():
        account = pick_account(vu)
        if not vu.auth.login(account["email"], account["password"]).success:
            return

    response, _ = vu.api(
        "GET",
        vu.endpoints.profile(),
        name="get-profile",
        timeout=vu.config.timeouts.fast,
        checks={
            "profile status 200": OK,
            "profile has email": lambda r: safe_json(r).get("email") is not None,
        },
    )
    vu.registry.trend("profile_load_time").add(duration_ms(response), vu.tags(name="get-profile"))
    think(1, 3)

    if random.random() < PROFILE_UPDATE_CHANCE:
        vu.api(
            "PATCH",
            vu.endpoints.profile(),
            name="update-profile",
            timeout=vu.config.timeouts.fast,
            json={"name": f"Updated User {int(time.time() * 1000)}"},
            checks={"profile update status 200": status_in(200)},
        )
    think(2, 5)


BEHAVIOURS = {
    "registration": registration_flow,
    "login": login_flow,
    "profile": profile_flow,
}

user_service_flow = dispatch(BEHAVIOURS, sequential(registration_flow, login_flow, profile_flow))

plan = ScenarioPlan(
    "user_service",
    [
        Executor(
            "registration",
            ConstantArrivalRate(
                rate=5, duration=parse_duration("5m"), pre_allocated_vus=10, max_vus=50
            ),
            user_service_flow,
        ),
        Executor(
            "login",
            ramping(("2m", 30), ("3m", 30), ("2m", 50), ("3m", 50), ("2m", 0)),
            user_service_flow,
        ),
        Executor("profile", ConstantVUs(vus=20, duration=parse_duration("10m")), user_service_flow),
    ],
    setup=user_setup,
    teardown=elapsed_teardown(
        "User service",
        lambda data: f"Pre-created users: {len(data.get('users', []))}",
    ),
)


class UserServiceUser(ScenarioUser):
    plan = plan


class UserServiceShape(PlanShape):
    plan = plan


install_hooks(plan)
