"""
Building blocks shared by the scenario locustfiles.

Every scenario follows the same lifecycle: a setup hook that logs in
once to prove the test user works (and optionally captures a
baseline), an iteration body run by each virtual user with its own
auth session, and a teardown hook that prints a short console summary.
The pieces below keep those hooks and the common checks in one place.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any

from performance.config import settings
from performance.lib.auth import AuthSession
from performance.lib.checks import status_in
from performance.lib.plan import ScenarioUser

logger = logging.getLogger(__name__)

OK = status_in(200)
OK_OR_EMPTY = status_in(200, 204)
CREATED = status_in(200, 201)


def login_setup(client: Any) -> dict[str, Any]:
    """
    Log the configured test user in once before the run.

    A failure is logged loudly but does not stop the run: each virtual
    user still logs in on its own and the resulting failed checks show
    up in the thresholds.

    Returns:
        ``token`` (``None`` on failure), ``started_at`` (ISO timestamp)
        and ``started_monotonic`` (for elapsed-time summaries).
    """
    auth = AuthSession(client)
    result = auth.login()
    if not result.success:
        logger.error("Setup failed: could not authenticate as %s", settings.test_user.email)
    return {
        "token": result.token,
        "started_at": datetime.now(timezone.utc).isoformat(),
        "started_monotonic": time.monotonic(),
    }


def completion_teardown(label: str, *notes: str):
    """Build a teardown hook that prints when the run started plus ``notes``."""

    def _teardown(_client: Any, data: dict[str, Any]) -> None:
        print(f"{label} test completed. Started at: {data.get('started_at', 'unknown')}")
        for note in notes:
            print(note)

    return _teardown


def record_error(vu: ScenarioUser, passed: bool, name: str) -> None:
    """Add one sample to the ``errors`` rate: 1 for a failed call, 0 otherwise."""
    vu.registry.rate("errors").add(not passed, vu.tags(name=name))
