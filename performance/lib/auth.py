"""
Per-virtual-user authentication session.

Every Locust user owns exactly one :class:`AuthSession`, created in
``on_start``.  The session logs in against the user service, caches the
bearer credential with a conservative expiry estimate, and transparently
recovers from a ``401`` by refreshing the token once and retrying the
call once.

Credentials are never shared between virtual users: one user's refresh
can therefore never invalidate a token another user has in flight.

Key Concepts Demonstrated:
- Credential caching with a safety margin before the real expiry
- Reading the ``exp`` claim from a JWT without verifying its signature
- Exactly-once refresh/retry on ``401`` (no retry storms)
- Authentication failures degrade into failed checks, never exceptions
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import jwt

from performance.config import Settings, settings as default_settings
from performance.endpoints import Endpoints
from performance.helpers import safe_json
from performance.lib.checks import Assertion, check, record_failed_checks
from performance.lib.metrics import REGISTRY, MetricsRegistry

logger = logging.getLogger(__name__)


@dataclass
class SessionCredential:
    """Access/refresh token pair plus the moment it should be considered stale."""

    access_token: str
    refresh_token: str | None
    expires_at: float


@dataclass(frozen=True)
class LoginResult:
    success: bool
    token: str | None
    response: Any


@dataclass(frozen=True)
class RefreshResult:
    success: bool
    token: str | None
    response: Any


def _has_access_token(response: Any) -> bool:
    token = safe_json(response).get("accessToken")
    return isinstance(token, str) and bool(token)


LOGIN_CHECKS: dict[str, Assertion] = {
    "login successful": lambda r: r.status_code == 200,
    "has access token": _has_access_token,
}

REGISTER_CHECKS: dict[str, Assertion] = {
    "registration successful": lambda r: r.status_code in (200, 201),
}

REFRESH_CHECKS: dict[str, Assertion] = {
    "token refresh successful": lambda r: r.status_code == 200,
    "has new access token": _has_access_token,
}


class AuthSession:
    """
    Login, token cache and 401 recovery for one virtual user.

    Args:
        client: The user's Locust ``HttpSession`` (anything with a
            ``request``/``post`` method honouring ``catch_response``).
        config: Harness settings; defaults to the process settings.
        registry: Metrics registry receiving check samples.
        clock: Wall-clock source, replaceable in tests.
    """

    def __init__(
        self,
        client: Any,
        config: Settings | None = None,
        *,
        registry: MetricsRegistry = REGISTRY,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.settings = config or default_settings
        self.endpoints = Endpoints(self.settings.services)
        self.registry = registry
        self.clock = clock
        self.credential: SessionCredential | None = None
        # Outcome of the checks applied by the last authenticated_request
        self.last_checks_passed: bool | None = None

    # ---- credential state -----------------------------------------------

    @property
    def token(self) -> str | None:
        return self.credential.access_token if self.credential else None

    def has_valid_token(self) -> bool:
        return self.credential is not None and self.clock() < self.credential.expires_at

    def invalidate(self) -> None:
        """Drop the cached credential so the next call logs in again."""
        self.credential = None

    def _expiry_for(self, access_token: str) -> float:
        """
        Estimate when ``access_token`` should stop being used.

        Uses the JWT ``exp`` claim when the token decodes as a JWT,
        otherwise the configured nominal lifetime from now.  Either way
        the safety margin is subtracted so a burst of in-flight requests
        never races the real expiry.
        """
        margin = self.settings.token_safety_margin_seconds
        try:
            claims = jwt.decode(access_token, options={"verify_signature": False})
        except jwt.PyJWTError:
            claims = {}

        exp = claims.get("exp")
        if isinstance(exp, (int, float)):
            return float(exp) - margin
        return self.clock() + self.settings.token_lifetime_seconds - margin

    def _store(self, body: Mapping[str, Any]) -> str:
        access_token = body["accessToken"]
        refresh_token = body.get("refreshToken")
        expires_at = self._expiry_for(access_token)
        if self.credential is None:
            self.credential = SessionCredential(access_token, refresh_token, expires_at)
        else:
            self.credential.access_token = access_token
            self.credential.refresh_token = refresh_token or self.credential.refresh_token
            self.credential.expires_at = expires_at
        return access_token

    # ---- headers --------------------------------------------------------

    def auth_headers(self, token: str | None = None) -> dict[str, str]:
        """
        Build JSON request headers, authorised when a token is available.

        Args:
            token: Explicit token; defaults to the cached one.
        """
        headers = _json_headers()
        token = token or self.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    # ---- identity endpoints ---------------------------------------------

    def login(self, email: str | None = None, password: str | None = None) -> LoginResult:
        """
        Log in and cache the returned credential.

        Success requires ``200`` and an ``accessToken`` in the body.  On
        any other outcome the previously cached credential (if any) is
        left untouched.

        Args:
            email: Account email; defaults to the configured test user.
            password: Account password; defaults to the configured test user.

        Returns:
            A :class:`LoginResult` whose ``token`` is the cached token
            after the call (the old one on failure).
        """
        payload = {
            "email": email or self.settings.test_user.email,
            "password": password or self.settings.test_user.password,
        }
        with self.client.post(
            self.endpoints.login(),
            json=payload,
            headers=_json_headers(),
            name="login",
            timeout=self.settings.timeouts.fast,
            catch_response=True,
        ) as response:
            success = check(response, LOGIN_CHECKS, tags={"name": "login"}, registry=self.registry)
            if success:
                self._store(safe_json(response))

        if not success:
            logger.warning("Login failed for %s (status %s)", payload["email"], response.status_code)
        return LoginResult(success=success, token=self.token, response=response)

    def register(
        self,
        email: str,
        password: str,
        name: str,
        *,
        checks: Mapping[str, Assertion] | None = None,
    ) -> Any:
        """
        Create an account.

        By default ``201`` or ``200`` counts as success; pass ``checks``
        to assert more about the response.  Whether they passed is left
        in :attr:`last_checks_passed`.
        """
        checks = checks or REGISTER_CHECKS
        with self.client.post(
            self.endpoints.register(),
            json={"email": email, "password": password, "name": name},
            headers=_json_headers(),
            name="register",
            timeout=self.settings.timeouts.fast,
            catch_response=True,
        ) as response:
            self.last_checks_passed = check(
                response, checks, tags={"name": "register"}, registry=self.registry
            )
        return response

    def ensure_valid_token(self) -> str | None:
        """
        Return a usable token, logging in only when the cache is stale.

        Returns:
            The access token, or ``None`` when login failed.  Callers
            proceed unauthenticated and let their checks fail.
        """
        if self.has_valid_token():
            return self.token

        result = self.login()
        if not result.success:
            logger.error("Failed to obtain valid token")
            return None
        return result.token

    def refresh_token(self) -> RefreshResult:
        """
        Exchange the refresh token for a new credential.

        On success the cached tokens are replaced and the expiry is
        reset.  On failure the old token stays in place; deciding
        whether to fall back to a full login is up to the caller.
        """
        if self.credential is None or not self.credential.refresh_token:
            logger.warning("No refresh token cached; cannot refresh")
            return RefreshResult(success=False, token=self.token, response=None)

        with self.client.post(
            self.endpoints.refresh(),
            json={"refreshToken": self.credential.refresh_token},
            headers=self.auth_headers(),
            name="refresh-token",
            timeout=self.settings.timeouts.fast,
            catch_response=True,
        ) as response:
            success = check(
                response, REFRESH_CHECKS, tags={"name": "refresh-token"}, registry=self.registry
            )
            if success:
                self._store(safe_json(response))

        return RefreshResult(success=success, token=self.token, response=response)

    # ---- authenticated calls --------------------------------------------

    def authenticated_request(
        self,
        method: str,
        url: str,
        *,
        name: str,
        timeout: float | None = None,
        checks: Mapping[str, Assertion] | None = None,
        headers: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Send one authorised request, recovering from a single ``401``.

        On ``401`` exactly one refresh is attempted.  If it succeeds the
        request is retried exactly once with the new token and ``checks``
        are applied to that retry.  If it fails the cached credential is
        invalidated (the next call logs in from scratch), ``checks`` are
        recorded as failed and the ``401`` response is returned.

        Args:
            method: HTTP method.
            url: Absolute URL.
            name: Request name used for statistics and check tags.
            timeout: Seconds; defaults to the ``default`` timeout class.
            checks: Assertions applied to the final response.
            headers: Extra headers merged over the auth headers.
            **kwargs: Passed through to the client (``json``, ``params``...).

        Returns:
            The final response.  Whether its checks passed is left in
            :attr:`last_checks_passed`.
        """
        timeout = self.settings.timeouts.default if timeout is None else timeout
        token = self.ensure_valid_token()
        response = self._send(method, url, token, name, timeout, checks, headers, True, kwargs)
        if response.status_code != 401:
            return response

        refresh = self.refresh_token()
        if not refresh.success:
            logger.warning("Token refresh failed after 401 on %s; dropping credential", name)
            self.invalidate()
            if checks:
                record_failed_checks(checks, tags={"name": name}, registry=self.registry)
            self.last_checks_passed = False
            return response

        return self._send(method, url, refresh.token, name, timeout, checks, headers, False, kwargs)

    def _send(
        self,
        method: str,
        url: str,
        token: str | None,
        name: str,
        timeout: float,
        checks: Mapping[str, Assertion] | None,
        headers: Mapping[str, str] | None,
        may_retry: bool,
        kwargs: dict[str, Any],
    ) -> Any:
        merged = {**self.auth_headers(token), **(headers or {})}
        with self.client.request(
            method.upper(),
            url,
            headers=merged,
            name=name,
            timeout=timeout,
            catch_response=True,
            **kwargs,
        ) as response:
            if response.status_code == 401 and may_retry:
                response.failure("Unauthorized (401)")
            elif checks:
                self.last_checks_passed = check(
                    response, checks, tags={"name": name}, registry=self.registry
                )
            else:
                self.last_checks_passed = 0 < response.status_code < 400
        return response


def _json_headers() -> dict[str, str]:
    return {"Content-Type": "application/json", "Accept": "application/json"}
