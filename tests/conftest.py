"""
Shared pytest fixtures for the performance harness test suite.

Two kinds of doubles live here:

- :class:`FakeResponse` / :class:`FakeClient`: in-memory stand-ins for
  Locust's ``HttpSession`` and its ``catch_response`` context managers,
  used by the unit tests so no socket is ever opened
- ``fake_backend``: a small Flask app imitating the Interview Coach
  services (login, refresh, profile, questions, sessions, statistics,
  SSE feedback stream), served by werkzeug on a random local port in a
  background thread for the integration tests

Key Concepts Demonstrated:
- Scripted fake clients that record every call for later assertions
- A live HTTP fake served in-process, isolated per test session
- Hermetic settings built from a plain dict instead of ``os.environ``
"""

from __future__ import annotations

# Locust patches the standard library through gevent on import; load it
# before anything that imports ssl.
import locust  # noqa: F401

import json
import threading
import time
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

import jwt
import pytest
from flask import Flask, Response, jsonify, request
from werkzeug.serving import make_server

from performance.config import Settings, load_settings
from performance.lib.metrics import MetricsRegistry

TEST_EMAIL = "perf-user@example.com"
TEST_PASSWORD = "Test1234!"
JWT_SECRET = "fake-backend-secret-for-performance-tests"


# -----------------------------------------------------------------------------
# In-memory doubles
# -----------------------------------------------------------------------------

class FakeResponse:
    """
    Minimal response honouring the ``catch_response`` protocol.

    ``success()``/``failure()`` calls are recorded so tests can assert
    how a request was classified.
    """

    def __init__(
        self,
        status_code: int = 200,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        elapsed_ms: float = 10.0,
        chunks: Iterable[bytes] | None = None,
        error: Exception | None = None,
    ):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {}
        self.elapsed = timedelta(milliseconds=elapsed_ms)
        self._chunks = chunks
        self.error = error
        self.outcome: str | None = None
        self.failure_message: str | None = None

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body

    @property
    def text(self) -> str:
        return "" if self._body is None else json.dumps(self._body)

    def iter_content(self, chunk_size=None):
        yield from self._chunks or []

    def success(self) -> None:
        self.outcome = "success"

    def failure(self, message: str) -> None:
        self.outcome = "failure"
        self.failure_message = message

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc_info) -> bool:
        return False


class FakeClient:
    """
    Scripted replacement for Locust's ``HttpSession``.

    Responses are returned in order from ``responses``; a callable entry
    is invoked with the call record so a test can compute the answer.
    Every call is kept in :attr:`calls`.
    """

    def __init__(self, responses: Iterable[FakeResponse | Callable[[dict], FakeResponse]] = ()):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        call = {"method": method.upper(), "url": url, **kwargs}
        self.calls.append(call)
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = self.responses.pop(0)
        return response(call) if callable(response) else response

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("POST", url, **kwargs)

    def names(self) -> list[str]:
        return [call.get("name") for call in self.calls]


def make_token(subject: str = TEST_EMAIL, lifetime: float = 3600, secret: str = JWT_SECRET) -> str:
    """Signed HS256 access token expiring ``lifetime`` seconds from now."""
    return jwt.encode({"sub": subject, "exp": int(time.time() + lifetime)}, secret, algorithm="HS256")


def login_body(access: str | None = None, refresh: str = "refresh-1") -> dict[str, str]:
    return {"accessToken": access or make_token(), "refreshToken": refresh}


# -----------------------------------------------------------------------------
# Settings / registry fixtures
# -----------------------------------------------------------------------------

def build_settings(base_url: str = "http://backend.test", **overrides: str) -> Settings:
    environ = {
        "BASE_URL": base_url,
        "GATEWAY_URL": base_url,
        "USER_SERVICE_URL": base_url,
        "QUESTION_SERVICE_URL": base_url,
        "INTERVIEW_SERVICE_URL": base_url,
        "FEEDBACK_SERVICE_URL": base_url,
        "TEST_USER_EMAIL": TEST_EMAIL,
        "TEST_USER_PASSWORD": TEST_PASSWORD,
        "RACE_SETTLE_SECONDS": "0",
        **overrides,
    }
    return load_settings(environ)


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing every service at a fake host."""
    return build_settings()


@pytest.fixture
def registry() -> MetricsRegistry:
    """A fresh metrics registry so samples never leak between tests."""
    return MetricsRegistry()


# -----------------------------------------------------------------------------
# Fake backend
# -----------------------------------------------------------------------------

class BackendState:
    """Mutable state of the fake backend, reset by the ``backend`` fixture."""

    def __init__(self):
        self.lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        self.total_questions = 0
        self.next_id = 1
        self.login_calls = 0
        self.refresh_calls = 0

    def allocate_id(self) -> int:
        with self.lock:
            value = self.next_id
            self.next_id += 1
            return value


def create_backend_app(state: BackendState) -> Flask:
    """Flask app answering the endpoints the scenarios call."""
    app = Flask("fake_interview_coach")

    def _authorised() -> bool:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return False
        try:
            jwt.decode(header[len("Bearer "):], JWT_SECRET, algorithms=["HS256"])
        except jwt.PyJWTError:
            return False
        return True

    def _unauthorised():
        return jsonify({"error": "unauthorized"}), 401

    @app.post("/api/v1/auth/login")
    def login():
        state.login_calls += 1
        payload = request.get_json(silent=True) or {}
        if payload.get("email") != TEST_EMAIL or payload.get("password") != TEST_PASSWORD:
            return jsonify({"error": "invalid credentials"}), 401
        return jsonify(login_body(make_token(), refresh=f"refresh-{state.allocate_id()}"))

    @app.post("/api/v1/auth/refresh")
    def refresh():
        state.refresh_calls += 1
        payload = request.get_json(silent=True) or {}
        if not str(payload.get("refreshToken", "")).startswith("refresh-"):
            return _unauthorised()
        return jsonify(login_body(make_token(), refresh=f"refresh-{state.allocate_id()}"))

    @app.post("/api/v1/auth/register")
    def register():
        return jsonify({"id": state.allocate_id()}), 201

    @app.get("/actuator/health")
    def health():
        return jsonify({"status": "UP"})

    @app.get("/api/v1/users/me")
    def profile():
        if not _authorised():
            return _unauthorised()
        return jsonify({"email": TEST_EMAIL, "name": "Perf User"})

    @app.get("/api/v1/questions")
    def questions():
        if not _authorised():
            return _unauthorised()
        return jsonify({"content": [{"id": 1, "title": "What is a JVM?"}], "totalElements": 1})

    @app.get("/api/v1/sessions")
    def sessions():
        if not _authorised():
            return _unauthorised()
        return jsonify({"content": []})

    @app.get("/api/v1/statistics")
    def statistics():
        if not _authorised():
            return _unauthorised()
        return jsonify({"totalQuestions": state.total_questions})

    @app.post("/api/v1/statistics/record")
    def record_statistics():
        if not _authorised():
            return _unauthorised()
        with state.lock:
            state.total_questions += 1
        return jsonify({"recorded": True})

    @app.get("/api/v1/feedback/stream/<int:answer_id>")
    def feedback_stream(answer_id: int):
        def frames():
            yield f"event: feedback\nid: 1\ndata: analysing answer {answer_id}\n\n"
            yield "data: strengths: clear structure\ndata: weaknesses: no examples\n\n"
            yield "event: complete\ndata: done"

        return Response(frames(), mimetype="text/event-stream")

    return app


@pytest.fixture(scope="session")
def backend_state() -> BackendState:
    return BackendState()


@pytest.fixture(scope="session")
def fake_backend(backend_state: BackendState):
    """
    Serve the fake backend on a random local port for the session.

    Yields:
        str: Base URL of the running server.
    """
    server = make_server("127.0.0.1", 0, create_backend_app(backend_state), threaded=True)
    server_thread = threading.Thread(target=server.serve_forever)
    server_thread.daemon = True
    server_thread.start()

    yield f"http://127.0.0.1:{server.server_port}"

    server.shutdown()


@pytest.fixture
def backend(fake_backend: str, backend_state: BackendState) -> str:
    """Base URL of the fake backend with its counters reset."""
    backend_state.reset()
    return fake_backend
