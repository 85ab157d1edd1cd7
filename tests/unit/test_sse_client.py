"""
Unit tests for the SSE client: validation, metrics, retries and long runs.
"""

import pytest
import requests
import urllib3

from performance.lib.sse import SSEClient
from tests.conftest import FakeClient, FakeResponse


pytestmark = pytest.mark.unit

STREAM_HEADERS = {"Content-Type": "text/event-stream;charset=UTF-8"}


def stream_response(*chunks: bytes, status: int = 200, headers=None) -> FakeResponse:
    return FakeResponse(
        status,
        headers=STREAM_HEADERS if headers is None else headers,
        chunks=list(chunks),
    )


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


def make_client(responses, test_settings, registry, clock):
    fake = FakeClient(responses)
    return fake, SSEClient(fake, test_settings, registry=registry, clock=clock, sleep=clock.sleep)


class TestConnect:
    """Single-stream behaviour."""

    def test_valid_stream_is_parsed_and_measured(self, test_settings, registry, clock):
        # Arrange
        response = stream_response(b"event: feedback\ndata: a\n\n", b"data: b\n\ndata: c")
        fake, sse = make_client([response], test_settings, registry, clock)

        # Act
        result = sse.connect("http://backend.test/stream", token="abc", name="feedback-stream")

        # Assert
        assert result.success is True
        assert [frame.data for frame in result.events] == ["a", "b", "c"]
        assert result.first_event_time is not None
        assert result.bytes_received == len(b"event: feedback\ndata: a\n\n") + len(b"data: b\n\ndata: c")
        assert response.outcome == "success"
        assert registry.aggregate("sse_events_received", "count") == 3
        assert registry.aggregate("sse_connection_time", "count") == 1
        assert registry.aggregate("sse_first_event_time", "count") == 1
        assert registry.aggregate("sse_total_stream_time", "count") == 1

        call = fake.calls[0]
        assert call["stream"] is True
        assert call["headers"]["Authorization"] == "Bearer abc"
        assert call["headers"]["Accept"] == "text/event-stream"
        assert call["timeout"] == test_settings.timeouts.sse

    def test_empty_stream_is_success_with_zero_events(self, test_settings, registry, clock):
        _, sse = make_client([stream_response()], test_settings, registry, clock)

        result = sse.connect("http://backend.test/stream")

        assert result.success is True
        assert result.events == []
        assert result.first_event_time is None
        assert registry.aggregate("sse_first_event_time", "count") is None

    @pytest.mark.parametrize(
        "status, headers",
        [
            (200, {"Content-Type": "application/json"}),
            (200, {}),
            (500, STREAM_HEADERS),
            (401, STREAM_HEADERS),
        ],
    )
    def test_bad_status_or_content_type_fails_without_events(
        self, status, headers, test_settings, registry, clock
    ):
        # Arrange
        response = stream_response(b"data: ignored\n\n", status=status, headers=headers)
        _, sse = make_client([response], test_settings, registry, clock)

        # Act
        result = sse.connect("http://backend.test/stream")

        # Assert
        assert result.success is False
        assert result.events == []
        assert response.outcome == "failure"
        assert registry.aggregate("checks", "rate") < 1

    def test_dropped_stream_keeps_parsed_events_and_counts_error(
        self, test_settings, registry, clock
    ):
        """A transport error mid-stream is a failed result, never an exception."""

        # Arrange
        def chunks():
            yield b"data: before drop\n\n"
            raise requests.ConnectionError("connection reset")

        response = FakeResponse(200, headers=STREAM_HEADERS, chunks=chunks())
        _, sse = make_client([response], test_settings, registry, clock)

        # Act
        result = sse.connect("http://backend.test/stream", name="feedback-stream")

        # Assert
        assert result.success is False
        assert "connection reset" in result.error
        assert [frame.data for frame in result.events] == ["before drop"]
        assert registry.aggregate("sse_stream_errors", "count") == 1
        assert response.outcome == "failure"
        assert "interrupted" in response.failure_message

    def test_read_timeout_mid_stream_counts_as_timeout(self, test_settings, registry, clock):
        # Arrange - requests wraps a mid-body read timeout in ConnectionError
        def chunks():
            yield b"data: partial\n\n"
            raise requests.ConnectionError(
                urllib3.exceptions.ReadTimeoutError(None, "/stream", "Read timed out.")
            )

        response = FakeResponse(200, headers=STREAM_HEADERS, chunks=chunks())
        _, sse = make_client([response], test_settings, registry, clock)

        # Act
        result = sse.connect("http://backend.test/stream", name="feedback-stream")

        # Assert
        assert result.success is False
        assert registry.aggregate("sse_stream_errors", "count") == 1
        assert registry.aggregate("timeouts", "count", {"name": "feedback-stream"}) == 1

    def test_connection_reset_is_not_a_timeout(self, test_settings, registry, clock):
        def chunks():
            yield b"data: a\n\n"
            raise requests.ConnectionError("connection reset")

        response = FakeResponse(200, headers=STREAM_HEADERS, chunks=chunks())
        _, sse = make_client([response], test_settings, registry, clock)

        sse.connect("http://backend.test/stream")

        assert registry.values("timeouts") == []

    def test_stream_feedback_targets_feedback_endpoint(self, test_settings, registry, clock):
        fake, sse = make_client([stream_response(b"data: ok\n\n")], test_settings, registry, clock)

        sse.stream_feedback(42, token="t")

        assert fake.calls[0]["url"] == "http://backend.test/api/v1/feedback/stream/42"
        assert fake.calls[0]["name"] == "feedback-stream"


class TestRetryAndProbing:
    """Bounded retries and the long-running stability run."""

    def test_retry_stops_at_first_success(self, test_settings, registry, clock):
        # Arrange
        responses = [
            stream_response(status=503),
            stream_response(status=503),
            stream_response(b"data: ok\n\n"),
        ]
        fake, sse = make_client(responses, test_settings, registry, clock)

        # Act
        result = sse.connect_with_retry("http://backend.test/stream", max_retries=3, retry_delay=2)

        # Assert
        assert result.success is True
        assert len(fake.calls) == 3
        assert clock.sleeps == [2, 2]

    def test_retry_returns_last_failure_when_exhausted(self, test_settings, registry, clock):
        responses = [stream_response(status=503) for _ in range(3)]
        fake, sse = make_client(responses, test_settings, registry, clock)

        result = sse.connect_with_retry("http://backend.test/stream", max_retries=3)

        assert result.success is False
        assert len(fake.calls) == 3
        assert clock.sleeps == [1.0, 1.0]

    @pytest.mark.parametrize("max_retries", [0, -1])
    def test_retry_always_makes_one_attempt(self, test_settings, registry, clock, max_retries):
        fake, sse = make_client([stream_response(status=503)], test_settings, registry, clock)

        result = sse.connect_with_retry("http://backend.test/stream", max_retries=max_retries)

        assert result is not None
        assert result.success is False
        assert len(fake.calls) == 1
        assert clock.sleeps == []

    def test_long_running_test_counts_reconnections_and_drops(
        self, test_settings, registry, clock
    ):
        # Arrange
        responses = [stream_response(b"data: a\n\ndata: b\n\n"), stream_response(status=503)]
        fake, sse = make_client(responses, test_settings, registry, clock)

        # Act
        result = sse.long_running_test(
            "http://backend.test/stream", duration=10, check_interval=5, token="t"
        )

        # Assert
        assert len(fake.calls) == 2
        assert result.total_events == 2
        assert result.reconnections == 1
        assert result.connection_drops == 1
        assert result.errors[0]["status"] == 503
