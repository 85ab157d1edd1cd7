"""
Server-Sent Events client for streaming endpoints.

Locust's HTTP client has no notion of SSE, so streaming responses are
requested with ``stream=True`` and their body is fed chunk by chunk into
:class:`SSEParser`, an incremental state machine that knows nothing
about HTTP.  The parser can therefore be tested with literal byte
strings, independent of any network mocking.

Wire format (one frame)::

    event: feedback
    id: 7
    data: first line
    data: second line
    <blank line>

Key Concepts Demonstrated:
- Incremental parsing across arbitrary chunk boundaries
- Lenient trailing-frame policy (a stream that ends without a final
  blank line still yields its last frame)
- Connection, first-event and total-stream timings recorded as metrics
- Bounded retry and long-running stability probing
"""

from __future__ import annotations

import codecs
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import requests
import urllib3

from performance.config import Settings, settings as default_settings
from performance.endpoints import Endpoints
from performance.lib.checks import check
from performance.lib.metrics import REGISTRY, MetricsRegistry

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"


@dataclass(frozen=True)
class SSEFrame:
    """One dispatched event.  ``data`` is the newline-join of its ``data:`` lines."""

    event: str | None
    id: str | None
    data: str


class SSEParser:
    """
    Incremental SSE frame parser.

    Feed it bytes or text as they arrive; it buffers partial lines and
    returns every frame completed by the chunk.  Lines may end in
    ``\\n`` or ``\\r\\n``.  Comment lines (``:`` prefix) and unknown
    fields are ignored; field values are whitespace-trimmed.

    A blank line dispatches the working frame only if at least one
    ``data:`` line was seen; otherwise ``event``/``id`` keep
    accumulating into the next frame.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._reset()

    def _reset(self) -> None:
        self._event: str | None = None
        self._id: str | None = None
        self._data: list[str] = []

    def feed(self, chunk: bytes | str) -> list[SSEFrame]:
        """Consume ``chunk`` and return the frames it completed, in order."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        *lines, self._buffer = self._buffer.split("\n")
        frames = []
        for line in lines:
            frame = self._process_line(line.rstrip("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> SSEFrame | None:
        """
        Finish the stream and return the pending frame, if it has data.

        A final line without a newline is processed first, so a body
        ending in ``data: x`` still yields a frame carrying ``x``.
        """
        remainder = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if remainder:
            frame = self._process_line(remainder.rstrip("\r"))
            if frame is not None:
                return frame
        return self._dispatch()

    def _dispatch(self) -> SSEFrame | None:
        if not self._data:
            return None
        frame = SSEFrame(event=self._event, id=self._id, data="\n".join(self._data))
        self._reset()
        return frame

    def _process_line(self, line: str) -> SSEFrame | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        value = value.strip()
        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        elif name == "id":
            self._id = value
        return None


def parse_sse_events(body: bytes | str | None) -> list[SSEFrame]:
    """Parse a complete SSE body into frames, keeping an unterminated last frame."""
    if not body:
        return []
    parser = SSEParser()
    frames = parser.feed(body)
    trailing = parser.close()
    if trailing is not None:
        frames.append(trailing)
    return frames


@dataclass
class SSEResult:
    """
    Outcome of one streaming request.

    Durations are in milliseconds.  ``first_event_time`` is ``None``
    when no frame arrived; ``error`` is set when the transport failed
    mid-stream (``events`` then holds what was parsed before the drop).
    """

    success: bool
    events: list[SSEFrame]
    connection_time: float
    response: Any
    first_event_time: float | None = None
    total_time: float | None = None
    bytes_received: int = 0
    error: str | None = None


@dataclass
class LongRunningResult:
    """Tally of a long-running stability run."""

    total_events: int = 0
    reconnections: int = 0
    connection_drops: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)


class SSEClient:
    """
    Streaming GET plus SSE metrics for one virtual user.

    Args:
        client: The user's Locust ``HttpSession``.
        config: Harness settings; defaults to the process settings.
        registry: Metrics registry receiving SSE samples.
        clock: Monotonic time source in seconds, replaceable in tests.
        sleep: Pause function used between retries and reconnections.
    """

    def __init__(
        self,
        client: Any,
        config: Settings | None = None,
        *,
        registry: MetricsRegistry = REGISTRY,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.settings = config or default_settings
        self.endpoints = Endpoints(self.settings.services)
        self.registry = registry
        self.clock = clock
        self.sleep = sleep

        self.connection_time = registry.trend("sse_connection_time")
        self.first_event_time = registry.trend("sse_first_event_time")
        self.total_stream_time = registry.trend("sse_total_stream_time")
        self.events_received = registry.counter("sse_events_received")
        self.bytes_received = registry.counter("sse_bytes_received")
        self.stream_errors = registry.counter("sse_stream_errors")

    def _elapsed_ms(self, started: float) -> float:
        return (self.clock() - started) * 1000

    def connect(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout: float | None = None,
        name: str = "sse-stream",
        tags: Mapping[str, str] | None = None,
    ) -> SSEResult:
        """
        Open one stream, read it to the end and parse its frames.

        A non-200 status, or a ``Content-Type`` that is not
        ``text/event-stream``, is a validation failure: the result has
        ``success=False`` and no events.  A valid stream with zero bytes
        is a success with zero events.

        Args:
            url: Absolute stream URL.
            token: Bearer token, if the endpoint needs one.
            timeout: Seconds; defaults to the ``sse`` timeout class.
            name: Request name for statistics and metric tags.
            tags: Extra metric tags.
        """
        timeout = self.settings.timeouts.sse if timeout is None else timeout
        metric_tags = {"name": name, **(tags or {})}
        headers = {"Accept": EVENT_STREAM}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        started = self.clock()
        with self.client.get(
            url,
            headers=headers,
            stream=True,
            timeout=timeout,
            name=name,
            catch_response=True,
        ) as response:
            connection_time = self._elapsed_ms(started)
            self.connection_time.add(connection_time, metric_tags)

            valid = check(
                response,
                {
                    "SSE connection successful": lambda r: r.status_code == 200,
                    "Content-Type is event-stream": lambda r: EVENT_STREAM
                    in (r.headers.get("Content-Type") or ""),
                },
                tags=metric_tags,
                registry=self.registry,
            )
            if not valid:
                return SSEResult(
                    success=False, events=[], connection_time=connection_time, response=response
                )

            result = self._consume(response, started, connection_time, metric_tags)
            if result.error is not None:
                response.failure(f"SSE stream interrupted: {result.error}")
        return result

    def _consume(
        self,
        response: Any,
        started: float,
        connection_time: float,
        tags: Mapping[str, str],
    ) -> SSEResult:
        parser = SSEParser()
        events: list[SSEFrame] = []
        first_event_time = None
        received = 0
        error = None

        try:
            for chunk in _chunks(response):
                received += len(chunk)
                frames = parser.feed(chunk)
                if frames and first_event_time is None:
                    first_event_time = self._elapsed_ms(started)
                events.extend(frames)
        except requests.RequestException as exc:
            error = str(exc) or exc.__class__.__name__
            self.stream_errors.add(1, tags)
            if _is_read_timeout(exc):
                self.registry.add("timeouts", 1, tags)
            logger.warning("SSE stream %s dropped after %d events: %s", tags["name"], len(events), error)

        trailing = parser.close()
        if trailing is not None:
            events.append(trailing)
            if first_event_time is None:
                first_event_time = self._elapsed_ms(started)

        total_time = self._elapsed_ms(started)
        self.events_received.add(len(events), tags)
        self.bytes_received.add(received, tags)
        self.total_stream_time.add(total_time, tags)
        if first_event_time is not None:
            self.first_event_time.add(first_event_time, tags)

        return SSEResult(
            success=error is None,
            events=events,
            connection_time=connection_time,
            response=response,
            first_event_time=first_event_time,
            total_time=total_time,
            bytes_received=received,
            error=error,
        )

    def connect_with_retry(
        self,
        url: str,
        *,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        **kwargs: Any,
    ) -> SSEResult:
        """
        Call :meth:`connect` until it succeeds or ``max_retries`` attempts ran
        (always at least one).

        Exhausting the attempts is not an error: the last result is
        returned and the caller inspects ``success``.
        """
        attempts = max(1, max_retries)
        result = None
        for attempt in range(1, attempts + 1):
            result = self.connect(url, **kwargs)
            if result.success:
                return result
            logger.debug("SSE attempt %d/%d to %s failed", attempt, attempts, url)
            if attempt < attempts:
                self.sleep(retry_delay)
        return result

    def long_running_test(
        self,
        url: str,
        *,
        duration: float = 60.0,
        check_interval: float = 5.0,
        token: str | None = None,
        name: str = "sse-long-running",
    ) -> LongRunningResult:
        """
        Repeatedly open short streams for ``duration`` seconds.

        Every connection after the first counts as a reconnection; each
        failed one counts as a drop and is logged into ``errors`` with
        its status.
        """
        result = LongRunningResult()
        started = self.clock()
        attempts = 0

        while self.clock() - started < duration:
            outcome = self.connect(url, token=token, timeout=check_interval + 5, name=name)
            if attempts:
                result.reconnections += 1
            attempts += 1

            if outcome.success:
                result.total_events += len(outcome.events)
            else:
                result.connection_drops += 1
                status = getattr(outcome.response, "status_code", None)
                result.errors.append(
                    {"timestamp": time.time(), "status": status or "unknown", "error": outcome.error}
                )
            self.sleep(check_interval)

        return result

    def stream_feedback(self, answer_id: int | str, token: str | None = None, **kwargs: Any) -> SSEResult:
        """Stream AI feedback for ``answer_id`` from the feedback service."""
        kwargs.setdefault("name", "feedback-stream")
        return self.connect(self.endpoints.feedback_stream(answer_id), token=token, **kwargs)


def _chunks(response: Any) -> Iterable[bytes | str]:
    for chunk in response.iter_content(chunk_size=None):
        if chunk:
            yield chunk


def _is_read_timeout(exc: requests.RequestException) -> bool:
    # requests re-raises a mid-body urllib3 read timeout as ConnectionError
    cause = exc.args[0] if exc.args else None
    return isinstance(exc, requests.Timeout) or isinstance(cause, urllib3.exceptions.ReadTimeoutError)
