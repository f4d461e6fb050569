"""Change source — one listener task per upstream stream.

Learn: Each stream runs as its own asyncio task with its own reconnect
loop, so a broken stream only ever stalls itself:

    subscribe → for each change: normalize → handler(event) → next change
        ↑                                                        │
        └──── backoff min(initial·2ⁿ⁻¹, max) ◄── StreamError ────┘

The handler (route + dispatch) is awaited before the next change is taken,
which is what keeps delivery in upstream order within a stream. Nothing
orders events across streams.

A handler that fails on one event is logged and skipped; it never tears
down the stream. The loop ends only when the task is cancelled.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Iterable, Optional

import structlog

from firerelay.errors import StreamError
from firerelay.events import ChangeEvent, normalize
from firerelay.upstream.base import DEFAULT_STREAMS, StreamSpec, Upstream

logger = structlog.get_logger()

EventHandler = Callable[[ChangeEvent], Awaitable[object]]


class StreamState(str, Enum):
    STARTING = "starting"
    LISTENING = "listening"
    BACKOFF = "backoff"
    STOPPED = "stopped"


@dataclass
class StreamStatus:
    """Runtime state of one stream, for monitoring."""

    state: StreamState = StreamState.STARTING
    failures: int = 0  # consecutive, reset by a batch after the initial snapshot
    events: int = 0
    handler_errors: int = 0
    last_error: Optional[str] = None
    retry_in: Optional[float] = None

    def as_dict(self) -> dict:
        return {
            "state": self.state.value,
            "failures": self.failures,
            "events": self.events,
            "handler_errors": self.handler_errors,
            "last_error": self.last_error,
            "retry_in": self.retry_in,
        }


def backoff_delay(attempt: int, initial: float, maximum: float) -> float:
    """Delay before reconnect attempt `attempt` (1-based)."""
    return min(initial * (2 ** (attempt - 1)), maximum)


class ChangeSource:
    """Subscribes to every configured stream and feeds events to a handler.

    Usage:
        source = ChangeSource(upstream, dispatcher.publish)
        source.start()
        ...
        await source.stop()
    """

    def __init__(
        self,
        upstream: Upstream,
        handler: EventHandler,
        streams: Iterable[StreamSpec] = DEFAULT_STREAMS,
        backoff_initial: float = 1.0,
        backoff_max: float = 60.0,
        emit_initial_snapshot: bool = True,
    ):
        self.upstream = upstream
        self.handler = handler
        self.streams = tuple(streams)
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.emit_initial_snapshot = emit_initial_snapshot
        self.status: dict[str, StreamStatus] = {s.name: StreamStatus() for s in self.streams}
        self._tasks: dict[str, asyncio.Task] = {}

    def start(self) -> None:
        """Spawn one listener task per stream."""
        for stream in self.streams:
            if stream.name in self._tasks and not self._tasks[stream.name].done():
                continue
            self._tasks[stream.name] = asyncio.create_task(
                self._run_stream(stream), name=f"stream:{stream.name}"
            )
        logger.info("source.started", upstream=self.upstream.name, streams=len(self.streams))

    async def stop(self) -> None:
        """Cancel every listener task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for status in self.status.values():
            status.state = StreamState.STOPPED
        logger.info("source.stopped")

    def get_status(self) -> dict[str, dict]:
        return {name: status.as_dict() for name, status in self.status.items()}

    @property
    def degraded(self) -> bool:
        return any(s.state is StreamState.BACKOFF for s in self.status.values())

    # ─── Stream loop ─────────────────────────────────────

    async def _run_stream(self, stream: StreamSpec) -> None:
        status = self.status[stream.name]
        log = logger.bind(stream=stream.name)

        while True:
            status.state = StreamState.STARTING
            try:
                await self._consume(stream, status)
                # A watch that ends without error is treated as a dropped stream.
                raise StreamError(stream.name, "stream ended")
            except StreamError as e:
                error = e.reason
            except asyncio.CancelledError:
                status.state = StreamState.STOPPED
                raise
            except Exception as e:
                error = f"{type(e).__name__}: {e}"

            status.failures += 1
            status.last_error = error
            delay = backoff_delay(status.failures, self.backoff_initial, self.backoff_max)
            status.state = StreamState.BACKOFF
            status.retry_in = delay
            log.warning(
                "stream.backoff",
                error=error,
                attempt=status.failures,
                retry_in=delay,
            )
            await asyncio.sleep(delay)

    async def _consume(self, stream: StreamSpec, status: StreamStatus) -> None:
        first_batch = True
        async for batch in self.upstream.watch(stream):
            if status.state is not StreamState.LISTENING:
                status.state = StreamState.LISTENING
                status.retry_in = None
                logger.info("stream.listening", stream=stream.name, after_failures=status.failures)
            if first_batch:
                first_batch = False
                if not self.emit_initial_snapshot:
                    continue
            else:
                # The initial snapshot alone does not reset the failure count.
                status.failures = 0

            for raw in batch:
                await self._handle(stream, status, raw)

    async def _handle(self, stream: StreamSpec, status: StreamStatus, raw) -> None:
        """Normalize and hand off one change. Failures stay with this event."""
        try:
            event = normalize(stream.entity_type, raw)
            await self.handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            status.handler_errors += 1
            logger.exception(
                "stream.event_failed",
                stream=stream.name,
                entity_id=getattr(raw, "entity_id", None),
            )
            return
        status.events += 1
