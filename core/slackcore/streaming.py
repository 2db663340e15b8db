"""Task event types and the ordered event channel.

A running task reports through a single channel: zero or more OutputEvent
records followed by exactly one TaskResult. The channel is bounded; producers
wait for room instead of dropping events, which pushes back on the child's
pipes when the consumer falls behind.

Event Types:
    - OutputEvent: One captured line tagged with its channel
    - TaskResult: Terminal status of the task (always the last event)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)

# Queue size for bounded event channels
DEFAULT_QUEUE_SIZE = 1000


class Channel(str, Enum):
    """Source stream of an output line."""

    STDOUT = "stdout"
    STDERR = "stderr"
    # Lines written by the console itself (headers, results, warnings)
    CONSOLE = "console"


class TaskStatus(str, Enum):
    """Lifecycle status of a task."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether the status is final."""
        return self in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass(slots=True)
class OutputEvent:
    """One line of output captured from a task.

    Attributes:
        text: The line without its trailing newline
        channel: Which stream the line came from
        seq: Sequence number within the task, increasing across both channels
    """

    text: str
    channel: Channel = Channel.STDOUT
    seq: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "type": "output",
            "channel": self.channel.value,
            "seq": self.seq,
            "text": self.text,
        }


@dataclass(slots=True)
class TaskResult:
    """Terminal event of a task.

    Attributes:
        label: Human readable name of the task
        status: SUCCEEDED, FAILED or CANCELLED
        exit_code: Process exit status, None when killed by a signal or never started
        signal: Signal number that terminated the process, if any
        error_message: Extra detail for failures that have no exit status
    """

    label: str
    status: TaskStatus
    exit_code: int | None = None
    signal: int | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def succeeded(self) -> bool:
        """Whether the task completed with exit status 0."""
        return self.status == TaskStatus.SUCCEEDED

    def describe(self) -> str:
        """One-line summary of the outcome."""
        if self.status == TaskStatus.SUCCEEDED:
            return f"{self.label}: succeeded (exit {self.exit_code})"
        if self.status == TaskStatus.CANCELLED:
            return f"{self.label}: cancelled"
        if self.error_message:
            return f"{self.label}: failed - {self.error_message}"
        if self.signal is not None:
            return f"{self.label}: failed (signal {self.signal})"
        return f"{self.label}: failed (exit {self.exit_code})"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        d: dict[str, Any] = {
            "type": "result",
            "label": self.label,
            "status": self.status.value,
            "exit_code": self.exit_code,
        }
        if self.signal is not None:
            d["signal"] = self.signal
        if self.error_message:
            d["error"] = self.error_message
        return d


TaskEvent = OutputEvent | TaskResult


class TaskEventQueue:
    """Bounded async channel of task events with a close sentinel.

    Attributes:
        maxsize: Maximum number of buffered events
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        """Initialize the event queue.

        Args:
            maxsize: Maximum queue size (default: 1000)
        """
        self._queue: asyncio.Queue[TaskEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._maxsize = maxsize
        self._closed = False
        self._log = logger.bind(component="task_event_queue")

    @property
    def maxsize(self) -> int:
        """Maximum queue size."""
        return self._maxsize

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def qsize(self) -> int:
        """Return the current queue size."""
        return self._queue.qsize()

    async def put(self, event: TaskEvent) -> None:
        """Put an event into the queue, waiting while it is full.

        Args:
            event: The event to add
        """
        if self._closed:
            self._log.warning("event_after_close", event=event.to_dict())
            return
        if self._queue.full():
            self._log.debug("event_queue_full", queue_size=self._maxsize)
        await self._queue.put(event)

    async def get(self) -> TaskEvent | None:
        """Get an event from the queue.

        Returns:
            The next event, or None once the queue is closed and drained
        """
        return await self._queue.get()

    async def close(self) -> None:
        """Signal that no more events will be added."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    def __aiter__(self) -> AsyncIterator[TaskEvent]:
        """Iterate over events in the queue."""
        return self

    async def __anext__(self) -> TaskEvent:
        """Get the next event from the queue."""
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event
