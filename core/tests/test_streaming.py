"""Tests for task events and the event channel."""

from __future__ import annotations

import asyncio

import pytest

from slackcore.streaming import (
    Channel,
    OutputEvent,
    TaskEventQueue,
    TaskResult,
    TaskStatus,
)


class TestTaskResult:
    """Tests for TaskResult."""

    def test_succeeded(self) -> None:
        """Only SUCCEEDED counts as success."""
        assert TaskResult("t", TaskStatus.SUCCEEDED, exit_code=0).succeeded
        assert not TaskResult("t", TaskStatus.FAILED, exit_code=1).succeeded
        assert not TaskResult("t", TaskStatus.CANCELLED).succeeded

    def test_describe(self) -> None:
        """Test the one-line summaries."""
        assert TaskResult("Update", TaskStatus.SUCCEEDED, exit_code=0).describe() == (
            "Update: succeeded (exit 0)"
        )
        assert TaskResult("Update", TaskStatus.FAILED, exit_code=20).describe() == (
            "Update: failed (exit 20)"
        )
        assert TaskResult("Update", TaskStatus.FAILED, signal=9).describe() == (
            "Update: failed (signal 9)"
        )
        assert TaskResult("Update", TaskStatus.CANCELLED).describe() == "Update: cancelled"

    def test_to_dict(self) -> None:
        """Signal and error only appear when set."""
        data = TaskResult("Update", TaskStatus.FAILED, exit_code=1).to_dict()
        assert data == {"type": "result", "label": "Update", "status": "failed", "exit_code": 1}

        data = TaskResult("Update", TaskStatus.FAILED, signal=15, error_message="x").to_dict()
        assert data["signal"] == 15
        assert data["error"] == "x"

    def test_terminal_statuses(self) -> None:
        """Test TaskStatus.is_terminal."""
        assert not TaskStatus.PENDING.is_terminal
        assert not TaskStatus.RUNNING.is_terminal
        assert TaskStatus.SUCCEEDED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert TaskStatus.CANCELLED.is_terminal


class TestTaskEventQueue:
    """Tests for TaskEventQueue."""

    @pytest.mark.asyncio
    async def test_iteration_stops_at_close(self) -> None:
        """Events come out in order and iteration ends after close()."""
        queue = TaskEventQueue(maxsize=10)
        await queue.put(OutputEvent("a", seq=1))
        await queue.put(OutputEvent("b", Channel.STDERR, seq=2))
        await queue.put(TaskResult("t", TaskStatus.SUCCEEDED, exit_code=0))
        await queue.close()

        events = [event async for event in queue]

        assert [type(e).__name__ for e in events] == ["OutputEvent", "OutputEvent", "TaskResult"]
        assert events[1].channel == Channel.STDERR

    @pytest.mark.asyncio
    async def test_put_after_close_is_ignored(self) -> None:
        """Events put after close() are dropped."""
        queue = TaskEventQueue()
        await queue.close()
        await queue.put(OutputEvent("late"))

        assert [event async for event in queue] == []

    @pytest.mark.asyncio
    async def test_full_queue_blocks_producer(self) -> None:
        """A full queue makes put() wait instead of dropping."""
        queue = TaskEventQueue(maxsize=1)
        await queue.put(OutputEvent("first", seq=1))

        producer = asyncio.create_task(queue.put(OutputEvent("second", seq=2)))
        await asyncio.sleep(0.01)
        assert not producer.done()

        first = await queue.get()
        await asyncio.wait_for(producer, timeout=1)
        second = await queue.get()

        assert isinstance(first, OutputEvent) and first.text == "first"
        assert isinstance(second, OutputEvent) and second.text == "second"
