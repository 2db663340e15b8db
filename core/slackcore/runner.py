"""Command runner for external maintenance tasks.

The runner spawns one external process per call to start(), captures its
stdout and stderr line by line and reports everything through a TaskHandle.
It knows nothing about the UI and never elevates privileges: a command that
needs rights the console does not have fails like any other command.

Each child runs in its own session so that cancellation can signal the
whole process group (slackpkg, for instance, forks wget and installpkg).
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
import signal
from asyncio.subprocess import DEVNULL, PIPE
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import psutil
import structlog

from .errors import FatalInvariantViolation, SpawnError
from .streaming import (
    DEFAULT_QUEUE_SIZE,
    Channel,
    OutputEvent,
    TaskEventQueue,
    TaskResult,
    TaskStatus,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Mapping, Sequence

    from .streaming import TaskEvent

logger = structlog.get_logger(__name__)

# Seconds between SIGTERM and SIGKILL when cancelling
DEFAULT_GRACE_SECONDS = 5.0

# Per-line read limit for the child's pipes
STREAM_LIMIT = 1024 * 1024


@dataclass(slots=True)
class TaskSpec:
    """Description of one external command invocation.

    Attributes:
        label: Human readable name shown in the UI
        command: Executable name or path
        args: Argument vector (without the executable)
        working_dir: Directory to run in, or None for the current one
        stdin_data: Bytes written to the child's stdin, which is then closed
        env: Extra environment variables layered over the console's own
    """

    label: str
    command: str
    args: list[str] = field(default_factory=list)
    working_dir: str | None = None
    stdin_data: bytes | None = None
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        """Full argument vector including the executable."""
        return [self.command, *self.args]

    def display(self) -> str:
        """Shell-like rendering of the command for confirmation prompts."""
        text = shlex.join(self.argv)
        if self.stdin_data is not None:
            text += " < (input hidden)"
        return text


class TaskHandle:
    """Handle on a started task.

    The handle owns the event channel of its task. Iterate it (or call
    events()) from exactly one consumer; the final event is always the
    TaskResult, after which iteration stops.
    """

    def __init__(
        self,
        label: str,
        process: asyncio.subprocess.Process,
        *,
        stdin_data: bytes | None = None,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.label = label
        self._process = process
        self._stdin_data = stdin_data
        self._grace_seconds = grace_seconds
        self._queue = TaskEventQueue(maxsize=queue_size)
        self._seq = 0
        self._status = TaskStatus.RUNNING
        self._result: TaskResult | None = None
        self._cancel_requested = False
        self._cancelled_after_exit = False
        self._exited = asyncio.Event()
        self._drained = asyncio.Event()
        self._killer: asyncio.Task[None] | None = None
        self._log = logger.bind(component="runner", task=label, pid=process.pid)
        self._supervisor = asyncio.get_running_loop().create_task(self._supervise())

    @property
    def pid(self) -> int:
        """Process id of the child (also its process group id)."""
        return self._process.pid

    @property
    def status(self) -> TaskStatus:
        """Current lifecycle status."""
        return self._status

    @property
    def result(self) -> TaskResult | None:
        """Terminal result, once the task has finished."""
        return self._result

    @property
    def cancel_requested(self) -> bool:
        """Whether cancel() has been called."""
        return self._cancel_requested

    def is_alive(self) -> bool:
        """Check whether any process of the task's group is still running."""
        if self._process.returncode is None:
            return True
        for proc in psutil.process_iter(["pid", "status"]):
            if proc.info["status"] == psutil.STATUS_ZOMBIE:
                continue
            with contextlib.suppress(psutil.Error, OSError):
                if os.getpgid(proc.info["pid"]) == self.pid:
                    return True
        return False

    def events(self) -> AsyncIterator[TaskEvent]:
        """Iterate over the task's events in delivery order."""
        return aiter(self._queue)

    def __aiter__(self) -> AsyncIterator[TaskEvent]:
        return self.events()

    async def wait(self) -> TaskResult:
        """Wait for the terminal result, discarding any undelivered output.

        Returns:
            The TaskResult of the task.
        """
        async for _ in self._queue:
            pass
        await self._supervisor
        if self._result is None:
            raise FatalInvariantViolation(f"Task {self.label!r} finished without a result")
        return self._result

    def cancel(self) -> None:
        """Request termination of the task.

        Sends SIGTERM to the process group and schedules SIGKILL after the
        grace period if the group still holds the output pipes. A child that
        already exited on its own keeps its real status.
        """
        if self._cancel_requested or self._drained.is_set():
            return
        self._cancel_requested = True
        self._cancelled_after_exit = self._exited.is_set()
        self._log.info("task_cancel_requested", grace_seconds=self._grace_seconds)
        self._signal_group(signal.SIGTERM)
        self._killer = asyncio.get_running_loop().create_task(self._kill_after_grace())

    def kill(self) -> None:
        """Kill the process group at once, without a grace period.

        Used when the console exits and no event loop will be left to
        escalate a SIGTERM.
        """
        if self._drained.is_set():
            return
        self._cancel_requested = True
        self._cancelled_after_exit = self._exited.is_set()
        self._log.info("task_kill_requested")
        self._signal_group(signal.SIGKILL)

    async def _kill_after_grace(self) -> None:
        try:
            await asyncio.wait_for(self._drained.wait(), timeout=self._grace_seconds)
        except TimeoutError:
            self._log.warning("task_force_killed")
            self._signal_group(signal.SIGKILL)

    def _signal_group(self, sig: signal.Signals) -> None:
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            self._log.debug("task_group_gone", signal=sig.name)
        except PermissionError as e:
            self._log.warning("task_signal_denied", signal=sig.name, error=str(e))

    async def _supervise(self) -> None:
        """Pump both pipes, wait for exit, then emit the result and close."""
        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._read_stream(self._process.stdout, Channel.STDOUT))
                tg.create_task(self._read_stream(self._process.stderr, Channel.STDERR))
                tg.create_task(self._feed_stdin())
                tg.create_task(self._wait_exit())
            result = self._build_result(self._process.returncode)
        except* Exception as eg:
            self._log.exception("task_supervision_failed", errors=str(eg.exceptions))
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()
            result = TaskResult(
                label=self.label,
                status=TaskStatus.FAILED,
                error_message=f"Supervision error: {eg.exceptions[0]}",
            )
        finally:
            self._drained.set()
            if self._killer is not None:
                self._killer.cancel()

        self._result = result
        self._status = result.status
        self._log.info("task_finished", **result.to_dict())
        await self._queue.put(result)
        await self._queue.close()

    async def _wait_exit(self) -> None:
        await self._process.wait()
        self._exited.set()

    async def _feed_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        try:
            if self._stdin_data:
                stdin.write(self._stdin_data)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            self._log.warning("stdin_write_failed", error=str(e))
        finally:
            stdin.close()

    async def _read_stream(self, stream: asyncio.StreamReader | None, channel: Channel) -> None:
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                # Line longer than STREAM_LIMIT; the reader drops it.
                self._log.warning("line_too_long", channel=channel.value)
                continue
            if not raw:
                break

            text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            # Progress meters redraw with carriage returns; keep the last frame.
            if "\r" in text:
                text = text.rsplit("\r", 1)[-1] or text.strip("\r")

            self._seq += 1
            await self._queue.put(OutputEvent(text=text, channel=channel, seq=self._seq))

    def _build_result(self, returncode: int | None) -> TaskResult:
        if self._cancel_requested and not self._cancelled_after_exit:
            return TaskResult(
                label=self.label,
                status=TaskStatus.CANCELLED,
                exit_code=returncode if returncode is not None and returncode >= 0 else None,
                signal=-returncode if returncode is not None and returncode < 0 else None,
            )
        if returncode == 0:
            return TaskResult(label=self.label, status=TaskStatus.SUCCEEDED, exit_code=0)
        if returncode is not None and returncode < 0:
            return TaskResult(label=self.label, status=TaskStatus.FAILED, signal=-returncode)
        return TaskResult(label=self.label, status=TaskStatus.FAILED, exit_code=returncode)


class CommandRunner:
    """Spawns external commands and hands back TaskHandle objects.

    The runner accepts a new start() at any time; keeping at most one task in
    flight is the session's job.

    Example:
        runner = CommandRunner(grace_seconds=5.0)
        handle = await runner.start("slackpkg", ["update"])
        async for event in handle:
            print(event)
    """

    def __init__(
        self,
        *,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            grace_seconds: Delay between SIGTERM and SIGKILL on cancel.
            queue_size: Capacity of each task's event channel.
            env: Extra environment variables for every child.
        """
        self.grace_seconds = grace_seconds
        self.queue_size = queue_size
        self._env = dict(env or {})

    async def start(
        self,
        command: str,
        args: Sequence[str] = (),
        working_dir: str | None = None,
        *,
        label: str | None = None,
        stdin_data: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> TaskHandle:
        """Start an external command.

        Args:
            command: Executable name or path.
            args: Arguments for the executable.
            working_dir: Directory to run the command in.
            label: Display name of the task (defaults to the command line).
            stdin_data: Bytes to feed on stdin; stdin is /dev/null otherwise.
            env: Extra environment variables for this child.

        Returns:
            Handle for the started task.

        Raises:
            SpawnError: If the executable or working directory is missing or
                the process cannot be created.
        """
        argv = [command, *args]
        label = label or shlex.join(argv)
        log = logger.bind(component="runner", task=label)

        if working_dir is not None and not Path(working_dir).is_dir():
            raise SpawnError(command, f"working directory {working_dir} does not exist")

        child_env = None
        if self._env or env:
            child_env = {**os.environ, **self._env, **(env or {})}

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=PIPE if stdin_data is not None else DEVNULL,
                stdout=PIPE,
                stderr=PIPE,
                cwd=working_dir,
                env=child_env,
                start_new_session=True,
                limit=STREAM_LIMIT,
            )
        except FileNotFoundError as e:
            log.warning("task_spawn_failed", reason="not_found")
            raise SpawnError(command, "command not found") from e
        except PermissionError as e:
            log.warning("task_spawn_failed", reason="permission_denied")
            raise SpawnError(command, "permission denied") from e
        except OSError as e:
            log.warning("task_spawn_failed", reason=str(e))
            raise SpawnError(command, e.strerror or str(e)) from e

        log.info("task_started", pid=process.pid, argv=argv if stdin_data is None else argv[:1])
        return TaskHandle(
            label,
            process,
            stdin_data=stdin_data,
            grace_seconds=self.grace_seconds,
            queue_size=self.queue_size,
        )

    async def start_spec(self, spec: TaskSpec) -> TaskHandle:
        """Start the command described by a TaskSpec.

        Raises:
            SpawnError: See start().
        """
        return await self.start(
            spec.command,
            spec.args,
            spec.working_dir,
            label=spec.label,
            stdin_data=spec.stdin_data,
            env=spec.env or None,
        )
