"""Tests for the session state machine.

Plans run real /bin/sh commands so that the whole path from selection to
TaskFinished goes through the command runner.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any

import pytest

from slackcore.errors import FatalInvariantViolation, NotFound
from slackcore.forms import Form, FormField
from slackcore.list_model import ListEntry, ListModel
from slackcore.output_buffer import OutputBuffer
from slackcore.plans import ActionSpec, Completion, FileEdit, Tab, TaskPlan
from slackcore.runner import CommandRunner, TaskSpec
from slackcore.session import (
    BUSY_NOTICE,
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    Session,
    TaskFinished,
    TaskRunning,
)
from slackcore.streaming import Channel, TaskStatus
from slackcore.transaction import ConfigFileTransaction

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from slackcore.output_buffer import OutputLine
    from slackcore.plans import ActionRequest
    from slackcore.session import SessionState
    from slackcore.streaming import TaskResult


def shell_plan(label: str, script: str, **kwargs: Any) -> TaskPlan:
    return TaskPlan(label, [TaskSpec(label, "sh", ["-c", script])], **kwargs)


def greet_form() -> Form:
    return Form("Greet", [FormField("name", "Name", required=True)])


def greet_plan(request: ActionRequest) -> TaskPlan:
    assert request.form is not None
    name = request.form.values()["name"]
    return shell_plan("Greet", f"echo hello {name}", on_decline=lambda: "Nothing changed")


def chained_plan(_request: ActionRequest) -> TaskPlan:
    def on_complete(result: TaskResult, lines: Sequence[OutputLine]) -> Completion:
        assert result.succeeded
        return Completion(
            follow_up=shell_plan("Second", "echo second"),
            notice=f"First printed {lines[-1].text}",
        )

    return shell_plan("First", "echo first", on_complete=on_complete)


def mirror_plan(request: ActionRequest, path: Path) -> TaskPlan:
    assert request.entry is not None
    url = request.entry.url or ""
    return TaskPlan(
        f"Use {request.entry.name}",
        [FileEdit("Activate mirror", path, lambda text: text.replace(f"# {url}", url))],
    )


MIRROR_TEXT = "# http://a.example/slackware64-15.0/\n# http://b.example/slackware64-15.0/\n"


@pytest.fixture
def mirrors_file(tmp_path: Path) -> Path:
    path = tmp_path / "mirrors"
    path.write_text(MIRROR_TEXT)
    return path


@pytest.fixture
def make_session(mirrors_file: Path) -> Callable[..., Session]:
    def factory(**kwargs: Any) -> Session:
        catalogue = {
            Tab.SYSTEM_UPDATE: [
                ActionSpec("hello", "Hello", lambda _r: shell_plan("Say hello", "echo hello")),
                ActionSpec(
                    "fail", "Fail", lambda _r: shell_plan("Break", "echo oops >&2; exit 3")
                ),
                ActionSpec(
                    "slow", "Slow", lambda _r: shell_plan("Wait", "echo started; sleep 30")
                ),
                ActionSpec(
                    "missing",
                    "Missing",
                    lambda _r: TaskPlan("Ghost", [TaskSpec("Ghost", "no-such-command-xyz")]),
                ),
                ActionSpec("chain", "Chain", chained_plan),
                ActionSpec(
                    "two_steps",
                    "Two steps",
                    lambda _r: TaskPlan(
                        "Both",
                        [
                            TaskSpec("Fails", "sh", ["-c", "exit 1"]),
                            TaskSpec("Never", "sh", ["-c", "echo never"]),
                        ],
                    ),
                ),
            ],
            Tab.USER_SETUP: [ActionSpec("greet", "Greet", greet_plan, form_factory=greet_form)],
            Tab.MIRRORS: [
                ActionSpec(
                    "use_mirror",
                    "Use mirror",
                    lambda r: mirror_plan(r, mirrors_file),
                    needs_entry=True,
                )
            ],
        }
        model = ListModel(platform_version="15.0")
        model.load(
            [
                ListEntry("a.example", "15.0", url="http://a.example/slackware64-15.0/"),
                ListEntry("b.example", "15.0", url="http://b.example/slackware64-15.0/", rank=1),
            ]
        )
        return Session(
            runner=CommandRunner(grace_seconds=1.0),
            output=OutputBuffer(capacity=200),
            transaction=ConfigFileTransaction(),
            catalogue=catalogue,
            lists={Tab.MIRRORS: model},
            **kwargs,
        )

    return factory


async def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


class TestNavigation:
    """Tests for tab switching and browsing."""

    def test_initial_state(self, make_session: Callable[..., Session]) -> None:
        """Test that a new session browses the first tab."""
        session = make_session(notice="Unknown release")

        assert session.state == Browsing(Tab.SYSTEM_UPDATE, notice="Unknown release")
        assert not session.busy

    def test_switch_and_wrap(self, make_session: Callable[..., Session]) -> None:
        """Test tab switching, including wrap-around."""
        session = make_session()

        assert session.switch_tab(Tab.MIRRORS) == Browsing(Tab.MIRRORS)
        assert session.next_tab().tab == Tab.PACKAGES
        session.switch_tab(Tab.SYSTEM_UPDATE)
        assert session.previous_tab().tab == Tab.CONFIG

    def test_listeners_see_every_transition(self, make_session: Callable[..., Session]) -> None:
        """Test that subscribers are called with each new state."""
        session = make_session()
        seen: list[SessionState] = []
        session.subscribe(seen.append)

        session.switch_tab(Tab.SBOTOOLS)
        session.switch_tab(Tab.USER_SETUP)

        assert [s.tab for s in seen] == [Tab.SBOTOOLS, Tab.USER_SETUP]

    def test_dismiss_outside_finished_is_fatal(
        self, make_session: Callable[..., Session]
    ) -> None:
        """Test that dismissing a pending plan is a programming error."""
        session = make_session()
        session.select_action("hello")

        with pytest.raises(FatalInvariantViolation):
            session.dismiss()

    def test_unknown_action_is_fatal(self, make_session: Callable[..., Session]) -> None:
        session = make_session()

        with pytest.raises(FatalInvariantViolation, match="Unknown action"):
            session.select_action("greet")

    def test_tab_without_list(self, make_session: Callable[..., Session]) -> None:
        session = make_session()

        with pytest.raises(FatalInvariantViolation):
            session.list_model(Tab.USER_SETUP)


class TestRunningPlans:
    """Tests for confirming and running plans."""

    @pytest.mark.asyncio
    async def test_successful_plan(self, make_session: Callable[..., Session]) -> None:
        """Test Browsing -> Confirming -> TaskRunning -> TaskFinished."""
        session = make_session()
        seen: list[SessionState] = []
        session.subscribe(seen.append)

        state = session.select_action("hello")
        assert isinstance(state, Confirming)
        assert state.plan.describe() == ["1. sh -c 'echo hello'"]

        state = await session.accept()

        assert isinstance(state, TaskFinished)
        assert state.result.status == TaskStatus.SUCCEEDED
        assert state.result.exit_code == 0
        assert state.notice is None
        assert any(isinstance(s, TaskRunning) and s.handle is not None for s in seen)
        stdout = [line.text for line in session.output if line.channel == Channel.STDOUT]
        assert stdout == ["hello"]

    @pytest.mark.asyncio
    async def test_output_order(self, make_session: Callable[..., Session]) -> None:
        """Test that headers frame the task output in the buffer."""
        session = make_session()
        session.select_action("hello")

        await session.accept()

        assert [line.text for line in session.output] == [
            "==> Say hello",
            "--> sh -c 'echo hello'",
            "hello",
            "==> Say hello: succeeded (exit 0)",
        ]

    @pytest.mark.asyncio
    async def test_new_plan_replaces_output(self, make_session: Callable[..., Session]) -> None:
        """Test that starting a plan discards the previous plan's output."""
        session = make_session()
        session.select_action("chain")
        state = await session.accept()
        assert isinstance(state, Confirming)
        assert "first" in [line.text for line in session.output]

        await session.accept()

        assert [line.text for line in session.output] == [
            "==> Second",
            "--> sh -c 'echo second'",
            "second",
            "==> Second: succeeded (exit 0)",
        ]

    @pytest.mark.asyncio
    async def test_shutdown_kills_running_task(
        self, make_session: Callable[..., Session]
    ) -> None:
        """Test that shutdown kills the running task at once."""
        session = make_session()
        session.select_action("slow")
        accepting = asyncio.ensure_future(session.accept())
        await wait_for(lambda: "started" in session.output.text())
        state = session.state
        assert isinstance(state, TaskRunning)
        assert state.handle is not None

        session.shutdown()
        result_state = await asyncio.wait_for(accepting, timeout=5)

        assert isinstance(result_state, TaskFinished)
        assert result_state.result.status == TaskStatus.CANCELLED
        assert not state.handle.is_alive()

    @pytest.mark.asyncio
    async def test_plan_emptied_after_confirmation_is_fatal(
        self, make_session: Callable[..., Session]
    ) -> None:
        session = make_session()
        state = session.select_action("hello")
        assert isinstance(state, Confirming)
        state.plan.steps.clear()

        with pytest.raises(FatalInvariantViolation, match="has no steps"):
            await session.accept()

    @pytest.mark.asyncio
    async def test_failed_plan(self, make_session: Callable[..., Session]) -> None:
        """Test that a non-zero exit yields a failed result and a notice."""
        session = make_session()
        session.select_action("fail")
        events = []

        state = await session.accept(events.append)

        assert isinstance(state, TaskFinished)
        assert state.result.status == TaskStatus.FAILED
        assert state.result.exit_code == 3
        assert state.notice == "Break exited with status 3"
        assert [(line.channel, line.text) for line in session.output][2] == (
            Channel.STDERR,
            "oops",
        )
        assert events[-1] is state.result

    @pytest.mark.asyncio
    async def test_stops_at_first_failed_step(
        self, make_session: Callable[..., Session]
    ) -> None:
        session = make_session()
        session.select_action("two_steps")

        state = await session.accept()

        assert isinstance(state, TaskFinished)
        assert state.result.label == "Fails"
        assert "never" not in session.output.text()

    @pytest.mark.asyncio
    async def test_spawn_failure(self, make_session: Callable[..., Session]) -> None:
        """Test that a missing command finishes with a notice instead of crashing."""
        session = make_session()
        session.select_action("missing")

        state = await session.accept()

        assert isinstance(state, TaskFinished)
        assert state.result.status == TaskStatus.FAILED
        assert state.notice is not None
        assert "command not found" in state.notice

    @pytest.mark.asyncio
    async def test_follow_up_plan(self, make_session: Callable[..., Session]) -> None:
        """Test that on_complete can offer a second plan for confirmation."""
        session = make_session()
        session.select_action("chain")

        state = await session.accept()

        assert isinstance(state, Confirming)
        assert state.plan.label == "Second"
        assert state.notice == "First printed first"

        state = await session.accept()
        assert isinstance(state, TaskFinished)
        assert state.result.label == "Second"

    @pytest.mark.asyncio
    async def test_dismiss_finished(self, make_session: Callable[..., Session]) -> None:
        session = make_session()
        session.select_action("hello")
        await session.accept()

        assert session.dismiss() == Browsing(Tab.SYSTEM_UPDATE)


class TestBusySession:
    """Tests for the single-running-task rule."""

    @pytest.mark.asyncio
    async def test_busy_refusals_and_cancel(self, make_session: Callable[..., Session]) -> None:
        """Test that a running task blocks other intents until cancelled."""
        session = make_session()
        session.select_action("slow")
        task = asyncio.create_task(session.accept())

        await wait_for(lambda: "started" in session.output.text())
        assert session.busy
        running = session.state
        assert isinstance(running, TaskRunning)
        assert running.handle is not None

        state = session.switch_tab(Tab.MIRRORS)
        assert state.tab == Tab.SYSTEM_UPDATE
        assert state.notice == BUSY_NOTICE
        assert session.request_quit() is False
        with pytest.raises(FatalInvariantViolation):
            session.select_action("hello")
        with pytest.raises(FatalInvariantViolation):
            await session.accept()

        state = session.cancel()
        assert isinstance(state, TaskRunning)
        assert state.notice == "Cancelling..."
        assert session.cancel() is state

        final = await asyncio.wait_for(task, timeout=10)
        assert isinstance(final, TaskFinished)
        assert final.result.status == TaskStatus.CANCELLED
        assert final.notice == "Wait was cancelled"
        assert not running.handle.is_alive()

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(
        self, make_session: Callable[..., Session]
    ) -> None:
        session = make_session()
        session.select_action("hello")
        finished = await session.accept()

        assert session.cancel() is finished

    def test_busy_while_confirming(self, make_session: Callable[..., Session]) -> None:
        """Test that a pending confirmation also blocks tab switching."""
        session = make_session()
        session.select_action("hello")

        state = session.switch_tab(Tab.CONFIG)

        assert isinstance(state, Confirming)
        assert state.notice == BUSY_NOTICE


class TestForms:
    """Tests for form entry, decline and amend."""

    def test_invalid_form_stays(self, make_session: Callable[..., Session]) -> None:
        session = make_session()
        session.switch_tab(Tab.USER_SETUP)

        state = session.select_action("greet")
        assert isinstance(state, FormEntry)

        state = session.submit_form()
        assert isinstance(state, FormEntry)
        assert state.notice == "Name cannot be empty"
        assert state.form.get("name").error == "Name cannot be empty"

    def test_decline_and_amend(self, make_session: Callable[..., Session]) -> None:
        """Test that amending returns to the same form with its values."""
        session = make_session()
        session.switch_tab(Tab.USER_SETUP)
        form_state = session.select_action("greet")
        assert isinstance(form_state, FormEntry)
        form_state.form.set("name", "alice")

        state = session.submit_form()
        assert isinstance(state, Confirming)
        assert state.plan.describe() == ["1. sh -c 'echo hello alice'"]

        state = session.decline(amend=True)
        assert isinstance(state, FormEntry)
        assert state.form is form_state.form
        assert state.notice == "Nothing changed"

        session.submit_form()
        assert session.decline() == Browsing(Tab.USER_SETUP, notice="Nothing changed")

    def test_cancel_form(self, make_session: Callable[..., Session]) -> None:
        session = make_session()
        session.switch_tab(Tab.USER_SETUP)
        session.select_action("greet")

        assert session.cancel_form() == Browsing(Tab.USER_SETUP)


class TestListActions:
    """Tests for actions working on the selected list entry."""

    def test_entry_required(self, make_session: Callable[..., Session]) -> None:
        session = make_session()
        session.switch_tab(Tab.MIRRORS)

        assert session.select_action("use_mirror").notice == "Select an entry first"
        assert session.select_action("use_mirror", 5).notice == (
            "Selection 6 is out of range (1-2)"
        )
        assert isinstance(session.state, Browsing)

    def test_empty_projection(self, make_session: Callable[..., Session]) -> None:
        session = make_session()
        session.switch_tab(Tab.MIRRORS)
        session.set_filter("nothing-matches")

        state = session.select_action("use_mirror", 0)

        assert state.notice == "Nothing to select: the list is empty"

    @pytest.mark.asyncio
    async def test_file_edit_step(
        self, make_session: Callable[..., Session], mirrors_file: Path
    ) -> None:
        """Test that a FileEdit step rewrites the file through the transaction."""
        session = make_session()
        session.switch_tab(Tab.MIRRORS)
        session.set_filter("b.example")

        state = session.select_action("use_mirror", 0)
        assert isinstance(state, Confirming)
        assert state.plan.describe() == [f"1. edit {mirrors_file}"]

        state = await session.accept()

        assert isinstance(state, TaskFinished)
        assert state.result.succeeded
        assert mirrors_file.read_text().splitlines()[1] == "http://b.example/slackware64-15.0/"
        assert f"Updated {mirrors_file}" in session.output.text()

    @pytest.mark.asyncio
    async def test_file_edit_on_missing_file(
        self, make_session: Callable[..., Session], mirrors_file: Path
    ) -> None:
        session = make_session()
        session.switch_tab(Tab.MIRRORS)
        mirrors_file.unlink()
        session.select_action("use_mirror", 0)

        state = await session.accept()

        assert isinstance(state, TaskFinished)
        assert state.result.status == TaskStatus.FAILED
        assert state.notice is not None
        assert str(mirrors_file) in state.notice

    def test_reload_list(self, make_session: Callable[..., Session]) -> None:
        sources = {Tab.MIRRORS: lambda: [ListEntry("c.example", "15.0")]}
        session = make_session(list_sources=sources)

        session.reload_list(Tab.MIRRORS)

        assert [e.name for e in session.list_model(Tab.MIRRORS).visible] == ["c.example"]

    def test_reload_failure_becomes_notice(self, make_session: Callable[..., Session]) -> None:
        def broken() -> list[ListEntry]:
            raise NotFound("/etc/slackpkg/mirrors not found. Is slackpkg installed?")

        session = make_session(list_sources={Tab.MIRRORS: broken})
        session.switch_tab(Tab.MIRRORS)

        state = session.reload_list()

        assert state.notice == "/etc/slackpkg/mirrors not found. Is slackpkg installed?"
        assert len(session.list_model()) == 2


class TestEditor:
    """Tests for editing configuration files."""

    def test_save(self, make_session: Callable[..., Session], tmp_path: Path) -> None:
        path = tmp_path / "slackpkg.conf"
        path.write_text("BATCH=off\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)

        state = session.open_editor(path)
        assert isinstance(state, Editing)
        session.update_editor("BATCH=on\n")
        state = session.save_editor()

        assert isinstance(state, Editing)
        assert state.notice == f"Saved {path}"
        assert not state.document.dirty
        assert path.read_text() == "BATCH=on\n"

    def test_open_missing(self, make_session: Callable[..., Session], tmp_path: Path) -> None:
        session = make_session()
        session.switch_tab(Tab.CONFIG)

        state = session.open_editor(tmp_path / "absent.conf")

        assert isinstance(state, Browsing)
        assert state.notice is not None

    def test_open_non_utf8_refused(
        self, make_session: Callable[..., Session], tmp_path: Path
    ) -> None:
        """Test that a file with undecodable bytes is not opened in the editor."""
        path = tmp_path / "mirrors"
        path.write_bytes(b"# M\xfcnchen\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)

        state = session.open_editor(path)

        assert state == Browsing(
            Tab.CONFIG, notice=f"{path} is not UTF-8 text and cannot be edited here"
        )
        assert path.read_bytes() == b"# M\xfcnchen\n"

    def test_conflict_reloads(self, make_session: Callable[..., Session], tmp_path: Path) -> None:
        """Test that a file changed behind our back is reloaded, not overwritten."""
        path = tmp_path / "slackpkg.conf"
        path.write_text("BATCH=off\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)
        session.open_editor(path)
        session.update_editor("BATCH=on\n")

        path.write_text("WGETFLAGS=--passive-ftp\n")
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        state = session.save_editor()

        assert isinstance(state, Editing)
        assert state.notice is not None
        assert state.notice.endswith("Reloaded from disk.")
        assert state.document.content == "WGETFLAGS=--passive-ftp\n"
        assert path.read_text() == "WGETFLAGS=--passive-ftp\n"

    def test_close_with_unsaved_changes(
        self, make_session: Callable[..., Session], tmp_path: Path
    ) -> None:
        path = tmp_path / "slackpkg.conf"
        path.write_text("BATCH=off\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)
        session.open_editor(path)
        session.update_editor("BATCH=on\n")

        state = session.close_editor()
        assert isinstance(state, Editing)
        assert state.confirm_discard

        assert session.close_editor() == Browsing(Tab.CONFIG)
        assert path.read_text() == "BATCH=off\n"

    def test_switch_tab_with_unsaved_changes(
        self, make_session: Callable[..., Session], tmp_path: Path
    ) -> None:
        path = tmp_path / "slackpkg.conf"
        path.write_text("BATCH=off\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)
        session.open_editor(path)
        session.update_editor("BATCH=on\n")

        assert isinstance(session.switch_tab(Tab.MIRRORS), Editing)
        assert session.switch_tab(Tab.MIRRORS) == Browsing(Tab.MIRRORS)


class TestQuit:
    """Tests for the quit guard."""

    def test_quit_when_idle(self, make_session: Callable[..., Session]) -> None:
        assert make_session().request_quit() is True

    def test_guard_warns_once(self, make_session: Callable[..., Session]) -> None:
        session = make_session(quit_guard=lambda: "Run lilo before rebooting")

        assert session.request_quit() is False
        assert session.state.notice == "Run lilo before rebooting"
        assert session.request_quit() is True

    def test_force_skips_guard(self, make_session: Callable[..., Session]) -> None:
        session = make_session(quit_guard=lambda: "Run lilo before rebooting")

        assert session.request_quit(force=True) is True

    def test_unsaved_edit_warns(
        self, make_session: Callable[..., Session], tmp_path: Path
    ) -> None:
        path = tmp_path / "inittab"
        path.write_text("id:3:initdefault:\n")
        session = make_session()
        session.switch_tab(Tab.CONFIG)
        session.open_editor(path)
        session.update_editor("id:4:initdefault:\n")

        assert session.request_quit() is False
        assert session.request_quit() is True
