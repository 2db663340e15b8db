"""Session state machine.

The session owns the console's mode. Every user intent arrives here as a
method call; the session validates it against the current state, performs
the side effects (start a task, commit a file) and moves to the next state.
States are immutable snapshots; the UI renders whatever state it is handed.

    Browsing --select--> FormEntry --submit--> Confirming --accept--> TaskRunning
        ^                    ^                     |                      |
        |                    +------amend----------+                      v
        +---------------dismiss----------------------------------- TaskFinished

Editing is entered from Browsing and left by saving/closing. At most one task
runs at a time: accept() is only valid from Confirming and the TaskRunning
state rejects everything but cancel.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import structlog

from .errors import (
    ConflictError,
    ConsoleError,
    FatalInvariantViolation,
    OutOfRange,
    RuntimeFailure,
    SpawnError,
    ValidationError,
)
from .plans import ActionRequest, Completion, FileEdit, Tab, TaskPlan
from .streaming import Channel, OutputEvent, TaskResult, TaskStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from .forms import Form
    from .list_model import ListEntry, ListModel, SortKey
    from .output_buffer import OutputBuffer, OutputLine
    from .plans import ActionSpec
    from .runner import CommandRunner, TaskHandle
    from .streaming import TaskEvent
    from .transaction import ConfigDocument, ConfigFileTransaction

logger = structlog.get_logger(__name__)

BUSY_NOTICE = "A task is in progress"

_S = TypeVar("_S")


@dataclass(frozen=True)
class Browsing:
    tab: Tab
    notice: str | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class FormEntry:
    tab: Tab
    form: Form
    action: ActionSpec
    notice: str | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class Confirming:
    """A plan waits for the user's yes/no.

    form and action are set when the plan came from a form, so that declining
    can return to it for amendment.
    """

    tab: Tab
    plan: TaskPlan
    form: Form | None = None
    action: ActionSpec | None = None
    notice: str | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class TaskRunning:
    """A plan is executing; handle is None while a file edit step runs."""

    tab: Tab
    handle: TaskHandle | None
    plan: TaskPlan
    step: int = 0
    notice: str | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class TaskFinished:
    tab: Tab
    result: TaskResult
    notice: str | None = field(default=None, kw_only=True)


@dataclass(frozen=True)
class Editing:
    """A configuration file is open in the editor.

    confirm_discard is set after a close or tab switch was refused because of
    unsaved changes; the next such request discards them.
    """

    tab: Tab
    document: ConfigDocument
    confirm_discard: bool = False
    notice: str | None = field(default=None, kw_only=True)


SessionState = Browsing | FormEntry | Confirming | TaskRunning | TaskFinished | Editing


class Session:
    """Console session: current state plus the collaborators it drives.

    Example:
        session = Session(runner=CommandRunner(), output=OutputBuffer(),
                          transaction=ConfigFileTransaction(), catalogue=catalogue)
        session.select_action("update_lists")
        await session.accept()
        session.state  # TaskFinished(...)
    """

    def __init__(
        self,
        *,
        runner: CommandRunner,
        output: OutputBuffer,
        transaction: ConfigFileTransaction,
        catalogue: Mapping[Tab, Sequence[ActionSpec]],
        lists: Mapping[Tab, ListModel] | None = None,
        list_sources: Mapping[Tab, Callable[[], list[ListEntry]]] | None = None,
        editable_files: Iterable[Path] = (),
        quit_guard: Callable[[], str | None] | None = None,
        notice: str | None = None,
    ) -> None:
        """Initialize the session in Browsing(SystemUpdate).

        Args:
            runner: Spawns the plan's commands.
            output: Receives every output line of every task.
            transaction: Reads and writes configuration files.
            catalogue: Actions offered on each tab.
            lists: List models of the tabs that show one.
            list_sources: Loaders refilling a tab's list model on reload.
            editable_files: Files offered by the Config tab.
            quit_guard: Returns a warning when quitting now is unsafe.
            notice: Initial notice (e.g. a failed platform detection).
        """
        self.runner = runner
        self.output = output
        self.transaction = transaction
        self.catalogue = {tab: list(catalogue.get(tab, ())) for tab in Tab}
        self.lists = dict(lists or {})
        self.list_sources = dict(list_sources or {})
        self.editable_files = [Path(p) for p in editable_files]
        self._quit_guard = quit_guard
        self._state: SessionState = Browsing(Tab.SYSTEM_UPDATE, notice=notice)
        self._listeners: list[Callable[[SessionState], None]] = []
        self._stop_requested = False
        self._quit_warned = False
        self._log = logger.bind(component="session")

    # -- observation -----------------------------------------------------

    @property
    def state(self) -> SessionState:
        """Current state snapshot."""
        return self._state

    @property
    def tab(self) -> Tab:
        """Tab the current state belongs to."""
        return self._state.tab

    @property
    def busy(self) -> bool:
        """Whether a plan is executing."""
        return isinstance(self._state, TaskRunning)

    def subscribe(self, listener: Callable[[SessionState], None]) -> None:
        """Call listener with the new state after every transition."""
        self._listeners.append(listener)

    def actions(self, tab: Tab | None = None) -> list[ActionSpec]:
        """Actions offered on a tab (default: the current one)."""
        return self.catalogue[tab or self.tab]

    def list_model(self, tab: Tab | None = None) -> ListModel:
        """List model of a tab (default: the current one).

        Raises:
            FatalInvariantViolation: If the tab shows no list.
        """
        tab = tab or self.tab
        try:
            return self.lists[tab]
        except KeyError:
            raise FatalInvariantViolation(f"Tab {tab.value} has no list") from None

    def _set(self, state: SessionState) -> SessionState:
        previous = self._state
        self._state = state
        if type(previous) is not type(state) or previous.tab != state.tab:
            self._log.debug(
                "state_changed",
                old=type(previous).__name__,
                new=type(state).__name__,
                tab=state.tab.value,
            )
        if state.notice:
            self._log.info("session_notice", notice=state.notice, state=type(state).__name__)
        for listener in self._listeners:
            listener(state)
        return state

    def _notify(self, notice: str) -> SessionState:
        return self._set(replace(self._state, notice=notice))

    def _expect(self, kind: type[_S], operation: str) -> _S:
        if not isinstance(self._state, kind):
            raise FatalInvariantViolation(
                f"Cannot {operation} while in {type(self._state).__name__}"
            )
        return self._state

    # -- navigation ------------------------------------------------------

    def switch_tab(self, tab: Tab) -> SessionState:
        """Move to another tab.

        Refused with a notice while a task is pending or running. Leaving
        an editor with unsaved changes needs a second request.
        """
        state = self._state
        if isinstance(state, TaskRunning | Confirming):
            return self._notify(BUSY_NOTICE)
        if tab == state.tab:
            return state
        if isinstance(state, Editing):
            if state.document.dirty and not state.confirm_discard:
                return self._set(
                    replace(
                        state,
                        confirm_discard=True,
                        notice=f"Unsaved changes in {state.document.path}. "
                        "Repeat to discard them.",
                    )
                )
            self.transaction.discard(state.document)
        self._quit_warned = False
        return self._set(Browsing(tab))

    def next_tab(self) -> SessionState:
        return self.switch_tab(self.tab.next())

    def previous_tab(self) -> SessionState:
        return self.switch_tab(self.tab.previous())

    def dismiss(self) -> SessionState:
        """Leave TaskFinished (or clear the notice in Browsing)."""
        state = self._state
        if isinstance(state, TaskFinished | Browsing):
            return self._set(Browsing(state.tab))
        raise FatalInvariantViolation(f"Cannot dismiss while in {type(state).__name__}")

    # -- actions and forms -----------------------------------------------

    def select_action(self, action_id: str, index: int | None = None) -> SessionState:
        """Pick an action of the current tab.

        Args:
            action_id: ActionSpec.id of the action.
            index: Position of the selected entry in the tab's visible list,
                for actions that operate on an entry.

        Returns:
            FormEntry when the action needs input, Confirming otherwise, or
            Browsing with a notice when no valid entry is selected.
        """
        state = self._expect(Browsing, "select an action")
        action = self._find_action(state.tab, action_id)

        entry = None
        if action.needs_entry:
            if index is None:
                return self._notify("Select an entry first")
            try:
                entry = self.select_entry(index)
            except OutOfRange as e:
                return self._notify(e.notice)

        if action.form_factory is not None:
            return self._set(FormEntry(state.tab, action.form_factory(), action))
        return self._set(Confirming(state.tab, action.build_plan(ActionRequest(entry=entry))))

    def _find_action(self, tab: Tab, action_id: str) -> ActionSpec:
        for action in self.catalogue[tab]:
            if action.id == action_id:
                return action
        raise FatalInvariantViolation(f"Unknown action {action_id!r} on tab {tab.value}")

    def submit_form(self) -> SessionState:
        """Validate the form and ask for confirmation.

        Invalid input keeps the session in FormEntry with the fields
        annotated and the first message as notice.
        """
        state = self._expect(FormEntry, "submit a form")
        try:
            state.form.validate()
        except ValidationError as e:
            return self._set(replace(state, notice=e.notice))
        plan = state.action.build_plan(ActionRequest(form=state.form))
        return self._set(Confirming(state.tab, plan, state.form, state.action))

    def cancel_form(self) -> SessionState:
        """Abandon the form and go back to browsing."""
        state = self._expect(FormEntry, "cancel a form")
        return self._set(Browsing(state.tab))

    def decline(self, amend: bool = False) -> SessionState:
        """Refuse the pending plan.

        Args:
            amend: Return to the plan's form instead of browsing.
        """
        state = self._expect(Confirming, "decline")
        notice = state.plan.on_decline() if state.plan.on_decline is not None else None
        self._log.info("plan_declined", plan=state.plan.label)
        if amend and state.form is not None and state.action is not None:
            return self._set(FormEntry(state.tab, state.form, state.action, notice=notice))
        return self._set(Browsing(state.tab, notice=notice))

    # -- running plans ---------------------------------------------------

    async def accept(
        self, on_event: Callable[[TaskEvent], None] | None = None
    ) -> SessionState:
        """Run the confirmed plan to completion.

        Steps run in order and the plan stops at the first step that does not
        succeed. Output lines go to the output buffer (and on_event) as they
        arrive. The returned state is TaskFinished, or Confirming when the
        plan proposes a follow-up.

        Args:
            on_event: Called for every event of every step.
        """
        state = self._expect(Confirming, "accept")
        plan = state.plan
        tab = state.tab
        self._stop_requested = False
        self._quit_warned = False
        captured: list[OutputLine] = []
        self.output.clear()
        self._log.info("plan_started", plan=plan.label, steps=len(plan.steps))
        self.output.append(f"==> {plan.label}", Channel.CONSOLE)

        result: TaskResult | None = None
        spawn_error: SpawnError | None = None
        for index, step in enumerate(plan.steps):
            if self._stop_requested:
                result = TaskResult(label=plan.label, status=TaskStatus.CANCELLED)
                break
            self.output.append(f"--> {step.display()}", Channel.CONSOLE)
            self._set(TaskRunning(tab, None, plan, index))
            if isinstance(step, FileEdit):
                result = self._apply_edit(step)
            else:
                try:
                    handle = await self.runner.start_spec(step)
                except SpawnError as e:
                    spawn_error = e
                    self.output.append(e.notice, Channel.CONSOLE)
                    result = TaskResult(
                        label=step.label, status=TaskStatus.FAILED, error_message=e.reason
                    )
                    break
                self._set(TaskRunning(tab, handle, plan, index))
                if self._stop_requested:
                    handle.cancel()
                result = await self._pump(handle, plan, captured, on_event)
            if not result.succeeded:
                break

        if result is None:
            raise FatalInvariantViolation(f"Plan {plan.label!r} has no steps")
        self.output.append(f"==> {result.describe()}", Channel.CONSOLE)
        self._log.info("plan_finished", plan=plan.label, **result.to_dict())

        if spawn_error is not None:
            return self._set(TaskFinished(tab, result, notice=spawn_error.notice))

        completion = plan.on_complete(result, captured) if plan.on_complete else Completion()
        for list_tab, entries in completion.entries.items():
            self.list_model(list_tab).load(entries)

        if completion.follow_up is not None:
            return self._set(Confirming(tab, completion.follow_up, notice=completion.notice))
        notice = completion.notice or _failure_notice(result)
        return self._set(TaskFinished(tab, result, notice=notice))

    async def _pump(
        self,
        handle: TaskHandle,
        plan: TaskPlan,
        captured: list[OutputLine],
        on_event: Callable[[TaskEvent], None] | None,
    ) -> TaskResult:
        result: TaskResult | None = None
        async for event in handle:
            if isinstance(event, OutputEvent):
                captured.append(self.output.append(event))
                if plan.watcher is not None:
                    extra = plan.watcher(event)
                    if extra:
                        self.output.append(extra, Channel.CONSOLE)
            else:
                result = event
            if on_event is not None:
                on_event(event)
        if result is None:
            raise FatalInvariantViolation(f"Task {handle.label} ended without a result")
        return result

    def _apply_edit(self, step: FileEdit) -> TaskResult:
        try:
            document = self.transaction.apply(step.path, step.transform)
        except (ConsoleError, ValueError) as e:
            message = e.notice if isinstance(e, ConsoleError) else str(e)
            self.output.append(message, Channel.CONSOLE)
            return TaskResult(label=step.label, status=TaskStatus.FAILED, error_message=message)
        self.output.append(f"Updated {document.path}", Channel.CONSOLE)
        return TaskResult(label=step.label, status=TaskStatus.SUCCEEDED, exit_code=0)

    def cancel(self) -> SessionState:
        """Ask the running task to stop.

        The session stays in TaskRunning until the task's terminal event;
        accept() then finishes with a Cancelled result.
        """
        state = self._state
        if isinstance(state, TaskFinished):
            return state
        state = self._expect(TaskRunning, "cancel")
        if self._stop_requested:
            return state
        self._stop_requested = True
        if state.handle is not None:
            state.handle.cancel()
        return self._set(replace(state, notice="Cancelling..."))

    def shutdown(self) -> None:
        """Kill the running task, if any, before the console exits."""
        state = self._state
        if not isinstance(state, TaskRunning):
            return
        self._stop_requested = True
        if state.handle is not None:
            state.handle.kill()

    # -- editor ----------------------------------------------------------

    def open_editor(self, path: Path | str) -> SessionState:
        """Open a configuration file for editing."""
        state = self._expect(Browsing, "open the editor")
        try:
            document = self.transaction.open(path)
        except ConsoleError as e:
            return self._notify(e.notice)
        if not document.is_text:
            self.transaction.discard(document)
            return self._notify(f"{document.path} is not UTF-8 text and cannot be edited here")
        return self._set(Editing(state.tab, document))

    def update_editor(self, content: str) -> SessionState:
        """Replace the editor buffer with new text."""
        state = self._expect(Editing, "edit")
        state.document.update(content)
        if state.confirm_discard or state.notice:
            return self._set(replace(state, confirm_discard=False, notice=None))
        return state

    def save_editor(self) -> SessionState:
        """Commit the edited file.

        A file changed on disk meanwhile is re-opened (the edit is lost and
        the notice says so); a write failure keeps the edit for a retry.
        """
        state = self._expect(Editing, "save")
        document = state.document
        try:
            self.transaction.commit(document)
        except ConflictError as e:
            try:
                reopened = self.transaction.open(document.path)
            except ConsoleError as reopen_error:
                return self._set(Browsing(state.tab, notice=f"{e.notice} {reopen_error.notice}"))
            return self._set(Editing(state.tab, reopened, notice=f"{e.notice} Reloaded from disk."))
        except ConsoleError as e:
            return self._set(replace(state, notice=e.notice))
        self._refresh_lists()
        return self._set(Editing(state.tab, document, notice=f"Saved {document.path}"))

    def close_editor(self, force: bool = False) -> SessionState:
        """Close the editor, asking once when there are unsaved changes."""
        state = self._expect(Editing, "close the editor")
        if state.document.dirty and not (force or state.confirm_discard):
            return self._set(
                replace(
                    state,
                    confirm_discard=True,
                    notice="Unsaved changes. Close again to discard them.",
                )
            )
        self.transaction.discard(state.document)
        return self._set(Browsing(state.tab))

    # -- lists -----------------------------------------------------------

    def set_filter(self, text: str, tab: Tab | None = None) -> list[ListEntry]:
        model = self.list_model(tab)
        model.set_filter(text)
        return model.visible

    def set_sort(self, key: SortKey | str, tab: Tab | None = None) -> list[ListEntry]:
        model = self.list_model(tab)
        model.set_sort(key)
        return model.visible

    def select_entry(self, index: int, tab: Tab | None = None) -> ListEntry:
        """Return the visible entry at index.

        Raises:
            OutOfRange: If the list is empty or index is not valid.
        """
        return self.list_model(tab).select(index)

    def reload_list(self, tab: Tab | None = None) -> SessionState:
        """Refill a list model from its source."""
        tab = tab or self.tab
        source = self.list_sources.get(tab)
        if source is None:
            raise FatalInvariantViolation(f"Tab {tab.value} has no list source")
        try:
            entries = source()
        except ConsoleError as e:
            return self._notify(e.notice)
        self.list_model(tab).load(entries)
        self._log.debug("list_reloaded", tab=tab.value, count=len(entries))
        return self._set(self._state)

    def _refresh_lists(self) -> None:
        for tab, source in self.list_sources.items():
            try:
                self.list_model(tab).load(source())
            except ConsoleError as e:
                self._log.warning("list_refresh_failed", tab=tab.value, error=e.notice)

    # -- quitting --------------------------------------------------------

    def request_quit(self, force: bool = False) -> bool:
        """Ask to leave the console.

        Returns:
            True when the console may exit now. Quitting is refused while a
            task runs; unsaved edits and a pending bootloader update warn on
            the first request.
        """
        state = self._state
        if isinstance(state, TaskRunning):
            self._notify(f"{BUSY_NOTICE}. Cancel it before quitting.")
            return False
        if force or self._quit_warned:
            return True

        warning = None
        if isinstance(state, Editing) and state.document.dirty:
            warning = "Unsaved changes. Quit again to discard them."
        elif self._quit_guard is not None:
            warning = self._quit_guard()
        if warning:
            self._quit_warned = True
            self._notify(warning)
            return False
        return True


def _failure_notice(result: TaskResult) -> str | None:
    if result.status == TaskStatus.CANCELLED:
        return f"{result.label} was cancelled"
    if result.succeeded:
        return None
    if result.error_message:
        return f"{result.label}: {result.error_message}"
    return RuntimeFailure(result.label, result.exit_code, result.signal).notice
