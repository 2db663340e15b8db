"""Textual application for the Slackware console.

The ConsoleApp renders a Session and forwards user input to it. Keys are
bound from KeyBindings and routed through the InputRouter, so the same key
can mean different things in different session states. Keys that mean
nothing in the current state fall through to the focused widget.

A confirmed plan runs in a worker on the app's event loop. The session
streams output into its buffer while the worker awaits events; the UI keeps
processing input (including cancel) in the meantime.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

import structlog
from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding, BindingType
from textual.widgets import Footer, Header, TabbedContent, TabPane

from slackcore.errors import FatalInvariantViolation
from slackcore.plans import Tab
from slackcore.session import (
    BUSY_NOTICE,
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    TaskFinished,
    TaskRunning,
)

from .input_router import InputRouter, Intent, Route
from .key_bindings import ACTION_DESCRIPTIONS, DEFAULT_BINDINGS, PRIORITY_ACTIONS, KeyBindings
from .messages import (
    ActionChosen,
    EditorChanged,
    FileChosen,
    FilterChanged,
    FormSubmitted,
    SessionChanged,
    SortRequested,
    TaskOutput,
)
from .panes import TabBody
from .widgets import ConfirmPanel, OutputView, SessionStatusBar

if TYPE_CHECKING:
    from textual.worker import Worker

    from slackcore.session import Session, SessionState

logger = structlog.get_logger(__name__)

# Shown in the footer
FOOTER_ACTIONS = frozenset({"quit", "cancel", "save", "accept", "decline", "amend", "back", "help"})

EXIT_OK = 0
EXIT_FATAL = 1


def _get_ui_version() -> str:
    """Get the console package version."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("slackware-console")
    except PackageNotFoundError:
        return "unknown"


def tab_pane_id(tab: Tab) -> str:
    return f"tab-{tab.value}"


class ConsoleApp(App[int]):
    """Interactive console for Slackware maintenance.

    Layout: the six tabs on top, the output of the last task below them, the
    pending plan (while confirming) in between and a status line at the
    bottom.

    Example:
        session = build_session(ConfigManager().load())
        exit_code = ConsoleApp(session).run()
    """

    TITLE = "Slackware Console"
    SUB_TITLE = f"v{_get_ui_version()}"

    CSS = """
    ConsoleApp {
        background: $surface;
    }

    TabbedContent {
        height: 2fr;
    }

    TabPane {
        padding: 0 1;
        height: 1fr;
    }
    """

    BINDINGS: ClassVar[list[BindingType]] = [
        Binding(
            key,
            f"route('{action}')",
            ACTION_DESCRIPTIONS[action],
            show=action in FOOTER_ACTIONS,
            priority=action in PRIORITY_ACTIONS,
            id=action,
        )
        for action, key in DEFAULT_BINDINGS.items()
    ]

    ENABLE_COMMAND_PALETTE: ClassVar[bool] = False

    def __init__(
        self,
        session: Session,
        key_bindings: KeyBindings | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the console app.

        Args:
            session: Session to render and drive.
            key_bindings: Custom key bindings. Uses defaults if None.
            **kwargs: Additional arguments for App.
        """
        super().__init__(**kwargs)
        self.session = session
        self.key_bindings = key_bindings or KeyBindings()
        self.router = InputRouter(self.key_bindings)
        self._plan_worker: Worker[None] | None = None
        self._rendered: SessionState | None = None
        self._log = logger.bind(component="app")

    # -- layout ----------------------------------------------------------

    def compose(self) -> ComposeResult:
        """Compose the app layout."""
        yield Header()
        with TabbedContent(id="tabs", initial=tab_pane_id(self.session.tab)):
            for tab in Tab:
                with TabPane(tab.title, id=tab_pane_id(tab)):
                    yield TabBody(
                        tab,
                        self.session.actions(tab),
                        with_list=tab in self.session.lists,
                        files=self.session.editable_files if tab == Tab.CONFIG else (),
                        id=f"body-{tab.value}",
                    )
        yield ConfirmPanel(id="confirm")
        yield OutputView(self.session.output, id="output")
        yield SessionStatusBar(id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Apply custom keys and draw the initial state."""
        overrides = self.key_bindings.overrides()
        if overrides:
            self.set_keymap(overrides)
        self.session.subscribe(lambda state: self.post_message(SessionChanged(state)))
        self._render_state(self.session.state)
        self.body(self.session.tab).focus_default()

    def on_unmount(self) -> None:
        # Exiting with a task still running: do not leave the child behind
        self.session.shutdown()

    def body(self, tab: Tab) -> TabBody:
        return self.query_one(f"#body-{tab.value}", TabBody)

    @property
    def output_view(self) -> OutputView:
        return self.query_one("#output", OutputView)

    # -- key routing -----------------------------------------------------

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool | None:
        """Enable a routed binding only when it means something right now."""
        if action != "route":
            return True
        name = str(parameters[0])
        if self.key_bindings.get_key_for_action(name) is None:
            return False
        return self.router.route(name, self.session.state) is not None

    def action_route(self, name: str) -> None:
        """Handle a bound key through the router."""
        route = self.router.route(name, self.session.state)
        if route is None:
            return
        try:
            self._dispatch(route)
        except FatalInvariantViolation as e:
            self._fatal(e)

    def action_quit(self) -> None:
        """Quit through the session so that its guards apply."""
        self.action_route("quit")

    def _dispatch(self, route: Route) -> None:
        session = self.session
        intent = route.intent
        self._log.debug("intent", intent=intent.value, state=type(session.state).__name__)

        if intent == Intent.SWITCH_TAB and route.tab is not None:
            session.switch_tab(route.tab)
        elif intent == Intent.NEXT_TAB:
            session.next_tab()
        elif intent == Intent.PREV_TAB:
            session.previous_tab()
        elif intent == Intent.QUIT:
            if session.request_quit():
                self.exit(EXIT_OK)
        elif intent == Intent.HELP:
            self.show_help()
        elif intent == Intent.CANCEL:
            session.cancel()
        elif intent == Intent.ACCEPT:
            self.start_plan()
        elif intent == Intent.DECLINE:
            session.decline()
        elif intent == Intent.AMEND:
            session.decline(amend=True)
        elif intent == Intent.SUBMIT:
            session.submit_form()
        elif intent == Intent.CANCEL_FORM:
            session.cancel_form()
        elif intent == Intent.SAVE:
            session.save_editor()
        elif intent == Intent.DISCARD:
            session.close_editor(force=True)
        elif intent == Intent.CLOSE_EDITOR:
            session.close_editor()
        elif intent == Intent.DISMISS:
            session.dismiss()
        elif intent == Intent.RELOAD:
            session.reload_list(route.tab)
        elif intent == Intent.SCROLL_UP:
            self.output_view.scroll_history_up(max(self.output_view.content_size.height - 1, 1))
        elif intent == Intent.SCROLL_DOWN:
            self.output_view.scroll_history_down(max(self.output_view.content_size.height - 1, 1))
        elif intent == Intent.SCROLL_TOP:
            self.output_view.scroll_to_top()
        elif intent == Intent.SCROLL_BOTTOM:
            self.output_view.scroll_to_bottom()

    def show_help(self) -> None:
        """Show all key bindings as a notification."""
        lines = [
            f"{key:<16} {ACTION_DESCRIPTIONS.get(action, action)}"
            for action, key in sorted(self.key_bindings.list_all().items())
        ]
        self.notify("\n".join(lines), title="Keys", timeout=10)

    # -- running plans ---------------------------------------------------

    def start_plan(self) -> None:
        """Run the confirmed plan unless one is already being started."""
        if self._plan_worker is not None and not self._plan_worker.is_finished:
            return
        self._plan_worker = self._run_plan()

    @work(group="plan")
    async def _run_plan(self) -> None:
        try:
            await self.session.accept(lambda event: self.post_message(TaskOutput(event)))
        except FatalInvariantViolation as e:
            self._fatal(e)

    def _fatal(self, error: FatalInvariantViolation) -> None:
        self._log.error("fatal_invariant_violation", error=str(error))
        self.exit(EXIT_FATAL, return_code=EXIT_FATAL, message=f"Internal error: {error}")

    @on(TaskOutput)
    def handle_task_output(self, message: TaskOutput) -> None:  # noqa: ARG002
        self.output_view.refresh_output()

    # -- rendering -------------------------------------------------------

    @on(SessionChanged)
    def handle_session_changed(self, message: SessionChanged) -> None:
        self._render_state(message.state)

    def _render_state(self, state: SessionState) -> None:
        previous = self._rendered
        self._rendered = state
        if state is previous:
            # Same snapshot re-published (e.g. a list reload)
            self._refresh_entries(state.tab)
            return

        tabs = self.query_one("#tabs", TabbedContent)
        if tabs.active != tab_pane_id(state.tab):
            tabs.active = tab_pane_id(state.tab)

        self.query_one("#status", SessionStatusBar).state = state
        body = self.body(state.tab)
        body.show_state(state)
        self._refresh_entries(state.tab)

        confirm = self.query_one("#confirm", ConfirmPanel)
        if isinstance(state, Confirming):
            keys = {
                action: key
                for action in ("accept", "decline", "amend")
                if (key := self.key_bindings.get_key_for_action(action))
            }
            confirm.show_plan(state, keys)
        else:
            confirm.hide()

        self.output_view.refresh_output()
        self._move_focus(previous, state, body)
        self.refresh_bindings()

        if state.notice and (previous is None or state.notice != previous.notice):
            severity = "warning"
            if isinstance(state, TaskFinished):
                severity = "information" if state.result.succeeded else "error"
            self.notify(state.notice, severity=severity)

    def _move_focus(
        self, previous: SessionState | None, state: SessionState, body: TabBody
    ) -> None:
        if isinstance(state, Confirming | TaskRunning | TaskFinished):
            # Keep y/n/escape away from inputs and menus
            self.output_view.focus()
        elif isinstance(state, Browsing) and (
            previous is None or type(previous) is not Browsing or previous.tab != state.tab
        ):
            body.focus_default()

    def _refresh_entries(self, tab: Tab) -> None:
        if tab in self.session.lists:
            self.body(tab).show_entries(self.session.list_model(tab).visible)

    # -- pane messages ---------------------------------------------------

    def _ready_for_selection(self) -> bool:
        state = self.session.state
        if isinstance(state, TaskFinished):
            self.session.dismiss()
            return True
        if isinstance(state, Browsing):
            return True
        if isinstance(state, TaskRunning | Confirming):
            self.notify(BUSY_NOTICE, severity="warning")
        return False

    @on(ActionChosen)
    def handle_action_chosen(self, message: ActionChosen) -> None:
        if not self._ready_for_selection():
            return
        try:
            self.session.select_action(message.action_id, message.index)
        except FatalInvariantViolation as e:
            self._fatal(e)

    @on(FileChosen)
    def handle_file_chosen(self, message: FileChosen) -> None:
        if self._ready_for_selection():
            self.session.open_editor(message.path)

    @on(EditorChanged)
    def handle_editor_changed(self, message: EditorChanged) -> None:
        if isinstance(self.session.state, Editing):
            self.session.update_editor(message.text)

    @on(FormSubmitted)
    def handle_form_submitted(self, message: FormSubmitted) -> None:  # noqa: ARG002
        if isinstance(self.session.state, FormEntry):
            self.session.submit_form()

    @on(FilterChanged)
    def handle_filter_changed(self, message: FilterChanged) -> None:
        tab = self.session.tab
        if tab in self.session.lists:
            self.body(tab).show_entries(self.session.set_filter(message.text, tab))

    @on(SortRequested)
    def handle_sort_requested(self, message: SortRequested) -> None:
        tab = self.session.tab
        if tab in self.session.lists:
            self.body(tab).show_entries(self.session.set_sort(message.key, tab))

    @on(TabbedContent.TabActivated)
    def handle_tab_activated(self, event: TabbedContent.TabActivated) -> None:
        pane_id = event.pane.id or ""
        tab = Tab(pane_id.removeprefix("tab-"))
        if tab != self.session.tab:
            self.session.switch_tab(tab)
            if self.session.tab != tab:
                # Refused: put the session's tab back on screen
                event.tabbed_content.active = tab_pane_id(self.session.tab)


def run_console(session: Session, key_bindings: KeyBindings | None = None) -> int:
    """Run the console until the user quits.

    Returns:
        Process exit status: 0 on quit, 1 after an internal error.
    """
    app = ConsoleApp(session, key_bindings=key_bindings)
    result = app.run()
    if result is None:
        return app.return_code or EXIT_OK
    return result
