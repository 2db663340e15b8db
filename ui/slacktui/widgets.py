"""Shared widgets: output view, session status bar and confirmation panel."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.text import Text
from textual.reactive import reactive
from textual.widgets import Static

from slackcore.session import (
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    SessionState,
    TaskFinished,
    TaskRunning,
)
from slackcore.streaming import Channel, TaskStatus

if TYPE_CHECKING:
    from textual.events import MouseScrollDown, MouseScrollUp, Resize

    from slackcore.output_buffer import OutputBuffer

CHANNEL_STYLES: dict[Channel, str] = {
    Channel.STDOUT: "",
    Channel.STDERR: "red",
    Channel.CONSOLE: "bold cyan",
}

STATE_CLASSES = ("browsing", "form", "confirming", "running", "success", "failed", "editing")


class OutputView(Static):
    """Renders the visible window of the session's output buffer.

    The widget draws only as many lines as it is tall. Scrolling moves the
    buffer's tail-relative offset; while scrolled up, new output does not
    move the view.
    """

    DEFAULT_CSS = """
    OutputView {
        height: 1fr;
        min-height: 5;
        border: round $primary-darken-2;
        padding: 0 1;
    }

    OutputView:focus {
        border: round $primary;
    }
    """

    can_focus = True

    def __init__(
        self,
        buffer: OutputBuffer,
        *,
        name: str | None = None,
        id: str | None = None,
        classes: str | None = None,
    ) -> None:
        """Initialize the view.

        Args:
            buffer: Output buffer to render.
            name: Widget name.
            id: Widget ID.
            classes: CSS classes.
        """
        super().__init__(name=name, id=id, classes=classes)
        self.buffer = buffer
        self.border_title = "Output"

    def on_mount(self) -> None:
        self.refresh_output()

    def on_resize(self, event: Resize) -> None:  # noqa: ARG002
        self.refresh_output()

    def render_lines(self, height: int) -> Text:
        """Build the Rich text for a view of the given height."""
        text = Text()
        lines = self.buffer.window(height)
        for index, line in enumerate(lines):
            if index:
                text.append("\n")
            text.append(line.text, style=CHANNEL_STYLES.get(line.channel, ""))
        return text

    def refresh_output(self) -> None:
        """Redraw from the buffer."""
        height = max(self.content_size.height, 1)
        self.update(self.render_lines(height))
        if self.buffer.is_tailing:
            self.border_subtitle = f"{len(self.buffer)} lines"
        else:
            self.border_subtitle = f"scrolled up {self.buffer.scroll_offset} lines"

    def scroll_history_up(self, lines: int = 1) -> None:
        self.buffer.scroll_up(lines)
        self.refresh_output()

    def scroll_history_down(self, lines: int = 1) -> None:
        self.buffer.scroll_down(lines)
        self.refresh_output()

    def scroll_to_top(self) -> None:
        self.buffer.scroll_to_top()
        self.refresh_output()

    def scroll_to_bottom(self) -> None:
        self.buffer.scroll_to_bottom()
        self.refresh_output()

    def on_mouse_scroll_up(self, event: MouseScrollUp) -> None:
        self.scroll_history_up(3)
        event.stop()

    def on_mouse_scroll_down(self, event: MouseScrollDown) -> None:
        self.scroll_history_down(3)
        event.stop()


def describe_state(state: SessionState) -> tuple[str, str]:
    """Return (css class, status text) for a session state."""
    if isinstance(state, TaskRunning):
        total = len(state.plan.steps)
        step = f" (step {state.step + 1}/{total})" if total > 1 else ""
        return "running", f"RUNNING {state.plan.label}{step}"
    if isinstance(state, TaskFinished):
        css = "success" if state.result.status == TaskStatus.SUCCEEDED else "failed"
        return css, state.result.describe()
    if isinstance(state, Confirming):
        return "confirming", f"CONFIRM {state.plan.label}"
    if isinstance(state, FormEntry):
        return "form", state.form.title
    if isinstance(state, Editing):
        marker = " [modified]" if state.document.dirty else ""
        return "editing", f"EDITING {state.document.path}{marker}"
    if isinstance(state, Browsing):
        return "browsing", state.tab.title
    return "browsing", ""


class SessionStatusBar(Static):
    """One-line summary of the session state and its notice."""

    DEFAULT_CSS = """
    SessionStatusBar {
        height: 1;
        dock: bottom;
        padding: 0 1;
        background: $surface-darken-1;
        color: $text-muted;
    }

    SessionStatusBar.running {
        background: $primary;
        color: $text;
    }

    SessionStatusBar.success {
        background: $success;
        color: $text;
    }

    SessionStatusBar.failed {
        background: $error;
        color: $text;
    }

    SessionStatusBar.confirming {
        background: $warning;
        color: $text;
    }
    """

    state: reactive[SessionState | None] = reactive(None, always_update=True)

    def watch_state(self, state: SessionState | None) -> None:
        if state is None:
            return
        css, status = describe_state(state)
        self.remove_class(*STATE_CLASSES)
        self.add_class(css)
        text = status
        if state.notice:
            text += f" - {state.notice}"
        self.update(text)


class ConfirmPanel(Static):
    """Shows the pending plan while the session waits for yes/no."""

    DEFAULT_CSS = """
    ConfirmPanel {
        height: auto;
        max-height: 12;
        border: heavy $warning;
        padding: 0 1;
        display: none;
    }

    ConfirmPanel.visible {
        display: block;
    }
    """

    def show_plan(self, state: Confirming, keys: dict[str, str]) -> None:
        """Render the plan of a Confirming state.

        Args:
            state: The state to show.
            keys: Key bound to accept, decline and amend (missing when unbound).
        """
        plan = state.plan
        text = Text(plan.prompt, style="bold")
        for line in plan.describe():
            text.append(f"\n  {line}")
        if plan.warning:
            text.append(f"\n{plan.warning}", style="bold red")
        choices = [
            f"[{keys[action]}] {label}"
            for action, label in (("accept", "yes"), ("decline", "no"), ("amend", "edit"))
            if action in keys and (action != "amend" or state.form is not None)
        ]
        text.append("\n" + "   ".join(choices), style="italic")
        self.update(text)
        self.add_class("visible")

    def hide(self) -> None:
        self.remove_class("visible")
        self.update("")
