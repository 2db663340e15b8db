"""Textual message classes for the console UI.

Panes never touch the session directly: they post one of these messages and
the application translates it into a session call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from textual.message import Message

if TYPE_CHECKING:
    from pathlib import Path

    from slackcore.session import SessionState
    from slackcore.streaming import TaskEvent


class SessionChanged(Message):
    """Posted after every session transition.

    Attributes:
        state: The new session state.
    """

    def __init__(self, state: SessionState) -> None:
        self.state = state
        super().__init__()


class TaskOutput(Message):
    """Posted for every event of the running task.

    Attributes:
        event: OutputEvent or the terminal TaskResult.
    """

    def __init__(self, event: TaskEvent) -> None:
        self.event = event
        super().__init__()


class ActionChosen(Message):
    """The user picked an action from a tab's menu.

    Attributes:
        action_id: ActionSpec.id of the chosen action.
        index: Selected row of the tab's list, if the tab has one.
    """

    def __init__(self, action_id: str, index: int | None = None) -> None:
        self.action_id = action_id
        self.index = index
        super().__init__()


class FileChosen(Message):
    """The user picked a configuration file to edit."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__()


class FilterChanged(Message):
    """The filter text of a list changed."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__()


class SortRequested(Message):
    """The user asked to sort a list by a column."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__()


class FormSubmitted(Message):
    """Enter was pressed in a text field of a form."""


class EditorChanged(Message):
    """The text in the configuration editor changed."""

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__()
