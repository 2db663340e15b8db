"""Slackware Console UI package.

Textual interface over the slackcore Session.

- KeyBindings: configurable action-to-key mapping (keybindings.toml)
- InputRouter: turns bound actions into session intents per state
- ConsoleApp: tabs, output view, confirmation panel and status line
- run_console: entry point used by the command line
"""

from slacktui.app import ConsoleApp, run_console
from slacktui.input_router import InputRouter, Intent, Route
from slacktui.key_bindings import (
    DEFAULT_BINDINGS,
    InvalidKeyError,
    KeyBindings,
    normalize_key,
)
from slacktui.messages import (
    ActionChosen,
    EditorChanged,
    FileChosen,
    FilterChanged,
    FormSubmitted,
    SessionChanged,
    SortRequested,
    TaskOutput,
)
from slacktui.panes import ActionMenu, EntryTable, FileEditor, FormView, TabBody
from slacktui.widgets import ConfirmPanel, OutputView, SessionStatusBar

__all__ = [
    "DEFAULT_BINDINGS",
    "ActionChosen",
    "ActionMenu",
    "ConfirmPanel",
    "ConsoleApp",
    "EditorChanged",
    "EntryTable",
    "FileChosen",
    "FileEditor",
    "FilterChanged",
    "FormSubmitted",
    "FormView",
    "InputRouter",
    "Intent",
    "InvalidKeyError",
    "KeyBindings",
    "OutputView",
    "Route",
    "SessionChanged",
    "SessionStatusBar",
    "SortRequested",
    "TabBody",
    "TaskOutput",
    "normalize_key",
    "run_console",
]
