"""Input routing for the console.

The InputRouter turns a bound action (from KeyBindings) into a session
intent, taking the current session state into account: "save" submits a form
in FormEntry but commits the file in Editing, "back" declines a confirmation
but closes the editor. Routing is pure and never mutates the session; an
action that has no meaning in the current state routes to None and the key
is left to the focused widget.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from slackcore.plans import Tab
from slackcore.session import (
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    TaskFinished,
    TaskRunning,
)
from slacktui.key_bindings import KeyBindings

if TYPE_CHECKING:
    from slackcore.session import SessionState


class Intent(str, Enum):
    """What the user asked the session to do."""

    SWITCH_TAB = "switch_tab"
    NEXT_TAB = "next_tab"
    PREV_TAB = "prev_tab"
    QUIT = "quit"
    HELP = "help"
    CANCEL = "cancel"
    ACCEPT = "accept"
    DECLINE = "decline"
    AMEND = "amend"
    SUBMIT = "submit"
    CANCEL_FORM = "cancel_form"
    SAVE = "save"
    DISCARD = "discard"
    CLOSE_EDITOR = "close_editor"
    DISMISS = "dismiss"
    RELOAD = "reload"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"
    SCROLL_TOP = "scroll_top"
    SCROLL_BOTTOM = "scroll_bottom"


@dataclass(frozen=True)
class Route:
    """Routing decision for one key press."""

    intent: Intent
    tab: Tab | None = None


TAB_ACTIONS: dict[str, Tab] = {f"tab_{index}": tab for index, tab in enumerate(Tab, start=1)}

# Valid in every state; the session decides whether to honour them
GLOBAL_ACTIONS: dict[str, Intent] = {
    "next_tab": Intent.NEXT_TAB,
    "prev_tab": Intent.PREV_TAB,
    "quit": Intent.QUIT,
    "help": Intent.HELP,
    "scroll_up": Intent.SCROLL_UP,
    "scroll_down": Intent.SCROLL_DOWN,
    "scroll_top": Intent.SCROLL_TOP,
    "scroll_bottom": Intent.SCROLL_BOTTOM,
}

STATE_ACTIONS: dict[type, dict[str, Intent]] = {
    Browsing: {},
    FormEntry: {"save": Intent.SUBMIT, "back": Intent.CANCEL_FORM},
    Confirming: {
        "accept": Intent.ACCEPT,
        "decline": Intent.DECLINE,
        "amend": Intent.AMEND,
        "back": Intent.DECLINE,
    },
    TaskRunning: {"cancel": Intent.CANCEL},
    TaskFinished: {"accept": Intent.DISMISS, "back": Intent.DISMISS},
    Editing: {"save": Intent.SAVE, "discard": Intent.DISCARD, "back": Intent.CLOSE_EDITOR},
}

# Tabs whose list can be reloaded from disk
RELOADABLE_TABS = frozenset({Tab.MIRRORS})


class InputRouter:
    """Maps bound actions and keys to intents for the current state.

    Example:
        router = InputRouter()
        router.route("save", Editing(Tab.CONFIG, document))
        # Route(intent=Intent.SAVE)
        router.route_key("f4", Browsing(Tab.SYSTEM_UPDATE))
        # Route(intent=Intent.SWITCH_TAB, tab=Tab.MIRRORS)
    """

    def __init__(self, key_bindings: KeyBindings | None = None) -> None:
        """Initialize the input router.

        Args:
            key_bindings: Key bindings configuration. Uses defaults if None.
        """
        self._key_bindings = key_bindings or KeyBindings()

    @property
    def key_bindings(self) -> KeyBindings:
        """Get the key bindings configuration."""
        return self._key_bindings

    def route(self, action: str, state: SessionState) -> Route | None:
        """Route a bound action.

        Args:
            action: Action name from the key bindings.
            state: Current session state.

        Returns:
            The Route, or None if the action means nothing in this state.
        """
        if action in TAB_ACTIONS:
            return Route(Intent.SWITCH_TAB, TAB_ACTIONS[action])
        if action in GLOBAL_ACTIONS:
            return Route(GLOBAL_ACTIONS[action])
        if action == "reload":
            if isinstance(state, Browsing) and state.tab in RELOADABLE_TABS:
                return Route(Intent.RELOAD, state.tab)
            return None
        intent = STATE_ACTIONS.get(type(state), {}).get(action)
        if intent is None:
            return None
        if intent == Intent.AMEND and not (
            isinstance(state, Confirming) and state.form is not None
        ):
            return None
        return Route(intent)

    def route_key(self, key: str, state: SessionState) -> Route | None:
        """Route a raw key string through the bindings."""
        action = self._key_bindings.get_action(key)
        if action is None:
            return None
        return self.route(action, state)
