"""Tests for InputRouter - state-dependent key routing."""

from __future__ import annotations

from pathlib import Path

import pytest

from slackcore.forms import Form, FormField
from slackcore.plans import Tab, TaskPlan
from slackcore.runner import TaskSpec
from slackcore.session import (
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    SessionState,
    TaskFinished,
    TaskRunning,
)
from slackcore.streaming import TaskResult, TaskStatus
from slackcore.transaction import ConfigDocument
from slacktui.input_router import InputRouter, Intent, Route
from slacktui.key_bindings import KeyBindings

PLAN = TaskPlan("Update", [TaskSpec("Update", "slackpkg", ["update"])])
FORM = Form("Search", [FormField("query", "Search")])
DOCUMENT = ConfigDocument(
    path=Path("/etc/slackpkg/slackpkg.conf"),
    content="BATCH=on\n",
    original="BATCH=off\n",
    checksum="",
    mtime_ns=0,
)

BROWSING = Browsing(Tab.SYSTEM_UPDATE)
FORM_ENTRY = FormEntry(Tab.PACKAGES, FORM, None)  # type: ignore[arg-type]
CONFIRMING = Confirming(Tab.SYSTEM_UPDATE, PLAN)
CONFIRMING_FORM = Confirming(Tab.PACKAGES, PLAN, FORM, None)
RUNNING = TaskRunning(Tab.SYSTEM_UPDATE, None, PLAN)
FINISHED = TaskFinished(Tab.SYSTEM_UPDATE, TaskResult("Update", TaskStatus.SUCCEEDED, 0))
EDITING = Editing(Tab.CONFIG, DOCUMENT)

ALL_STATES = [BROWSING, FORM_ENTRY, CONFIRMING, RUNNING, FINISHED, EDITING]


class TestGlobalActions:
    """Tests for actions that route the same way in every state."""

    @pytest.mark.parametrize("state", ALL_STATES)
    def test_tab_keys(self, state: SessionState) -> None:
        """Test that tab keys always reach the session, which may refuse them."""
        router = InputRouter()

        assert router.route("tab_4", state) == Route(Intent.SWITCH_TAB, Tab.MIRRORS)
        assert router.route("quit", state) == Route(Intent.QUIT)

    def test_route_key_uses_bindings(self) -> None:
        router = InputRouter()

        assert router.route_key("f6", BROWSING) == Route(Intent.SWITCH_TAB, Tab.CONFIG)
        assert router.route_key("alt+left", BROWSING) == Route(Intent.PREV_TAB)
        assert router.route_key("shift+pageup", RUNNING) == Route(Intent.SCROLL_UP)

    def test_unbound_key(self) -> None:
        assert InputRouter().route_key("ctrl+z", BROWSING) is None

    def test_custom_bindings(self) -> None:
        router = InputRouter(KeyBindings({"tab_1": "alt+1"}))

        assert router.route_key("alt+1", EDITING) == Route(Intent.SWITCH_TAB, Tab.SYSTEM_UPDATE)
        assert router.route_key("f1", EDITING) is None


class TestStateActions:
    """Tests for actions whose meaning depends on the state."""

    @pytest.mark.parametrize(
        ("action", "state", "intent"),
        [
            ("save", FORM_ENTRY, Intent.SUBMIT),
            ("save", EDITING, Intent.SAVE),
            ("back", FORM_ENTRY, Intent.CANCEL_FORM),
            ("back", CONFIRMING, Intent.DECLINE),
            ("back", FINISHED, Intent.DISMISS),
            ("back", EDITING, Intent.CLOSE_EDITOR),
            ("accept", CONFIRMING, Intent.ACCEPT),
            ("accept", FINISHED, Intent.DISMISS),
            ("decline", CONFIRMING, Intent.DECLINE),
            ("amend", CONFIRMING_FORM, Intent.AMEND),
            ("cancel", RUNNING, Intent.CANCEL),
            ("discard", EDITING, Intent.DISCARD),
        ],
    )
    def test_routes(self, action: str, state: SessionState, intent: Intent) -> None:
        assert InputRouter().route(action, state) == Route(intent)

    @pytest.mark.parametrize(
        ("action", "state"),
        [
            ("accept", BROWSING),
            ("accept", FORM_ENTRY),
            ("accept", RUNNING),
            ("decline", EDITING),
            ("cancel", BROWSING),
            ("cancel", CONFIRMING),
            ("save", BROWSING),
            ("save", RUNNING),
            ("back", BROWSING),
            ("back", RUNNING),
            ("amend", CONFIRMING),
            ("discard", FORM_ENTRY),
        ],
    )
    def test_meaningless_actions_fall_through(self, action: str, state: SessionState) -> None:
        """Test that keys with no meaning are left to the focused widget."""
        assert InputRouter().route(action, state) is None


class TestReload:
    """Tests for list reloading."""

    def test_reload_on_mirrors(self) -> None:
        state = Browsing(Tab.MIRRORS)

        assert InputRouter().route("reload", state) == Route(Intent.RELOAD, Tab.MIRRORS)

    def test_reload_elsewhere(self) -> None:
        router = InputRouter()

        assert router.route("reload", Browsing(Tab.PACKAGES)) is None
        assert router.route("reload", RUNNING) is None
