"""Test fixtures for UI tests.

Sessions here use a small catalogue of /bin/sh plans so that the app can be
driven end to end without any Slackware tools installed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest

from slackcore.forms import Form, FormField
from slackcore.list_model import ListEntry, ListModel
from slackcore.output_buffer import OutputBuffer
from slackcore.plans import ActionSpec, Tab, TaskPlan
from slackcore.runner import CommandRunner, TaskSpec
from slackcore.session import Session
from slackcore.transaction import ConfigFileTransaction

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from pathlib import Path

    from slackcore.plans import ActionRequest


@pytest.fixture(autouse=True)
def isolated_xdg_dirs(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Isolate tests from the real user configuration and state directories."""
    config_home = tmp_path / "xdg_config"
    state_home = tmp_path / "xdg_state"
    config_home.mkdir(parents=True, exist_ok=True)
    state_home.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("XDG_STATE_HOME", str(state_home))

    yield config_home


def shell_plan(label: str, script: str) -> TaskPlan:
    """Plan running one sh -c script."""
    return TaskPlan(label, [TaskSpec(label, "sh", ["-c", script])])


def greet_plan(request: ActionRequest) -> TaskPlan:
    assert request.form is not None
    return shell_plan("Greet", f"echo hello {request.form.values()['name']}")


def greet_form() -> Form:
    return Form("Greet", [FormField("name", "Name", required=True)])


def pick_plan(request: ActionRequest) -> TaskPlan:
    assert request.entry is not None
    return shell_plan(f"Pick {request.entry.name}", f"echo {request.entry.name}")


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """An editable configuration file."""
    path = tmp_path / "slackpkg.conf"
    path.write_text("BATCH=off\nDEFAULT_ANSWER=n\n")
    return path


@pytest.fixture
def make_session(config_file: Path) -> Callable[..., Session]:
    """Factory for sessions over the test catalogue."""

    def factory(**kwargs: Any) -> Session:
        catalogue = {
            Tab.SYSTEM_UPDATE: [
                ActionSpec("hello", "Hello", lambda _r: shell_plan("Say hello", "echo hello")),
                ActionSpec(
                    "slow", "Slow", lambda _r: shell_plan("Wait", "echo started; sleep 30")
                ),
            ],
            Tab.USER_SETUP: [ActionSpec("greet", "Greet", greet_plan, form_factory=greet_form)],
            Tab.MIRRORS: [ActionSpec("pick", "Pick", pick_plan, needs_entry=True)],
        }
        mirrors = ListModel(platform_version="15.0", search_fields=("name", "region"))
        mirrors.load(
            [
                ListEntry("mirror.example.de", "15.0", url="http://de.example/", region="DE"),
                ListEntry(
                    "mirror.example.fr", "15.0", url="http://fr.example/", region="FR", rank=1
                ),
                ListEntry("old.example.org", "14.2", url="http://old.example.org/", rank=2),
            ]
        )
        return Session(
            runner=CommandRunner(grace_seconds=1.0),
            output=OutputBuffer(capacity=500),
            transaction=ConfigFileTransaction(),
            catalogue=catalogue,
            lists={Tab.MIRRORS: mirrors},
            editable_files=[config_file],
            **kwargs,
        )

    return factory
