"""Shared test fixtures for CLI tests."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

# Rich wraps output at 80 columns when stdout is not a terminal; widen it so
# long temporary paths are printed on a single line.
os.environ.setdefault("COLUMNS", "500")

if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def isolated_xdg_dirs(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Path, None, None]:
    """Isolate tests from the real user configuration directory.

    Sets XDG_CONFIG_HOME and XDG_STATE_HOME to temporary directories so
    that tests never read or write ~/.config/slackware-console/ or the log
    file under ~/.local/state/.

    This fixture is applied automatically to all tests in this package.
    """
    config_home = tmp_path / "xdg_config"
    state_home = tmp_path / "xdg_state"
    config_home.mkdir(parents=True, exist_ok=True)
    state_home.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("XDG_STATE_HOME", str(state_home))

    yield config_home


@pytest.fixture
def system_files(tmp_path: Path) -> Path:
    """Configuration pointing at a fake slackware-version and mirrors file."""
    version_file = tmp_path / "slackware-version"
    version_file.write_text("Slackware 15.0\n")
    mirrors_file = tmp_path / "mirrors"
    mirrors_file.write_text(
        "# http://mirror.example.de/slackware/slackware64-15.0/\n"
        "http://mirror.example.fr/slackware/slackware64-15.0/\n"
    )
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        f"general:\n  version_file: {version_file}\nmirrors:\n  mirrors_file: {mirrors_file}\n"
    )
    return config_file
