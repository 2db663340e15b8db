"""Tests for CLI main module."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import yaml
from typer.testing import CliRunner

from slackcli.main import EXIT_FATAL, EXIT_NOT_ROOT, app

if TYPE_CHECKING:
    from pathlib import Path

runner = CliRunner()


class TestMainApp:
    """Tests for the main CLI application."""

    def test_version(self) -> None:
        """Test --version flag."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "slackware-console" in result.stdout
        assert "version" in result.stdout

    def test_version_short_option(self) -> None:
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert "version" in result.stdout

    def test_help(self) -> None:
        """Test --help flag."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "run" in result.stdout
        assert "config" in result.stdout

    def test_no_args_shows_help(self) -> None:
        """Test that no arguments shows help.

        Note: Typer returns exit code 2 when showing help due to no_args_is_help=True.
        """
        result = runner.invoke(app, [])
        assert result.exit_code == 2
        assert "usage" in result.stdout.lower()


class TestRunCommand:
    """Tests for the run command.

    The interactive part is covered by the UI tests; these only exercise the
    checks made before the console starts.
    """

    def test_refuses_without_root(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("slackcore.slackware.is_root", lambda: False)

        result = runner.invoke(app, ["run"])

        assert result.exit_code == EXIT_NOT_ROOT
        assert "must run as root" in result.stdout

    def test_invalid_config_is_fatal(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("general: [unclosed\n")

        result = runner.invoke(app, ["run", "--no-root-check", "--config", str(config_file)])

        assert result.exit_code == EXIT_FATAL
        assert "Invalid YAML" in result.stdout

    def test_config_failing_validation_is_fatal(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("general:\n  output_capacity: many\n")

        result = runner.invoke(app, ["run", "--no-root-check", "--config", str(config_file)])

        assert result.exit_code == EXIT_FATAL
        assert "Invalid configuration" in result.stdout


class TestInfoCommand:
    """Tests for the info command."""

    def test_info(self, system_files: Path) -> None:
        result = runner.invoke(app, ["info", "--config", str(system_files)])

        assert result.exit_code == 0
        assert "Slackware64 15.0" in result.stdout
        assert "mirror.example.fr" in result.stdout

    def test_info_outside_slackware(self, tmp_path: Path) -> None:
        """Test that missing system files are reported, not raised."""
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"general:\n  version_file: {tmp_path / 'none'}\n"
            f"mirrors:\n  mirrors_file: {tmp_path / 'none'}\n"
        )

        result = runner.invoke(app, ["info", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Is this a Slackware system?" in " ".join(result.stdout.split())


class TestKeysCommand:
    """Tests for the keys command."""

    def test_keys_lists_defaults(self) -> None:
        result = runner.invoke(app, ["keys"])
        assert result.exit_code == 0
        assert "tab_1" in result.stdout
        assert "f1" in result.stdout

    def test_keys_write(self, tmp_path: Path) -> None:
        keys_file = tmp_path / "keybindings.toml"

        result = runner.invoke(app, ["keys", "--keys", str(keys_file), "--write"])

        assert result.exit_code == 0
        assert keys_file.exists()
        assert 'tab_1 = "f1"' in keys_file.read_text()

    def test_keys_reads_custom_file(self, tmp_path: Path) -> None:
        keys_file = tmp_path / "keybindings.toml"
        keys_file.write_text('[tab_navigation]\ntab_4 = "f9"\n')

        result = runner.invoke(app, ["keys", "--keys", str(keys_file)])

        assert result.exit_code == 0
        assert "f9" in result.stdout


class TestConfigCommands:
    """Tests for the config subcommands."""

    def test_config_path(self, isolated_xdg_dirs: Path) -> None:
        result = runner.invoke(app, ["config", "path"])
        assert result.exit_code == 0
        assert "config.yaml" in result.stdout
        assert str(isolated_xdg_dirs) in result.stdout.replace("\n", "")

    def test_config_init(self, isolated_xdg_dirs: Path) -> None:
        config_file = isolated_xdg_dirs / "slackware-console" / "config.yaml"

        result = runner.invoke(app, ["config", "init"])

        assert result.exit_code == 0
        assert config_file.exists()
        data = yaml.safe_load(config_file.read_text())
        assert data["general"]["log_level"] == "info"
        assert data["mirrors"]["mirrors_file"] == "/etc/slackpkg/mirrors"

    def test_config_init_existing(self, isolated_xdg_dirs: Path) -> None:
        config_file = isolated_xdg_dirs / "slackware-console" / "config.yaml"
        config_file.parent.mkdir(parents=True)
        config_file.write_text("general:\n  log_level: debug\n")

        result = runner.invoke(app, ["config", "init"])

        assert result.exit_code == 0
        assert "already exists" in result.stdout
        assert config_file.read_text() == "general:\n  log_level: debug\n"

        result = runner.invoke(app, ["config", "init", "--force"])
        assert result.exit_code == 0
        assert "log_level: info" in config_file.read_text()

    def test_config_show(self) -> None:
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert "general:" in result.stdout
        assert "mirrors_file: /etc/slackpkg/mirrors" in result.stdout
