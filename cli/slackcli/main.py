"""Main CLI entry point for slackware-console.

This module defines the Typer application and its commands.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__

if TYPE_CHECKING:
    from slackcore import ConfigManager, ConsoleConfig

EXIT_FATAL = 1
EXIT_NOT_ROOT = 2

# Create the main Typer app
app = typer.Typer(
    name="slackware-console",
    help="Interactive maintenance console for Slackware Linux.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Create console for rich output
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]slackware-console[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Slackware Console: system updates, SlackBuilds, users and mirrors.

    Run [bold]slackware-console run[/bold] as root to open the console.
    """


def _get_config_manager(config_path: Path | None = None) -> ConfigManager:
    """Get the configuration manager."""
    from slackcore import ConfigManager

    return ConfigManager(config_path)


def _load_config(config_manager: ConfigManager) -> ConsoleConfig:
    """Load the configuration, exiting with a message when it is unusable."""
    from slackcore import ConfigFileError

    try:
        return config_manager.load()
    except ConfigFileError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(EXIT_FATAL) from e


@app.command()
def run(
    no_root_check: Annotated[
        bool,
        typer.Option(
            "--no-root-check",
            help="Start even when not running as root (most actions will fail).",
        ),
    ] = False,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-l",
            help="Log level: debug, info, warning or error (default: from config).",
        ),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Configuration file to use.",
        ),
    ] = None,
    keys_path: Annotated[
        Path | None,
        typer.Option(
            "--keys",
            help="Key bindings file to use.",
        ),
    ] = None,
) -> None:
    """Open the interactive console.

    Exits with status 0 on quit, 1 after an internal error and 2 when not
    running as root.
    """
    from slackcore import FatalInvariantViolation, build_session, get_default_keybindings_path
    from slackcore.config import get_default_log_path
    from slackcore.slackware import is_root
    from slacktui import KeyBindings, run_console

    from .logging_config import configure_logging

    if not no_root_check and not is_root():
        console.print(
            "[red]The console manages system packages and must run as root.[/red]\n"
            "Use --no-root-check to start it anyway."
        )
        raise typer.Exit(EXIT_NOT_ROOT)

    config_manager = _get_config_manager(config_path)
    config = _load_config(config_manager)
    general = config.general
    log_stream = configure_logging(
        log_level or general.log_level.value, general.log_file or get_default_log_path()
    )
    log = structlog.get_logger(__name__).bind(component="cli")
    log.info("console_starting", version=__version__, config=str(config_manager.config_path))

    try:
        key_bindings = KeyBindings.load(keys_path or get_default_keybindings_path())
        session = build_session(config)
        exit_code = run_console(session, key_bindings)
    except FatalInvariantViolation as e:
        log.error("fatal_invariant_violation", error=str(e))
        console.print(f"[red]Internal error: {escape(str(e))}[/red]")
        exit_code = EXIT_FATAL
    finally:
        log.info("console_stopped")
        if log_stream is not None:
            log_stream.flush()

    raise typer.Exit(exit_code)


@app.command()
def info(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Configuration file to use."),
    ] = None,
) -> None:
    """Show the detected release, bootloader and active mirror."""
    from slackcore import ConsoleError
    from slackcore.slackware import detect_bootloader, detect_version, is_root, read_mirrors

    config = _load_config(_get_config_manager(config_path))

    table = Table(title="System", show_header=False)
    table.add_column("Item", style="cyan")
    table.add_column("Value")

    try:
        release = detect_version(config.general.version_file).display_name
    except ConsoleError as e:
        release = f"[yellow]{escape(e.notice)}[/yellow]"
    table.add_row("Release", release)
    table.add_row("Bootloader", detect_bootloader().value)

    try:
        entries = read_mirrors(config.mirrors.mirrors_file)
        active = [entry.url or entry.name for entry in entries if entry.active]
        mirror = "\n".join(active) if active else "[yellow]none selected[/yellow]"
    except ConsoleError as e:
        mirror = f"[yellow]{escape(e.notice)}[/yellow]"
    table.add_row("Active mirror", mirror)
    table.add_row("Running as root", "yes" if is_root() else "no")

    console.print(table)


@app.command()
def keys(
    keys_path: Annotated[
        Path | None,
        typer.Option("--keys", help="Key bindings file to use."),
    ] = None,
    write: Annotated[
        bool,
        typer.Option("--write", "-w", help="Write the bindings to the key bindings file."),
    ] = False,
) -> None:
    """Show the key bindings."""
    from slackcore import get_default_keybindings_path
    from slacktui import KeyBindings
    from slacktui.key_bindings import ACTION_DESCRIPTIONS

    path = keys_path or get_default_keybindings_path()
    bindings = KeyBindings.load(path)

    table = Table(title=f"Key bindings ({path})")
    table.add_column("Action", style="cyan")
    table.add_column("Key", style="bold")
    table.add_column("Description")
    bound = bindings.list_all()
    for action, description in ACTION_DESCRIPTIONS.items():
        table.add_row(action, bound.get(action, "[dim]unbound[/dim]"), description)
    console.print(table)

    if write:
        bindings.save(path)
        console.print(f"[green]Key bindings written to {path}[/green]")


# Create config subcommand group
config_app = typer.Typer(
    name="config",
    help="Manage configuration.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


@config_app.command("show")
def config_show() -> None:
    """Show current configuration."""
    import yaml

    config_manager = _get_config_manager()
    config = _load_config(config_manager)

    console.print(f"[bold]Configuration File:[/bold] {config_manager.config_path}")
    console.print()

    data = config.model_dump(mode="json")
    yaml_str = yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    console.print(yaml_str, markup=False)


@config_app.command("init")
def config_init(
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            "-f",
            help="Overwrite existing configuration.",
        ),
    ] = False,
) -> None:
    """Initialize configuration file."""
    config_manager = _get_config_manager()

    if config_manager.init_config(force=force):
        console.print(f"[green]Configuration initialized: {config_manager.config_path}[/green]")
    else:
        console.print(
            f"[yellow]Configuration already exists: {config_manager.config_path}[/yellow]"
        )
        console.print("Use --force to overwrite.")


@config_app.command("path")
def config_path() -> None:
    """Show configuration file path."""
    config_manager = _get_config_manager()
    console.print(str(config_manager.config_path))


if __name__ == "__main__":
    app()
