"""Configuration models for the Slackware console.

Settings are read from YAML and validated with Pydantic. Every field has a
default so that an empty or missing configuration file yields a working
console.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path  # noqa: TC003 - needed at runtime by Pydantic

from pydantic import BaseModel, Field

from .list_model import VersionRule
from .output_buffer import DEFAULT_CAPACITY
from .runner import DEFAULT_GRACE_SECONDS
from .streaming import DEFAULT_QUEUE_SIZE

SBOPKG_URL = (
    "https://github.com/sbopkg/sbopkg/releases/download/0.38.2/sbopkg-0.38.2-noarch-1_wsr.tgz"
)
SBO_REPO_URL = "https://gitlab.com/SlackBuilds.org/slackbuilds.git"


class LogLevel(str, Enum):
    """Log level for the console's log file."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EditableFile(BaseModel):
    """A configuration file offered in the Config tab."""

    path: Path = Field(..., description="Absolute path of the file")
    description: str = Field(default="", description="Short description shown in the list")


def _default_editable_files() -> list[EditableFile]:
    return [
        EditableFile(path=Path("/etc/slackpkg/slackpkg.conf"), description="slackpkg settings"),
        EditableFile(path=Path("/etc/slackpkg/mirrors"), description="Package mirrors"),
        EditableFile(path=Path("/etc/sbotools/sbotools.conf"), description="sbotools settings"),
    ]


class GeneralConfig(BaseModel):
    """General console behaviour."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: Path | None = Field(
        default=None, description="Path to log file (default: XDG state dir)"
    )
    output_capacity: int = Field(
        default=DEFAULT_CAPACITY, gt=0, description="Maximum lines kept in the output view"
    )
    cancel_grace_seconds: float = Field(
        default=DEFAULT_GRACE_SECONDS,
        gt=0,
        description="Seconds between SIGTERM and SIGKILL when cancelling a task",
    )
    event_queue_size: int = Field(
        default=DEFAULT_QUEUE_SIZE, gt=0, description="Capacity of the task event channel"
    )
    version_file: Path = Field(
        default=Path("/etc/slackware-version"), description="File holding the Slackware release"
    )
    platform_version: str | None = Field(
        default=None, description="Override the detected release (e.g. '15.0', 'current')"
    )


class MirrorsConfig(BaseModel):
    """Mirror list settings."""

    mirrors_file: Path = Field(
        default=Path("/etc/slackpkg/mirrors"), description="slackpkg mirrors file"
    )
    version_rule: VersionRule = Field(
        default=VersionRule.EXACT,
        description="How a mirror's release must match the installed one: exact, family or any",
    )


class EditorConfig(BaseModel):
    """Config tab settings."""

    files: list[EditableFile] = Field(default_factory=_default_editable_files)


class CommandsConfig(BaseModel):
    """Knobs for the external commands the console runs."""

    slackpkg_batch: bool = Field(
        default=True,
        description="Pass -batch=on -default_answer=y to slackpkg (output is not a terminal)",
    )
    sbopkg_url: str = Field(default=SBOPKG_URL, description="sbopkg package download URL")
    sbo_repo_url: str = Field(default=SBO_REPO_URL, description="SlackBuilds git repository")
    inittab_file: Path = Field(default=Path("/etc/inittab"), description="inittab path")
    download_dir: Path = Field(default=Path("/tmp"), description="Where sbopkg is downloaded")


class ConsoleConfig(BaseModel):
    """Complete console configuration."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    mirrors: MirrorsConfig = Field(default_factory=MirrorsConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
