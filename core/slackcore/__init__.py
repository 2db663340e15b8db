"""Slackware Console Core Library.

Engine of the Slackware maintenance console: everything except drawing.

The UI (slacktui) and the command line (slackcli) are thin layers over the
Session defined here, so that every behaviour can be exercised without a
terminal.

Module Overview:
    actions: Per-tab action catalogue and session wiring
    config: YAML-based configuration management (XDG spec compliant)
    errors: Error taxonomy (ConsoleError and FatalInvariantViolation)
    forms: Typed input forms with per-field validation
    list_model: Filtered/sorted projection over mirrors and packages
    models: Pydantic configuration models
    output_buffer: Bounded output buffer with tail-relative scrolling
    plans: Tabs, action specs and task plans
    runner: External command execution with cancellation
    session: Session state machine
    slackware: Slackware system files (release, bootloader, mirrors, inittab)
    streaming: Output and result events of a task
    transaction: Atomic, conflict-checked configuration file edits
"""

from importlib.metadata import version as get_package_version

from slackcore.actions import SlackwareActions, UpdateCycle, build_session
from slackcore.config import (
    ConfigFileError,
    ConfigManager,
    YamlConfigLoader,
    get_config_dir,
    get_default_config_path,
    get_default_keybindings_path,
    get_default_log_path,
)
from slackcore.errors import (
    ConflictError,
    ConsoleError,
    FatalInvariantViolation,
    NotFound,
    OutOfRange,
    PermissionDenied,
    RuntimeFailure,
    SpawnError,
    ValidationError,
    WriteError,
)
from slackcore.forms import FieldKind, Form, FormField
from slackcore.list_model import ListEntry, ListModel, SortKey, VersionRule
from slackcore.models import ConsoleConfig, LogLevel
from slackcore.output_buffer import OutputBuffer, OutputLine
from slackcore.plans import ActionRequest, ActionSpec, Completion, FileEdit, Tab, TaskPlan
from slackcore.runner import CommandRunner, TaskHandle, TaskSpec
from slackcore.session import (
    Browsing,
    Confirming,
    Editing,
    FormEntry,
    Session,
    SessionState,
    TaskFinished,
    TaskRunning,
)
from slackcore.slackware import Bootloader, SlackwareVersion
from slackcore.streaming import Channel, OutputEvent, TaskResult, TaskStatus
from slackcore.transaction import ConfigDocument, ConfigFileTransaction

__version__ = get_package_version("slackware-console")

__all__ = [
    "ActionRequest",
    "ActionSpec",
    "Bootloader",
    "Browsing",
    "Channel",
    "CommandRunner",
    "Completion",
    "ConfigDocument",
    "ConfigFileError",
    "ConfigFileTransaction",
    "ConfigManager",
    "ConflictError",
    "Confirming",
    "ConsoleConfig",
    "ConsoleError",
    "Editing",
    "FatalInvariantViolation",
    "FieldKind",
    "FileEdit",
    "Form",
    "FormEntry",
    "FormField",
    "ListEntry",
    "ListModel",
    "LogLevel",
    "NotFound",
    "OutOfRange",
    "OutputBuffer",
    "OutputEvent",
    "OutputLine",
    "PermissionDenied",
    "RuntimeFailure",
    "Session",
    "SessionState",
    "SlackwareActions",
    "SlackwareVersion",
    "SortKey",
    "SpawnError",
    "Tab",
    "TaskFinished",
    "TaskHandle",
    "TaskPlan",
    "TaskResult",
    "TaskRunning",
    "TaskSpec",
    "TaskStatus",
    "UpdateCycle",
    "ValidationError",
    "VersionRule",
    "WriteError",
    "YamlConfigLoader",
    "__version__",
    "build_session",
    "get_config_dir",
    "get_default_config_path",
    "get_default_keybindings_path",
    "get_default_log_path",
]
