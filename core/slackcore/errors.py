"""Error taxonomy for the console engine.

Every recoverable condition derives from ConsoleError and carries a one-line
notice that the session attaches to the state that produced it. The only
non-recoverable error is FatalInvariantViolation, which signals a programming
defect and terminates the application.
"""

from __future__ import annotations

from collections.abc import Mapping


class ConsoleError(Exception):
    """Base class for recoverable console errors."""

    @property
    def notice(self) -> str:
        """One-line plain-text message suitable for display."""
        text = str(self) or type(self).__name__
        return text.splitlines()[0]


class SpawnError(ConsoleError):
    """The command could not be located or the process could not be created."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Cannot start {command}: {reason}")


class RuntimeFailure(ConsoleError):
    """A running task exited with a non-zero status or was killed by a signal."""

    def __init__(self, label: str, exit_code: int | None = None, signal: int | None = None) -> None:
        self.label = label
        self.exit_code = exit_code
        self.signal = signal
        if signal is not None:
            detail = f"terminated by signal {signal}"
        else:
            detail = f"exited with status {exit_code}"
        super().__init__(f"{label} {detail}")


class PermissionDenied(ConsoleError):
    """Insufficient rights for a file or process operation."""


class NotFound(ConsoleError):
    """A configuration file does not exist."""


class ConflictError(ConsoleError):
    """The file changed on disk since it was opened."""


class WriteError(ConsoleError):
    """The new file content could not be written or renamed into place."""


class OutOfRange(ConsoleError):
    """A list selection index does not address a visible entry."""


class ValidationError(ConsoleError):
    """Form input failed validation.

    Attributes:
        errors: Mapping of field name to its validation message.
    """

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors = dict(errors)
        first = next(iter(self.errors.values()), "Invalid input")
        super().__init__(first)


class FatalInvariantViolation(Exception):  # noqa: N818
    """An internal invariant was broken; the session cannot continue."""
