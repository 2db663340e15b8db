"""Tabs, actions and task plans.

An ActionSpec turns user input into a TaskPlan, which is what the user
confirms: an ordered list of steps that run one after another. Command
steps become tasks on the runner; FileEdit steps are applied through the
configuration transaction. Hooks let the code that built the plan watch
the output and propose what happens next.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path  # noqa: TC003 - used in dataclass fields at runtime
from typing import TYPE_CHECKING

from .runner import TaskSpec

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .forms import Form
    from .list_model import ListEntry
    from .output_buffer import OutputLine
    from .streaming import OutputEvent, TaskResult


class Tab(str, Enum):
    """Top-level tabs of the console, in display order."""

    SYSTEM_UPDATE = "system_update"
    SBOTOOLS = "sbotools"
    USER_SETUP = "user_setup"
    MIRRORS = "mirrors"
    PACKAGES = "packages"
    CONFIG = "config"

    @property
    def title(self) -> str:
        """Label shown on the tab."""
        return TAB_TITLES[self]

    def next(self) -> Tab:
        """Tab to the right, wrapping around."""
        order = list(Tab)
        return order[(order.index(self) + 1) % len(order)]

    def previous(self) -> Tab:
        """Tab to the left, wrapping around."""
        order = list(Tab)
        return order[(order.index(self) - 1) % len(order)]


TAB_TITLES: dict[Tab, str] = {
    Tab.SYSTEM_UPDATE: "System Update",
    Tab.SBOTOOLS: "SBo Tools",
    Tab.USER_SETUP: "User Setup",
    Tab.MIRRORS: "Mirrors",
    Tab.PACKAGES: "Packages",
    Tab.CONFIG: "Config",
}


@dataclass(slots=True)
class FileEdit:
    """Plan step rewriting a text file through the transaction layer.

    Attributes:
        label: Human readable name of the step
        path: File to rewrite
        transform: Function mapping old content to new content
    """

    label: str
    path: Path
    transform: Callable[[str], str]

    def display(self) -> str:
        """Description for confirmation prompts."""
        return f"edit {self.path}"


PlanStep = TaskSpec | FileEdit


@dataclass
class Completion:
    """What the plan's builder wants to happen after the plan ends.

    Attributes:
        follow_up: Plan offered for confirmation next
        notice: Message attached to the resulting state
        entries: Replacement source sets for list models, keyed by tab
    """

    follow_up: TaskPlan | None = None
    notice: str | None = None
    entries: dict[Tab, list[ListEntry]] = field(default_factory=dict)


@dataclass
class TaskPlan:
    """A user-confirmed sequence of steps.

    Attributes:
        label: Name of the whole plan
        steps: Steps in execution order (at least one)
        prompt: Question shown when asking for confirmation
        warning: Extra caution shown with the prompt
        watcher: Called for every output line; may return a line to add
        on_complete: Called with the final result and the captured output
        on_decline: Called when the user declines; may return a notice
    """

    label: str
    steps: list[PlanStep]
    prompt: str = ""
    warning: str | None = None
    watcher: Callable[[OutputEvent], str | None] | None = None
    on_complete: Callable[[TaskResult, Sequence[OutputLine]], Completion] | None = None
    on_decline: Callable[[], str | None] | None = None

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("A task plan needs at least one step")
        if not self.prompt:
            self.prompt = f"Run {self.label}?"

    def describe(self) -> list[str]:
        """One line per step for the confirmation view."""
        return [f"{index}. {step.display()}" for index, step in enumerate(self.steps, start=1)]


@dataclass(frozen=True)
class ActionRequest:
    """Input collected for an action before its plan is built."""

    form: Form | None = None
    entry: ListEntry | None = None


@dataclass(frozen=True)
class ActionSpec:
    """One entry of a tab's action menu.

    Attributes:
        id: Stable identifier used by the UI
        label: Menu text
        build_plan: Turns the collected input into a TaskPlan
        description: One-line help shown next to the menu
        form_factory: Builds the parameter form, None when no input is needed
        needs_entry: Whether the action works on the selected list entry
    """

    id: str
    label: str
    build_plan: Callable[[ActionRequest], TaskPlan]
    description: str = ""
    form_factory: Callable[[], Form] | None = None
    needs_entry: bool = False
