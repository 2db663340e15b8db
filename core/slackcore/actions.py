"""Action catalogue: what each tab can do.

Every ActionSpec turns user input (a filled form, a selected list entry or
nothing at all) into a TaskPlan. The concrete command lines live here and
nowhere else; the session only sees plans.

The system update actions share an UpdateCycle record so that the console
remembers a kernel upgrade until the bootloader has been refreshed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import partial
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import structlog

from .errors import ConsoleError
from .forms import FieldKind, Form, FormField
from .list_model import ListModel, make_version_matcher
from .models import ConsoleConfig
from .output_buffer import OutputBuffer
from .plans import ActionRequest, ActionSpec, Completion, FileEdit, Tab, TaskPlan
from .runner import CommandRunner, TaskSpec
from .session import Session
from .slackware import (
    Bootloader,
    SlackwareVersion,
    activate_mirror,
    detect_bootloader,
    detect_version,
    mentions_kernel_package,
    parse_sbofind,
    read_mirrors,
    set_default_runlevel,
)
from .transaction import ConfigFileTransaction

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from .list_model import ListEntry
    from .output_buffer import OutputLine
    from .streaming import OutputEvent, TaskResult

logger = structlog.get_logger(__name__)

# Supplementary groups offered for new users, with what they grant
USER_GROUPS: dict[str, str] = {
    "wheel": "Administrative access (sudo)",
    "floppy": "Access to floppy drives",
    "audio": "Access to audio devices",
    "video": "Access to video devices",
    "cdrom": "Access to CD/DVD drives",
    "plugdev": "Mount removable devices",
    "power": "Power management",
    "netdev": "Network management",
    "lp": "Printer access",
    "scanner": "Scanner access",
}

MIN_PASSWORD_LENGTH = 4
GRAPHICAL_RUNLEVEL = 4

KERNEL_NOTICE = "*** Kernel packages detected: the bootloader must be updated ***"
GRUB_NOTICE = (
    "GRUB detected - skipping LILO. "
    "Run 'grub-mkconfig -o /boot/grub/grub.cfg' if kernel was updated."
)
UNKNOWN_BOOTLOADER_NOTICE = (
    "WARNING: No bootloader configuration found. "
    "Update your bootloader manually if the kernel was updated."
)
LILO_PENDING_WARNING = (
    "The kernel was upgraded but lilo has not been run; the system may not boot. "
    "Quit again to exit anyway."
)

SEARCH_TERM_PATTERN = re.compile(r"^[\w.+-]+$")


@dataclass
class UpdateCycle:
    """What the console knows about the running update cycle."""

    kernel_updated: bool = False
    lilo_pending: bool = False


def validate_username(value: str, _form: Form) -> str | None:
    """Reject user names the shadow tools would refuse."""
    if any(ch.isspace() for ch in value):
        return "Username cannot contain spaces"
    if value.startswith("-"):
        return "Username cannot start with '-'"
    return None


def validate_password(value: str, _form: Form) -> str | None:
    if len(value) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
    if ":" in value or "\n" in value:
        return "Password cannot contain ':' or line breaks"
    return None


def validate_password_match(form: Form) -> dict[str, str]:
    """Cross-field check for the password confirmation."""
    if form.get("password").value != form.get("confirm").value:
        return {"confirm": "Passwords do not match"}
    return {}


def validate_search_term(value: str, _form: Form) -> str | None:
    if not SEARCH_TERM_PATTERN.match(value):
        return "Use letters, digits, '.', '+', '-' or '_' only"
    return None


def user_form() -> Form:
    """Form for the User Setup tab."""
    return Form(
        "Create user",
        [
            FormField(
                "username", "Username", FieldKind.TEXT, required=True, validator=validate_username
            ),
            FormField(
                "password",
                "Password",
                FieldKind.PASSWORD,
                required=True,
                validator=validate_password,
            ),
            FormField("confirm", "Confirm password", FieldKind.PASSWORD),
            FormField(
                "groups",
                "Groups",
                FieldKind.MULTI_CHOICE,
                value=frozenset(USER_GROUPS),
                choices=tuple(USER_GROUPS),
                hints=dict(USER_GROUPS),
            ),
            FormField(
                "graphical_login",
                "Boot to graphical login (runlevel 4)",
                FieldKind.TOGGLE,
                value=True,
            ),
        ],
        validator=validate_password_match,
    )


def search_form() -> Form:
    """Form for the Packages tab search."""
    return Form(
        "Search SlackBuilds",
        [
            FormField(
                "query", "Search", FieldKind.TEXT, required=True, validator=validate_search_term
            )
        ],
    )


class SlackwareActions:
    """Builds the per-tab action catalogue for a Slackware system.

    Example:
        actions = SlackwareActions(config, bootloader=Bootloader.LILO)
        catalogue = actions.catalogue()
        plan = catalogue[Tab.SYSTEM_UPDATE][0].build_plan(ActionRequest())
    """

    def __init__(
        self,
        config: ConsoleConfig,
        *,
        bootloader: Bootloader = Bootloader.UNKNOWN,
    ) -> None:
        self.config = config
        self.bootloader = bootloader
        self.cycle = UpdateCycle()
        self._log = logger.bind(component="actions")

    # -- shared helpers --------------------------------------------------

    def _slackpkg(self, label: str, *args: str) -> TaskSpec:
        flags = ["-batch=on", "-default_answer=y"] if self.config.commands.slackpkg_batch else []
        return TaskSpec(label, "slackpkg", [*flags, *args])

    def exit_warning(self) -> str | None:
        """Warning to show before quitting, None when quitting is safe."""
        if self.cycle.lilo_pending:
            return LILO_PENDING_WARNING
        return None

    def mirror_entries(self) -> list[ListEntry]:
        """Source set for the Mirrors tab."""
        return read_mirrors(self.config.mirrors.mirrors_file)

    # -- System update ---------------------------------------------------

    def _new_cycle(self) -> None:
        # A pending lilo run stays pending until lilo succeeds
        self.cycle = UpdateCycle(lilo_pending=self.cycle.lilo_pending)

    def _watch_kernel(self, event: OutputEvent) -> str | None:
        if self.cycle.kernel_updated or not mentions_kernel_package(event.text):
            return None
        self.cycle.kernel_updated = True
        if self.bootloader == Bootloader.LILO:
            self.cycle.lilo_pending = True
        self._log.info("kernel_upgrade_detected", line=event.text)
        return KERNEL_NOTICE

    def _after_upgrade(self, result: TaskResult, _lines: Sequence[OutputLine]) -> Completion:
        if not result.succeeded:
            return Completion()
        if self.bootloader == Bootloader.LILO:
            notice = "Kernel packages were upgraded" if self.cycle.kernel_updated else None
            return Completion(follow_up=self.lilo_plan(), notice=notice)
        if self.bootloader == Bootloader.GRUB:
            return Completion(notice=GRUB_NOTICE)
        return Completion(notice=UNKNOWN_BOOTLOADER_NOTICE)

    def _after_lilo(self, result: TaskResult, _lines: Sequence[OutputLine]) -> Completion:
        if result.succeeded:
            self.cycle.lilo_pending = False
            self.cycle.kernel_updated = False
            return Completion(notice="Bootloader updated")
        return Completion()

    def _lilo_declined(self) -> str | None:
        if self.cycle.lilo_pending:
            return "LILO skipped. Run lilo before rebooting."
        return None

    def update_cycle_plan(self, _request: ActionRequest | None = None) -> TaskPlan:
        """slackpkg update, install-new, upgrade-all and clean-system."""
        self._new_cycle()
        return TaskPlan(
            "Full system update",
            [
                self._slackpkg("Update package lists", "update"),
                self._slackpkg("Install new packages", "install-new"),
                self._slackpkg("Upgrade all packages", "upgrade-all"),
                self._slackpkg("Clean system", "clean-system"),
            ],
            prompt="Run the full slackpkg update cycle?",
            warning="clean-system removes every package that is not part of the official tree.",
            watcher=self._watch_kernel,
            on_complete=self._after_upgrade,
        )

    def single_step_plan(
        self, label: str, subcommand: str, _request: ActionRequest | None = None
    ) -> TaskPlan:
        """One slackpkg subcommand; upgrades get the kernel watcher."""
        upgrades = subcommand in ("upgrade-all", "install-new")
        if upgrades:
            self._new_cycle()
        return TaskPlan(
            label,
            [self._slackpkg(label, subcommand)],
            watcher=self._watch_kernel if upgrades else None,
            on_complete=self._after_upgrade if upgrades else None,
        )

    def lilo_plan(self, _request: ActionRequest | None = None) -> TaskPlan:
        warning = None
        if self.cycle.kernel_updated:
            warning = "Kernel packages were upgraded. Without lilo the system may not boot."
        return TaskPlan(
            "Update bootloader",
            [TaskSpec("Run lilo", "lilo", ["-v"])],
            prompt="Update the bootloader (lilo) now?",
            warning=warning,
            on_complete=self._after_lilo,
            on_decline=self._lilo_declined,
        )

    # -- sbotools --------------------------------------------------------

    def install_sbotools_plan(self, _request: ActionRequest | None = None) -> TaskPlan:
        commands = self.config.commands
        filename = PurePosixPath(urlparse(commands.sbopkg_url).path).name
        package = str(commands.download_dir / filename)
        return TaskPlan(
            "Install sbotools",
            [
                TaskSpec("Download sbopkg", "wget", ["-O", package, commands.sbopkg_url]),
                TaskSpec("Install sbopkg", "installpkg", [package]),
                TaskSpec("Sync SlackBuilds with sbopkg", "sbopkg", ["-r"]),
                TaskSpec("Install sbotools", "sbopkg", ["-B", "-i", "sbotools"]),
                TaskSpec("Set SlackBuilds repository", "sboconfig", ["-r", commands.sbo_repo_url]),
                TaskSpec("Fetch SlackBuilds tree", "sbosnap", ["fetch"]),
            ],
            prompt="Download and install sbopkg and sbotools?",
        )

    def sync_slackbuilds_plan(self, _request: ActionRequest | None = None) -> TaskPlan:
        return TaskPlan(
            "Update SlackBuilds tree",
            [TaskSpec("Update SlackBuilds tree", "sbosnap", ["update"])],
        )

    # -- User setup ------------------------------------------------------

    def create_user_plan(self, request: ActionRequest) -> TaskPlan:
        if request.form is None:
            raise ValueError("create_user needs a filled form")
        values = request.form.values()
        username = values["username"]
        groups = [group for group in USER_GROUPS if group in values["groups"]]

        args = ["-m", "-g", "users"]
        if groups:
            args += ["-G", ",".join(groups)]
        args += ["-s", "/bin/bash", username]

        steps: list[TaskSpec | FileEdit] = [
            TaskSpec(f"Create user {username}", "useradd", args),
            TaskSpec(
                "Set password",
                "chpasswd",
                stdin_data=f"{username}:{values['password']}\n".encode(),
            ),
        ]
        if values["graphical_login"]:
            steps.append(
                FileEdit(
                    "Boot to graphical login",
                    self.config.commands.inittab_file,
                    partial(set_default_runlevel, runlevel=GRAPHICAL_RUNLEVEL),
                )
            )
        return TaskPlan(f"Create user {username}", steps, prompt=f"Create user '{username}'?")

    # -- Mirrors ---------------------------------------------------------

    def _reload_mirrors(self, _result: TaskResult, _lines: Sequence[OutputLine]) -> Completion:
        # The file edit may have succeeded even when slackpkg failed afterwards.
        try:
            entries = self.mirror_entries()
        except ConsoleError as e:
            return Completion(notice=e.notice)
        return Completion(entries={Tab.MIRRORS: entries})

    def activate_mirror_plan(self, request: ActionRequest) -> TaskPlan:
        if request.entry is None or request.entry.url is None:
            raise ValueError("activate_mirror needs a selected mirror")
        url = request.entry.url
        return TaskPlan(
            f"Use mirror {request.entry.name}",
            [
                FileEdit(
                    "Activate mirror",
                    self.config.mirrors.mirrors_file,
                    partial(activate_mirror, url=url),
                ),
                self._slackpkg("Update GPG key", "update", "gpg"),
                self._slackpkg("Update package lists", "update"),
            ],
            prompt=f"Switch slackpkg to {url}?",
            on_complete=self._reload_mirrors,
        )

    # -- Packages --------------------------------------------------------

    def _load_search_results(
        self, result: TaskResult, lines: Sequence[OutputLine]
    ) -> Completion:
        entries = parse_sbofind("\n".join(line.text for line in lines))
        if not entries:
            return Completion(notice="No packages found", entries={Tab.PACKAGES: []})
        notice = f"{len(entries)} packages found" if result.succeeded else None
        return Completion(notice=notice, entries={Tab.PACKAGES: entries})

    def search_plan(self, request: ActionRequest) -> TaskPlan:
        if request.form is None:
            raise ValueError("search needs a filled form")
        query = request.form.values()["query"]
        return TaskPlan(
            f"Search SlackBuilds for {query}",
            [TaskSpec(f"Search {query}", "sbofind", [query])],
            on_complete=self._load_search_results,
        )

    def install_package_plan(self, request: ActionRequest) -> TaskPlan:
        if request.entry is None:
            raise ValueError("install_package needs a selected package")
        name = request.entry.name
        return TaskPlan(
            f"Install {name}",
            [TaskSpec(f"Install {name}", "sboinstall", ["-r", name])],
            prompt=f"Build and install {name} and its dependencies?",
        )

    # -- catalogue -------------------------------------------------------

    def _step(self, action_id: str, label: str, subcommand: str) -> ActionSpec:
        return ActionSpec(
            action_id,
            label,
            partial(self.single_step_plan, label, subcommand),
            description=f"slackpkg {subcommand}",
        )

    def catalogue(self) -> dict[Tab, list[ActionSpec]]:
        """Actions per tab, in menu order."""
        return {
            Tab.SYSTEM_UPDATE: [
                ActionSpec(
                    "update_cycle",
                    "Full update",
                    self.update_cycle_plan,
                    description="update, install-new, upgrade-all and clean-system",
                ),
                self._step("update_lists", "Update package lists", "update"),
                self._step("install_new", "Install new packages", "install-new"),
                self._step("upgrade_all", "Upgrade all packages", "upgrade-all"),
                self._step("clean_system", "Clean system", "clean-system"),
                ActionSpec(
                    "run_lilo",
                    "Run lilo",
                    self.lilo_plan,
                    description="Reinstall the LILO boot loader",
                ),
            ],
            Tab.SBOTOOLS: [
                ActionSpec(
                    "install_sbotools",
                    "Install sbotools",
                    self.install_sbotools_plan,
                    description="sbopkg, sbotools and the SlackBuilds git tree",
                ),
                ActionSpec(
                    "sync_slackbuilds",
                    "Update SlackBuilds tree",
                    self.sync_slackbuilds_plan,
                    description="sbosnap update",
                ),
            ],
            Tab.USER_SETUP: [
                ActionSpec(
                    "create_user",
                    "Create user",
                    self.create_user_plan,
                    description="Add a login user with groups",
                    form_factory=user_form,
                ),
            ],
            Tab.MIRRORS: [
                ActionSpec(
                    "activate_mirror",
                    "Use selected mirror",
                    self.activate_mirror_plan,
                    description="Activate the mirror and refresh package lists",
                    needs_entry=True,
                ),
            ],
            Tab.PACKAGES: [
                ActionSpec(
                    "search",
                    "Search",
                    self.search_plan,
                    description="sbofind",
                    form_factory=search_form,
                ),
                ActionSpec(
                    "install_package",
                    "Install selected",
                    self.install_package_plan,
                    description="sboinstall -r",
                    needs_entry=True,
                ),
            ],
            Tab.CONFIG: [],
        }


def build_session(
    config: ConsoleConfig,
    *,
    platform: SlackwareVersion | None = None,
    bootloader: Bootloader | None = None,
) -> Session:
    """Wire a Session for the running system.

    Args:
        config: Console configuration.
        platform: Installed release; detected from the version file when None.
        bootloader: Bootloader; detected from the filesystem when None.

    Returns:
        A session in its initial Browsing(SystemUpdate) state.
    """
    general = config.general
    notice = None
    if platform is None and general.platform_version:
        platform = SlackwareVersion.from_string(general.platform_version)
    if platform is None:
        try:
            platform = detect_version(general.version_file)
        except ConsoleError as e:
            notice = f"{e.notice} Mirror version filtering is off."
            logger.warning("platform_detection_failed", error=str(e))
    if bootloader is None:
        bootloader = detect_bootloader()

    actions = SlackwareActions(config, bootloader=bootloader)
    mirrors = ListModel(
        platform_version=platform.key if platform else None,
        version_matcher=make_version_matcher(config.mirrors.version_rule),
        search_fields=("name", "url", "region"),
    )
    packages = ListModel(search_fields=("name", "description", "category"))

    session = Session(
        runner=CommandRunner(
            grace_seconds=general.cancel_grace_seconds, queue_size=general.event_queue_size
        ),
        output=OutputBuffer(general.output_capacity),
        transaction=ConfigFileTransaction(),
        catalogue=actions.catalogue(),
        lists={Tab.MIRRORS: mirrors, Tab.PACKAGES: packages},
        list_sources={Tab.MIRRORS: actions.mirror_entries},
        editable_files=[f.path for f in config.editor.files],
        quit_guard=actions.exit_warning,
        notice=notice,
    )
    session.reload_list(Tab.MIRRORS)
    logger.info(
        "session_created",
        platform=platform.key if platform else None,
        bootloader=bootloader.value,
    )
    return session
