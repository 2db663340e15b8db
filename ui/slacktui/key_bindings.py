"""Configurable key bindings for the console.

Bindings map action names (tab_1, quit, save, ...) to key strings. The
defaults follow the classic Slackware console layout: F1-F6 select tabs,
Alt+Left/Right cycle them and Ctrl+Q quits. Users override any of them in
keybindings.toml; an empty string disables an action.
"""

from __future__ import annotations

import re
import tomllib
from collections.abc import Mapping  # noqa: TC003 - Mapping is used at runtime
from pathlib import Path  # noqa: TC003 - Path is used at runtime in save/load methods

import structlog

logger = structlog.get_logger(__name__)


class InvalidKeyError(Exception):
    """Raised when an invalid key format is provided."""


# Key aliases for normalization
KEY_ALIASES: dict[str, str] = {
    "esc": "escape",
    "return": "enter",
    "cr": "enter",
    "del": "delete",
    "bs": "backspace",
    "pgup": "pageup",
    "pgdn": "pagedown",
    "pgdown": "pagedown",
    "ins": "insert",
    "spacebar": "space",
}

VALID_MODIFIERS = frozenset({"ctrl", "alt", "shift", "meta", "super"})

VALID_SPECIAL_KEYS = frozenset(
    {
        "escape",
        "enter",
        "tab",
        "space",
        "backspace",
        "delete",
        "insert",
        "home",
        "end",
        "pageup",
        "pagedown",
        "up",
        "down",
        "left",
        "right",
    }
)

MODIFIER_ORDER = {"ctrl": 0, "alt": 1, "shift": 2, "meta": 3, "super": 4}

# Default key bindings (action -> key)
DEFAULT_BINDINGS: dict[str, str] = {
    # Tab navigation
    "tab_1": "f1",
    "tab_2": "f2",
    "tab_3": "f3",
    "tab_4": "f4",
    "tab_5": "f5",
    "tab_6": "f6",
    "next_tab": "alt+right",
    "prev_tab": "alt+left",
    # Session actions
    "quit": "ctrl+q",
    "cancel": "ctrl+c",
    "save": "ctrl+s",
    "discard": "ctrl+x",
    "reload": "ctrl+r",
    "help": "f12",
    # Confirmation prompt
    "accept": "y",
    "decline": "n",
    "amend": "e",
    "back": "escape",
    # Output scrolling
    "scroll_up": "shift+pageup",
    "scroll_down": "shift+pagedown",
    "scroll_top": "shift+home",
    "scroll_bottom": "shift+end",
}

# Actions that must win over the focused widget's own bindings
PRIORITY_ACTIONS = frozenset(
    {
        "tab_1",
        "tab_2",
        "tab_3",
        "tab_4",
        "tab_5",
        "tab_6",
        "next_tab",
        "prev_tab",
        "quit",
        "cancel",
        "save",
        "discard",
        "reload",
        "help",
        "scroll_up",
        "scroll_down",
        "scroll_top",
        "scroll_bottom",
    }
)

ACTION_DESCRIPTIONS: dict[str, str] = {
    "tab_1": "System Update",
    "tab_2": "SBo Tools",
    "tab_3": "User Setup",
    "tab_4": "Mirrors",
    "tab_5": "Packages",
    "tab_6": "Config",
    "next_tab": "Next tab",
    "prev_tab": "Previous tab",
    "quit": "Quit",
    "cancel": "Cancel task",
    "save": "Save / Submit",
    "discard": "Discard edits",
    "reload": "Reload list",
    "help": "Help",
    "accept": "Yes",
    "decline": "No",
    "amend": "Edit form",
    "back": "Back",
    "scroll_up": "Scroll up",
    "scroll_down": "Scroll down",
    "scroll_top": "Scroll to top",
    "scroll_bottom": "Scroll to bottom",
}

TOML_SECTIONS: dict[str, tuple[str, ...]] = {
    "tab_navigation": ("tab_", "next_tab", "prev_tab"),
    "output": ("scroll_",),
}


def normalize_key(key: str) -> str:
    """Normalize a key string to a canonical form.

    Lowercases the key, orders modifiers (ctrl, alt, shift, meta, super) and
    resolves aliases such as esc -> escape.

    Args:
        key: Key string to normalize.

    Returns:
        Normalized key string.

    Raises:
        InvalidKeyError: If the key format is invalid.
    """
    if not key or not key.strip():
        raise InvalidKeyError("Key cannot be empty")

    key = key.lower().strip()
    parts = key.split("+")
    if any(not part.strip() for part in parts):
        raise InvalidKeyError(f"Invalid key format: {key}")

    modifiers: list[str] = []
    main_key: str | None = None
    for raw in parts:
        part = KEY_ALIASES.get(raw.strip(), raw.strip())
        if part in VALID_MODIFIERS:
            modifiers.append(part)
        elif main_key is None:
            main_key = part
        else:
            raise InvalidKeyError(f"Multiple main keys in binding: {key}")

    if main_key is None:
        raise InvalidKeyError(f"No main key in binding: {key}")

    if (
        len(main_key) > 1
        and main_key not in VALID_SPECIAL_KEYS
        and not re.match(r"^f\d{1,2}$", main_key)
    ):
        raise InvalidKeyError(f"Invalid key: {main_key}")

    modifiers.sort(key=lambda m: MODIFIER_ORDER.get(m, 99))
    return "+".join([*modifiers, main_key])


class KeyBindings:
    """Action-to-key mapping with TOML persistence.

    Example:
        bindings = KeyBindings({"quit": "ctrl+w"})
        bindings.get_action("ctrl+w")  # "quit"
        bindings.save(Path("~/.config/slackware-console/keybindings.toml"))
    """

    def __init__(self, custom_bindings: Mapping[str, str | None] | None = None) -> None:
        """Initialize key bindings.

        Args:
            custom_bindings: Optional mapping of action names to key strings.
                A None or empty key disables the action.

        Raises:
            InvalidKeyError: If a custom key cannot be parsed.
        """
        self._key_to_action: dict[str, str] = {}
        self._action_to_key: dict[str, str] = {}

        for action, key in DEFAULT_BINDINGS.items():
            self._bind(normalize_key(key), action)

        if custom_bindings:
            for action, key in custom_bindings.items():
                self._unbind_action(action)
                if key:
                    self.set_binding(key, action)

    def _bind(self, normalized: str, action: str) -> None:
        self._key_to_action[normalized] = action
        self._action_to_key[action] = normalized

    def _unbind_action(self, action: str) -> None:
        old_key = self._action_to_key.pop(action, None)
        if old_key is not None:
            self._key_to_action.pop(old_key, None)

    def get_action(self, key: str) -> str | None:
        """Get the action bound to a key.

        Args:
            key: Key string (e.g., "f1", "alt+right").

        Returns:
            Action name, or None if the key is not bound or invalid.
        """
        try:
            return self._key_to_action.get(normalize_key(key))
        except InvalidKeyError:
            return None

    def get_key_for_action(self, action: str) -> str | None:
        """Get the key bound to an action, None when unbound."""
        return self._action_to_key.get(action)

    def is_priority(self, action: str) -> bool:
        """Whether the action overrides the focused widget's bindings."""
        return action in PRIORITY_ACTIONS

    def set_binding(self, key: str, action: str) -> None:
        """Bind a key to an action, replacing both old mappings.

        Raises:
            InvalidKeyError: If the key format is invalid.
        """
        normalized = normalize_key(key)
        old_action = self._key_to_action.get(normalized)
        if old_action is not None:
            self._action_to_key.pop(old_action, None)
        self._unbind_action(action)
        self._bind(normalized, action)

    def remove_binding(self, key: str) -> None:
        """Unbind a key; unknown or invalid keys are ignored."""
        try:
            normalized = normalize_key(key)
        except InvalidKeyError:
            return
        action = self._key_to_action.pop(normalized, None)
        if action is not None:
            self._action_to_key.pop(action, None)

    def reset_to_defaults(self) -> None:
        """Reset all bindings to defaults."""
        self._key_to_action.clear()
        self._action_to_key.clear()
        for action, key in DEFAULT_BINDINGS.items():
            self._bind(normalize_key(key), action)

    def list_all(self) -> dict[str, str]:
        """Dict mapping action names to key strings."""
        return dict(self._action_to_key)

    def overrides(self) -> dict[str, str]:
        """Bindings that differ from the defaults, as action -> key."""
        defaults = {action: normalize_key(key) for action, key in DEFAULT_BINDINGS.items()}
        return {
            action: key
            for action, key in self._action_to_key.items()
            if defaults.get(action) != key
        }

    def save(self, path: Path) -> None:
        """Save bindings to a TOML file.

        Args:
            path: Path to the TOML file.
        """
        sections: dict[str, dict[str, str]] = {name: {} for name in (*TOML_SECTIONS, "app")}
        for action, key in self._action_to_key.items():
            section = next(
                (
                    name
                    for name, prefixes in TOML_SECTIONS.items()
                    if action.startswith(prefixes)
                ),
                "app",
            )
            sections[section][action] = key

        lines: list[str] = []
        for name, bindings in sections.items():
            if not bindings:
                continue
            lines.append(f"[{name}]")
            lines.extend(f'{action} = "{key}"' for action, key in sorted(bindings.items()))
            lines.append("")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines))
        logger.info("keybindings_saved", path=str(path))

    @classmethod
    def load(cls, path: Path) -> KeyBindings:
        """Load bindings from a TOML file.

        A missing file yields the defaults. A malformed file is logged and
        ignored so that the console always starts with usable keys.

        Args:
            path: Path to the TOML file.

        Returns:
            KeyBindings instance with loaded configuration.
        """
        if not path.exists():
            return cls()

        try:
            data = tomllib.loads(path.read_text())
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("keybindings_unreadable", path=str(path), error=str(e))
            return cls()

        custom: dict[str, str | None] = {}
        for section in (*TOML_SECTIONS, "app"):
            table = data.get(section)
            if not isinstance(table, dict):
                continue
            for action, key in table.items():
                if isinstance(key, str):
                    custom[action] = key

        try:
            return cls(custom_bindings=custom)
        except InvalidKeyError as e:
            logger.warning("keybindings_invalid", path=str(path), error=str(e))
            return cls()
