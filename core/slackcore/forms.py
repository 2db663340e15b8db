"""Typed input forms.

A Form is an ordered list of FormField slots plus a cursor that always points
at one of them. Validation annotates individual fields and raises a single
ValidationError listing every problem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class FieldKind(str, Enum):
    """Kind of value a field holds."""

    TEXT = "text"
    PASSWORD = "password"
    CHOICE = "choice"
    MULTI_CHOICE = "multi_choice"
    TOGGLE = "toggle"


@dataclass
class FormField:
    """One named input slot.

    Attributes:
        name: Identifier used by validators and plan builders
        label: Text shown next to the input
        kind: Type of the value
        value: str for text kinds and CHOICE, frozenset for MULTI_CHOICE,
            bool for TOGGLE
        choices: Allowed values for CHOICE and MULTI_CHOICE
        hints: Optional description per choice
        required: Whether an empty value is rejected
        validator: Callable (value, form) returning an error message or None
        error: Message from the last validation, None when valid
    """

    name: str
    label: str
    kind: FieldKind = FieldKind.TEXT
    value: Any = None
    choices: tuple[str, ...] = ()
    hints: dict[str, str] = field(default_factory=dict)
    required: bool = False
    validator: Callable[[Any, Form], str | None] | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if self.value is None:
            self.value = self._empty_value()
        if self.kind == FieldKind.MULTI_CHOICE:
            self.value = frozenset(self.value)

    def _empty_value(self) -> Any:
        if self.kind == FieldKind.MULTI_CHOICE:
            return frozenset()
        if self.kind == FieldKind.TOGGLE:
            return False
        if self.kind == FieldKind.CHOICE and self.choices:
            return self.choices[0]
        return ""

    @property
    def is_empty(self) -> bool:
        """Whether the field has no meaningful value."""
        if self.kind == FieldKind.TOGGLE:
            return False
        return not self.value

    def set_value(self, value: Any) -> None:
        """Assign a value, checking it against the field kind.

        Raises:
            ValueError: If the value is not allowed for this field.
        """
        if self.kind == FieldKind.CHOICE and value not in self.choices:
            raise ValueError(f"{value!r} is not a valid choice for {self.name}")
        if self.kind == FieldKind.MULTI_CHOICE:
            value = frozenset(value)
            unknown = value.difference(self.choices)
            if unknown:
                raise ValueError(f"Unknown choices for {self.name}: {', '.join(sorted(unknown))}")
        if self.kind == FieldKind.TOGGLE:
            value = bool(value)
        self.value = value
        self.error = None

    def toggle(self, choice: str | None = None) -> None:
        """Flip a TOGGLE field or one option of a MULTI_CHOICE field."""
        if self.kind == FieldKind.TOGGLE:
            self.set_value(not self.value)
        elif self.kind == FieldKind.MULTI_CHOICE and choice is not None:
            self.set_value(self.value ^ {choice})
        else:
            raise ValueError(f"Field {self.name} cannot be toggled")

    def display_value(self) -> str:
        """Text representation, masking passwords."""
        if self.kind == FieldKind.PASSWORD:
            return "*" * len(self.value)
        if self.kind == FieldKind.MULTI_CHOICE:
            return ",".join(choice for choice in self.choices if choice in self.value)
        if self.kind == FieldKind.TOGGLE:
            return "[x]" if self.value else "[ ]"
        return str(self.value)

    def check(self, form: Form) -> str | None:
        """Validate this field and record the outcome in error."""
        message: str | None = None
        if self.required and self.is_empty:
            message = f"{self.label} cannot be empty"
        elif self.validator is not None:
            message = self.validator(self.value, form)
        self.error = message
        return message


class Form:
    """Ordered set of fields with a focus cursor.

    Example:
        form = Form("Search", [FormField("query", "Query", required=True)])
        form.set("query", "ffmpeg")
        form.validate()
        form.values()  # {"query": "ffmpeg"}
    """

    def __init__(
        self,
        title: str,
        fields: Iterable[FormField],
        *,
        validator: Callable[[Form], dict[str, str]] | None = None,
    ) -> None:
        """Initialize the form.

        Args:
            title: Heading of the form.
            fields: Fields in display order (at least one).
            validator: Cross-field check returning {field name: message}.

        Raises:
            ValueError: If no fields are given or names repeat.
        """
        self.title = title
        self.fields = list(fields)
        if not self.fields:
            raise ValueError("A form needs at least one field")
        names = [f.name for f in self.fields]
        if len(set(names)) != len(names):
            raise ValueError("Form field names must be unique")
        self._validator = validator
        self._cursor = 0

    @property
    def cursor(self) -> int:
        """Index of the focused field."""
        return self._cursor

    @property
    def focused(self) -> FormField:
        """The focused field."""
        return self.fields[self._cursor]

    @property
    def errors(self) -> dict[str, str]:
        """Current validation messages by field name."""
        return {f.name: f.error for f in self.fields if f.error}

    def focus_next(self) -> FormField:
        """Move the cursor forward, wrapping at the end."""
        self._cursor = (self._cursor + 1) % len(self.fields)
        return self.focused

    def focus_previous(self) -> FormField:
        """Move the cursor backward, wrapping at the start."""
        self._cursor = (self._cursor - 1) % len(self.fields)
        return self.focused

    def focus(self, name: str) -> FormField:
        """Move the cursor to the named field.

        Raises:
            KeyError: If no field has that name.
        """
        for index, candidate in enumerate(self.fields):
            if candidate.name == name:
                self._cursor = index
                return candidate
        raise KeyError(name)

    def get(self, name: str) -> FormField:
        """Return the named field.

        Raises:
            KeyError: If no field has that name.
        """
        for candidate in self.fields:
            if candidate.name == name:
                return candidate
        raise KeyError(name)

    def set(self, name: str, value: Any) -> None:
        """Assign a value to the named field."""
        self.get(name).set_value(value)

    def values(self) -> dict[str, Any]:
        """Field values by name."""
        return {f.name: f.value for f in self.fields}

    def validate(self) -> None:
        """Validate every field.

        Moves the cursor to the first invalid field.

        Raises:
            ValidationError: If any field is invalid.
        """
        errors: dict[str, str] = {}
        for f in self.fields:
            message = f.check(self)
            if message:
                errors[f.name] = message

        if not errors and self._validator is not None:
            for name, message in self._validator(self).items():
                self.get(name).error = message
                errors[name] = message

        if errors:
            self.focus(next(iter(errors)))
            raise ValidationError(errors)
