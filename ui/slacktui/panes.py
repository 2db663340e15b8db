"""Tab contents: action menus, entry tables, forms and the file editor.

Each tab is a TabBody. What it shows depends on the session state handed to
show_state(): the action menu while browsing, the form in FormEntry and the
text editor in Editing. Panes report user choices as messages and leave the
session to the application.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.text import Text
from textual import on
from textual.containers import Vertical, VerticalScroll
from textual.widgets import (
    Checkbox,
    DataTable,
    Input,
    Label,
    OptionList,
    Select,
    SelectionList,
    Static,
    TextArea,
)
from textual.widgets.option_list import Option
from textual.widgets.selection_list import Selection

from slackcore.forms import FieldKind
from slackcore.list_model import SortKey
from slackcore.plans import Tab
from slackcore.session import Editing, FormEntry

from .messages import (
    ActionChosen,
    EditorChanged,
    FileChosen,
    FilterChanged,
    FormSubmitted,
    SortRequested,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from textual.app import ComposeResult
    from textual.widget import Widget

    from slackcore.forms import Form, FormField
    from slackcore.list_model import ListEntry
    from slackcore.plans import ActionSpec
    from slackcore.session import SessionState
    from slackcore.transaction import ConfigDocument

# (column key, header) per tab with a list
TABLE_COLUMNS: dict[Tab, tuple[tuple[str, str], ...]] = {
    Tab.MIRRORS: (
        ("active", ""),
        ("name", "Mirror"),
        ("version", "Version"),
        ("region", "Region"),
        ("url", "URL"),
    ),
    Tab.PACKAGES: (
        ("name", "Package"),
        ("version", "Version"),
        ("category", "Category"),
        ("description", "Description"),
    ),
}

SORTABLE_COLUMNS = frozenset(key.value for key in SortKey)


def entry_cell(entry: ListEntry, column: str) -> str:
    """Text of one table cell."""
    if column == "active":
        return "*" if entry.active else ""
    value = getattr(entry, column)
    return "" if value is None else str(value)


class ActionMenu(OptionList):
    """Menu of the actions offered on a tab."""

    DEFAULT_CSS = """
    ActionMenu {
        height: auto;
        max-height: 10;
        border: round $primary-darken-2;
    }
    """

    def __init__(self, actions: Sequence[ActionSpec], **kwargs: Any) -> None:
        options = [
            Option(Text.assemble(action.label, "  ", (action.description, "dim")), id=action.id)
            for action in actions
        ]
        super().__init__(*options, **kwargs)
        self.border_title = "Actions"


class EntryTable(Vertical):
    """Filter box over a table of list entries.

    Clicking a column header asks for the list to be sorted by that column,
    when the list model can sort by it.
    """

    DEFAULT_CSS = """
    EntryTable {
        height: 1fr;
    }

    EntryTable Input {
        margin: 0 0 1 0;
    }

    EntryTable DataTable {
        height: 1fr;
    }
    """

    def __init__(self, columns: Sequence[tuple[str, str]], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.columns = tuple(columns)
        self._shown: list[ListEntry] | None = None

    def compose(self) -> ComposeResult:
        yield Input(placeholder="Filter...", classes="filter")
        yield DataTable(cursor_type="row", zebra_stripes=True)

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        for key, header in self.columns:
            table.add_column(header, key=key)

    @property
    def selected_index(self) -> int | None:
        """Row under the cursor, None when the table is empty."""
        table = self.query_one(DataTable)
        if table.row_count == 0:
            return None
        return table.cursor_row

    def show_entries(self, entries: Sequence[ListEntry]) -> None:
        """Replace the rows, keeping the cursor row where possible."""
        entries = list(entries)
        if entries == self._shown:
            return
        self._shown = entries
        table = self.query_one(DataTable)
        cursor = table.cursor_row
        table.clear()
        for index, entry in enumerate(entries):
            table.add_row(*(entry_cell(entry, key) for key, _ in self.columns), key=str(index))
        if entries:
            table.move_cursor(row=min(max(cursor, 0), len(entries) - 1))

    @on(Input.Changed, ".filter")
    def _filter_changed(self, event: Input.Changed) -> None:
        event.stop()
        self.post_message(FilterChanged(event.value))

    @on(Input.Submitted, ".filter")
    def _filter_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.query_one(DataTable).focus()

    @on(DataTable.HeaderSelected)
    def _header_selected(self, event: DataTable.HeaderSelected) -> None:
        event.stop()
        key = event.column_key.value
        if key in SORTABLE_COLUMNS:
            self.post_message(SortRequested(key))


class FormView(VerticalScroll):
    """Editable rendering of a Form.

    Widget changes are written straight into the form's fields; validation
    messages from the last submit are shown under each field.
    """

    DEFAULT_CSS = """
    FormView {
        height: 1fr;
        padding: 0 1;
        display: none;
    }

    FormView.visible {
        display: block;
    }

    FormView .form-title {
        text-style: bold;
        margin-bottom: 1;
    }

    FormView .field-error {
        color: $error;
        height: auto;
    }

    FormView SelectionList {
        height: auto;
        max-height: 12;
    }
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.form: Form | None = None
        self._inputs: dict[str, Widget] = {}
        self._errors: dict[str, Static] = {}

    def load(self, form: Form) -> None:
        """Build the widgets of a new form."""
        self.form = form
        self._inputs.clear()
        self._errors.clear()
        self.remove_children()

        widgets: list[Widget] = [Label(form.title, classes="form-title")]
        for form_field in form.fields:
            widget = self._make_input(form_field)
            error = Static(form_field.error or "", classes="field-error")
            self._inputs[form_field.name] = widget
            self._errors[form_field.name] = error
            if form_field.kind != FieldKind.TOGGLE:
                widgets.append(Label(form_field.label))
            widgets.extend([widget, error])
        self.mount(*widgets)
        self.call_after_refresh(self.focus_field)

    def _make_input(self, form_field: FormField) -> Widget:
        name = form_field.name
        if form_field.kind in (FieldKind.TEXT, FieldKind.PASSWORD):
            return Input(
                value=form_field.value,
                password=form_field.kind == FieldKind.PASSWORD,
                name=name,
            )
        if form_field.kind == FieldKind.CHOICE:
            return Select(
                [(form_field.hints.get(c, c), c) for c in form_field.choices],
                value=form_field.value,
                allow_blank=False,
                name=name,
            )
        if form_field.kind == FieldKind.MULTI_CHOICE:
            selections = [
                Selection(
                    Text.assemble(choice, "  ", (form_field.hints.get(choice, ""), "dim")),
                    choice,
                    choice in form_field.value,
                )
                for choice in form_field.choices
            ]
            return SelectionList[str](*selections, name=name)
        return Checkbox(form_field.label, form_field.value, name=name)

    def show_errors(self) -> None:
        """Refresh the validation messages and focus the form's cursor field."""
        if self.form is None:
            return
        for form_field in self.form.fields:
            self._errors[form_field.name].update(form_field.error or "")
        self.focus_field()

    def focus_field(self) -> None:
        if self.form is None:
            return
        widget = self._inputs.get(self.form.focused.name)
        if widget is not None:
            widget.focus()

    def _set(self, name: str | None, value: Any) -> None:
        if self.form is None or name is None:
            return
        self.form.set(name, value)
        self._errors[name].update("")

    @on(Input.Changed)
    def _input_changed(self, event: Input.Changed) -> None:
        event.stop()
        self._set(event.input.name, event.value)

    @on(Input.Submitted)
    def _input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.post_message(FormSubmitted())

    @on(Select.Changed)
    def _select_changed(self, event: Select.Changed) -> None:
        event.stop()
        if event.value != Select.NULL:
            self._set(event.select.name, event.value)

    @on(SelectionList.SelectedChanged)
    def _selection_changed(self, event: SelectionList.SelectedChanged) -> None:
        event.stop()
        self._set(event.selection_list.name, event.selection_list.selected)

    @on(Checkbox.Changed)
    def _checkbox_changed(self, event: Checkbox.Changed) -> None:
        event.stop()
        self._set(event.checkbox.name, event.value)


class FileEditor(Vertical):
    """List of editable configuration files and a text editor for one of them."""

    DEFAULT_CSS = """
    FileEditor {
        height: 1fr;
    }

    FileEditor OptionList {
        height: auto;
        max-height: 10;
        border: round $primary-darken-2;
    }

    FileEditor TextArea {
        height: 1fr;
        display: none;
    }

    FileEditor.editing OptionList {
        display: none;
    }

    FileEditor.editing TextArea {
        display: block;
    }
    """

    def __init__(self, files: Sequence[Path], **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.files = list(files)
        self.document: ConfigDocument | None = None

    def compose(self) -> ComposeResult:
        file_list = OptionList(*(Option(str(path), id=str(path)) for path in self.files))
        file_list.border_title = "Configuration files"
        yield file_list
        yield TextArea(show_line_numbers=True)

    def show_document(self, document: ConfigDocument) -> None:
        """Open a document in the editor unless it is already shown."""
        self.add_class("editing")
        editor = self.query_one(TextArea)
        if document is not self.document:
            self.document = document
            editor.load_text(document.content)
            editor.border_title = str(document.path)
            editor.focus()

    def show_files(self) -> None:
        if self.document is not None:
            self.document = None
            self.query_one(OptionList).focus()
        self.remove_class("editing")

    @on(OptionList.OptionSelected)
    def _file_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        if event.option.id is not None:
            self.post_message(FileChosen(Path(event.option.id)))

    @on(TextArea.Changed)
    def _text_changed(self, event: TextArea.Changed) -> None:
        event.stop()
        text = event.text_area.text
        if self.document is not None and text != self.document.content:
            self.post_message(EditorChanged(text))


class TabBody(Vertical):
    """Everything shown inside one tab."""

    DEFAULT_CSS = """
    TabBody {
        height: 1fr;
    }

    TabBody.form ActionMenu, TabBody.form EntryTable {
        display: none;
    }
    """

    def __init__(
        self,
        tab: Tab,
        actions: Sequence[ActionSpec],
        *,
        with_list: bool = False,
        files: Sequence[Path] = (),
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.tab = tab
        self.actions = list(actions)
        self.with_list = with_list
        self.files = list(files)

    def compose(self) -> ComposeResult:
        if self.actions:
            yield ActionMenu(self.actions)
        if self.with_list:
            yield EntryTable(TABLE_COLUMNS[self.tab])
        if self.tab == Tab.CONFIG:
            yield FileEditor(self.files)
        yield FormView()

    @property
    def entry_table(self) -> EntryTable | None:
        return self.query_one(EntryTable) if self.with_list else None

    def focus_default(self) -> None:
        """Focus the widget a user starts from on this tab."""
        if self.actions:
            self.query_one(ActionMenu).focus()
        elif self.tab == Tab.CONFIG:
            self.query_one(FileEditor).query_one(OptionList).focus()

    def show_entries(self, entries: Sequence[ListEntry]) -> None:
        table = self.entry_table
        if table is not None:
            table.show_entries(entries)

    def show_state(self, state: SessionState) -> None:
        """Switch between the menu, form and editor for a state of this tab."""
        form_view = self.query_one(FormView)
        if isinstance(state, FormEntry):
            self.add_class("form")
            form_view.add_class("visible")
            if form_view.form is not state.form:
                form_view.load(state.form)
            else:
                form_view.show_errors()
            return

        self.remove_class("form")
        form_view.remove_class("visible")
        if self.tab == Tab.CONFIG:
            editor = self.query_one(FileEditor)
            if isinstance(state, Editing):
                editor.show_document(state.document)
            else:
                editor.show_files()

    @on(OptionList.OptionSelected)
    def _action_selected(self, event: OptionList.OptionSelected) -> None:
        if not isinstance(event.option_list, ActionMenu) or event.option.id is None:
            return
        event.stop()
        table = self.entry_table
        index = table.selected_index if table is not None else None
        self.post_message(ActionChosen(event.option.id, index))

    @on(DataTable.RowSelected)
    def _row_selected(self, event: DataTable.RowSelected) -> None:
        event.stop()
        action = next((a for a in self.actions if a.needs_entry), None)
        if action is not None:
            self.post_message(ActionChosen(action.id, event.cursor_row))
