"""Filtered and sorted projection over mirror or package candidates.

ListModel owns the full set of entries and exposes only the visible
projection. Recomputing the projection is synchronous and pure: the same
entries with the same filter and sort key always produce the same list.

Mirror entries carry the release they serve. When the model has a platform
version, entries whose version does not satisfy the configured version rule
are left out of the projection entirely. Entries without a version (search
results) are never version-filtered.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from .errors import OutOfRange

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

logger = structlog.get_logger(__name__)


class SortKey(str, Enum):
    """Ordering of the visible projection."""

    NAME = "name"
    VERSION = "version"
    RANK = "rank"


class VersionRule(str, Enum):
    """Rule deciding whether an entry's version fits the platform version."""

    EXACT = "exact"
    FAMILY = "family"
    ANY = "any"


@dataclass(frozen=True, slots=True)
class ListEntry:
    """Immutable candidate record.

    Attributes:
        name: Display name (mirror host or package name)
        version: Release the entry is for, None when not applicable
        url: Mirror URL
        description: Free-form text (package summary)
        category: Package category (e.g. "network")
        region: Mirror country/region code
        active: Whether the mirror is currently enabled
        rank: Source ordering hint; lower ranks sort first
    """

    name: str
    version: str | None = None
    url: str | None = None
    description: str = ""
    category: str = ""
    region: str = ""
    active: bool = False
    rank: int = 0
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True, slots=True)
class VisibleEntry:
    """Entry in the projection with its derived relevance."""

    entry: ListEntry
    relevance: int
    position: int


def _normalize_version(value: str) -> str:
    return value.strip().lower().lstrip("-")


def _family(value: str) -> str:
    normalized = _normalize_version(value)
    match = re.match(r"(\d+)", normalized)
    return match.group(1) if match else normalized


def exact_version_match(entry_version: str, platform_version: str) -> bool:
    """Versions match when equal after trimming and lower-casing."""
    return _normalize_version(entry_version) == _normalize_version(platform_version)


def family_version_match(entry_version: str, platform_version: str) -> bool:
    """Versions match when they share the major release (15.0 ~ 15.1).

    Non-numeric versions such as "current" only match themselves.
    """
    return _family(entry_version) == _family(platform_version)


def any_version_match(entry_version: str, platform_version: str) -> bool:  # noqa: ARG001
    """Every version matches."""
    return True


VERSION_MATCHERS: dict[VersionRule, Callable[[str, str], bool]] = {
    VersionRule.EXACT: exact_version_match,
    VersionRule.FAMILY: family_version_match,
    VersionRule.ANY: any_version_match,
}


def make_version_matcher(rule: VersionRule | str) -> Callable[[str, str], bool]:
    """Return the predicate implementing a version rule.

    Args:
        rule: VersionRule or its string value.

    Returns:
        Callable taking (entry_version, platform_version).

    Raises:
        ValueError: If the rule is unknown.
    """
    return VERSION_MATCHERS[VersionRule(rule)]


def version_sort_key(version: str | None) -> tuple[int, tuple[Any, ...]]:
    """Natural sort key for release strings; "current" sorts after numbered releases."""
    if version is None:
        return (2, ())
    normalized = _normalize_version(version)
    if normalized == "current":
        return (1, ())
    tokens = re.findall(r"\d+|[a-z]+", normalized)
    parts = tuple((0, int(part)) if part.isdigit() else (1, part) for part in tokens)
    return (0, parts)


class ListModel:
    """Filtered/sorted view over a list of ListEntry records.

    Example:
        model = ListModel(platform_version="15.0")
        model.load([ListEntry("CRAN-us-east", "15.0"), ListEntry("CRAN-eu", "14.2")])
        model.set_filter("")
        [e.name for e in model.visible]  # ["CRAN-us-east"]
    """

    def __init__(
        self,
        *,
        platform_version: str | None = None,
        version_matcher: Callable[[str, str], bool] | None = None,
        search_fields: tuple[str, ...] = ("name",),
    ) -> None:
        """Initialize the model.

        Args:
            platform_version: Version key of the running system, or None to
                disable version filtering.
            version_matcher: Predicate (entry_version, platform_version) -> bool.
                Defaults to exact matching.
            search_fields: Entry attributes searched by the filter text.
        """
        self._entries: list[ListEntry] = []
        self._platform_version = platform_version
        self._matcher = version_matcher or exact_version_match
        self._search_fields = search_fields
        self._filter_text = ""
        self._sort_key = SortKey.RANK
        self._visible: list[VisibleEntry] = []

    @property
    def entries(self) -> list[ListEntry]:
        """Copy of the full source set in insertion order."""
        return list(self._entries)

    @property
    def visible(self) -> list[ListEntry]:
        """Current projection."""
        return [item.entry for item in self._visible]

    @property
    def filter_text(self) -> str:
        """Current filter text."""
        return self._filter_text

    @property
    def sort_key(self) -> SortKey:
        """Current sort key."""
        return self._sort_key

    @property
    def platform_version(self) -> str | None:
        """Version key used for compatibility filtering."""
        return self._platform_version

    def __len__(self) -> int:
        return len(self._visible)

    def set_platform_version(self, version: str | None) -> None:
        """Change the platform version and recompute the projection."""
        self._platform_version = version
        self._recompute()

    def set_version_matcher(self, matcher: Callable[[str, str], bool]) -> None:
        """Swap the version predicate and recompute the projection."""
        self._matcher = matcher
        self._recompute()

    def load(self, entries: Iterable[ListEntry]) -> None:
        """Replace the source set and recompute the projection."""
        self._entries = list(entries)
        logger.debug("list_model_loaded", count=len(self._entries))
        self._recompute()

    def set_filter(self, text: str) -> None:
        """Set the filter text (case-insensitive substring)."""
        self._filter_text = text
        self._recompute()

    def set_sort(self, key: SortKey | str) -> None:
        """Set the sort key of the projection.

        Raises:
            ValueError: If the key is unknown.
        """
        self._sort_key = SortKey(key)
        self._recompute()

    def select(self, index: int) -> ListEntry:
        """Return the visible entry at index.

        Raises:
            OutOfRange: If the projection is empty or index is not valid.
        """
        if not self._visible:
            raise OutOfRange("Nothing to select: the list is empty")
        if index < 0 or index >= len(self._visible):
            raise OutOfRange(f"Selection {index + 1} is out of range (1-{len(self._visible)})")
        return self._visible[index].entry

    def _is_compatible(self, entry: ListEntry) -> bool:
        if self._platform_version is None or entry.version is None:
            return True
        return self._matcher(entry.version, self._platform_version)

    def _relevance(self, entry: ListEntry, needle: str) -> int | None:
        if not needle:
            return 0
        name = entry.name.lower()
        if name == needle:
            return 0
        if name.startswith(needle):
            return 1
        if needle in name:
            return 2
        for attr in self._search_fields:
            if attr == "name":
                continue
            value = getattr(entry, attr, None)
            if isinstance(value, str) and needle in value.lower():
                return 3
        return None

    def _recompute(self) -> None:
        needle = self._filter_text.strip().lower()
        visible: list[VisibleEntry] = []
        for position, entry in enumerate(self._entries):
            if not self._is_compatible(entry):
                continue
            relevance = self._relevance(entry, needle)
            if relevance is None:
                continue
            visible.append(VisibleEntry(entry=entry, relevance=relevance, position=position))

        # sorted() is stable; position breaks remaining ties explicitly.
        if self._sort_key == SortKey.NAME:
            visible.sort(key=lambda v: (v.entry.name.lower(), v.position))
        elif self._sort_key == SortKey.VERSION:
            visible.sort(key=lambda v: (version_sort_key(v.entry.version), v.position))
        else:
            visible.sort(key=lambda v: (v.relevance, v.entry.rank, v.position))

        self._visible = visible
