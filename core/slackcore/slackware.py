"""Slackware-specific helpers.

Small, pure functions over the system files the console reads and rewrites:
release detection, bootloader detection, the slackpkg mirrors list, sbofind
search output and the default runlevel in /etc/inittab. Functions that edit a
file take the old text and return the new text; writing happens through
ConfigFileTransaction.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import urlparse

import structlog

from .errors import NotFound, PermissionDenied
from .list_model import ListEntry

logger = structlog.get_logger(__name__)

VERSION_FILE = Path("/etc/slackware-version")
MIRRORS_FILE = Path("/etc/slackpkg/mirrors")
INITTAB_FILE = Path("/etc/inittab")
LILO_CONF = Path("/etc/lilo.conf")
GRUB_PATHS = (Path("/boot/grub/grub.cfg"), Path("/etc/default/grub"))

KNOWN_VERSIONS = ("current", "15.0", "14.2", "14.1")

KERNEL_PACKAGES = (
    "kernel-generic",
    "kernel-huge",
    "kernel-modules",
    "kernel-source",
    "kernel-headers",
    "kernel-firmware",
)

URL_PREFIXES = ("http://", "https://", "ftp://")

REGION_PATTERN = re.compile(r"mirrors\.(\w+)\.|\.(\w{2})/|/(\w{2})/")
MIRROR_VERSION_PATTERN = re.compile(r"slackware(?:64)?-(current|\d+(?:\.\d+)*)", re.IGNORECASE)
INITDEFAULT_PATTERN = re.compile(r"^id:\d:initdefault:", re.MULTILINE)

REGION_FALLBACKS = (
    ("kernel.org", "US"),
    ("osuosl", "US"),
    ("ukfast", "UK"),
)


@dataclass(frozen=True)
class SlackwareVersion:
    """Installed Slackware release.

    Attributes:
        key: "current", "15.0", "14.2", "14.1" or the raw text when unknown
        known: Whether key is one of the supported releases
    """

    key: str
    known: bool = True

    @classmethod
    def from_string(cls, text: str) -> SlackwareVersion:
        """Parse the content of /etc/slackware-version.

        Examples:
            >>> SlackwareVersion.from_string("Slackware 15.0").key
            '15.0'
            >>> SlackwareVersion.from_string("Slackware Linux -current").key
            'current'
        """
        normalized = text.strip().lower()
        for key in KNOWN_VERSIONS:
            if key in normalized:
                return cls(key)
        return cls(normalized, known=False)

    @property
    def mirror_path(self) -> str:
        """Directory name of the release tree on mirrors."""
        return f"slackware64-{self.key if self.known else 'current'}"

    @property
    def display_name(self) -> str:
        """Human readable release name."""
        if not self.known:
            return f"Slackware ({self.key})"
        if self.key == "current":
            return "Slackware64 Current"
        return f"Slackware64 {self.key}"

    def __str__(self) -> str:
        return self.display_name


class Bootloader(str, Enum):
    """Bootloader found on the system."""

    LILO = "lilo"
    GRUB = "grub"
    UNKNOWN = "unknown"


def detect_version(path: Path = VERSION_FILE) -> SlackwareVersion:
    """Read the installed release from /etc/slackware-version.

    Raises:
        NotFound: If the file does not exist (not a Slackware system).
        PermissionDenied: If it cannot be read.
    """
    try:
        content = path.read_text()
    except FileNotFoundError as e:
        raise NotFound(f"{path} not found. Is this a Slackware system?") from e
    except PermissionError as e:
        raise PermissionDenied(f"Permission denied reading {path}") from e
    version = SlackwareVersion.from_string(content)
    logger.info("slackware_version_detected", version=version.key, known=version.known)
    return version


def detect_bootloader(root: Path = Path("/")) -> Bootloader:
    """Detect the bootloader from its configuration files.

    Args:
        root: Filesystem root to probe (for tests and chroots).
    """
    if (root / LILO_CONF.relative_to("/")).exists():
        return Bootloader.LILO
    if any((root / p.relative_to("/")).exists() for p in GRUB_PATHS):
        return Bootloader.GRUB
    return Bootloader.UNKNOWN


def is_root() -> bool:
    """Check whether the process runs with effective uid 0."""
    return os.geteuid() == 0


def extract_region(url: str) -> str:
    """Guess the country/region code of a mirror from its URL."""
    match = REGION_PATTERN.search(url)
    if match:
        for group in match.groups():
            if group:
                return group.upper()
    for needle, region in REGION_FALLBACKS:
        if needle in url:
            return region
    return "Unknown"


def mirror_version(url: str) -> str | None:
    """Release served by a mirror URL, e.g. "15.0" or "current"."""
    match = MIRROR_VERSION_PATTERN.search(url)
    return match.group(1).lower() if match else None


def _mirror_url(line: str) -> tuple[str, bool] | None:
    """Return (url, active) for a mirror line, None for other lines."""
    stripped = line.strip()
    if not stripped:
        return None
    if stripped.startswith("#"):
        candidate = stripped.lstrip("#").strip()
        if candidate.startswith(URL_PREFIXES):
            return candidate, False
        return None
    if stripped.startswith(URL_PREFIXES):
        return stripped, True
    return None


def parse_mirrors(text: str) -> list[ListEntry]:
    """Parse the slackpkg mirrors file.

    Uncommented URL lines are active mirrors, "# URL" lines are inactive
    ones and every other line is ignored.

    Args:
        text: Content of /etc/slackpkg/mirrors.

    Returns:
        One ListEntry per mirror URL, in file order.
    """
    entries: list[ListEntry] = []
    for line in text.splitlines():
        parsed = _mirror_url(line)
        if parsed is None:
            continue
        url, active = parsed
        entries.append(
            ListEntry(
                name=urlparse(url).hostname or url,
                version=mirror_version(url),
                url=url,
                region=extract_region(url),
                active=active,
                rank=len(entries),
            )
        )
    return entries


def read_mirrors(path: Path = MIRRORS_FILE) -> list[ListEntry]:
    """Load and parse the mirrors file.

    Raises:
        NotFound: If the file does not exist.
        PermissionDenied: If it cannot be read.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError as e:
        raise NotFound(f"{path} not found. Is slackpkg installed?") from e
    except PermissionError as e:
        raise PermissionDenied(f"Permission denied reading {path}") from e
    entries = parse_mirrors(text)
    logger.debug("mirrors_loaded", path=str(path), count=len(entries))
    return entries


def activate_mirror(text: str, url: str) -> str:
    """Enable one mirror and comment out every other active one.

    Args:
        text: Content of the mirrors file.
        url: Mirror URL to enable.

    Returns:
        New file content.

    Raises:
        ValueError: If the URL is not listed in the file.
    """
    lines: list[str] = []
    found = False
    for line in text.splitlines():
        parsed = _mirror_url(line)
        if parsed is None:
            lines.append(line)
            continue
        candidate, active = parsed
        if candidate == url:
            lines.append(candidate)
            found = True
        elif active:
            lines.append(f"# {line.strip()}")
        else:
            lines.append(line)

    if not found:
        raise ValueError(f"{url} is not listed in the mirrors file")
    return "\n".join(lines) + "\n"


def parse_sbofind(text: str) -> list[ListEntry]:
    """Parse sbofind output into package entries.

    sbofind prints one block per match separated by blank lines::

        SBo:    network/ffmpeg
        Path:   /usr/sbo/repo/multimedia/ffmpeg
        info:   ffmpeg (audio/video converter)
    """
    entries: list[ListEntry] = []
    name = category = description = ""

    def flush() -> None:
        nonlocal name, category, description
        if name:
            entries.append(
                ListEntry(name=name, category=category, description=description, rank=len(entries))
            )
        name = category = description = ""

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            flush()
        elif line.startswith("SBo:"):
            flush()
            path = line.removeprefix("SBo:").strip()
            category, sep, rest = path.partition("/")
            name = rest if sep else path
            if not sep:
                category = ""
        elif line.startswith("info:"):
            description = line.removeprefix("info:").strip()
    flush()
    return entries


def mentions_kernel_package(line: str) -> bool:
    """Check whether an output line refers to a kernel package."""
    return any(pkg in line for pkg in KERNEL_PACKAGES)


def set_default_runlevel(text: str, runlevel: int) -> str:
    """Rewrite the id:N:initdefault: entry of /etc/inittab.

    Raises:
        ValueError: If runlevel is not 0-6.
        NotFound: If the file has no initdefault entry.
    """
    if not 0 <= runlevel <= 6:
        raise ValueError(f"Invalid runlevel {runlevel}")
    if not INITDEFAULT_PATTERN.search(text):
        raise NotFound("No id:N:initdefault: entry in inittab")
    return INITDEFAULT_PATTERN.sub(f"id:{runlevel}:initdefault:", text, count=1)
