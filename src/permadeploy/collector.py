"""Tree collection: find the files under a root that are eligible for deployment."""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from .config import DEFAULT_EXCLUDE_PATTERNS, DEFAULT_EXTENSIONS, DeployConfig
from .errors import CollectionError

logger = logging.getLogger(__name__)

_REPEATED_SLASHES = re.compile(r"/{2,}")


@dataclass(frozen=True)
class FileEntry:
    """A file discovered under the deployment root."""

    logical_path: str  # Normalized, relative to root
    absolute_path: Path
    size_bytes: int


@dataclass(frozen=True)
class CollectionRules:
    """Inclusion and exclusion rules for a collection pass."""

    extensions: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_EXTENSIONS)
    )
    exclude_patterns: tuple[str, ...] = tuple(DEFAULT_EXCLUDE_PATTERNS)
    entry_point: str = "index.html"

    def __post_init__(self) -> None:
        normalized = frozenset(
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in self.extensions
        )
        object.__setattr__(self, "extensions", normalized)
        object.__setattr__(self, "exclude_patterns", tuple(self.exclude_patterns))

    @classmethod
    def from_config(cls, config: DeployConfig) -> CollectionRules:
        return cls(
            extensions=frozenset(config.extensions),
            exclude_patterns=tuple(config.exclude_patterns),
            entry_point=config.entry_point,
        )


@dataclass
class CollectionStats:
    """Counts from a collection pass."""

    collected: int = 0
    excluded: int = 0  # Matched an exclusion rule (directories count once)
    skipped_extension: int = 0


def normalize_path(path: str) -> str:
    """Normalize a logical path so it compares equal across runs and platforms.

    Backslashes become forward slashes, any leading ``./`` is stripped,
    repeated slashes collapse and a single trailing slash is removed.
    """
    normalized = path.replace("\\", "/")
    normalized = _REPEATED_SLASHES.sub("/", normalized)
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def is_excluded(relative_path: str, exclude_patterns: tuple[str, ...] | list[str]) -> bool:
    """Check a root-relative path against the exclusion patterns.

    A pattern matches when it matches the whole relative path or any
    single component of it.
    """
    parts = relative_path.split("/")
    for pattern in exclude_patterns:
        if fnmatch.fnmatch(relative_path, pattern):
            return True
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


def collect(root: Path, rules: CollectionRules | None = None) -> list[FileEntry]:
    """Walk ``root`` and return the eligible files sorted by logical path.

    Raises:
        CollectionError: if root does not exist or cannot be listed
    """
    rules = rules or CollectionRules()
    root = Path(root)

    if not root.exists():
        raise CollectionError(f"Deployment root not found: {root}")
    if not root.is_dir():
        raise CollectionError(f"Deployment root is not a directory: {root}")

    stats = CollectionStats()
    entries: list[FileEntry] = []
    try:
        _walk(root, root, rules, entries, stats)
    except OSError as e:
        raise CollectionError(f"Deployment root is not readable: {root} ({e})") from e

    entries.sort(key=lambda entry: entry.logical_path)

    logger.info(
        "Collected %d files from %s (%d excluded, %d unsupported extension)",
        stats.collected,
        root,
        stats.excluded,
        stats.skipped_extension,
    )
    if not any(entry.logical_path == rules.entry_point for entry in entries):
        logger.warning("Entry point %s not found under %s", rules.entry_point, root)

    return entries


def _walk(
    directory: Path,
    root: Path,
    rules: CollectionRules,
    entries: list[FileEntry],
    stats: CollectionStats,
) -> None:
    """Recursively collect files below a directory.

    Raises CollectionError for an unreadable subdirectory; the root itself
    is reported by collect().
    """
    try:
        children = sorted(directory.iterdir())
    except OSError as e:
        if directory == root:
            raise
        relative_path = directory.relative_to(root).as_posix()
        raise CollectionError(
            f"Directory is not readable: {relative_path} ({e.strerror or e})"
        ) from e

    for child in children:
        if child.is_symlink():
            continue

        relative_path = normalize_path(child.relative_to(root).as_posix())
        if is_excluded(relative_path, rules.exclude_patterns):
            stats.excluded += 1
            continue

        if child.is_dir():
            _walk(child, root, rules, entries, stats)
            continue

        if not child.is_file():
            continue

        if child.suffix.lower() not in rules.extensions:
            stats.skipped_extension += 1
            continue

        try:
            size = child.stat().st_size
        except OSError:
            # Unreadable metadata; the read failure is reported during diffing
            size = 0

        entries.append(
            FileEntry(logical_path=relative_path, absolute_path=child, size_bytes=size)
        )
        stats.collected += 1
