"""Change detection against the previous deployment snapshot."""

from __future__ import annotations

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from .collector import CollectionRules, FileEntry, collect
from .errors import DiffUnavailable, FileReadError
from .manifest import DeploymentSnapshot, MetadataStore

logger = logging.getLogger(__name__)


@dataclass
class ContentRecord:
    """A collected file with its content hash and classification."""

    logical_path: str
    absolute_path: Path
    size_bytes: int
    content_hash: str | None  # None if the file could not be read
    is_new: bool
    content_id: str | None = None
    public_url: str | None = None
    error: str | None = None  # Read failure reason

    @classmethod
    def from_entry(
        cls,
        entry: FileEntry,
        content_hash: str | None,
        is_new: bool,
        content_id: str | None = None,
        error: str | None = None,
    ) -> ContentRecord:
        return cls(
            logical_path=entry.logical_path,
            absolute_path=entry.absolute_path,
            size_bytes=entry.size_bytes,
            content_hash=content_hash,
            is_new=is_new,
            content_id=content_id,
            error=error,
        )


@dataclass
class ChangeSet:
    """Result of comparing the current tree with the previous snapshot."""

    changed: list[ContentRecord] = field(default_factory=list)
    unchanged: list[ContentRecord] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    total_files: int = 0

    @property
    def has_changes(self) -> bool:
        """Check if anything needs uploading or was removed."""
        return bool(self.changed or self.deleted)

    @property
    def upload_bytes(self) -> int:
        """Total size of the files that will be uploaded."""
        return sum(record.size_bytes for record in self.changed)

    @property
    def read_failures(self) -> list[ContentRecord]:
        return [record for record in self.changed if record.error is not None]


def compute_file_hash(filepath: Path) -> str:
    """Compute SHA256 hash of file contents."""
    h = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _hash_entry(entry: FileEntry) -> tuple[str | None, str | None]:
    """Hash one file, returning (hash, error)."""
    try:
        return compute_file_hash(entry.absolute_path), None
    except OSError as e:
        return None, e.strerror or str(e)


def _hash_entries(
    entries: list[FileEntry], hash_workers: int
) -> list[tuple[str | None, str | None]]:
    if hash_workers <= 1 or len(entries) <= 1:
        return [_hash_entry(entry) for entry in entries]
    with ThreadPoolExecutor(max_workers=hash_workers) as pool:
        return list(pool.map(_hash_entry, entries))


def diff(
    root: Path,
    previous: DeploymentSnapshot | None,
    rules: CollectionRules | None = None,
    fail_fast_reads: bool = False,
    hash_workers: int = 1,
) -> ChangeSet:
    """
    Classify every collected file as changed, unchanged or deleted.

    Args:
        root: Deployment root directory
        previous: Snapshot from the last deployment (None on first deploy)
        rules: Collection rules for the tree walk
        fail_fast_reads: Raise FileReadError instead of deferring the failure
        hash_workers: Threads used for hashing

    Returns:
        ChangeSet with changed, unchanged and deleted paths
    """
    entries = collect(root, rules)
    return diff_entries(
        entries, previous, fail_fast_reads=fail_fast_reads, hash_workers=hash_workers
    )


def diff_entries(
    entries: list[FileEntry],
    previous: DeploymentSnapshot | None,
    fail_fast_reads: bool = False,
    hash_workers: int = 1,
) -> ChangeSet:
    """Diff already-collected entries against a snapshot."""
    previous_files = (previous or DeploymentSnapshot.empty()).with_normalized_paths().files

    result = ChangeSet(total_files=len(entries))
    hashes = _hash_entries(entries, hash_workers)

    for entry, (file_hash, error) in zip(entries, hashes):
        prior = previous_files.get(entry.logical_path)

        if error is not None:
            if fail_fast_reads:
                raise FileReadError(entry.logical_path, error)
            logger.error("Could not read %s: %s", entry.logical_path, error)
            result.changed.append(
                ContentRecord.from_entry(entry, None, is_new=True, error=error)
            )
            continue

        if prior is not None and prior.is_well_formed and prior.content_hash == file_hash:
            result.unchanged.append(
                ContentRecord.from_entry(
                    entry, file_hash, is_new=False, content_id=prior.content_id
                )
            )
        else:
            result.changed.append(
                ContentRecord.from_entry(entry, file_hash, is_new=prior is None)
            )

    current_paths = {entry.logical_path for entry in entries}
    result.deleted = sorted(path for path in previous_files if path not in current_paths)

    logger.info(
        "Diff complete: %d changed, %d unchanged, %d deleted",
        len(result.changed),
        len(result.unchanged),
        len(result.deleted),
    )
    return result


def load_previous_snapshot(metadata_store: MetadataStore) -> DeploymentSnapshot | None:
    """Load the previous snapshot, wrapping store failures as DiffUnavailable."""
    try:
        snapshot = metadata_store.load_snapshot()
    except Exception as e:
        raise DiffUnavailable(f"Could not load previous manifest: {e}") from e

    if snapshot is None:
        logger.info("No previous manifest found, starting fresh")
    else:
        logger.info("Loaded previous manifest with %d files", len(snapshot.files))
    return snapshot


def detect_changes(
    root: Path,
    metadata_store: MetadataStore,
    rules: CollectionRules | None = None,
    fail_fast_reads: bool = False,
    hash_workers: int = 1,
) -> ChangeSet:
    """Load the previous snapshot from the metadata store and diff against it."""
    previous = load_previous_snapshot(metadata_store)
    return diff(
        root,
        previous,
        rules,
        fail_fast_reads=fail_fast_reads,
        hash_workers=hash_workers,
    )


def full_upload_changeset(
    entries: list[FileEntry],
    fail_fast_reads: bool = False,
    hash_workers: int = 1,
) -> ChangeSet:
    """Treat every entry as new, for when no previous snapshot is usable."""
    result = ChangeSet(total_files=len(entries))
    for entry, (file_hash, error) in zip(entries, _hash_entries(entries, hash_workers)):
        if error is not None and fail_fast_reads:
            raise FileReadError(entry.logical_path, error)
        result.changed.append(
            ContentRecord.from_entry(entry, file_hash, is_new=True, error=error)
        )
    return result
