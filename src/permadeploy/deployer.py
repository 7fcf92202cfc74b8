"""Deployment pipeline orchestration for permadeploy."""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from . import PUBLISHED_MANIFEST_NAME
from .collector import CollectionRules, FileEntry, collect
from .config import DeployConfig, load_config
from .differ import (
    ChangeSet,
    ContentRecord,
    diff_entries,
    full_upload_changeset,
    load_previous_snapshot,
)
from .errors import (
    DeploymentError,
    DiffUnavailable,
    EmptyTreeError,
    ManifestPersistError,
    NoEntryPointError,
    UploadError,
)
from .manifest import (
    DeploymentSnapshot,
    JsonFileMetadataStore,
    ManifestEntry,
    MetadataStore,
    PublishedManifest,
    get_snapshot_path,
)
from .storage import LocalObjectStore, ObjectStore, content_type_for

logger = logging.getLogger(__name__)

# Progress callback signature: (files_uploaded, files_to_upload, stage)
ProgressCallback = Callable[[int, int, str], None]

MARKUP_EXTENSIONS = (".html", ".htm")


class DeployStage(str, Enum):
    """States of a single deployment run."""

    COLLECTING = "collecting"
    DIFFING = "diffing"
    INCREMENTAL = "incremental"
    FULL_FALLBACK = "full_fallback"
    UPLOADING = "uploading"
    MANIFEST_BUILD = "manifest_build"
    MANIFEST_PUBLISH = "manifest_publish"
    DONE = "done"
    FAILED = "failed"


@dataclass
class DeploymentResult:
    """Outcome of a successful deployment run."""

    manifest_id: str
    manifest_url: str
    entry_url: str
    files_uploaded: int = 0
    files_unchanged: int = 0
    files_deleted: int = 0
    total_files: int = 0
    deleted_paths: list[str] = field(default_factory=list)
    bytes_uploaded: int = 0
    incremental: bool = True
    warnings: list[str] = field(default_factory=list)
    manifest: PublishedManifest | None = None


def select_entry_point(paths: list[str] | set[str], entry_point: str = "index.html") -> str:
    """Pick the manifest index path.

    The configured entry point wins if present; otherwise the
    lexicographically first markup file is used.

    Raises:
        NoEntryPointError: if there is no markup file at all
    """
    if entry_point in paths:
        return entry_point

    markup = sorted(path for path in paths if path.lower().endswith(MARKUP_EXTENSIONS))
    if not markup:
        raise NoEntryPointError("no entry point: no markup file to use as manifest index")

    logger.warning("%s not found, using %s as manifest index", entry_point, markup[0])
    return markup[0]


class Deployer:
    """Orchestrates collection, diffing, uploading and manifest publishing."""

    def __init__(
        self,
        root: Path,
        object_store: ObjectStore,
        metadata_store: MetadataStore,
        config: DeployConfig | None = None,
        on_stage: Callable[[DeployStage], None] | None = None,
    ):
        self.root = Path(root)
        self.object_store = object_store
        self.metadata_store = metadata_store
        self.config = config or DeployConfig()
        self.rules = CollectionRules.from_config(self.config)
        self.on_stage = on_stage
        self.stage: DeployStage | None = None
        self._files_uploaded = 0

    def deploy(self, progress_callback: ProgressCallback | None = None) -> DeploymentResult:
        """
        Run the deployment pipeline.

        Args:
            progress_callback: Optional callback for upload progress (current, total, stage)

        Returns:
            DeploymentResult with the manifest id, URLs and file counts

        Raises:
            DeploymentError: if no valid manifest could be published
        """
        self._files_uploaded = 0
        try:
            return self._run(progress_callback)
        except DeploymentError as e:
            if e.stage is None:
                e.stage = self.stage
            e.files_uploaded = max(e.files_uploaded, self._files_uploaded)
            logger.error("Deployment failed: %s", e)
            self._set_stage(DeployStage.FAILED)
            raise
        except Exception as e:
            error = DeploymentError(
                f"Unexpected error: {e}",
                stage=self.stage,
                files_uploaded=self._files_uploaded,
            )
            logger.error("Deployment failed: %s", error)
            self._set_stage(DeployStage.FAILED)
            raise error from e

    def _set_stage(self, stage: DeployStage) -> None:
        self.stage = stage
        logger.debug("Deployment stage: %s", stage.value)
        if self.on_stage:
            self.on_stage(stage)

    def _run(self, progress_callback: ProgressCallback | None) -> DeploymentResult:
        warnings: list[str] = []
        deployed_at = datetime.now(UTC).isoformat()

        self._set_stage(DeployStage.COLLECTING)
        entries = collect(self.root, self.rules)

        self._set_stage(DeployStage.DIFFING)
        changes, incremental = self._get_changes(entries, warnings)

        if changes.total_files == 0:
            raise EmptyTreeError(f"empty tree: no deployable files under {self.root}")

        self._set_stage(DeployStage.UPLOADING)
        uploaded = self._upload_changed(changes.changed, deployed_at, progress_callback)

        self._set_stage(DeployStage.MANIFEST_BUILD)
        records = changes.unchanged + uploaded
        files = {
            record.logical_path: ManifestEntry(
                content_id=record.content_id,
                content_hash=record.content_hash,
                size_bytes=record.size_bytes,
                last_modified=deployed_at,
            )
            for record in records
        }
        index_path = select_entry_point(set(files), self.config.entry_point)
        published = PublishedManifest.build(
            {path: entry.content_id for path, entry in files.items()}, index_path
        )

        self._set_stage(DeployStage.MANIFEST_PUBLISH)
        self._persist_snapshot(DeploymentSnapshot.from_entries(files), warnings)
        manifest_id = self._publish_manifest(published, deployed_at)

        gateway = self.config.gateway_url.rstrip("/")
        result = DeploymentResult(
            manifest_id=manifest_id,
            manifest_url=f"{gateway}/{manifest_id}",
            entry_url=f"{gateway}/{manifest_id}/{quote(index_path)}",
            files_uploaded=len(uploaded),
            files_unchanged=len(changes.unchanged),
            files_deleted=len(changes.deleted),
            total_files=changes.total_files,
            deleted_paths=list(changes.deleted),
            bytes_uploaded=sum(record.size_bytes for record in uploaded),
            incremental=incremental,
            warnings=warnings,
            manifest=published,
        )

        self._set_stage(DeployStage.DONE)
        logger.info("Deployed %s (%d files in manifest)", result.entry_url, len(files))
        return result

    def _get_changes(
        self, entries: list[FileEntry], warnings: list[str]
    ) -> tuple[ChangeSet, bool]:
        """
        Diff against the previous snapshot, falling back to a full upload.

        Returns:
            Tuple of (changes, incremental)
        """
        try:
            previous = load_previous_snapshot(self.metadata_store)
        except DiffUnavailable as e:
            message = f"Incremental mode unavailable, uploading all files: {e.message}"
            logger.warning(message)
            warnings.append(message)
            self._set_stage(DeployStage.FULL_FALLBACK)
            changes = full_upload_changeset(
                entries,
                fail_fast_reads=self.config.fail_fast_reads,
                hash_workers=self.config.hash_workers,
            )
            return changes, False

        changes = diff_entries(
            entries,
            previous,
            fail_fast_reads=self.config.fail_fast_reads,
            hash_workers=self.config.hash_workers,
        )
        self._set_stage(DeployStage.INCREMENTAL)
        return changes, True

    def _upload_changed(
        self,
        changed: list[ContentRecord],
        deployed_at: str,
        progress_callback: ProgressCallback | None,
    ) -> list[ContentRecord]:
        """Upload changed files in fixed-size concurrent batches."""
        if not changed:
            logger.info("No files to upload (all unchanged)")
            return []

        batch_size = self.config.batch_size
        total_batches = (len(changed) + batch_size - 1) // batch_size
        uploaded: list[ContentRecord] = []

        for batch_number, start in enumerate(range(0, len(changed), batch_size), 1):
            batch = changed[start : start + batch_size]
            logger.info(
                "Uploading batch %d/%d (%d files)", batch_number, total_batches, len(batch)
            )

            # Leaving the executor waits for every upload in the batch
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                futures = [
                    pool.submit(self._upload_record, record, deployed_at) for record in batch
                ]

            failures: list[UploadError] = []
            for record, future in zip(batch, futures):
                error = future.exception()
                if error is None:
                    uploaded.append(record)
                    self._files_uploaded += 1
                elif isinstance(error, UploadError):
                    failures.append(error)
                else:
                    failures.append(
                        UploadError(
                            f"Failed to upload {record.logical_path}: {error}",
                            path=record.logical_path,
                        )
                    )

            if failures:
                first = failures[0]
                raise UploadError(
                    f"{len(failures)} of {len(batch)} uploads failed in batch "
                    f"{batch_number}/{total_batches}: {first.message}",
                    path=first.path,
                    files_uploaded=len(uploaded),
                ) from first

            if progress_callback:
                progress_callback(len(uploaded), len(changed), "uploading")

            if start + batch_size < len(changed):
                time.sleep(self.config.batch_delay_seconds)

        logger.info("Uploaded %d changed files", len(uploaded))
        return uploaded

    def _upload_record(self, record: ContentRecord, deployed_at: str) -> None:
        """Upload one file and store the issued content id on the record."""
        if record.content_hash is None:
            raise UploadError(
                f"File read error for {record.logical_path}: {record.error}",
                path=record.logical_path,
            )

        try:
            data = record.absolute_path.read_bytes()
        except OSError as e:
            raise UploadError(
                f"File read error for {record.logical_path}: {e}", path=record.logical_path
            ) from e

        # Record what is actually uploaded if the file changed after hashing
        record.content_hash = hashlib.sha256(data).hexdigest()
        record.size_bytes = len(data)

        logger.info(
            "Uploading: %s (%.2f KB) %s",
            record.logical_path,
            record.size_bytes / 1024,
            "[NEW]" if record.is_new else "[CHANGED]",
        )
        try:
            result = self.object_store.upload(
                data,
                PurePosixPath(record.logical_path).name,
                content_type_for(record.logical_path),
                {
                    "Deploy-Path": record.logical_path,
                    "Deploy-Hash": record.content_hash,
                    "Deploy-Timestamp": deployed_at,
                },
            )
        except Exception as e:
            raise UploadError(
                f"Failed to upload {record.logical_path}: {e}", path=record.logical_path
            ) from e

        if not result.content_id:
            raise UploadError(
                f"Object store returned no content id for {record.logical_path}",
                path=record.logical_path,
            )

        record.content_id = result.content_id
        record.public_url = result.public_url

    def _persist_snapshot(self, snapshot: DeploymentSnapshot, warnings: list[str]) -> None:
        """Save the snapshot for the next run. Failure is logged, not raised."""
        try:
            self.metadata_store.save_snapshot(snapshot)
        except Exception as e:
            error = ManifestPersistError(
                f"Could not save deployment manifest: {e}", stage=self.stage
            )
            logger.warning("%s", error)
            warnings.append(str(error))
            return
        logger.info("Saved deployment manifest with %d files", snapshot.total_files)

    def _publish_manifest(self, published: PublishedManifest, deployed_at: str) -> str:
        """Upload the path manifest and return its content id."""
        try:
            result = self.object_store.upload(
                published.to_json_bytes(),
                PUBLISHED_MANIFEST_NAME,
                self.config.manifest_content_type,
                {
                    "Deploy-Type": "website-manifest",
                    "Deploy-Files": str(len(published.paths)),
                    "Deploy-Timestamp": deployed_at,
                },
            )
        except Exception as e:
            raise UploadError(
                f"Failed to upload manifest: {e}",
                path=PUBLISHED_MANIFEST_NAME,
                files_uploaded=self._files_uploaded,
            ) from e

        if not result.content_id:
            raise UploadError(
                "Object store returned no content id for the manifest",
                path=PUBLISHED_MANIFEST_NAME,
                files_uploaded=self._files_uploaded,
            )

        logger.info("Manifest uploaded: %s", result.content_id)
        return result.content_id


def run_deploy(
    root: Path,
    project_root: Path | None = None,
    config: DeployConfig | None = None,
    object_store: ObjectStore | None = None,
    metadata_store: MetadataStore | None = None,
    verbose: bool = False,
    console: Console | None = None,
) -> DeploymentResult:
    """
    Run a deployment with progress display.

    This is the main entry point called by the CLI.

    Args:
        root: Directory of build output to deploy
        project_root: Directory holding .permadeploy/ (defaults to root's parent)
        config: Deployment configuration (loaded from project_root if omitted)
        object_store: Upload target (local object store if omitted)
        metadata_store: Snapshot store (JSON file under .permadeploy/ if omitted)
        verbose: If True, show upload progress in terminal
        console: Rich console for output
    """
    root = Path(root)
    project_root = Path(project_root) if project_root else root.resolve().parent
    config = config or load_config(project_root)
    object_store = object_store or LocalObjectStore.for_project(
        project_root, config.gateway_url
    )
    metadata_store = metadata_store or JsonFileMetadataStore(get_snapshot_path(project_root))
    console = console or Console()

    deployer = Deployer(root, object_store, metadata_store, config)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        disable=not verbose,
    ) as progress:
        task = progress.add_task("Uploading files...", total=None)

        def update(current: int, total: int, stage: str) -> None:
            progress.update(task, completed=current, total=total)

        return deployer.deploy(progress_callback=update)
