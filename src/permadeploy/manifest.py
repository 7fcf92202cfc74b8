"""Deployment snapshot and published manifest models, plus metadata stores."""

from __future__ import annotations

import json
import os
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from . import MANIFEST_FILE, PD_DIR
from .collector import normalize_path

PUBLISHED_MANIFEST_PROTOCOL = "arweave/paths"
PUBLISHED_MANIFEST_VERSION = "0.1.0"


class ManifestEntry(BaseModel):
    """Persisted record of one deployed file.

    Older manifests used camelCase keys; those are accepted on load.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content_id: str | None = Field(
        default=None, validation_alias=AliasChoices("content_id", "transactionId")
    )
    content_hash: str | None = Field(
        default=None, validation_alias=AliasChoices("content_hash", "hash")
    )
    size_bytes: int = Field(
        default=0, validation_alias=AliasChoices("size_bytes", "fileSize")
    )
    last_modified: str | None = Field(
        default=None, validation_alias=AliasChoices("last_modified", "lastModified")
    )

    @property
    def is_well_formed(self) -> bool:
        """True if the entry can be reused without re-uploading."""
        return bool(self.content_id) and bool(self.content_hash)


class DeploymentSnapshot(BaseModel):
    """The complete record of a deployment, used to diff the next run.

    Snapshots are immutable: a run loads one, builds a new one and
    replaces the stored document wholesale.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    files: dict[str, ManifestEntry] = Field(default_factory=dict)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        validation_alias=AliasChoices("updated_at", "lastUpdated"),
    )
    total_files: int = Field(
        default=0, validation_alias=AliasChoices("total_files", "totalFiles")
    )

    @classmethod
    def empty(cls) -> DeploymentSnapshot:
        """Snapshot for a first deployment."""
        return cls()

    @classmethod
    def from_entries(cls, files: dict[str, ManifestEntry]) -> DeploymentSnapshot:
        return cls(files=dict(sorted(files.items())), total_files=len(files))

    def with_normalized_paths(self) -> DeploymentSnapshot:
        """Return a copy whose keys use the collector's path normalization.

        If two keys normalize to the same path, the later one in sorted
        order wins.
        """
        files = {
            normalize_path(path): entry for path, entry in sorted(self.files.items())
        }
        return self.model_copy(update={"files": files})


class PathEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(min_length=1)


class ManifestIndex(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str = Field(min_length=1)


class PublishedManifest(BaseModel):
    """Path manifest uploaded to the object store.

    Field names and order follow the storage gateway's manifest format.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    manifest: Literal["arweave/paths"] = PUBLISHED_MANIFEST_PROTOCOL
    version: Literal["0.1.0"] = PUBLISHED_MANIFEST_VERSION
    index: ManifestIndex
    paths: dict[str, PathEntry]

    @model_validator(mode="after")
    def _index_must_be_a_path(self) -> PublishedManifest:
        if self.index.path not in self.paths:
            raise ValueError(f"index path {self.index.path!r} is not in paths")
        return self

    @classmethod
    def build(cls, content_ids: dict[str, str], index_path: str) -> PublishedManifest:
        """Build a manifest from a path -> content id mapping."""
        paths = {path: PathEntry(id=content_ids[path]) for path in sorted(content_ids)}
        return cls(index=ManifestIndex(path=index_path), paths=paths)

    def content_ids(self) -> dict[str, str]:
        return {path: entry.id for path, entry in self.paths.items()}

    def to_json_bytes(self) -> bytes:
        """Serialize to the wire format."""
        return json.dumps(self.model_dump(mode="json"), indent=2).encode("utf-8")


class MetadataStore(ABC):
    """Remote document holding the previous deployment snapshot."""

    @abstractmethod
    def load_snapshot(self) -> DeploymentSnapshot | None:
        """Load the stored snapshot, or None if nothing was deployed yet."""
        ...

    @abstractmethod
    def save_snapshot(self, snapshot: DeploymentSnapshot) -> None:
        """Replace the stored snapshot."""
        ...


class JsonFileMetadataStore(MetadataStore):
    """Metadata store backed by a JSON document on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load_snapshot(self) -> DeploymentSnapshot | None:
        if not self.path.exists():
            return None

        with open(self.path) as f:
            data = json.load(f)

        return DeploymentSnapshot.model_validate(data)

    def save_snapshot(self, snapshot: DeploymentSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(snapshot.model_dump(mode="json"), f, indent=2)
        os.replace(tmp_path, self.path)


class InMemoryMetadataStore(MetadataStore):
    """Metadata store held in process memory."""

    def __init__(self, snapshot: DeploymentSnapshot | None = None):
        self.snapshot = snapshot
        self.saves = 0

    def load_snapshot(self) -> DeploymentSnapshot | None:
        return self.snapshot

    def save_snapshot(self, snapshot: DeploymentSnapshot) -> None:
        self.snapshot = snapshot
        self.saves += 1


def get_snapshot_path(project_root: Path) -> Path:
    """Get the default snapshot file path."""
    return project_root / PD_DIR / MANIFEST_FILE
