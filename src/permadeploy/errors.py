"""Error types raised by the deployment pipeline."""

from __future__ import annotations

from typing import Any


class DeploymentError(Exception):
    """Base error for a failed deployment run.

    Carries the stage at which the run failed and how many files had
    already been uploaded, so a caller can decide whether to retry.
    """

    def __init__(
        self,
        message: str,
        stage: Any = None,
        files_uploaded: int = 0,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.files_uploaded = files_uploaded

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        stage = getattr(self.stage, "value", self.stage)
        return f"[{stage}] {self.message}"


class CollectionError(DeploymentError):
    """Root directory is missing or unreadable."""


class EmptyTreeError(DeploymentError):
    """No eligible files were found under the root."""


class DiffUnavailable(DeploymentError):
    """The previous snapshot could not be loaded from the metadata store."""


class FileReadError(DeploymentError):
    """A single file could not be read or hashed."""

    def __init__(self, path: str, reason: str, **kwargs: Any):
        super().__init__(f"Could not read {path}: {reason}", **kwargs)
        self.path = path
        self.reason = reason


class UploadError(DeploymentError):
    """A file (or the published manifest) failed to upload."""

    def __init__(self, message: str, path: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.path = path


class ManifestPersistError(DeploymentError):
    """The new snapshot could not be written to the metadata store."""


class NoEntryPointError(DeploymentError):
    """No markup file exists to serve as the manifest index."""


class ConfigError(DeploymentError):
    """Configuration file or environment override is invalid."""
