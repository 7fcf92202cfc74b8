"""Object store interface and a local append-only implementation."""

import base64
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from . import OBJECTS_DIR, PD_DIR

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".eot": "application/vnd.ms-fontobject",
}


def content_type_for(path: str) -> str:
    """Get the MIME type for a logical path from its extension."""
    suffix = PurePosixPath(path).suffix.lower()
    return CONTENT_TYPES.get(suffix, DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class UploadResult:
    """Identifier issued by the object store for an upload."""

    content_id: str
    public_url: str


class ObjectStore(ABC):
    """Immutable, append-only object storage.

    Every upload creates a new object; nothing is ever updated or deleted.
    """

    @abstractmethod
    def upload(
        self,
        data: bytes,
        file_name: str,
        content_type: str,
        tags: dict[str, str] | None = None,
    ) -> UploadResult:
        """
        Upload bytes and return the issued content identifier.

        Args:
            data: Object content
            file_name: Name recorded alongside the object
            content_type: MIME type served for the object
            tags: Extra metadata tags

        Returns:
            UploadResult with the content id and public URL
        """
        ...


class LocalObjectStore(ObjectStore):
    """Object store writing into a local directory.

    Content ids are 43-character URL-safe base64 digests, the same shape
    as permanent storage transaction ids.
    """

    def __init__(self, directory: Path, gateway_url: str = "https://arweave.net"):
        self.directory = Path(directory)
        self.gateway_url = gateway_url.rstrip("/")

    @classmethod
    def for_project(cls, project_root: Path, gateway_url: str = "https://arweave.net"):
        return cls(project_root / PD_DIR / OBJECTS_DIR, gateway_url)

    def upload(
        self,
        data: bytes,
        file_name: str,
        content_type: str,
        tags: dict[str, str] | None = None,
    ) -> UploadResult:
        tags = dict(tags or {})
        content_id = _content_id(data, file_name, content_type, tags)

        self.directory.mkdir(parents=True, exist_ok=True)
        object_path = self.directory / content_id
        if not object_path.exists():
            object_path.write_bytes(data)
            meta = {
                "file_name": file_name,
                "content_type": content_type,
                "size": len(data),
                "tags": tags,
            }
            (self.directory / f"{content_id}.json").write_text(json.dumps(meta, indent=2))

        return UploadResult(content_id=content_id, public_url=self.url_for(content_id))

    def url_for(self, content_id: str, path: str | None = None) -> str:
        """Public URL for a content id, optionally resolved through a manifest path."""
        if path:
            return f"{self.gateway_url}/{content_id}/{path}"
        return f"{self.gateway_url}/{content_id}"

    def read(self, content_id: str) -> bytes:
        """Read back an object's bytes."""
        return (self.directory / content_id).read_bytes()

    def count_objects(self) -> int:
        """Count stored objects (metadata sidecars excluded)."""
        if not self.directory.exists():
            return 0
        return sum(1 for p in self.directory.iterdir() if p.suffix != ".json")


def _content_id(data: bytes, file_name: str, content_type: str, tags: dict[str, str]) -> str:
    h = hashlib.sha256()
    h.update(data)
    h.update(file_name.encode())
    h.update(content_type.encode())
    for key in sorted(tags):
        h.update(f"{key}={tags[key]}".encode())
    return base64.urlsafe_b64encode(h.digest()).decode().rstrip("=")
