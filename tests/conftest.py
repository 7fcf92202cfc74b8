"""Shared test fixtures for permadeploy."""

import logging
import threading
from pathlib import Path

import pytest
from click.testing import CliRunner

from permadeploy.config import DeployConfig
from permadeploy.manifest import InMemoryMetadataStore, MetadataStore
from permadeploy.storage import ObjectStore, UploadResult


class RecordingObjectStore(ObjectStore):
    """Object store double that records uploads and can be told to fail."""

    def __init__(self, fail_on: set[str] | None = None):
        self.fail_on = set(fail_on or ())
        self.uploads: list[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def upload(self, data, file_name, content_type, tags=None):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            path = (tags or {}).get("Deploy-Path", file_name)
            if path in self.fail_on:
                raise ConnectionError(f"provider rejected {path}")
            with self._lock:
                content_id = f"id-{len(self.uploads):04d}"
                self.uploads.append(
                    {
                        "data": data,
                        "file_name": file_name,
                        "content_type": content_type,
                        "tags": dict(tags or {}),
                        "content_id": content_id,
                    }
                )
            return UploadResult(content_id, f"https://gateway.test/{content_id}")
        finally:
            with self._lock:
                self.in_flight -= 1

    @property
    def content_uploads(self) -> list[dict]:
        """Uploads other than the published manifest."""
        return [u for u in self.uploads if u["file_name"] != "manifest.json"]

    @property
    def manifest_uploads(self) -> list[dict]:
        return [u for u in self.uploads if u["file_name"] == "manifest.json"]


class UnreachableMetadataStore(MetadataStore):
    """Metadata store whose reads fail, as when the remote is down."""

    def __init__(self):
        self.saved = None

    def load_snapshot(self):
        raise ConnectionError("metadata store unreachable")

    def save_snapshot(self, snapshot):
        self.saved = snapshot


class ReadOnlyMetadataStore(InMemoryMetadataStore):
    """Metadata store that can be read but rejects writes."""

    def save_snapshot(self, snapshot):
        raise PermissionError("metadata store is read-only")


def write_site(root: Path, files: dict[str, str | bytes]) -> Path:
    """Create a site tree from a mapping of relative path -> content."""
    root.mkdir(parents=True, exist_ok=True)
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    return root


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo CLI logging setup so caplog sees package records."""
    yield
    logger = logging.getLogger("permadeploy")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def config() -> DeployConfig:
    """Config with no pause between batches."""
    return DeployConfig(batch_delay_seconds=0, gateway_url="https://gateway.test")


@pytest.fixture
def object_store() -> RecordingObjectStore:
    return RecordingObjectStore()


@pytest.fixture
def metadata_store() -> InMemoryMetadataStore:
    return InMemoryMetadataStore()


@pytest.fixture
def sample_site(tmp_path: Path) -> Path:
    """A small built website.

    Structure:
        website/
        ├── index.html
        ├── about.html
        ├── artists.json
        ├── css/style.css
        ├── js/app.js
        ├── images/logo.svg
        ├── README.md          (excluded)
        ├── templates/base.html (excluded)
        └── notes.psd          (unsupported extension)
    """
    return write_site(
        tmp_path / "website",
        {
            "index.html": "<html><body>Home</body></html>" * 60,
            "about.html": "<html><body>About</body></html>",
            "artists.json": '[{"artistName": "A"}]',
            "css/style.css": "body { color: black; }" * 40,
            "js/app.js": "console.log('hi');",
            "images/logo.svg": "<svg xmlns='http://www.w3.org/2000/svg'></svg>",
            "README.md": "# docs",
            "templates/base.html": "<html>{{ body }}</html>",
            "notes.psd": b"\x00\x01binary",
        },
    )
