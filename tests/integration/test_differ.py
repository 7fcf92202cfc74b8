"""Integration tests for change detection against a previous snapshot."""

import hashlib
import json
from pathlib import Path

import pytest

import permadeploy.differ as differ_module
from permadeploy.differ import (
    compute_file_hash,
    detect_changes,
    diff,
    full_upload_changeset,
)
from permadeploy.collector import collect
from permadeploy.errors import DiffUnavailable, FileReadError
from permadeploy.manifest import (
    DeploymentSnapshot,
    InMemoryMetadataStore,
    JsonFileMetadataStore,
    ManifestEntry,
)
from tests.conftest import UnreachableMetadataStore, write_site


def snapshot_for(root: Path, content_ids: dict[str, str] | None = None) -> DeploymentSnapshot:
    """Build a snapshot matching the current tree, as a previous run would."""
    files = {}
    for entry in collect(root):
        files[entry.logical_path] = ManifestEntry(
            content_id=(content_ids or {}).get(entry.logical_path, f"tx-{entry.logical_path}"),
            content_hash=compute_file_hash(entry.absolute_path),
            size_bytes=entry.size_bytes,
            last_modified="2026-01-01T00:00:00+00:00",
        )
    return DeploymentSnapshot.from_entries(files)


def fail_reads_for(monkeypatch, *failing: str) -> None:
    """Make hashing raise OSError for the named file names."""
    original = differ_module.compute_file_hash

    def flaky(path: Path) -> str:
        if path.name in failing:
            raise PermissionError(13, "Permission denied")
        return original(path)

    monkeypatch.setattr(differ_module, "compute_file_hash", flaky)


class TestComputeFileHash:
    def test_sha256_of_contents(self, tmp_path: Path):
        target = tmp_path / "a.css"
        target.write_bytes(b"body{}")

        assert compute_file_hash(target) == hashlib.sha256(b"body{}").hexdigest()


class TestDiff:
    """Tests for classifying files as changed, unchanged or deleted."""

    def test_first_deploy_everything_new(self, sample_site: Path):
        changes = diff(sample_site, None)

        assert changes.total_files == 6
        assert len(changes.changed) == 6
        assert all(record.is_new for record in changes.changed)
        assert changes.unchanged == []
        assert changes.deleted == []

    def test_unchanged_tree_reuses_content_ids(self, sample_site: Path):
        previous = snapshot_for(sample_site)

        changes = diff(sample_site, previous)

        assert changes.changed == []
        assert len(changes.unchanged) == 6
        by_path = {r.logical_path: r for r in changes.unchanged}
        assert by_path["css/style.css"].content_id == "tx-css/style.css"
        assert not changes.has_changes

    def test_modified_file_is_changed_not_new(self, sample_site: Path):
        previous = snapshot_for(sample_site)
        (sample_site / "css" / "style.css").write_text("body { color: red; }")

        changes = diff(sample_site, previous)

        assert [r.logical_path for r in changes.changed] == ["css/style.css"]
        assert changes.changed[0].is_new is False
        assert changes.changed[0].content_id is None
        assert len(changes.unchanged) == 5

    def test_touch_without_content_change_is_unchanged(self, sample_site: Path):
        previous = snapshot_for(sample_site)
        target = sample_site / "index.html"
        target.write_bytes(target.read_bytes())

        changes = diff(sample_site, previous)

        assert changes.changed == []

    def test_deleted_files_reported(self, sample_site: Path):
        previous = snapshot_for(sample_site)
        (sample_site / "js" / "app.js").unlink()
        (sample_site / "about.html").unlink()

        changes = diff(sample_site, previous)

        assert changes.deleted == ["about.html", "js/app.js"]
        assert changes.total_files == 4

    def test_malformed_prior_entry_is_changed(self, sample_site: Path):
        previous = snapshot_for(sample_site)
        files = dict(previous.files)
        files["index.html"] = files["index.html"].model_copy(update={"content_id": ""})
        previous = DeploymentSnapshot.from_entries(files)

        changes = diff(sample_site, previous)

        changed = {r.logical_path: r for r in changes.changed}
        assert "index.html" in changed
        assert changed["index.html"].is_new is False

    def test_prior_keys_are_normalized(self, sample_site: Path):
        """Manifests written with other separators still match current paths."""
        previous = snapshot_for(sample_site)
        legacy = {
            "./" + path.replace("/", "\\"): entry for path, entry in previous.files.items()
        }

        changes = diff(sample_site, DeploymentSnapshot(files=legacy))

        assert changes.changed == []
        assert changes.deleted == []
        assert len(changes.unchanged) == 6

    def test_read_failure_classified_as_new_change(self, sample_site: Path, monkeypatch):
        previous = snapshot_for(sample_site)
        fail_reads_for(monkeypatch, "app.js")

        changes = diff(sample_site, previous)

        assert [r.logical_path for r in changes.changed] == ["js/app.js"]
        record = changes.changed[0]
        assert record.is_new is True
        assert record.content_hash is None
        assert "Permission denied" in record.error
        assert changes.read_failures == [record]

    def test_read_failure_fail_fast(self, sample_site: Path, monkeypatch):
        fail_reads_for(monkeypatch, "app.js")

        with pytest.raises(FileReadError) as exc_info:
            diff(sample_site, None, fail_fast_reads=True)

        assert exc_info.value.path == "js/app.js"

    def test_parallel_hashing_matches_sequential(self, sample_site: Path):
        previous = snapshot_for(sample_site)
        (sample_site / "index.html").write_text("<html>new</html>")

        sequential = diff(sample_site, previous)
        parallel = diff(sample_site, previous, hash_workers=4)

        assert sequential == parallel

    def test_upload_bytes(self, tmp_path: Path):
        root = write_site(tmp_path / "site", {"index.html": "x" * 2048, "a.css": "y" * 1024})

        changes = diff(root, None)

        assert changes.upload_bytes == 3072


class TestDetectChanges:
    """Tests for loading the snapshot from a metadata store."""

    def test_missing_snapshot_is_first_deploy(self, sample_site: Path):
        changes = detect_changes(sample_site, InMemoryMetadataStore())

        assert len(changes.changed) == 6

    def test_unreachable_store_raises_diff_unavailable(self, sample_site: Path):
        with pytest.raises(DiffUnavailable):
            detect_changes(sample_site, UnreachableMetadataStore())

    def test_corrupt_json_raises_diff_unavailable(self, sample_site: Path, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text("{not json")

        with pytest.raises(DiffUnavailable):
            detect_changes(sample_site, JsonFileMetadataStore(path))

    def test_legacy_document_shape(self, sample_site: Path, tmp_path: Path):
        """Documents with camelCase fields from older tooling still diff."""
        previous = snapshot_for(sample_site)
        legacy = {
            "files": {
                path: {
                    "transactionId": entry.content_id,
                    "hash": entry.content_hash,
                    "fileSize": entry.size_bytes,
                    "lastModified": entry.last_modified,
                }
                for path, entry in previous.files.items()
            },
            "lastUpdated": "2026-01-01T00:00:00+00:00",
            "totalFiles": len(previous.files),
        }
        path = tmp_path / "deployment-manifest.json"
        path.write_text(json.dumps(legacy))

        changes = detect_changes(sample_site, JsonFileMetadataStore(path))

        assert len(changes.unchanged) == 6


class TestFullUpload:
    def test_every_entry_is_new(self, sample_site: Path):
        changes = full_upload_changeset(collect(sample_site))

        assert len(changes.changed) == 6
        assert all(r.is_new and r.content_hash for r in changes.changed)
        assert changes.unchanged == []
