"""Tests for job workspaces, deterministic packaging and hashing."""

from __future__ import annotations

import hashlib
import os
import zipfile
from pathlib import Path

import pytest

from seiro.build import workspace as ws_mod
from seiro.build.workspace import (
    ArtifactPackagingError,
    JobWorkspace,
    directory_writable,
    package_directory,
    package_workspace,
    resolve_artifact_root,
    sha256_file,
)


def _populate(root: Path) -> None:
    (root / "VisionApp.app").mkdir(parents=True)
    (root / "VisionApp.app" / "Info.plist").write_text("plist")
    (root / "VisionApp.app" / "VisionApp").write_bytes(b"\x00\x01binary")
    (root / "VisionApp.dSYM").mkdir()
    (root / "VisionApp.dSYM" / "Contents").write_text("dsym")


class TestJobWorkspace:
    def test_create_makes_staging_dir(self, tmp_path: Path) -> None:
        ws = JobWorkspace.create(tmp_path, "job-1")
        assert ws.path == tmp_path / "job-1"
        assert ws.staging_dir.is_dir()
        assert ws.archive_path == tmp_path / "job-1" / "artifact.zip"

    def test_create_refuses_existing_job_dir(self, tmp_path: Path) -> None:
        JobWorkspace.create(tmp_path, "job-1")
        with pytest.raises(FileExistsError):
            JobWorkspace.create(tmp_path, "job-1")

    def test_remove(self, tmp_path: Path) -> None:
        ws = JobWorkspace.create(tmp_path, "job-1")
        ws.remove()
        assert not ws.path.exists()


class TestPackageDirectory:
    def test_same_tree_same_bytes(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        _populate(source)
        first = tmp_path / "a.zip"
        second = tmp_path / "b.zip"
        package_directory(source, first)
        # Touch the files so mtimes differ between the two runs.
        for path in source.rglob("*"):
            os.utime(path, (1_000_000, 1_000_000))
        package_directory(source, second)
        assert first.read_bytes() == second.read_bytes()

    def test_entries_sorted_with_fixed_metadata(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        _populate(source)
        dest = tmp_path / "out.zip"
        package_directory(source, dest)

        with zipfile.ZipFile(dest) as archive:
            infos = archive.infolist()
            names = [info.filename for info in infos]
            assert names == sorted(names)
            assert "VisionApp.app/" in names
            assert "VisionApp.app/Info.plist" in names
            for info in infos:
                assert info.date_time == (1980, 1, 1, 0, 0, 0)
                mode = info.external_attr >> 16
                expected = 0o040755 if info.is_dir() else 0o100644
                assert mode == expected
            assert archive.read("VisionApp.dSYM/Contents") == b"dsym"

    def test_no_temp_file_left_behind(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        _populate(source)
        dest = tmp_path / "out.zip"
        package_directory(source, dest)
        assert sorted(p.name for p in tmp_path.iterdir()) == ["out.zip", "src"]

    def test_unwritable_destination(self, tmp_path: Path) -> None:
        source = tmp_path / "src"
        _populate(source)
        with pytest.raises(ArtifactPackagingError):
            package_directory(source, tmp_path / "missing" / "out.zip")


class TestHashing:
    def test_sha256_matches_hashlib(self, tmp_path: Path) -> None:
        path = tmp_path / "blob"
        data = os.urandom(3 * 1024 * 1024 + 17)
        path.write_bytes(data)
        assert sha256_file(path) == hashlib.sha256(data).hexdigest()

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ArtifactPackagingError):
            sha256_file(tmp_path / "nope")


class TestPackageWorkspace:
    def test_returns_archive_hash_and_size(self, tmp_path: Path) -> None:
        ws = JobWorkspace.create(tmp_path, "job-1")
        _populate(ws.staging_dir)
        path, digest, size = package_workspace(ws)
        assert path == ws.archive_path
        assert digest == hashlib.sha256(path.read_bytes()).hexdigest()
        assert size == path.stat().st_size

    def test_empty_staging_still_archived(self, tmp_path: Path) -> None:
        ws = JobWorkspace.create(tmp_path, "job-1")
        path, _, _ = package_workspace(ws)
        with zipfile.ZipFile(path) as archive:
            assert archive.namelist() == []

    def test_missing_staging(self, tmp_path: Path) -> None:
        ws = JobWorkspace(tmp_path / "never-created")
        with pytest.raises(ArtifactPackagingError, match="missing"):
            package_workspace(ws)


class TestArtifactRoot:
    def test_configured_root_is_created(self, tmp_path: Path) -> None:
        root = resolve_artifact_root(tmp_path / "a" / "b")
        assert root.is_dir()
        assert root == (tmp_path / "a" / "b").resolve()

    def test_default_root_is_project_local(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        root = resolve_artifact_root()
        assert root == (tmp_path / "target" / "visionos-builds").resolve()
        assert root.is_dir()

    def test_falls_back_to_temp_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(ws_mod.tempfile, "gettempdir", lambda: str(tmp_path / "tmp"))
        preferred = (tmp_path / "target" / "visionos-builds").resolve()
        real_writable = ws_mod.directory_writable
        monkeypatch.setattr(
            ws_mod,
            "directory_writable",
            lambda path: path != preferred and real_writable(path),
        )
        root = resolve_artifact_root()
        assert root == tmp_path / "tmp" / "seiro-mcp" / "visionos-builds"

    def test_write_probe_is_cleaned_up(self, tmp_path: Path) -> None:
        assert directory_writable(tmp_path / "root")
        assert list((tmp_path / "root").iterdir()) == []
