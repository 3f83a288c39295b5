"""Per-job working directories, artifact packaging and hashing."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Final

logger = logging.getLogger("seiro.build")

DEFAULT_ARTIFACT_ROOT = Path("target/visionos-builds")
FALLBACK_ARTIFACT_ROOT = Path("seiro-mcp/visionos-builds")  # relative to the temp dir

ARCHIVE_NAME = "artifact.zip"
STAGING_NAME = "staging"

_ZIP_FIXED_TIMESTAMP: Final[tuple[int, int, int, int, int, int]] = (1980, 1, 1, 0, 0, 0)
_ZIP_FILE_MODE = 0o100644
_ZIP_DIR_MODE = 0o040755
_READ_CHUNK_BYTES = 1024 * 1024


class ArtifactPackagingError(RuntimeError):
    """Build products could not be archived or hashed."""


def directory_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    probe = path / f".seiro-mcp-write-probe-{os.getpid()}-{uuid.uuid4().hex}"
    try:
        with probe.open("x"):
            pass
    except OSError:
        return False
    probe.unlink(missing_ok=True)
    return True


def resolve_artifact_root(configured: Path | None = None) -> Path:
    """Pick the directory that holds per-job workspaces.

    An explicitly configured root is used as-is.  Otherwise the project-local
    ``target/visionos-builds`` is preferred, falling back to a directory under
    the system temp dir when it is not writable.
    """
    if configured is not None:
        configured.mkdir(parents=True, exist_ok=True)
        return configured.resolve()

    preferred = DEFAULT_ARTIFACT_ROOT.resolve()
    if directory_writable(preferred):
        return preferred

    fallback = Path(tempfile.gettempdir()) / FALLBACK_ARTIFACT_ROOT
    if directory_writable(fallback):
        logger.warning(
            "Artifact root %s is not writable; using fallback %s", preferred, fallback
        )
        return fallback

    logger.warning(
        "Artifact root %s and fallback %s are not writable; keeping %s",
        preferred,
        fallback,
        preferred,
    )
    return preferred


@dataclass(frozen=True)
class JobWorkspace:
    """Directory owned by a single job: ``<root>/<job_id>/``."""

    path: Path

    @property
    def staging_dir(self) -> Path:
        """Where the toolchain writes build products."""
        return self.path / STAGING_NAME

    @property
    def archive_path(self) -> Path:
        return self.path / ARCHIVE_NAME

    @classmethod
    def create(cls, artifact_root: Path, job_id: str) -> JobWorkspace:
        workspace = cls(artifact_root / job_id)
        workspace.staging_dir.mkdir(parents=True, exist_ok=False)
        return workspace

    def remove(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)


def _members(source: Path) -> list[Path]:
    return sorted(source.rglob("*"), key=lambda p: p.relative_to(source).as_posix())


def _zip_info(name: str, mode: int) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(filename=name, date_time=_ZIP_FIXED_TIMESTAMP)
    info.external_attr = (mode & 0xFFFF) << 16
    info.create_system = 3
    return info


def package_directory(source: Path, destination: Path) -> None:
    """Write every file and directory below *source* into a zip at *destination*.

    Entries are sorted and carry fixed timestamps and permissions, so the
    same tree always produces byte-identical archives.
    """
    temp_output = destination.with_name(f".{destination.name}.tmp")
    try:
        with zipfile.ZipFile(
            temp_output, mode="w", compression=zipfile.ZIP_DEFLATED, allowZip64=True
        ) as archive:
            for member in _members(source):
                rel_path = member.relative_to(source).as_posix()
                if member.is_dir() and not member.is_symlink():
                    archive.writestr(_zip_info(f"{rel_path}/", _ZIP_DIR_MODE), b"")
                    continue
                if not member.is_file():
                    continue
                info = _zip_info(rel_path, _ZIP_FILE_MODE)
                info.compress_type = zipfile.ZIP_DEFLATED
                large = member.stat().st_size >= zipfile.ZIP64_LIMIT
                with (
                    member.open("rb") as src,
                    archive.open(info, mode="w", force_zip64=large) as dst,
                ):
                    shutil.copyfileobj(src, dst, _READ_CHUNK_BYTES)
        os.replace(temp_output, destination)
    except OSError as exc:
        raise ArtifactPackagingError(f"Failed to archive {source}: {exc}") from exc
    finally:
        temp_output.unlink(missing_ok=True)


def sha256_file(path: Path) -> str:
    """Return the SHA-256 hex digest of a file read in chunks."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_READ_CHUNK_BYTES), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ArtifactPackagingError(f"Failed to hash {path}: {exc}") from exc
    return digest.hexdigest()


def package_workspace(workspace: JobWorkspace) -> tuple[Path, str, int]:
    """Archive the staging directory; returns ``(archive, sha256, size)``."""
    staging = workspace.staging_dir
    if not staging.is_dir():
        raise ArtifactPackagingError(f"Staging directory {staging} is missing")
    if not any(staging.iterdir()):
        logger.warning("No build products found in %s; packaging an empty archive", staging)
    package_directory(staging, workspace.archive_path)
    content_hash = sha256_file(workspace.archive_path)
    return workspace.archive_path, content_hash, workspace.archive_path.stat().st_size
