"""Shared test fixtures for Seiro."""

from __future__ import annotations

import os
import stat
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from seiro.sandbox.sdk import SdkAliasTable
from seiro.service.build_service import BuildService
from seiro.settings import Settings

MOCK_XCODEBUILD = """\
#!/usr/bin/env bash
set -euo pipefail

echo "[mock-xcodebuild] invoked with args: $*" >&2

ARTIFACT_DIR="${VISIONOS_BUILD_ARTIFACT_DIR:-}"
if [[ -z "${ARTIFACT_DIR}" ]]; then
  echo "[mock-xcodebuild] VISIONOS_BUILD_ARTIFACT_DIR is not set" >&2
  exit 2
fi
mkdir -p "${ARTIFACT_DIR}"

case "${MOCK_XCODEBUILD_BEHAVIOR:-success}" in
  sleep)
    # Long-running build that forks a grandchild into the same process group.
    sleep 60 &
    echo $! > "${ARTIFACT_DIR}/../grandchild.pid"
    wait
    ;;
  stubborn)
    # Grandchild that ignores SIGTERM.
    ( trap '' TERM; sleep 60 ) &
    echo $! > "${ARTIFACT_DIR}/../grandchild.pid"
    wait
    ;;
  leak)
    # Exits successfully but leaves a background process holding stdout.
    sleep 60 &
    echo $! > "${ARTIFACT_DIR}/../grandchild.pid"
    printf "leaked" > "${ARTIFACT_DIR}/leak.txt"
    ;;
  noisy)
    for i in $(seq 1 3000); do
      echo "compiling source file number ${i} of 3000"
    done
    printf "noisy" > "${ARTIFACT_DIR}/noisy.txt"
    ;;
  fail)
    echo "[mock-xcodebuild] simulated failure" >&2
    exit 65
    ;;
  empty)
    echo "[mock-xcodebuild] no products" >&2
    ;;
  *)
    echo "[mock-xcodebuild] generating dummy artifacts in ${ARTIFACT_DIR}" >&2
    mkdir -p "${ARTIFACT_DIR}/VisionApp.app"
    printf "dummy app bundle for %s" "$PWD" > "${ARTIFACT_DIR}/VisionApp.app/Info.plist"
    mkdir -p "${ARTIFACT_DIR}/VisionApp.dSYM"
    printf "dummy dSYM" > "${ARTIFACT_DIR}/VisionApp.dSYM/Contents"
    ;;
esac
"""


@pytest.fixture(autouse=True)
def sandbox_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """A ready visionOS host as seen by the env probe."""
    monkeypatch.setenv("VISIONOS_SANDBOX_SDKS", "xros26.2,xrsimulator26.2")
    monkeypatch.setenv("VISIONOS_SANDBOX_DEVTOOLS", "enabled")
    monkeypatch.setenv("VISIONOS_SANDBOX_LICENSE", "accepted")
    monkeypatch.setenv("VISIONOS_SANDBOX_DISK_BYTES", str(100 * 1024**3))


@pytest.fixture
def alias_table() -> SdkAliasTable:
    return SdkAliasTable.load()


@pytest.fixture
def mock_xcodebuild(tmp_path: Path) -> Path:
    """Executable stand-in for xcodebuild driven by MOCK_XCODEBUILD_BEHAVIOR."""
    script = tmp_path / "bin" / "xcodebuild"
    script.parent.mkdir()
    script.write_text(MOCK_XCODEBUILD)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "projects" / "VisionApp"
    project.mkdir(parents=True)
    return project


@pytest.fixture
def developer_dir(tmp_path: Path) -> Path:
    path = tmp_path / "Xcode.app" / "Contents" / "Developer"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def settings(
    tmp_path: Path, mock_xcodebuild: Path, project_dir: Path, developer_dir: Path
) -> Settings:
    """Settings for an env-probed host with the mock toolchain and a 5 s build limit."""
    return Settings(
        _env_file=None,
        allowed_paths=[tmp_path / "projects"],
        allowed_schemes=[],
        sandbox_probe="env",
        xcode_path=developer_dir,
        xcodebuild_path=mock_xcodebuild,
        artifact_root=tmp_path / "artifacts",
        max_build_minutes=1,
        build_minute_seconds=5.0,
    )


@pytest.fixture
def service(settings: Settings) -> BuildService:
    """BuildService without the background sweep thread."""
    return BuildService.from_settings(settings)


def _pid_alive(pid: int) -> bool:
    """True if *pid* is running (zombies count as dead)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    stat_file = Path(f"/proc/{pid}/stat")
    if not stat_file.exists():
        return True
    try:
        state = stat_file.read_text().rsplit(")", 1)[1].split()[0]
    except (OSError, IndexError):
        return True
    return state not in ("Z", "X")


def _wait_until_dead(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _pid_alive(pid):
            return True
        time.sleep(0.05)
    return not _pid_alive(pid)


@pytest.fixture
def wait_until_dead() -> Callable[[int], bool]:
    """Poll until a pid is gone; returns False if it is still running after 5 s."""
    return _wait_until_dead
