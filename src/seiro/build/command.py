"""Builds the ``xcodebuild`` invocation for one job."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from seiro.models.requests import BuildConfiguration

ARTIFACT_DIR_ENV = "VISIONOS_BUILD_ARTIFACT_DIR"
_DEFAULT_PATH = "/usr/bin:/bin:/usr/sbin:/sbin"


@dataclass(frozen=True)
class XcodebuildCommand:
    """Everything needed to spawn the toolchain: argv, environment and cwd."""

    argv: list[str]
    env: dict[str, str]
    cwd: Path


def working_directory(project_path: Path) -> Path:
    """The directory xcodebuild runs in.

    Bundles such as ``App.xcodeproj`` and plain files are not useful working
    directories, so their parent is used instead.
    """
    if project_path.suffix or project_path.is_file():
        return project_path.parent
    return project_path


def build_command(
    *,
    xcodebuild_path: Path,
    developer_dir: Path,
    staging_dir: Path,
    project_path: Path,
    scheme: str,
    configuration: BuildConfiguration | str,
    destination: str,
    workspace: Path | None = None,
    clean: bool = False,
    extra_args: list[str] | None = None,
    env_overrides: dict[str, str] | None = None,
) -> XcodebuildCommand:
    argv = [str(xcodebuild_path)]
    if workspace is not None:
        argv += ["-workspace", str(workspace)]
    elif project_path.suffix == ".xcodeproj":
        argv += ["-project", str(project_path)]

    argv += [
        "-scheme",
        scheme,
        "-configuration",
        str(configuration),
        "-destination",
        destination,
    ]
    if clean:
        argv.append("clean")
    argv.append("build")
    argv.extend(extra_args or [])

    # The inherited environment is not passed through.
    env = {
        "PATH": os.environ.get("PATH", _DEFAULT_PATH),
        "NSUnbufferedIO": "YES",
        "DEVELOPER_DIR": str(developer_dir),
        ARTIFACT_DIR_ENV: str(staging_dir),
    }
    env.update(env_overrides or {})

    return XcodebuildCommand(argv=argv, env=env, cwd=working_directory(project_path))
