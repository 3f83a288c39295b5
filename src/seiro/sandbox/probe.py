"""Environment probes used by the sandbox policy validator.

Two variants exist: :class:`SystemSandboxProbe` inspects the real toolchain,
:class:`EnvSandboxProbe` reads pre-seeded values from environment variables
so tests and CI hosts without Xcode get reproducible answers.  The variant
is chosen once via :func:`create_probe`.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path

from seiro.sandbox.sdk import SdkAliasTable, SdkInventory, parse_showsdks_output

logger = logging.getLogger("seiro.sandbox")

_PROBE_COMMAND_TIMEOUT = 30  # seconds
_UNLIMITED_DISK_BYTES = 2**62

ENV_SDKS = "VISIONOS_SANDBOX_SDKS"
ENV_DEVTOOLS = "VISIONOS_SANDBOX_DEVTOOLS"
ENV_LICENSE = "VISIONOS_SANDBOX_LICENSE"
ENV_DISK_BYTES = "VISIONOS_SANDBOX_DISK_BYTES"


class ProbeError(RuntimeError):
    """A probe could not determine a fact about the environment."""


class SandboxProbe(ABC):
    """Source of environment facts for sandbox validation."""

    mode: str = "abstract"

    def __init__(self, alias_table: SdkAliasTable) -> None:
        self.alias_table = alias_table

    @property
    def requires_developer_dir(self) -> bool:
        return True

    @abstractmethod
    def list_sdks(self, developer_dir: Path) -> SdkInventory: ...

    @abstractmethod
    def is_developer_mode_enabled(self) -> bool: ...

    @abstractmethod
    def is_license_accepted(self, developer_dir: Path) -> bool: ...

    @abstractmethod
    def free_disk_bytes(self, path: Path) -> int: ...

    def list_available_sdks(self, developer_dir: Path) -> set[str]:
        return set(self.list_sdks(developer_dir).raw)


class SystemSandboxProbe(SandboxProbe):
    """Probe that shells out to the installed toolchain."""

    mode = "system"

    def __init__(self, alias_table: SdkAliasTable, xcodebuild_path: Path) -> None:
        super().__init__(alias_table)
        self._xcodebuild = str(xcodebuild_path)

    def _run(
        self, argv: list[str], developer_dir: Path | None = None
    ) -> subprocess.CompletedProcess[str]:
        env = dict(os.environ)
        if developer_dir is not None and str(developer_dir):
            env["DEVELOPER_DIR"] = str(developer_dir)
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                env=env,
                timeout=_PROBE_COMMAND_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ProbeError(f"Failed to run {' '.join(argv)}: {exc}") from exc

    def list_sdks(self, developer_dir: Path) -> SdkInventory:
        invocation = f"DEVELOPER_DIR={developer_dir} {self._xcodebuild} -showsdks"
        result = self._run([self._xcodebuild, "-showsdks"], developer_dir)
        if result.returncode != 0:
            raise ProbeError(f"xcodebuild -showsdks failed: {result.stderr.strip()}")
        inventory = parse_showsdks_output(result.stdout, self.alias_table, invocation)
        logger.debug("Detected SDKs: %s", ", ".join(inventory.raw))
        return inventory

    def is_developer_mode_enabled(self) -> bool:
        result = self._run(["DevToolsSecurity", "-status"])
        if result.returncode != 0:
            return False
        status = result.stdout.lower()
        return "enabled" in status and "disabled" not in status

    def is_license_accepted(self, developer_dir: Path) -> bool:
        result = self._run([self._xcodebuild, "-checkFirstLaunchStatus"], developer_dir)
        return result.returncode == 0

    def free_disk_bytes(self, path: Path) -> int:
        target = path
        while not target.exists() and target != target.parent:
            target = target.parent
        try:
            return shutil.disk_usage(target).free
        except OSError as exc:
            raise ProbeError(f"Failed to read free space for {target}: {exc}") from exc


class EnvSandboxProbe(SandboxProbe):
    """Deterministic probe seeded from ``VISIONOS_SANDBOX_*`` variables."""

    mode = "env"

    def __init__(
        self, alias_table: SdkAliasTable, environ: Mapping[str, str] | None = None
    ) -> None:
        super().__init__(alias_table)
        self._environ = environ

    @property
    def requires_developer_dir(self) -> bool:
        return False

    def _get(self, key: str, default: str = "") -> str:
        environ = self._environ if self._environ is not None else os.environ
        return environ.get(key, default)

    def list_sdks(self, developer_dir: Path) -> SdkInventory:
        raw = sorted({entry.strip() for entry in self._get(ENV_SDKS).split(",") if entry.strip()})
        notes = []
        if not raw:
            notes.append(f"{ENV_SDKS} is empty; env probe does not execute xcodebuild")
        return SdkInventory(raw=raw, normalized=self.alias_table.normalize(raw), notes=notes)

    def is_developer_mode_enabled(self) -> bool:
        return self._get(ENV_DEVTOOLS, "enabled").lower() in ("enabled", "true", "1")

    def is_license_accepted(self, developer_dir: Path) -> bool:
        return self._get(ENV_LICENSE, "accepted").lower() in ("accepted", "true", "1")

    def free_disk_bytes(self, path: Path) -> int:
        value = self._get(ENV_DISK_BYTES)
        try:
            return int(value) if value else _UNLIMITED_DISK_BYTES
        except ValueError:
            return _UNLIMITED_DISK_BYTES


def create_probe(mode: str, alias_table: SdkAliasTable, xcodebuild_path: Path) -> SandboxProbe:
    """Build the probe for a configured mode (``system``, ``env`` or ``mock``)."""
    if mode in ("env", "mock"):
        return EnvSandboxProbe(alias_table)
    return SystemSandboxProbe(alias_table, xcodebuild_path)
