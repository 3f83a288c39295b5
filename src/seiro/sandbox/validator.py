"""Sandbox policy validation.

Environment facts are gathered once into an immutable
:class:`SandboxContext`; each check is then a pure function over that
context.  All checks are evaluated so the report always carries complete
diagnostics, but only the first failing check (in :data:`CHECK_ORDER`)
determines the returned error code.  Nothing here writes to disk.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Generic, TypeVar

from seiro.models import errors as err
from seiro.models.errors import ErrorDescriptor
from seiro.models.requests import is_allowed_path
from seiro.sandbox.probe import ProbeError, SandboxProbe
from seiro.sandbox.sdk import SdkInventory

logger = logging.getLogger("seiro.sandbox")

T = TypeVar("T")


class CheckName(StrEnum):
    ALLOWED_PATH = "allowed-path"
    ALLOWED_SCHEME = "allowed-scheme"
    SDK_PRESENCE = "sdk-presence"
    DEVELOPER_MODE = "developer-mode"
    LICENSE = "license"
    DISK_SPACE = "disk-space"


class CheckResult(StrEnum):
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CheckOutcome:
    name: CheckName
    result: CheckResult
    details: str
    error: ErrorDescriptor | None = None

    @property
    def failed(self) -> bool:
        return self.result is CheckResult.FAIL

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": str(self.name),
            "result": str(self.result),
            "details": self.details,
        }
        if self.error is not None:
            data["code"] = self.error.code
        return data


@dataclass(frozen=True)
class Fact(Generic[T]):
    """A probed value, or the reason it could not be probed."""

    value: T | None = None
    error: str | None = None


def _probe(fn: Callable[[], T]) -> Fact[T]:
    try:
        return Fact(value=fn())
    except ProbeError as exc:
        logger.warning("Sandbox probe failed: %s", exc)
        return Fact(error=str(exc))


@dataclass(frozen=True)
class SandboxContext:
    """Immutable inputs shared by every check."""

    project_path: Path
    required_sdks: tuple[str, ...]
    allowed_paths: tuple[Path, ...]
    allowed_schemes: tuple[str, ...] | None
    scheme: str | None
    developer_dir: Path
    developer_dir_missing: bool
    probe_mode: str
    min_disk_bytes: int
    inventory: Fact[SdkInventory]
    missing_sdks: tuple[str, ...]
    developer_mode: Fact[bool]
    license_accepted: Fact[bool]
    free_disk_bytes: Fact[int]


# -- checks ----------------------------------------------------------------


def check_allowed_path(ctx: SandboxContext) -> CheckOutcome:
    if not ctx.allowed_paths:
        return CheckOutcome(
            CheckName.ALLOWED_PATH,
            CheckResult.PASS,
            "allowlist check skipped (allowed_paths is empty)",
        )
    if ctx.project_path.is_absolute() and is_allowed_path(
        ctx.project_path, list(ctx.allowed_paths)
    ):
        return CheckOutcome(
            CheckName.ALLOWED_PATH,
            CheckResult.PASS,
            f"{ctx.project_path} is within the allowlist",
        )
    return CheckOutcome(
        CheckName.ALLOWED_PATH,
        CheckResult.FAIL,
        f"{ctx.project_path} is outside the allowlist",
        err.PATH_NOT_ALLOWED,
    )


def check_allowed_scheme(ctx: SandboxContext) -> CheckOutcome:
    if ctx.scheme is None or ctx.allowed_schemes is None:
        return CheckOutcome(CheckName.ALLOWED_SCHEME, CheckResult.SKIPPED, "no scheme requested")
    if not ctx.allowed_schemes:
        return CheckOutcome(
            CheckName.ALLOWED_SCHEME,
            CheckResult.PASS,
            "scheme check skipped (allowed_schemes is empty)",
        )
    if ctx.scheme in ctx.allowed_schemes:
        return CheckOutcome(
            CheckName.ALLOWED_SCHEME, CheckResult.PASS, f"scheme `{ctx.scheme}` is allowed"
        )
    return CheckOutcome(
        CheckName.ALLOWED_SCHEME,
        CheckResult.FAIL,
        f"scheme `{ctx.scheme}` is not in the allowlist",
        err.SCHEME_NOT_ALLOWED,
    )


def check_sdk_presence(ctx: SandboxContext) -> CheckOutcome:
    if ctx.developer_dir_missing:
        return CheckOutcome(
            CheckName.SDK_PRESENCE,
            CheckResult.FAIL,
            f"Developer directory `{ctx.developer_dir}` not found",
            err.XCODE_UNLICENSED,
        )
    if ctx.inventory.error is not None:
        return CheckOutcome(
            CheckName.SDK_PRESENCE,
            CheckResult.FAIL,
            ctx.inventory.error,
            err.SANDBOX_INTERNAL_ERROR,
        )
    if ctx.missing_sdks:
        return CheckOutcome(
            CheckName.SDK_PRESENCE,
            CheckResult.FAIL,
            f"SDK not detected: {', '.join(ctx.missing_sdks)}",
            err.SDK_MISSING,
        )
    detected = ctx.inventory.value.raw if ctx.inventory.value else []
    return CheckOutcome(
        CheckName.SDK_PRESENCE, CheckResult.PASS, f"SDK: {', '.join(detected)}"
    )


def check_developer_mode(ctx: SandboxContext) -> CheckOutcome:
    if ctx.developer_mode.error is not None:
        return CheckOutcome(
            CheckName.DEVELOPER_MODE,
            CheckResult.FAIL,
            ctx.developer_mode.error,
            err.SANDBOX_INTERNAL_ERROR,
        )
    if not ctx.developer_mode.value:
        return CheckOutcome(
            CheckName.DEVELOPER_MODE,
            CheckResult.FAIL,
            "DevToolsSecurity is disabled",
            err.DEVTOOLS_SECURITY_DISABLED,
        )
    return CheckOutcome(CheckName.DEVELOPER_MODE, CheckResult.PASS, "DevToolsSecurity is enabled")


def check_license(ctx: SandboxContext) -> CheckOutcome:
    if ctx.developer_dir_missing:
        return CheckOutcome(
            CheckName.LICENSE,
            CheckResult.FAIL,
            f"Developer directory `{ctx.developer_dir}` not found",
            err.XCODE_UNLICENSED,
        )
    if ctx.license_accepted.error is not None:
        return CheckOutcome(
            CheckName.LICENSE,
            CheckResult.FAIL,
            ctx.license_accepted.error,
            err.SANDBOX_INTERNAL_ERROR,
        )
    if not ctx.license_accepted.value:
        return CheckOutcome(
            CheckName.LICENSE,
            CheckResult.FAIL,
            "Xcode license has not been accepted",
            err.XCODE_UNLICENSED,
        )
    return CheckOutcome(CheckName.LICENSE, CheckResult.PASS, "Xcode license accepted")


def check_disk_space(ctx: SandboxContext) -> CheckOutcome:
    if ctx.free_disk_bytes.error is not None:
        return CheckOutcome(
            CheckName.DISK_SPACE,
            CheckResult.FAIL,
            ctx.free_disk_bytes.error,
            err.SANDBOX_INTERNAL_ERROR,
        )
    free = ctx.free_disk_bytes.value or 0
    if free < ctx.min_disk_bytes:
        return CheckOutcome(
            CheckName.DISK_SPACE,
            CheckResult.FAIL,
            f"{free} bytes free, {ctx.min_disk_bytes} required",
            err.DISK_INSUFFICIENT,
        )
    return CheckOutcome(CheckName.DISK_SPACE, CheckResult.PASS, f"{free} bytes free")


CHECK_ORDER: tuple[Callable[[SandboxContext], CheckOutcome], ...] = (
    check_allowed_path,
    check_allowed_scheme,
    check_sdk_presence,
    check_developer_mode,
    check_license,
    check_disk_space,
)


# -- report ----------------------------------------------------------------


@dataclass
class SandboxReport:
    """Outcome of a policy validation run."""

    checks: list[CheckOutcome]
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @property
    def first_failure(self) -> CheckOutcome | None:
        return next((check for check in self.checks if check.failed), None)

    @property
    def ok(self) -> bool:
        return self.first_failure is None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "error"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "checks": [check.to_dict() for check in self.checks],
            "diagnostics": self.diagnostics,
        }


class SandboxPolicyValidator:
    """Runs the ordered sandbox checks against a probe."""

    def __init__(
        self,
        probe: SandboxProbe,
        *,
        developer_dir: Path,
        min_disk_bytes: int,
    ) -> None:
        self._probe = probe
        self._developer_dir = developer_dir
        self._min_disk_bytes = min_disk_bytes

    @property
    def probe(self) -> SandboxProbe:
        return self._probe

    def gather(
        self,
        project_path: Path,
        required_sdks: list[str],
        allowed_paths: list[Path],
        allowed_schemes: list[str] | None = None,
        *,
        scheme: str | None = None,
        developer_dir: Path | None = None,
    ) -> SandboxContext:
        """Collect every environment fact the checks need."""
        developer_dir = developer_dir or self._developer_dir
        developer_dir_missing = self._probe.requires_developer_dir and not developer_dir.exists()

        if developer_dir_missing:
            inventory: Fact[SdkInventory] = Fact(
                error=f"Developer directory `{developer_dir}` not found"
            )
            license_accepted: Fact[bool] = Fact(value=False)
        else:
            inventory = _probe(lambda: self._probe.list_sdks(developer_dir))
            license_accepted = _probe(lambda: self._probe.is_license_accepted(developer_dir))

        missing: tuple[str, ...] = ()
        if inventory.value is not None:
            missing = tuple(self._probe.alias_table.missing(required_sdks, inventory.value))

        disk_root = project_path.parent if project_path.parent != project_path else project_path
        return SandboxContext(
            project_path=project_path,
            required_sdks=tuple(required_sdks),
            allowed_paths=tuple(allowed_paths),
            allowed_schemes=tuple(allowed_schemes) if allowed_schemes is not None else None,
            scheme=scheme,
            developer_dir=developer_dir,
            developer_dir_missing=developer_dir_missing,
            probe_mode=self._probe.mode,
            min_disk_bytes=self._min_disk_bytes,
            inventory=inventory,
            missing_sdks=missing,
            developer_mode=_probe(self._probe.is_developer_mode_enabled),
            license_accepted=license_accepted,
            free_disk_bytes=_probe(lambda: self._probe.free_disk_bytes(disk_root)),
        )

    def validate(
        self,
        project_path: Path,
        required_sdks: list[str],
        allowed_paths: list[Path],
        allowed_schemes: list[str] | None = None,
        *,
        scheme: str | None = None,
        developer_dir: Path | None = None,
    ) -> SandboxReport:
        ctx = self.gather(
            project_path,
            required_sdks,
            allowed_paths,
            allowed_schemes,
            scheme=scheme,
            developer_dir=developer_dir,
        )
        report = SandboxReport(
            checks=[check(ctx) for check in CHECK_ORDER],
            diagnostics=diagnostics(ctx),
        )
        failure = report.first_failure
        if failure is not None:
            logger.info(
                "Sandbox policy blocked %s at %s (%s)",
                project_path,
                failure.name,
                failure.error.code if failure.error else "unknown",
            )
        return report


def diagnostics(ctx: SandboxContext) -> dict[str, Any]:
    inventory = ctx.inventory.value
    return {
        "probe_mode": ctx.probe_mode,
        "developer_dir": str(ctx.developer_dir),
        "required_sdks": list(ctx.required_sdks),
        "missing_sdks": list(ctx.missing_sdks),
        "detected_sdks_raw": inventory.raw if inventory else [],
        "detected_sdks_normalized": inventory.normalized if inventory else [],
        "sdk_invocation": inventory.invocation if inventory else None,
        "notes": inventory.notes if inventory else [],
        "free_disk_bytes": ctx.free_disk_bytes.value,
        "min_disk_bytes": ctx.min_disk_bytes,
    }


class SandboxPolicyError(Exception):
    """The sandbox policy blocked an operation."""

    def __init__(self, report: SandboxReport) -> None:
        failure = report.first_failure
        if failure is None or failure.error is None:
            raise ValueError("SandboxPolicyError requires a failed report")
        self.report = report
        self.check = failure
        self.descriptor = failure.error
        super().__init__(f"{failure.name}: {failure.details}")
