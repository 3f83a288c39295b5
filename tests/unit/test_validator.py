"""Tests for the sandbox policy validator."""

from __future__ import annotations

from pathlib import Path

import pytest

from seiro.sandbox.probe import EnvSandboxProbe, ProbeError, SandboxProbe
from seiro.sandbox.sdk import SdkAliasTable, SdkInventory
from seiro.sandbox.validator import (
    CHECK_ORDER,
    CheckName,
    CheckResult,
    SandboxPolicyError,
    SandboxPolicyValidator,
    SandboxReport,
)
from seiro.settings import MIN_DISK_BYTES

READY_HOST = {
    "VISIONOS_SANDBOX_SDKS": "xros26.2,xrsimulator26.2",
    "VISIONOS_SANDBOX_DEVTOOLS": "enabled",
    "VISIONOS_SANDBOX_LICENSE": "accepted",
    "VISIONOS_SANDBOX_DISK_BYTES": str(MIN_DISK_BYTES * 2),
}
REQUIRED = ["visionOS", "visionOS Simulator"]


class BrokenProbe(SandboxProbe):
    """Probe whose toolchain commands fail."""

    mode = "system"

    def list_sdks(self, developer_dir: Path) -> SdkInventory:
        raise ProbeError("xcodebuild -showsdks failed: boom")

    def is_developer_mode_enabled(self) -> bool:
        raise ProbeError("DevToolsSecurity missing")

    def is_license_accepted(self, developer_dir: Path) -> bool:
        return True

    def free_disk_bytes(self, path: Path) -> int:
        return MIN_DISK_BYTES


def _validator(
    alias_table: SdkAliasTable, developer_dir: Path, **overrides: str
) -> SandboxPolicyValidator:
    probe = EnvSandboxProbe(alias_table, environ={**READY_HOST, **overrides})
    return SandboxPolicyValidator(probe, developer_dir=developer_dir, min_disk_bytes=MIN_DISK_BYTES)


def _result(report: SandboxReport, name: CheckName) -> CheckResult:
    return next(c.result for c in report.checks if c.name is name)


class TestHappyPath:
    def test_all_checks_pass(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        validator = _validator(alias_table, tmp_path)
        report = validator.validate(tmp_path / "App", REQUIRED, [tmp_path])
        assert report.ok
        assert report.status == "ok"
        assert [c.name for c in report.checks] == [
            CheckName.ALLOWED_PATH,
            CheckName.ALLOWED_SCHEME,
            CheckName.SDK_PRESENCE,
            CheckName.DEVELOPER_MODE,
            CheckName.LICENSE,
            CheckName.DISK_SPACE,
        ]
        assert _result(report, CheckName.ALLOWED_SCHEME) is CheckResult.SKIPPED

    def test_diagnostics(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(alias_table, tmp_path).validate(tmp_path, REQUIRED, [])
        diagnostics = report.to_dict()["diagnostics"]
        assert diagnostics["probe_mode"] == "env"
        assert diagnostics["required_sdks"] == REQUIRED
        assert diagnostics["detected_sdks_raw"] == ["xros26.2", "xrsimulator26.2"]
        assert "visionOS Simulator" in diagnostics["detected_sdks_normalized"]
        assert diagnostics["missing_sdks"] == []

    def test_empty_allowlist_always_passes(
        self, alias_table: SdkAliasTable, tmp_path: Path
    ) -> None:
        report = _validator(alias_table, tmp_path).validate(Path("relative/App"), REQUIRED, [])
        assert _result(report, CheckName.ALLOWED_PATH) is CheckResult.PASS
        assert report.ok

    def test_check_order_is_fixed(self) -> None:
        assert len(CHECK_ORDER) == 6


class TestFailures:
    def test_path_outside_allowlist(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(alias_table, tmp_path).validate(
            Path("/etc/App"), REQUIRED, [tmp_path]
        )
        failure = report.first_failure
        assert failure is not None
        assert failure.name is CheckName.ALLOWED_PATH
        assert failure.error is not None and failure.error.code == "path_not_allowed"
        # Later checks are still evaluated for diagnostics.
        assert _result(report, CheckName.SDK_PRESENCE) is CheckResult.PASS

    def test_dotdot_escape_blocked(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        allowed = tmp_path / "projects"
        report = _validator(alias_table, tmp_path).validate(
            allowed / ".." / ".." / ".." / "etc", REQUIRED, [allowed]
        )
        assert _result(report, CheckName.ALLOWED_PATH) is CheckResult.FAIL
        assert report.first_failure is not None
        assert report.first_failure.name is CheckName.ALLOWED_PATH

    def test_scheme_not_allowed(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(alias_table, tmp_path).validate(
            tmp_path, REQUIRED, [], ["VisionApp"], scheme="Other"
        )
        assert report.first_failure is not None
        assert report.first_failure.error.code == "scheme_not_allowed"  # type: ignore[union-attr]

    def test_empty_scheme_allowlist_passes(
        self, alias_table: SdkAliasTable, tmp_path: Path
    ) -> None:
        report = _validator(alias_table, tmp_path).validate(
            tmp_path, REQUIRED, [], [], scheme="Anything"
        )
        assert _result(report, CheckName.ALLOWED_SCHEME) is CheckResult.PASS

    @pytest.mark.parametrize(
        ("overrides", "code", "check"),
        [
            ({"VISIONOS_SANDBOX_SDKS": "iphoneos18.2"}, "sdk_missing", CheckName.SDK_PRESENCE),
            (
                {"VISIONOS_SANDBOX_DEVTOOLS": "disabled"},
                "devtools_security_disabled",
                CheckName.DEVELOPER_MODE,
            ),
            ({"VISIONOS_SANDBOX_LICENSE": "pending"}, "xcode_unlicensed", CheckName.LICENSE),
            ({"VISIONOS_SANDBOX_DISK_BYTES": "1024"}, "disk_insufficient", CheckName.DISK_SPACE),
        ],
    )
    def test_environment_not_ready(
        self,
        alias_table: SdkAliasTable,
        tmp_path: Path,
        overrides: dict[str, str],
        code: str,
        check: CheckName,
    ) -> None:
        report = _validator(alias_table, tmp_path, **overrides).validate(tmp_path, REQUIRED, [])
        failure = report.first_failure
        assert failure is not None
        assert failure.name is check
        assert failure.error is not None and failure.error.code == code
        assert report.to_dict()["status"] == "error"

    def test_first_failure_wins(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(
            alias_table,
            tmp_path,
            VISIONOS_SANDBOX_DEVTOOLS="disabled",
            VISIONOS_SANDBOX_DISK_BYTES="1",
        ).validate(tmp_path, REQUIRED, [])
        assert report.first_failure is not None
        assert report.first_failure.name is CheckName.DEVELOPER_MODE
        assert _result(report, CheckName.DISK_SPACE) is CheckResult.FAIL

    def test_disk_floor_is_inclusive(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(
            alias_table, tmp_path, VISIONOS_SANDBOX_DISK_BYTES=str(MIN_DISK_BYTES)
        ).validate(tmp_path, REQUIRED, [])
        assert report.ok

    def test_missing_developer_dir(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        probe = BrokenProbe(alias_table)
        validator = SandboxPolicyValidator(
            probe, developer_dir=tmp_path / "missing", min_disk_bytes=MIN_DISK_BYTES
        )
        report = validator.validate(tmp_path, REQUIRED, [])
        assert report.first_failure is not None
        assert report.first_failure.error.code == "xcode_unlicensed"  # type: ignore[union-attr]
        assert _result(report, CheckName.LICENSE) is CheckResult.FAIL

    def test_probe_errors_are_internal_errors(
        self, alias_table: SdkAliasTable, tmp_path: Path
    ) -> None:
        validator = SandboxPolicyValidator(
            BrokenProbe(alias_table), developer_dir=tmp_path, min_disk_bytes=MIN_DISK_BYTES
        )
        report = validator.validate(tmp_path, REQUIRED, [])
        failure = report.first_failure
        assert failure is not None
        assert failure.name is CheckName.SDK_PRESENCE
        assert failure.error is not None and failure.error.code == "sandbox_internal_error"
        assert "boom" in failure.details
        assert _result(report, CheckName.DEVELOPER_MODE) is CheckResult.FAIL
        assert _result(report, CheckName.LICENSE) is CheckResult.PASS


class TestPolicyError:
    def test_carries_descriptor(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(alias_table, tmp_path, VISIONOS_SANDBOX_SDKS="").validate(
            tmp_path, REQUIRED, []
        )
        exc = SandboxPolicyError(report)
        assert exc.descriptor.code == "sdk_missing"
        assert exc.check.name is CheckName.SDK_PRESENCE
        assert report.diagnostics["notes"]

    def test_requires_failed_report(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        report = _validator(alias_table, tmp_path).validate(tmp_path, REQUIRED, [])
        with pytest.raises(ValueError):
            SandboxPolicyError(report)


class TestReadOnly:
    def test_validation_writes_nothing(self, alias_table: SdkAliasTable, tmp_path: Path) -> None:
        before = sorted(tmp_path.rglob("*"))
        _validator(alias_table, tmp_path).validate(tmp_path / "App", REQUIRED, [tmp_path])
        assert sorted(tmp_path.rglob("*")) == before
