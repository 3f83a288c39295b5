"""Facade behind the MCP tools and REST routes.

Every operation either returns a JSON-ready dict or raises
:class:`ToolFailure` carrying a structured :class:`ToolErrorData`; domain
exceptions never leak past this module.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO

from seiro import __version__
from seiro.build.executor import BuildExecutor
from seiro.build.workspace import JobWorkspace, resolve_artifact_root
from seiro.models import errors as err
from seiro.models.errors import ErrorDescriptor, ToolErrorData
from seiro.models.job import Artifact, BuildJob, InvalidJobTransitionError, JobStatus
from seiro.models.requests import (
    BuildRequest,
    BuildRequestValidationError,
    SandboxPolicyRequest,
    ValidationReason,
)
from seiro.sandbox.probe import ProbeError, create_probe
from seiro.sandbox.sdk import SdkAliasTable
from seiro.sandbox.validator import SandboxPolicyError, SandboxPolicyValidator, SandboxReport
from seiro.service.job_store import ArtifactExpiredError, JobNotFoundError, JobStore
from seiro.service.telemetry import JobSpan
from seiro.settings import Settings

logger = logging.getLogger("seiro.service")

_EXECUTION_ERRORS: dict[str, ErrorDescriptor] = {
    d.code: d
    for d in (err.BUILD_FAILED, err.TIMEOUT, err.TOOLCHAIN_UNAVAILABLE, err.ARTIFACT_FAILURE)
}

_REASON_ERRORS: dict[ValidationReason, ErrorDescriptor] = {
    ValidationReason.PROJECT_PATH_NOT_ALLOWED: err.PATH_NOT_ALLOWED,
    ValidationReason.WORKSPACE_NOT_ALLOWED: err.PATH_NOT_ALLOWED,
    ValidationReason.SCHEME_NOT_ALLOWED: err.SCHEME_NOT_ALLOWED,
}


class ToolFailure(Exception):
    """An operation failed; ``error`` is what the caller gets back."""

    def __init__(self, error: ToolErrorData) -> None:
        self.error = error
        super().__init__(f"{error.code}: {error.message}")

    @property
    def code(self) -> str:
        return self.error.code


def request_failure(exc: BuildRequestValidationError) -> ToolFailure:
    descriptor = _REASON_ERRORS.get(exc.reason, err.INVALID_REQUEST)
    details: dict[str, Any] = {"reason": str(exc.reason), "message": str(exc), **exc.context}
    return ToolFailure(descriptor.to_error(details=details))


def policy_failure(exc: SandboxPolicyError) -> ToolFailure:
    details = {"failed_check": str(exc.check.name), **exc.report.to_dict()}
    return ToolFailure(exc.descriptor.to_error(details=details))


def normalize_job_id(job_id: str) -> str:
    """Canonical form of a job ID; raises ToolFailure for malformed input."""
    try:
        return str(uuid.UUID(job_id.strip()))
    except (ValueError, AttributeError):
        raise ToolFailure(err.INVALID_JOB_ID.to_error(details={"job_id": job_id})) from None


class BuildService:
    """Validate, build and fetch: the three operations plus SDK inspection."""

    def __init__(
        self,
        settings: Settings,
        validator: SandboxPolicyValidator,
        executor: BuildExecutor,
        store: JobStore,
    ) -> None:
        self._settings = settings
        self._validator = validator
        self._executor = executor
        self._store = store

    @classmethod
    def from_settings(cls, settings: Settings) -> BuildService:
        alias_table = SdkAliasTable.load(settings.sdk_alias_file)
        probe = create_probe(settings.probe_mode, alias_table, settings.xcodebuild_path)
        validator = SandboxPolicyValidator(
            probe,
            developer_dir=settings.xcode_path,
            min_disk_bytes=settings.min_disk_bytes,
        )
        root = resolve_artifact_root(settings.artifact_root)
        store = JobStore(root, settings.artifact_ttl_secs, settings.cleanup_schedule_secs)
        executor = BuildExecutor(
            xcodebuild_path=settings.xcodebuild_path,
            developer_dir=settings.xcode_path,
            artifact_ttl=timedelta(seconds=settings.artifact_ttl_secs),
        )
        logger.info("Build service ready (probe=%s, artifacts=%s)", probe.mode, root)
        return cls(settings, validator, executor, store)

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        self._store.start()

    def stop(self) -> None:
        self._store.stop()

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "probe_mode": self._validator.probe.mode,
            "jobs": len(self._store),
        }

    # -- sandbox -------------------------------------------------------------

    def _run_policy(
        self,
        project_path: Path,
        required_sdks: list[str],
        *,
        scheme: str | None = None,
        developer_dir: Path | None = None,
    ) -> SandboxReport:
        return self._validator.validate(
            project_path,
            required_sdks or list(self._settings.required_sdks),
            list(self._settings.allowed_paths),
            list(self._settings.allowed_schemes) if scheme is not None else None,
            scheme=scheme,
            developer_dir=developer_dir,
        )

    def validate_sandbox_policy(self, request: SandboxPolicyRequest) -> dict[str, Any]:
        """Run every sandbox check; raise on the first failing one."""
        if request.xcode_path is not None and not request.xcode_path.is_absolute():
            raise ToolFailure(
                err.INVALID_REQUEST.to_error(
                    details={
                        "reason": "xcode_path_not_absolute",
                        "xcode_path": str(request.xcode_path),
                    }
                )
            )
        report = self._run_policy(
            request.project_path,
            request.required_sdks,
            scheme=request.scheme,
            developer_dir=request.xcode_path,
        )
        if not report.ok:
            raise policy_failure(SandboxPolicyError(report))
        return report.to_dict()

    def inspect_sdks(self, xcode_path: Path | None = None) -> dict[str, Any]:
        """Report the detected SDK inventory without running the policy."""
        probe = self._validator.probe
        developer_dir = xcode_path or self._settings.xcode_path
        if probe.requires_developer_dir and not developer_dir.exists():
            raise ToolFailure(
                err.XCODE_UNLICENSED.to_error(details={"developer_dir": str(developer_dir)})
            )
        try:
            inventory = probe.list_sdks(developer_dir)
        except ProbeError as exc:
            raise ToolFailure(
                err.SANDBOX_INTERNAL_ERROR.to_error(details={"reason": str(exc)})
            ) from exc
        return {
            "probe_mode": probe.mode,
            "developer_dir": str(developer_dir),
            "sdks_raw": inventory.raw,
            "sdks_normalized": inventory.normalized,
            "invocation": inventory.invocation,
            "notes": inventory.notes,
            "aliases": probe.alias_table.names,
        }

    # -- build ---------------------------------------------------------------

    async def build(self, request: BuildRequest) -> dict[str, Any]:
        """Validate, run and record one build; returns the artifact summary."""
        try:
            request.check(list(self._settings.allowed_paths), list(self._settings.allowed_schemes))
        except BuildRequestValidationError as exc:
            raise request_failure(exc) from exc

        if self._settings.validate_before_build:
            report = await asyncio.to_thread(
                self._run_policy, request.project_path, [], scheme=request.scheme
            )
            if not report.ok:
                raise policy_failure(SandboxPolicyError(report))

        job_id = self._store.new_job_id()
        running = BuildJob(
            id=job_id, started_at=datetime.now(UTC), workspace=self._store.root / job_id
        )
        self._store.create(running)
        span = JobSpan(job_id, request.scheme)

        try:
            job_dir = JobWorkspace.create(self._store.root, job_id)
        except OSError as exc:
            failed = running.finish(
                JobStatus.FAILED,
                datetime.now(UTC),
                log_excerpt=f"Cannot create job directory: {exc}",
                error_code=err.ARTIFACT_FAILURE.code,
            )
            self._store.complete(failed)
            span.finish(failed)
            raise ToolFailure(
                err.ARTIFACT_FAILURE.to_error(details={"reason": str(exc)}, job_id=job_id)
            ) from exc

        try:
            finished = await self._executor.execute(
                job_id,
                job_dir,
                request.project_path,
                request.scheme,
                (request.destination or self._settings.default_destination).strip(),
                request.configuration,
                list(request.extra_args),
                dict(request.env_overrides),
                self._settings.build_timeout_seconds,
                workspace=request.workspace,
                clean=request.clean,
            )
        except BaseException as exc:
            self._abandon(running, span, exc)
            if isinstance(exc, BuildRequestValidationError):
                raise request_failure(exc) from exc
            raise

        self._store.complete(finished)
        span.finish(finished)

        if finished.status is not JobStatus.SUCCEEDED or finished.artifact is None:
            descriptor = _EXECUTION_ERRORS.get(finished.error_code or "", err.BUILD_FAILED)
            raise ToolFailure(
                descriptor.to_error(
                    details={
                        "status": str(finished.status),
                        "exit_code": finished.exit_code,
                        "duration_ms": finished.duration_ms,
                        "log_excerpt": finished.log_excerpt,
                    },
                    job_id=job_id,
                )
            )

        return {
            "job_id": job_id,
            "status": str(finished.status),
            "artifact_path": str(finished.artifact.path),
            "artifact_sha256": finished.artifact.content_hash,
            "log_excerpt": finished.log_excerpt,
            "duration_ms": finished.duration_ms,
        }

    def _abandon(self, running: BuildJob, span: JobSpan, exc: BaseException) -> None:
        """Close out a job whose execution raised instead of returning."""
        failed = running.finish(
            JobStatus.FAILED,
            datetime.now(UTC),
            log_excerpt=f"Build aborted: {exc!r}",
            error_code=err.BUILD_FAILED.code,
        )
        try:
            self._store.complete(failed)
        except (JobNotFoundError, InvalidJobTransitionError):
            logger.warning("Job %s was already closed when aborting", running.id)
        span.abort(type(exc).__name__)

    # -- fetch ---------------------------------------------------------------

    def _lookup(self, job_id: str) -> BuildJob:
        canonical = normalize_job_id(job_id)
        try:
            return self._store.get(canonical)
        except JobNotFoundError:
            raise ToolFailure(err.JOB_NOT_FOUND.to_error(job_id=canonical)) from None
        except ArtifactExpiredError as exc:
            raise ToolFailure(
                err.ARTIFACT_EXPIRED.to_error(
                    details={"expired_at": exc.deadline.isoformat()}, job_id=canonical
                )
            ) from None

    def artifact(self, job_id: str) -> Artifact:
        """The artifact of a succeeded, unexpired job."""
        return self._require_artifact(self._lookup(job_id))

    def open_artifact(self, job_id: str) -> tuple[Artifact, BinaryIO]:
        """The artifact of a job plus an open handle on its zip.

        The sweep may delete the file between the lookup and the read; a
        file that is already gone is reported as ``artifact_expired``.
        Once opened, the handle stays readable after an unlink.
        """
        artifact = self.artifact(job_id)
        try:
            handle = artifact.path.open("rb")
        except FileNotFoundError:
            raise ToolFailure(
                err.ARTIFACT_EXPIRED.to_error(
                    details={"expired_at": artifact.ttl_deadline.isoformat()},
                    job_id=normalize_job_id(job_id),
                )
            ) from None
        return artifact, handle

    @staticmethod
    def _require_artifact(job: BuildJob) -> Artifact:
        if job.artifact is None:
            raise ToolFailure(
                err.BUILD_FAILED_NO_ARTIFACT.to_error(
                    details={
                        "status": str(job.status),
                        "exit_code": job.exit_code,
                        "error_code": job.error_code,
                    },
                    job_id=job.id,
                )
            )
        return job.artifact

    def fetch(self, job_id: str, include_logs: bool = True) -> dict[str, Any]:
        """Return the artifact location and hash for a finished job."""
        job = self._lookup(job_id)
        if job.status is JobStatus.RUNNING:
            return {"job_id": job.id, "status": str(job.status)}

        artifact = self._require_artifact(job)
        result: dict[str, Any] = {
            "job_id": job.id,
            "status": str(job.status),
            "artifact_zip": str(artifact.path),
            "artifact_sha256": artifact.content_hash,
            "download_ttl_seconds": self._store.ttl_remaining(job),
        }
        if include_logs:
            result["log_excerpt"] = job.log_excerpt
        return result
