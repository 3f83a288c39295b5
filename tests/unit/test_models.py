"""Tests for the job and artifact records."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from seiro.models import errors as err
from seiro.models.errors import SandboxState
from seiro.models.job import Artifact, BuildJob, InvalidJobTransitionError, JobStatus

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
TTL = timedelta(minutes=10)


def _artifact(created_at: datetime = T0) -> Artifact:
    return Artifact.create(Path("/tmp/a.zip"), "ab" * 32, 10, created_at, TTL)


class TestArtifact:
    def test_deadline(self) -> None:
        assert _artifact().ttl_deadline == T0 + TTL

    def test_expiry_is_strict(self) -> None:
        artifact = _artifact()
        assert not artifact.is_expired(T0 + TTL)
        assert artifact.is_expired(T0 + TTL + timedelta(microseconds=1))


class TestBuildJob:
    def test_starts_running(self) -> None:
        job = BuildJob(id="j1", started_at=T0)
        assert job.status is JobStatus.RUNNING
        assert not job.status.is_terminal
        assert job.duration_ms is None
        assert job.expires_at(TTL) is None

    def test_finish_success(self) -> None:
        job = BuildJob(id="j1", started_at=T0)
        done = job.finish(
            JobStatus.SUCCEEDED, T0 + timedelta(seconds=2), exit_code=0, artifact=_artifact()
        )
        assert done.status is JobStatus.SUCCEEDED
        assert done.duration_ms == 2000
        assert done.expires_at(TTL) == T0 + TTL
        assert job.status is JobStatus.RUNNING  # original record untouched

    def test_failed_job_expires_after_ttl(self) -> None:
        job = BuildJob(id="j1", started_at=T0).finish(
            JobStatus.FAILED, T0, exit_code=65, error_code="build_failed"
        )
        assert job.expires_at(TTL) == T0 + TTL

    def test_terminal_exactly_once(self) -> None:
        job = BuildJob(id="j1", started_at=T0).finish(JobStatus.TIMED_OUT, T0)
        with pytest.raises(InvalidJobTransitionError):
            job.finish(JobStatus.FAILED, T0)

    def test_cannot_finish_as_running(self) -> None:
        with pytest.raises(InvalidJobTransitionError):
            BuildJob(id="j1", started_at=T0).finish(JobStatus.RUNNING, T0)

    def test_success_requires_artifact(self) -> None:
        with pytest.raises(ValueError, match="artifact"):
            BuildJob(id="j1", started_at=T0).finish(JobStatus.SUCCEEDED, T0, exit_code=0)

    def test_failure_rejects_artifact(self) -> None:
        with pytest.raises(ValueError, match="artifact"):
            BuildJob(id="j1", started_at=T0).finish(JobStatus.FAILED, T0, artifact=_artifact())

    def test_records_are_frozen(self) -> None:
        job = BuildJob(id="j1", started_at=T0)
        with pytest.raises(ValueError):
            job.status = JobStatus.FAILED  # type: ignore[misc]


class TestErrorCatalogue:
    @pytest.mark.parametrize(
        ("descriptor", "retryable", "state"),
        [
            (err.PATH_NOT_ALLOWED, False, SandboxState.BLOCKED),
            (err.SDK_MISSING, False, SandboxState.BLOCKED),
            (err.BUILD_FAILED, True, SandboxState.NO_VIOLATION),
            (err.TIMEOUT, True, SandboxState.NO_VIOLATION),
            (err.TOOLCHAIN_UNAVAILABLE, False, SandboxState.NO_VIOLATION),
            (err.ARTIFACT_EXPIRED, True, SandboxState.NO_VIOLATION),
            (err.JOB_NOT_FOUND, False, SandboxState.NO_VIOLATION),
            (err.AUTH_TOKEN_REQUIRED, True, SandboxState.NOT_APPLICABLE),
        ],
    )
    def test_flags(
        self, descriptor: err.ErrorDescriptor, retryable: bool, state: SandboxState
    ) -> None:
        assert descriptor.retryable is retryable
        assert descriptor.sandbox_state is state
        assert descriptor.remediation

    def test_to_error(self) -> None:
        data = err.JOB_NOT_FOUND.to_error(details={"x": 1}, job_id="j1")
        payload = data.model_dump(mode="json")
        assert payload["code"] == "job_not_found"
        assert payload["sandbox_state"] == "no_violation"
        assert payload["details"] == {"x": 1}
        assert payload["job_id"] == "j1"
