"""Build job and artifact records."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class JobStatus(StrEnum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class InvalidJobTransitionError(ValueError):
    """Raised when a job would leave a terminal state or re-enter Running."""

    def __init__(self, job_id: str, current: JobStatus, requested: JobStatus) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id} cannot move from {current} to {requested}")


class Artifact(BaseModel):
    """A packaged build output.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    path: Path
    content_hash: str  # sha256 hex of the archive bytes
    size_bytes: int
    created_at: datetime
    ttl_deadline: datetime

    @classmethod
    def create(
        cls, path: Path, content_hash: str, size_bytes: int, created_at: datetime, ttl: timedelta
    ) -> Artifact:
        return cls(
            path=path,
            content_hash=content_hash,
            size_bytes=size_bytes,
            created_at=created_at,
            ttl_deadline=created_at + ttl,
        )

    def is_expired(self, now: datetime) -> bool:
        return now > self.ttl_deadline


class BuildJob(BaseModel):
    """One build attempt.

    Records are frozen; a state change produces a new record through
    :meth:`finish`, which refuses any transition out of a terminal state.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    status: JobStatus = JobStatus.RUNNING
    started_at: datetime
    finished_at: datetime | None = None
    exit_code: int | None = None
    log_excerpt: str = ""
    error_code: str | None = None  # build_failed | timeout | toolchain_unavailable | ...
    artifact: Artifact | None = None
    workspace: Path | None = None

    def finish(
        self,
        status: JobStatus,
        finished_at: datetime,
        *,
        exit_code: int | None = None,
        log_excerpt: str = "",
        error_code: str | None = None,
        artifact: Artifact | None = None,
    ) -> BuildJob:
        """Return the terminal version of this job."""
        if self.status.is_terminal or not status.is_terminal:
            raise InvalidJobTransitionError(self.id, self.status, status)
        if (status is JobStatus.SUCCEEDED) != (artifact is not None):
            raise ValueError("An artifact is attached exactly when a job succeeds")
        return self.model_copy(
            update={
                "status": status,
                "finished_at": finished_at,
                "exit_code": exit_code,
                "log_excerpt": log_excerpt,
                "error_code": error_code,
                "artifact": artifact,
            }
        )

    @property
    def duration_ms(self) -> int | None:
        if self.finished_at is None:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def expires_at(self, ttl: timedelta) -> datetime | None:
        """Deadline after which the record is no longer fetchable."""
        if self.artifact is not None:
            return self.artifact.ttl_deadline
        if self.finished_at is not None:
            return self.finished_at + ttl
        return None
