"""TTL-scoped build job records and their artifact directories."""

from __future__ import annotations

import logging
import shutil
import threading
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from seiro.models.job import BuildJob, InvalidJobTransitionError

logger = logging.getLogger("seiro.store")


class JobNotFoundError(KeyError):
    """Raised when a job ID is unknown or has already been swept."""


class ArtifactExpiredError(Exception):
    """Raised when a job is read after its retention deadline."""

    def __init__(self, job: BuildJob, deadline: datetime) -> None:
        self.job = job
        self.deadline = deadline
        super().__init__(f"Job '{job.id}' expired at {deadline.isoformat()}")


class JobStore:
    """Owns every ``BuildJob`` record for its full lifetime.

    Thread-safe.  Expiry is evaluated on every read, so a job past its
    deadline is reported as expired even if the sweep has not run yet.
    Swept jobs leave a tombstone for one more cleanup interval, so reads in
    that window still report expiry instead of an unknown job.
    Call :meth:`start` to begin the background sweep thread and
    :meth:`stop` to shut it down.
    """

    def __init__(
        self,
        root: Path,
        ttl_seconds: int = 600,
        cleanup_interval: float = 60,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = root
        self._ttl = timedelta(seconds=ttl_seconds)
        self._cleanup_interval = cleanup_interval
        self._tombstone_window = timedelta(seconds=cleanup_interval)
        self._now = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._jobs: dict[str, BuildJob] = {}
        self._swept: dict[str, tuple[BuildJob, datetime]] = {}  # id -> (record, deadline)
        self._stop_event = threading.Event()
        self._cleanup_thread: threading.Thread | None = None

    @property
    def root(self) -> Path:
        return self._root

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the background sweep daemon thread."""
        if self._cleanup_thread is not None:
            return
        self._stop_event.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop, daemon=True, name="artifact-sweep"
        )
        self._cleanup_thread.start()

    def stop(self) -> None:
        """Signal the sweep thread to stop and wait for it."""
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None

    # -- public API ----------------------------------------------------------

    @staticmethod
    def new_job_id() -> str:
        return str(uuid.uuid4())

    def create(self, job: BuildJob) -> str:
        """Register a new (running) job and return its ID."""
        with self._lock:
            if job.id in self._jobs or job.id in self._swept:
                raise ValueError(f"Job '{job.id}' already exists")
            self._jobs[job.id] = job
        return job.id

    def complete(self, job: BuildJob) -> BuildJob:
        """Replace a running job with its terminal record."""
        with self._lock:
            current = self._jobs.get(job.id)
            if current is None:
                raise JobNotFoundError(f"Job '{job.id}' not found")
            if current.status.is_terminal or not job.status.is_terminal:
                raise InvalidJobTransitionError(job.id, current.status, job.status)
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str, now: datetime | None = None) -> BuildJob:
        """Return the job record.

        Raises :class:`JobNotFoundError` for unknown IDs and
        :class:`ArtifactExpiredError` once the job's deadline has passed,
        including after the sweep has deleted its files.
        """
        now = now or self._now()
        with self._lock:
            job = self._jobs.get(job_id)
            tombstone = self._swept.get(job_id)
        if tombstone is not None:
            raise ArtifactExpiredError(*tombstone)
        if job is None:
            raise JobNotFoundError(f"Job '{job_id}' not found")
        deadline = job.expires_at(self._ttl)
        if deadline is not None and now > deadline:
            raise ArtifactExpiredError(job, deadline)
        return job

    def ttl_remaining(self, job: BuildJob, now: datetime | None = None) -> int:
        """Whole seconds until *job* expires (0 when expired or still running)."""
        deadline = job.expires_at(self._ttl)
        if deadline is None:
            return 0
        remaining = (deadline - (now or self._now())).total_seconds()
        return max(int(remaining), 0)

    def sweep(self, now: datetime | None = None) -> list[str]:
        """Tombstone expired jobs and delete their directories.

        Safe to call concurrently: each record is popped under the lock, so
        only one caller ever deletes a given job's files.  Tombstones older
        than one cleanup interval past their deadline are dropped.
        """
        now = now or self._now()
        with self._lock:
            expired = []
            for job_id, job in list(self._jobs.items()):
                deadline = job.expires_at(self._ttl)
                if deadline is not None and deadline < now:
                    expired.append(self._jobs.pop(job_id))
                    self._swept[job_id] = (job, deadline)
            for job_id, (_, deadline) in list(self._swept.items()):
                if now - deadline > self._tombstone_window:
                    del self._swept[job_id]
            tracked = set(self._jobs)

        for job in expired:
            self._remove_files(job)
        self._sweep_untracked(tracked, now)
        if expired:
            logger.info("Swept %d expired job(s)", len(expired))
        return [job.id for job in expired]

    def __len__(self) -> int:
        """Number of live (not yet swept) jobs."""
        with self._lock:
            return len(self._jobs)

    @property
    def tombstones(self) -> int:
        with self._lock:
            return len(self._swept)

    # -- internal ------------------------------------------------------------

    def _remove_files(self, job: BuildJob) -> None:
        targets = [job.workspace] if job.workspace is not None else []
        if job.artifact is not None:
            targets.append(job.artifact.path)
        for target in targets:
            if target.is_dir():
                shutil.rmtree(target, ignore_errors=True)
            else:
                target.unlink(missing_ok=True)

    def _sweep_untracked(self, tracked: set[str], now: datetime) -> None:
        """Remove stale job directories this process does not know about."""
        if not self._root.is_dir():
            return
        cutoff = (now - self._ttl).timestamp()
        for entry in self._root.iterdir():
            if entry.name.startswith(".") or entry.name in tracked or not entry.is_dir():
                continue
            try:
                stale = entry.stat().st_mtime < cutoff
            except FileNotFoundError:
                continue
            if stale:
                logger.debug("Removing untracked job directory %s", entry)
                shutil.rmtree(entry, ignore_errors=True)

    def _cleanup_loop(self) -> None:
        """Background loop that periodically sweeps expired jobs."""
        while not self._stop_event.wait(timeout=self._cleanup_interval):
            try:
                self.sweep()
            except OSError:
                logger.exception("Artifact sweep failed under %s", self._root)
