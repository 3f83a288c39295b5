"""Per-job start/end log events."""

from __future__ import annotations

import logging
import time

from seiro.models.job import BuildJob

logger = logging.getLogger("seiro.build")


class JobSpan:
    """Emits one start and one end event for a build job.

    The structured fields (``job_id``, ``status``, ``elapsed_ms``,
    ``exit_code``) are attached through ``extra`` so handlers that format
    records as JSON can pick them up.
    """

    def __init__(self, job_id: str, scheme: str) -> None:
        self.job_id = job_id
        self.scheme = scheme
        self._started = time.monotonic()
        logger.info(
            "Build job %s started (scheme=%s)",
            job_id,
            scheme,
            extra={"job_id": job_id, "status": "running"},
        )

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started) * 1000)

    def finish(self, job: BuildJob) -> None:
        fields: dict[str, object] = {
            "job_id": job.id,
            "status": str(job.status),
            "elapsed_ms": self.elapsed_ms,
        }
        if job.exit_code is not None:
            fields["exit_code"] = job.exit_code
        level = logging.INFO if job.error_code is None else logging.WARNING
        logger.log(
            level,
            "Build job %s finished: %s in %d ms (exit_code=%s, error=%s)",
            job.id,
            job.status,
            fields["elapsed_ms"],
            job.exit_code,
            job.error_code,
            extra=fields,
        )

    def abort(self, reason: str) -> None:
        logger.warning(
            "Build job %s aborted: %s",
            self.job_id,
            reason,
            extra={"job_id": self.job_id, "status": "aborted", "elapsed_ms": self.elapsed_ms},
        )
