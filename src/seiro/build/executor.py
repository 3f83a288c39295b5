"""Runs xcodebuild for one job under a hard wall-clock limit.

The toolchain is started in its own session so the whole process group
(xcodebuild plus anything it forks) can be signalled at once.  Combined
stdout/stderr is kept as a bounded tail; nothing else is buffered.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from seiro.build.command import build_command
from seiro.build.workspace import ArtifactPackagingError, JobWorkspace, package_workspace
from seiro.models import errors as err
from seiro.models.job import Artifact, BuildJob, JobStatus
from seiro.models.requests import (
    ALLOWED_EXTRA_ARGS,
    BuildConfiguration,
    BuildRequestValidationError,
    ValidationReason,
)

logger = logging.getLogger("seiro.build")

LOG_EXCERPT_LIMIT = 5000  # characters returned to callers
_TAIL_BUFFER_BYTES = LOG_EXCERPT_LIMIT * 4  # worst case 4 bytes per UTF-8 char
_READ_CHUNK_BYTES = 4096
_TERMINATE_GRACE_SECS = 2.0
_DRAIN_GRACE_SECS = 2.0


class TailBuffer:
    """Keeps only the last ``limit`` bytes written to it."""

    def __init__(self, limit: int = _TAIL_BUFFER_BYTES) -> None:
        self._limit = limit
        self._buf = bytearray()

    def append(self, chunk: bytes) -> None:
        self._buf.extend(chunk)
        overflow = len(self._buf) - self._limit
        if overflow > 0:
            del self._buf[:overflow]

    def excerpt(self, limit: int = LOG_EXCERPT_LIMIT) -> str:
        text = bytes(self._buf).decode("utf-8", errors="replace")
        return text[-limit:]


async def _connect_output(read_fd: int) -> tuple[asyncio.StreamReader, asyncio.ReadTransport]:
    """Attach the read end of the output pipe to the running loop."""
    loop = asyncio.get_running_loop()
    stream = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(stream), os.fdopen(read_fd, "rb", buffering=0)
    )
    return stream, transport


async def _pump(stream: asyncio.StreamReader, tail: TailBuffer) -> None:
    while chunk := await stream.read(_READ_CHUNK_BYTES):
        tail.append(chunk)


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Send *sig* to every process in the group; False if the group is gone."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    except PermissionError as exc:
        logger.warning("Cannot signal process group %d: %s", pgid, exc)
        return False
    return True


async def _terminate_group(process: asyncio.subprocess.Process, pgid: int) -> None:
    """SIGTERM the group, escalating to SIGKILL after a grace period."""
    _signal_group(pgid, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECS)
    except TimeoutError:
        _signal_group(pgid, signal.SIGKILL)
        await process.wait()


async def _drain(reader: asyncio.Task[None], pgid: int) -> None:
    """Wait for the output reader, killing stragglers that keep the pipe open."""
    try:
        await asyncio.wait_for(asyncio.shield(reader), timeout=_DRAIN_GRACE_SECS)
        return
    except TimeoutError:
        _signal_group(pgid, signal.SIGKILL)
    try:
        await asyncio.wait_for(reader, timeout=_DRAIN_GRACE_SECS)
    except TimeoutError:
        logger.warning("Output of process group %d did not close; discarding the rest", pgid)


class BuildExecutor:
    """Spawns the toolchain for a job and turns the outcome into a terminal BuildJob."""

    def __init__(
        self,
        *,
        xcodebuild_path: Path,
        developer_dir: Path,
        artifact_ttl: timedelta,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._xcodebuild_path = xcodebuild_path
        self._developer_dir = developer_dir
        self._artifact_ttl = artifact_ttl
        self._now = clock or (lambda: datetime.now(UTC))

    async def execute(
        self,
        job_id: str,
        job_dir: JobWorkspace,
        project_path: Path,
        scheme: str,
        destination: str,
        configuration: BuildConfiguration | str,
        extra_args: list[str],
        env_overrides: dict[str, str],
        timeout: float,
        *,
        workspace: Path | None = None,
        clean: bool = False,
    ) -> BuildJob:
        """Run one build.

        Raises :class:`BuildRequestValidationError` before spawning anything
        if *extra_args* contains an unrecognized flag.  Every other outcome
        (spawn failure, non-zero exit, timeout, packaging failure) is
        reported through the returned job.
        """
        for arg in extra_args:
            if arg not in ALLOWED_EXTRA_ARGS:
                raise BuildRequestValidationError(
                    ValidationReason.EXTRA_ARG_NOT_ALLOWED,
                    f"extra_args contains a disallowed value `{arg}`",
                    arg=arg,
                )

        job = BuildJob(id=job_id, started_at=self._now(), workspace=job_dir.path)
        command = build_command(
            xcodebuild_path=self._xcodebuild_path,
            developer_dir=self._developer_dir,
            staging_dir=job_dir.staging_dir,
            project_path=project_path,
            scheme=scheme,
            configuration=configuration,
            destination=destination,
            workspace=workspace,
            clean=clean,
            extra_args=extra_args,
            env_overrides=env_overrides,
        )

        # The output pipe is not owned by the subprocess transport, so wait()
        # returns when the leader exits even while a straggler still holds
        # the write end.
        read_fd, write_fd = os.pipe()
        try:
            process = await asyncio.create_subprocess_exec(
                *command.argv,
                cwd=command.cwd,
                env=command.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=write_fd,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            os.close(read_fd)
            logger.error("Job %s: failed to start %s: %s", job_id, command.argv[0], exc)
            return job.finish(
                JobStatus.FAILED,
                self._now(),
                log_excerpt=f"Failed to start {command.argv[0]}: {exc}",
                error_code=err.TOOLCHAIN_UNAVAILABLE.code,
            )
        finally:
            os.close(write_fd)

        pgid = process.pid  # leader of its own session
        logger.debug("Job %s: spawned pid %d in %s", job_id, pgid, command.cwd)
        output, transport = await _connect_output(read_fd)
        tail = TailBuffer()
        reader = asyncio.create_task(_pump(output, tail))

        timed_out = False
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except TimeoutError:
                timed_out = True
                logger.warning("Job %s: timed out after %.1fs, terminating", job_id, timeout)
                await _terminate_group(process, pgid)
            # Members that outlived the leader would otherwise be orphaned.
            _signal_group(pgid, signal.SIGKILL)
            await _drain(reader, pgid)
        except asyncio.CancelledError:
            _signal_group(pgid, signal.SIGKILL)
            reader.cancel()
            raise
        finally:
            transport.close()

        excerpt = tail.excerpt()
        if timed_out:
            return job.finish(
                JobStatus.TIMED_OUT,
                self._now(),
                log_excerpt=excerpt,
                error_code=err.TIMEOUT.code,
            )

        exit_code = process.returncode
        if exit_code != 0:
            return job.finish(
                JobStatus.FAILED,
                self._now(),
                exit_code=exit_code,
                log_excerpt=excerpt,
                error_code=err.BUILD_FAILED.code,
            )

        try:
            path, content_hash, size = await asyncio.to_thread(package_workspace, job_dir)
        except ArtifactPackagingError as exc:
            logger.error("Job %s: %s", job_id, exc)
            return job.finish(
                JobStatus.FAILED,
                self._now(),
                exit_code=exit_code,
                log_excerpt=f"{excerpt}\n{exc}"[-LOG_EXCERPT_LIMIT:],
                error_code=err.ARTIFACT_FAILURE.code,
            )

        finished = self._now()
        artifact = Artifact.create(path, content_hash, size, finished, self._artifact_ttl)
        return job.finish(
            JobStatus.SUCCEEDED,
            finished,
            exit_code=exit_code,
            log_excerpt=excerpt,
            artifact=artifact,
        )
