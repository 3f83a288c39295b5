"""Structured error models shared by the MCP tools and the REST API."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class SandboxState(StrEnum):
    NOT_APPLICABLE = "not_applicable"
    NO_VIOLATION = "no_violation"
    BLOCKED = "blocked"


class ToolErrorData(BaseModel):
    """Error payload returned to callers for every failed operation."""

    code: str
    message: str
    remediation: str
    retryable: bool
    sandbox_state: SandboxState
    details: dict[str, Any] = {}
    job_id: str | None = None


class ErrorDescriptor(BaseModel):
    """Static description of one error code."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    remediation: str
    retryable: bool
    sandbox_state: SandboxState

    def to_error(
        self, details: dict[str, Any] | None = None, job_id: str | None = None
    ) -> ToolErrorData:
        return ToolErrorData(
            code=self.code,
            message=self.message,
            remediation=self.remediation,
            retryable=self.retryable,
            sandbox_state=self.sandbox_state,
            details=details or {},
            job_id=job_id,
        )


def _blocked(code: str, message: str, remediation: str) -> ErrorDescriptor:
    return ErrorDescriptor(
        code=code,
        message=message,
        remediation=remediation,
        retryable=False,
        sandbox_state=SandboxState.BLOCKED,
    )


def _runtime(code: str, message: str, remediation: str, *, retryable: bool) -> ErrorDescriptor:
    return ErrorDescriptor(
        code=code,
        message=message,
        remediation=remediation,
        retryable=retryable,
        sandbox_state=SandboxState.NO_VIOLATION,
    )


# -- policy violations ---------------------------------------------------------

PATH_NOT_ALLOWED = _blocked(
    "path_not_allowed",
    "project_path is outside the allowed paths",
    "Add the project directory to ALLOWED_PATHS and restart the server.",
)
SCHEME_NOT_ALLOWED = _blocked(
    "scheme_not_allowed",
    "scheme is not in the allowlist",
    "Add the scheme to ALLOWED_SCHEMES or use an allowed scheme.",
)
INVALID_REQUEST = _runtime(
    "invalid_request",
    "The visionOS build request format is invalid",
    "Check the constraints for destination, extra_args, env_overrides, and workspace.",
    retryable=False,
)

# -- environment readiness -----------------------------------------------------

SDK_MISSING = _blocked(
    "sdk_missing",
    "Required SDK not found",
    "Add the visionOS SDK via Xcode > Settings > Platforms.",
)
DEVTOOLS_SECURITY_DISABLED = _blocked(
    "devtools_security_disabled",
    "DevToolsSecurity is disabled",
    "Run `DevToolsSecurity -enable` to allow debugging from Xcode.",
)
XCODE_UNLICENSED = _blocked(
    "xcode_unlicensed",
    "Xcode license has not been accepted",
    "Run `sudo xcodebuild -license` to accept the license.",
)
DISK_INSUFFICIENT = _blocked(
    "disk_insufficient",
    "Insufficient free space for a visionOS build",
    "Free up space on the volume that holds the project.",
)
SANDBOX_INTERNAL_ERROR = _blocked(
    "sandbox_internal_error",
    "Internal error occurred during sandbox policy validation",
    "Check the server logs and retry; contact a developer if the problem persists.",
)

# -- execution failures --------------------------------------------------------

BUILD_FAILED = _runtime(
    "build_failed",
    "xcodebuild exited with an error",
    "Review the log excerpt and fix the failing targets.",
    retryable=True,
)
TIMEOUT = _runtime(
    "timeout",
    "Build was aborted after exceeding max_build_minutes",
    "Shorten the build time or increase MAX_BUILD_MINUTES.",
    retryable=True,
)
TOOLCHAIN_UNAVAILABLE = _runtime(
    "toolchain_unavailable",
    "The xcodebuild executable could not be started",
    "Check XCODEBUILD_PATH exists and is executable by the server user.",
    retryable=False,
)
ARTIFACT_FAILURE = _runtime(
    "artifact_failure",
    "Build products could not be packaged",
    "Check free space and permissions of the artifact directory, then rebuild.",
    retryable=True,
)

# -- retrieval failures --------------------------------------------------------

INVALID_JOB_ID = _runtime(
    "invalid_job_id",
    "Invalid job_id format",
    "Provide the job_id returned by build_visionos_app.",
    retryable=False,
)
JOB_NOT_FOUND = _runtime(
    "job_not_found",
    "The specified build job was not found",
    "Check the job_id and try again. Run a new build if needed.",
    retryable=False,
)
ARTIFACT_EXPIRED = _runtime(
    "artifact_expired",
    "Artifact TTL has expired",
    "Re-run build_visionos_app to generate fresh artifacts before downloading again.",
    retryable=True,
)
BUILD_FAILED_NO_ARTIFACT = _runtime(
    "build_failed_no_artifact",
    "No artifacts are available because the build did not succeed",
    "Review the logs, fix the issue, and build again.",
    retryable=False,
)

# -- server state --------------------------------------------------------------

SERVICE_UNAVAILABLE = _runtime(
    "service_unavailable",
    "The build service is not running",
    "Wait for the server to finish starting, then retry.",
    retryable=True,
)

# -- transport auth ------------------------------------------------------------

AUTH_TOKEN_REQUIRED = ErrorDescriptor(
    code="AUTH_TOKEN_REQUIRED",
    message="A bearer token is required",
    remediation="Send `Authorization: Bearer <token>` matching the server AUTH_TOKEN.",
    retryable=True,
    sandbox_state=SandboxState.NOT_APPLICABLE,
)
AUTH_TOKEN_MISMATCH = _blocked(
    "AUTH_TOKEN_MISMATCH",
    "The bearer token does not match the server token",
    "Use the same token on the client and in the server AUTH_TOKEN setting.",
)
