"""Maps structured tool errors onto HTTP responses."""

from __future__ import annotations

from fastapi import HTTPException

from seiro.service.build_service import ToolFailure

_STATUS_BY_CODE: dict[str, int] = {
    "invalid_request": 400,
    "invalid_job_id": 400,
    "AUTH_TOKEN_REQUIRED": 401,
    "AUTH_TOKEN_MISMATCH": 403,
    "path_not_allowed": 403,
    "scheme_not_allowed": 403,
    "job_not_found": 404,
    "build_failed_no_artifact": 409,
    "artifact_expired": 410,
    "sdk_missing": 412,
    "devtools_security_disabled": 412,
    "xcode_unlicensed": 412,
    "disk_insufficient": 412,
    "build_failed": 422,
    "sandbox_internal_error": 500,
    "artifact_failure": 500,
    "toolchain_unavailable": 503,
    "service_unavailable": 503,
    "timeout": 504,
}


def status_for(code: str) -> int:
    return _STATUS_BY_CODE.get(code, 500)


def http_error(failure: ToolFailure) -> HTTPException:
    """Wrap a ToolFailure; the JSON error payload becomes ``detail``."""
    return HTTPException(
        status_code=status_for(failure.code),
        detail=failure.error.model_dump(mode="json"),
    )
