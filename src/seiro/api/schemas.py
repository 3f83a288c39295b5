"""API request/response Pydantic schemas."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    version: str
    probe_mode: str
    jobs: int


class CheckResponse(BaseModel):
    """Result of one sandbox check."""

    name: str
    result: Literal["pass", "fail", "skipped"]
    details: str
    code: str | None = None


class SandboxReportResponse(BaseModel):
    """Response body for POST /sandbox/validate."""

    status: Literal["ok", "error"]
    checks: list[CheckResponse]
    diagnostics: dict[str, Any] = {}


class SdkInventoryResponse(BaseModel):
    """Response body for GET /sandbox/sdks."""

    probe_mode: str
    developer_dir: str
    sdks_raw: list[str]
    sdks_normalized: list[str]
    invocation: str | None = None
    notes: list[str] = []
    aliases: list[str] = []


class BuildResponse(BaseModel):
    """Response body for POST /builds."""

    job_id: str
    status: str
    artifact_path: str
    artifact_sha256: str = Field(description="SHA-256 hex digest of the artifact zip")
    log_excerpt: str
    duration_ms: int | None = None


class BuildOutputResponse(BaseModel):
    """Response body for GET /builds/{job_id}.

    Artifact fields are absent while the job is still running.
    """

    job_id: str
    status: str
    artifact_zip: str | None = None
    artifact_sha256: str | None = None
    download_ttl_seconds: int | None = None
    log_excerpt: str | None = None
