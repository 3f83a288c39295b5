"""Sandbox endpoints: POST /sandbox/validate, GET /sandbox/sdks."""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends

from seiro.api.deps import get_build_service
from seiro.api.errors import http_error
from seiro.api.schemas import SandboxReportResponse, SdkInventoryResponse
from seiro.models.requests import SandboxPolicyRequest
from seiro.service.build_service import BuildService, ToolFailure

router = APIRouter()


@router.post("/validate", response_model=SandboxReportResponse)
def validate_sandbox_policy(
    body: SandboxPolicyRequest,
    service: BuildService = Depends(get_build_service),  # noqa: B008
) -> SandboxReportResponse:
    """Run the sandbox policy checks for a project."""
    try:
        report = service.validate_sandbox_policy(body)
    except ToolFailure as exc:
        raise http_error(exc) from None
    return SandboxReportResponse(**report)


@router.get("/sdks", response_model=SdkInventoryResponse)
def inspect_sdks(
    xcode_path: str | None = None,
    service: BuildService = Depends(get_build_service),  # noqa: B008
) -> SdkInventoryResponse:
    """List detected SDKs, raw and alias-normalized."""
    try:
        inventory = service.inspect_sdks(Path(xcode_path) if xcode_path else None)
    except ToolFailure as exc:
        raise http_error(exc) from None
    return SdkInventoryResponse(**inventory)
