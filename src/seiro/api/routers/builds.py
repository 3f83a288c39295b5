"""Build endpoints: run a build, inspect it, download its artifact."""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import BinaryIO

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from seiro.api.deps import get_build_service
from seiro.api.errors import http_error
from seiro.api.schemas import BuildOutputResponse, BuildResponse
from seiro.models.requests import BuildRequest
from seiro.service.build_service import BuildService, ToolFailure, normalize_job_id

router = APIRouter()

_CHUNK_SIZE = 64 * 1024


@router.post("", response_model=BuildResponse, status_code=201)
async def build_visionos_app(
    body: BuildRequest,
    service: BuildService = Depends(get_build_service),  # noqa: B008
) -> BuildResponse:
    """Validate the sandbox, run xcodebuild and package the products."""
    try:
        result = await service.build(body)
    except ToolFailure as exc:
        raise http_error(exc) from None
    return BuildResponse(**result)


@router.get("/{job_id}", response_model=BuildOutputResponse, response_model_exclude_none=True)
def fetch_build_output(
    job_id: str,
    include_logs: bool = True,
    service: BuildService = Depends(get_build_service),  # noqa: B008
) -> BuildOutputResponse:
    """Artifact location, hash and remaining TTL for a job."""
    try:
        result = service.fetch(job_id, include_logs=include_logs)
    except ToolFailure as exc:
        raise http_error(exc) from None
    return BuildOutputResponse(**result)


@router.get("/{job_id}/artifact", response_class=StreamingResponse)
def download_artifact(
    job_id: str,
    service: BuildService = Depends(get_build_service),  # noqa: B008
) -> StreamingResponse:
    """Download the artifact zip of a succeeded job."""
    try:
        artifact, handle = service.open_artifact(job_id)
    except ToolFailure as exc:
        raise http_error(exc) from None
    return StreamingResponse(
        _iter_chunks(handle),
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{normalize_job_id(job_id)}.zip"',
            "Content-Length": str(os.fstat(handle.fileno()).st_size),
            "X-Artifact-SHA256": artifact.content_hash,
        },
    )


def _iter_chunks(handle: BinaryIO) -> Iterator[bytes]:
    with handle:
        while chunk := handle.read(_CHUNK_SIZE):
            yield chunk
