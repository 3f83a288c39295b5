"""FastAPI dependencies: the process-wide BuildService and its lifetime."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException

from seiro.models import errors as err
from seiro.service.build_service import BuildService
from seiro.settings import Settings

_build_service: BuildService | None = None


def init_build_service(service: BuildService) -> None:
    global _build_service  # noqa: PLW0603
    _build_service = service


def get_build_service() -> BuildService:
    """FastAPI ``Depends`` provider.

    Requests that arrive before startup has registered a service (or after
    shutdown has removed it) get a structured 503 instead of a bare 500.
    """
    if _build_service is None:
        raise HTTPException(
            status_code=503,
            detail=err.SERVICE_UNAVAILABLE.to_error().model_dump(mode="json"),
        )
    return _build_service


def reset_build_service() -> None:
    """Clear the global BuildService (for tests)."""
    global _build_service  # noqa: PLW0603
    _build_service = None


@contextmanager
def running_build_service(settings: Settings) -> Iterator[BuildService]:
    """Create, start and register a BuildService; undo all three on exit."""
    service = BuildService.from_settings(settings)
    service.start()
    init_build_service(service)
    try:
        yield service
    finally:
        service.stop()
        reset_build_service()
