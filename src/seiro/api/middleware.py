"""Middleware: request timing and bearer-token auth."""

from __future__ import annotations

import hmac
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from seiro.api.errors import status_for
from seiro.models import errors as err
from seiro.models.errors import ErrorDescriptor

_PUBLIC_PATHS = frozenset({"/health"})


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Add X-Request-Duration header with processing time."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        duration_ms = (time.monotonic() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        return response


def _auth_error(descriptor: ErrorDescriptor) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(descriptor.code),
        content={"detail": descriptor.to_error().model_dump(mode="json")},
        headers={"WWW-Authenticate": "Bearer"},
    )


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer <token>`` on every non-public path.

    A missing header yields 401 ``AUTH_TOKEN_REQUIRED``; a wrong token
    yields 403 ``AUTH_TOKEN_MISMATCH``.
    """

    def __init__(self, app: ASGIApp, token: str) -> None:
        super().__init__(app)
        self._token = token.encode()

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        header = request.headers.get("authorization", "")
        scheme, _, presented = header.partition(" ")
        if scheme.lower() != "bearer" or not presented.strip():
            return _auth_error(err.AUTH_TOKEN_REQUIRED)
        if not hmac.compare_digest(presented.strip().encode(), self._token):
            return _auth_error(err.AUTH_TOKEN_MISMATCH)
        return await call_next(request)
