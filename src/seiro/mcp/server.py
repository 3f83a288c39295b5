"""FastMCP server exposing the visionOS build tools.

Run via::

    seiro-mcp                       # reads .env (default: stdio)
    MCP_TRANSPORT=http seiro-mcp    # streamable HTTP on port 9000
    MCP_TRANSPORT=sse  seiro-mcp    # legacy SSE on port 9000

Every tool returns a JSON document.  Failures are raised as ``ToolError``
whose message is the JSON error payload (``code``, ``message``,
``remediation``, ``retryable``, ``sandbox_state``, ``details``, ``job_id``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import ValidationError

from seiro import __version__
from seiro.models import errors as err
from seiro.models.errors import ToolErrorData
from seiro.models.requests import BuildRequest, SandboxPolicyRequest
from seiro.service.build_service import BuildService, ToolFailure
from seiro.settings import Settings

# ---------------------------------------------------------------------------
# Server + shared state
# ---------------------------------------------------------------------------

logger = logging.getLogger("seiro.mcp")

mcp = FastMCP("Seiro visionOS Build Server")
_service: BuildService | None = None


def _require_service() -> BuildService:
    if _service is None:
        raise _tool_error(err.SERVICE_UNAVAILABLE.to_error())
    return _service


def _tool_error(error: ToolErrorData) -> ToolError:
    return ToolError(error.model_dump_json())


def _invalid_request(exc: ValidationError) -> ToolError:
    details = {"errors": [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]}
    return _tool_error(err.INVALID_REQUEST.to_error(details=details))


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


# ---------------------------------------------------------------------------
# Sandbox tools
# ---------------------------------------------------------------------------


@mcp.tool
async def validate_sandbox_policy(
    project_path: str,
    required_sdks: list[str] | None = None,
    xcode_path: str | None = None,
    scheme: str | None = None,
) -> str:
    """Check that a visionOS build is allowed and the host is ready for it.

    Runs, in order: allowed-path, allowed-scheme (only when ``scheme`` is
    given), sdk-presence, developer-mode, license and disk-space checks.
    Returns every check result plus diagnostics (probe mode, required and
    detected SDKs).  The first failing check determines the error code.

    Args:
        project_path: Absolute path of the project directory or ``.xcodeproj``.
        required_sdks: SDK names to require (default: server configuration).
        xcode_path: Developer directory to inspect (default: server configuration).
        scheme: Optional scheme to check against the scheme allowlist.
    """
    service = _require_service()
    try:
        request = SandboxPolicyRequest(
            project_path=Path(project_path),
            required_sdks=required_sdks or [],
            xcode_path=Path(xcode_path) if xcode_path else None,
            scheme=scheme,
        )
    except ValidationError as exc:
        raise _invalid_request(exc) from exc
    try:
        return _dump(await asyncio.to_thread(service.validate_sandbox_policy, request))
    except ToolFailure as exc:
        raise _tool_error(exc.error) from exc


@mcp.tool
async def inspect_xcode_sdks(xcode_path: str | None = None) -> str:
    """List the SDKs the toolchain reports, raw and alias-normalized.

    Args:
        xcode_path: Developer directory to inspect (default: server configuration).
    """
    service = _require_service()
    try:
        developer_dir = Path(xcode_path) if xcode_path else None
        return _dump(await asyncio.to_thread(service.inspect_sdks, developer_dir))
    except ToolFailure as exc:
        raise _tool_error(exc.error) from exc


# ---------------------------------------------------------------------------
# Build tools
# ---------------------------------------------------------------------------


@mcp.tool
async def build_visionos_app(
    project_path: str,
    scheme: str,
    workspace: str | None = None,
    destination: str | None = None,
    configuration: str = "Debug",
    clean: bool = False,
    extra_args: list[str] | None = None,
    env_overrides: dict[str, str] | None = None,
) -> str:
    """Build a visionOS app with xcodebuild and package the products as a zip.

    The sandbox policy is validated first.  The build is aborted after the
    configured ``max_build_minutes``.  On success returns ``job_id``,
    ``artifact_path``, ``artifact_sha256``, ``log_excerpt`` and
    ``duration_ms``; use ``fetch_build_output`` later with the ``job_id``.

    Args:
        project_path: Absolute path of the project directory or ``.xcodeproj``.
        scheme: Xcode scheme to build.
        workspace: Optional absolute path of an ``.xcworkspace``.
        destination: xcodebuild destination (must include ``platform=``).
        configuration: ``Debug`` or ``Release``.
        clean: Run ``clean`` before ``build``.
        extra_args: Additional allow-listed xcodebuild flags.
        env_overrides: Allow-listed environment variables for the build.
    """
    service = _require_service()
    try:
        request = BuildRequest(
            project_path=Path(project_path),
            workspace=Path(workspace) if workspace else None,
            scheme=scheme,
            destination=destination,
            configuration=configuration,
            clean=clean,
            extra_args=extra_args or [],
            env_overrides=env_overrides or {},
        )
    except ValidationError as exc:
        raise _invalid_request(exc) from exc
    logger.info("build_visionos_app called (scheme=%s)", scheme)
    try:
        return _dump(await service.build(request))
    except ToolFailure as exc:
        raise _tool_error(exc.error) from exc


@mcp.tool
def fetch_build_output(job_id: str, include_logs: bool = True) -> str:
    """Return the artifact zip path and SHA-256 of a finished build.

    Artifacts are retained for ``artifact_ttl_secs`` after the build
    finishes; afterwards this returns ``artifact_expired``.

    Args:
        job_id: The ``job_id`` returned by ``build_visionos_app``.
        include_logs: Include the build log excerpt.
    """
    service = _require_service()
    try:
        return _dump(service.fetch(job_id, include_logs=include_logs))
    except ToolFailure as exc:
        raise _tool_error(exc.error) from exc


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Run the MCP server using settings from environment / .env file."""
    settings = Settings()

    logging.basicConfig(level=settings.log_level.upper())
    logger.info(
        "Seiro MCP Server v%s starting (transport=%s)",
        __version__,
        settings.mcp_transport,
    )

    global _service  # noqa: PLW0603
    _service = BuildService.from_settings(settings)
    _service.start()

    try:
        if settings.mcp_transport == "stdio":
            mcp.run(transport="stdio")
        else:
            mcp.run(
                transport=settings.mcp_transport,
                host=settings.mcp_server_host,
                port=settings.mcp_server_port,
                log_level=settings.log_level.lower(),
            )
    finally:
        _service.stop()


if __name__ == "__main__":
    main()
