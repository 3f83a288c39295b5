"""Shared settings loaded from environment / .env file."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DESTINATION = "platform=visionOS Simulator,name=Apple Vision Pro"
MIN_DISK_BYTES = 20 * 1024 * 1024 * 1024  # 20 GiB


class Settings(BaseSettings):
    """Configuration for the Seiro MCP server and REST API.

    Values are read from environment variables and from a ``.env`` file
    in the working directory.  List values (``allowed_paths`` etc.) are
    given as JSON arrays.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Shared
    log_level: str = "INFO"

    # MCP server
    mcp_transport: Literal["stdio", "http", "sse"] = "stdio"
    mcp_server_host: str = "localhost"
    mcp_server_port: int = 9000

    # REST API
    api_server_host: str = "localhost"
    api_server_port: int = 8000
    port: int | None = None  # platform-injected PORT takes precedence over api_server_port

    @property
    def effective_port(self) -> int:
        """Return the port to listen on (injected PORT takes precedence)."""
        return self.port if self.port is not None else self.api_server_port

    # Auth
    auth_token: str | None = Field(default=None, min_length=16)

    # Sandbox policy
    allowed_paths: list[Path] = []
    allowed_schemes: list[str] = []
    required_sdks: list[str] = Field(
        default_factory=lambda: ["visionOS", "visionOS Simulator"], min_length=1
    )
    default_destination: str = DEFAULT_DESTINATION
    sandbox_probe: Literal["system", "env", "mock"] = "system"
    sdk_alias_file: Path | None = None
    min_disk_bytes: int = Field(default=MIN_DISK_BYTES, ge=0)
    validate_before_build: bool = True

    # Toolchain
    xcode_path: Path = Path("/Applications/Xcode.app/Contents/Developer")
    xcodebuild_path: Path = Path("/usr/bin/xcodebuild")

    # Builds and artifacts
    max_build_minutes: int = Field(default=20, ge=1, le=60)
    build_minute_seconds: float = Field(default=60.0, gt=0)  # shrink in tests
    artifact_ttl_secs: int = Field(default=600, ge=60, le=3600)
    cleanup_schedule_secs: int = Field(default=60, ge=30, le=1800)
    artifact_root: Path | None = None

    @property
    def build_timeout_seconds(self) -> float:
        """Wall-clock budget for a single build."""
        return self.max_build_minutes * self.build_minute_seconds

    @property
    def probe_mode(self) -> str:
        """Normalized probe mode (``mock`` is an alias for ``env``)."""
        return "env" if self.sandbox_probe in ("env", "mock") else "system"

    @field_validator("allowed_paths")
    @classmethod
    def _allowed_paths_absolute(cls, value: list[Path]) -> list[Path]:
        for entry in value:
            if not str(entry) or not entry.is_absolute():
                raise ValueError(f"Only absolute paths are allowed: {entry}")
        return value

    @field_validator("allowed_schemes")
    @classmethod
    def _schemes_non_blank(cls, value: list[str]) -> list[str]:
        for scheme in value:
            if not scheme.strip():
                raise ValueError("Scheme names cannot be empty")
            if len(scheme) > 128:
                raise ValueError(f"Scheme length exceeds 128 characters: {scheme}")
        return value

    @field_validator("required_sdks")
    @classmethod
    def _sdks_non_blank(cls, value: list[str]) -> list[str]:
        if any(not sdk.strip() for sdk in value):
            raise ValueError("SDK names cannot be empty")
        return value

    @field_validator("default_destination")
    @classmethod
    def _destination_has_platform(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed or len(trimmed) > 256 or "platform=" not in trimmed:
            raise ValueError("Provide a 1-256 character string that includes platform=")
        return trimmed

    @field_validator("xcode_path", "xcodebuild_path")
    @classmethod
    def _toolchain_paths_absolute(cls, value: Path) -> Path:
        if not value.is_absolute():
            raise ValueError(f"Provide an absolute path: {value}")
        return value
