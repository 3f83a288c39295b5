"""Request models for the build, sandbox and fetch operations."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field

MAX_PROJECT_PATH_LEN = 512
MAX_SCHEME_LEN = 128
MAX_DESTINATION_LEN = 256
MAX_EXTRA_ARGS = 5
MAX_EXTRA_ARG_LEN = 64

# xcodebuild flags accepted in ``extra_args``.
ALLOWED_EXTRA_ARGS = frozenset(
    {
        "-quiet",
        "-UseModernBuildSystem=YES",
        "-skipPackagePluginValidation",
        "-allowProvisioningUpdates",
    }
)

# Environment variables accepted in ``env_overrides``.
ALLOWED_ENV_OVERRIDES = frozenset(
    {
        "DEVELOPER_DIR",
        "NSUnbufferedIO",
        "CI",
        "MOCK_XCODEBUILD_BEHAVIOR",
    }
)


class BuildConfiguration(StrEnum):
    DEBUG = "Debug"
    RELEASE = "Release"


class ValidationReason(StrEnum):
    MISSING_PROJECT_PATH = "missing_project_path"
    PROJECT_PATH_NOT_ABSOLUTE = "project_path_not_absolute"
    PROJECT_PATH_TOO_LONG = "project_path_too_long"
    PROJECT_PATH_NOT_ALLOWED = "project_path_not_allowed"
    WORKSPACE_NOT_ALLOWED = "workspace_not_allowed"
    MISSING_SCHEME = "missing_scheme"
    SCHEME_TOO_LONG = "scheme_too_long"
    SCHEME_NOT_ALLOWED = "scheme_not_allowed"
    DESTINATION_EMPTY = "destination_empty"
    DESTINATION_TOO_LONG = "destination_too_long"
    DESTINATION_MISSING_PLATFORM = "destination_missing_platform"
    TOO_MANY_EXTRA_ARGS = "too_many_extra_args"
    EXTRA_ARG_TOO_LONG = "extra_arg_too_long"
    EXTRA_ARG_NOT_ALLOWED = "extra_arg_not_allowed"
    ENV_OVERRIDE_NOT_ALLOWED = "env_override_not_allowed"


class BuildRequestValidationError(ValueError):
    """A build request was rejected before anything was spawned."""

    def __init__(self, reason: ValidationReason, message: str, **context: object) -> None:
        self.reason = reason
        self.context = context
        super().__init__(message)


def is_allowed_path(path: Path, allowed: list[Path]) -> bool:
    """True if *path* is one of, or below, the allowed base paths.

    Both sides are resolved first, so ``..`` segments and symlinks cannot
    lead outside a base.
    """
    try:
        target = path.resolve()
        bases = [base.resolve() for base in allowed]
    except (OSError, RuntimeError):  # symlink loops
        return False
    return any(target == base or target.is_relative_to(base) for base in bases)


class SandboxPolicyRequest(BaseModel):
    """Input for ``validate_sandbox_policy``."""

    project_path: Path
    required_sdks: list[str] = []  # empty -> configured required_sdks
    xcode_path: Path | None = None
    scheme: str | None = None


class BuildRequest(BaseModel):
    """Input for ``build_visionos_app``."""

    project_path: Path
    workspace: Path | None = None
    scheme: str
    configuration: BuildConfiguration = BuildConfiguration.DEBUG
    destination: str | None = None  # None -> configured default_destination
    clean: bool = False
    extra_args: list[str] = []
    env_overrides: dict[str, str] = Field(default_factory=dict)

    def check(self, allowed_paths: list[Path], allowed_schemes: list[str]) -> None:
        """Validate the request against the policy lists.

        Empty ``allowed_paths`` / ``allowed_schemes`` disable the
        respective allowlist check.  Raises
        :class:`BuildRequestValidationError` on the first violation.
        """
        raw_path = str(self.project_path)
        if not raw_path or raw_path == ".":
            raise BuildRequestValidationError(
                ValidationReason.MISSING_PROJECT_PATH, "project_path is required"
            )
        if not self.project_path.is_absolute():
            raise BuildRequestValidationError(
                ValidationReason.PROJECT_PATH_NOT_ABSOLUTE, "project_path must be absolute"
            )
        if len(raw_path) > MAX_PROJECT_PATH_LEN:
            raise BuildRequestValidationError(
                ValidationReason.PROJECT_PATH_TOO_LONG,
                f"project_path is too long (max {MAX_PROJECT_PATH_LEN} characters)",
            )
        if allowed_paths and not is_allowed_path(self.project_path, allowed_paths):
            raise BuildRequestValidationError(
                ValidationReason.PROJECT_PATH_NOT_ALLOWED,
                f"project_path `{self.project_path}` is outside the allowlist",
                path=raw_path,
            )

        if self.workspace is not None:
            if not self.workspace.is_absolute() or (
                allowed_paths and not is_allowed_path(self.workspace, allowed_paths)
            ):
                raise BuildRequestValidationError(
                    ValidationReason.WORKSPACE_NOT_ALLOWED,
                    f"workspace `{self.workspace}` is outside the allowlist",
                    path=str(self.workspace),
                )

        if not self.scheme.strip():
            raise BuildRequestValidationError(ValidationReason.MISSING_SCHEME, "scheme is required")
        if len(self.scheme) > MAX_SCHEME_LEN:
            raise BuildRequestValidationError(
                ValidationReason.SCHEME_TOO_LONG,
                f"scheme is too long ({len(self.scheme)} characters)",
            )
        if allowed_schemes and self.scheme not in allowed_schemes:
            raise BuildRequestValidationError(
                ValidationReason.SCHEME_NOT_ALLOWED,
                f"scheme `{self.scheme}` is not included in the allowlist",
                scheme=self.scheme,
            )

        if self.destination is not None:
            destination = self.destination.strip()
            if not destination:
                raise BuildRequestValidationError(
                    ValidationReason.DESTINATION_EMPTY, "destination is required"
                )
            if len(destination) > MAX_DESTINATION_LEN:
                raise BuildRequestValidationError(
                    ValidationReason.DESTINATION_TOO_LONG,
                    f"destination is too long ({len(destination)} characters)",
                )
            if "platform=" not in destination:
                raise BuildRequestValidationError(
                    ValidationReason.DESTINATION_MISSING_PLATFORM,
                    "destination must include `platform=`",
                )

        if len(self.extra_args) > MAX_EXTRA_ARGS:
            raise BuildRequestValidationError(
                ValidationReason.TOO_MANY_EXTRA_ARGS,
                f"extra_args exceeds the allowed count (count={len(self.extra_args)})",
            )
        for arg in self.extra_args:
            if len(arg) > MAX_EXTRA_ARG_LEN:
                raise BuildRequestValidationError(
                    ValidationReason.EXTRA_ARG_TOO_LONG,
                    f"extra_args `{arg}` is too long ({len(arg)} characters)",
                )
            if arg not in ALLOWED_EXTRA_ARGS:
                raise BuildRequestValidationError(
                    ValidationReason.EXTRA_ARG_NOT_ALLOWED,
                    f"extra_args contains a disallowed value `{arg}`",
                    arg=arg,
                )

        for key in self.env_overrides:
            if key not in ALLOWED_ENV_OVERRIDES:
                raise BuildRequestValidationError(
                    ValidationReason.ENV_OVERRIDE_NOT_ALLOWED,
                    f"env_overrides `{key}` is not permitted",
                    key=key,
                )
