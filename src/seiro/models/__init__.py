"""Pydantic domain models for Seiro."""

from seiro.models.errors import ErrorDescriptor, SandboxState, ToolErrorData
from seiro.models.job import Artifact, BuildJob, InvalidJobTransitionError, JobStatus
from seiro.models.requests import (
    BuildConfiguration,
    BuildRequest,
    BuildRequestValidationError,
    SandboxPolicyRequest,
    ValidationReason,
)

__all__ = [
    "Artifact",
    "BuildConfiguration",
    "BuildJob",
    "BuildRequest",
    "BuildRequestValidationError",
    "ErrorDescriptor",
    "InvalidJobTransitionError",
    "JobStatus",
    "SandboxPolicyRequest",
    "SandboxState",
    "ToolErrorData",
    "ValidationReason",
]
