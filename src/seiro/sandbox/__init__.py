"""Sandbox policy: environment probes, SDK matching and the policy checks."""

from seiro.sandbox.probe import (
    EnvSandboxProbe,
    ProbeError,
    SandboxProbe,
    SystemSandboxProbe,
    create_probe,
)
from seiro.sandbox.sdk import SdkAliasError, SdkAliasTable, SdkInventory
from seiro.sandbox.validator import (
    CheckName,
    CheckResult,
    SandboxPolicyError,
    SandboxPolicyValidator,
    SandboxReport,
)

__all__ = [
    "CheckName",
    "CheckResult",
    "EnvSandboxProbe",
    "ProbeError",
    "SandboxPolicyError",
    "SandboxPolicyValidator",
    "SandboxProbe",
    "SandboxReport",
    "SdkAliasError",
    "SdkAliasTable",
    "SdkInventory",
    "SystemSandboxProbe",
    "create_probe",
]
