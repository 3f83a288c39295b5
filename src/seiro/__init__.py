"""Seiro: sandboxed visionOS builds for automated clients."""

__version__ = "0.4.0"
