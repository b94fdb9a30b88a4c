"""Error taxonomy for the telemetry engine.

Only ConfigurationError is ever raised to callers of the engine; every other
error is caught where it happens and turned into missing data.
"""
from __future__ import annotations

from typing import Optional


class PathScopeError(Exception):
    """Base class for all pathScope errors."""


class ProbeError(PathScopeError):
    """A single probe call did not produce a value."""

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class ProbeTimeout(ProbeError):
    """A probe exceeded its deadline."""


class ProbeFailure(ProbeError):
    """Connection, resolution or transport error while probing."""


class PartialDNSFailure(PathScopeError):
    """One record-type query failed while the others may have succeeded."""

    def __init__(self, record_type: str, reason: str) -> None:
        super().__init__(f"{record_type} query failed: {reason}")
        self.record_type = record_type
        self.reason = reason


class ConfigurationError(PathScopeError, ValueError):
    """Invalid engine configuration; fatal at start-up only."""
