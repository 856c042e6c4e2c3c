"""Error taxonomy for the tunnel supervisor."""

from __future__ import annotations


class SupervisorError(RuntimeError):
    """Base error for supervisor failures."""


class ProbeFailure(SupervisorError):
    """Raised by a probe when its signal could not be observed as healthy."""


class RemediationFailure(SupervisorError):
    """Raised when a remediation tier's commands did not succeed."""


class PersistenceFailure(SupervisorError):
    """Raised when persisted state cannot be read or written."""


class CollaboratorUnavailable(SupervisorError):
    """Raised when a required external tool is missing on the host."""

    def __init__(self, tool: str, message: str | None = None) -> None:
        self.tool = tool
        super().__init__(message or f"{tool} is not available on this host")


class ConfigurationError(SupervisorError):
    """Raised for unrecoverable configuration problems at startup."""
