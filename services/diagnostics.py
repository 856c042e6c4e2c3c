"""Diagnostics routines for the host tools the supervisor acts through."""

from __future__ import annotations

from dataclasses import dataclass
import shutil

from diagnostics.models import DiagnosticResult, DiagnosticStatus


@dataclass(frozen=True)
class HostToolsProbeConfig:
    """Tools checked by the host probe."""

    required: tuple[str, ...] = ("tailscale", "supervisorctl")
    optional: tuple[str, ...] = ("tc", "iptables", "ip")
    require_all: bool = False


def probe(
    config: HostToolsProbeConfig | None = None,
    available_tools: set[str] | None = None,
) -> DiagnosticResult:
    """Run a host probe to report which collaborator tools are installed.

    Args:
        config: Optional configuration for probe behavior.
        available_tools: Optional override set for offline testing.

    Returns:
        Diagnostic result indicating host tool readiness.
    """

    name = "host_tools"
    settings = config or HostToolsProbeConfig()

    def is_available(tool: str) -> bool:
        if available_tools is not None:
            return tool in available_tools
        return shutil.which(tool) is not None

    missing_required = [tool for tool in settings.required if not is_available(tool)]
    missing_optional = [tool for tool in settings.optional if not is_available(tool)]

    if missing_required:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details=f"Missing required tools: {', '.join(missing_required)}",
        )
    if missing_optional:
        status = DiagnosticStatus.FAIL if settings.require_all else DiagnosticStatus.WARN
        details = f"Missing optional tools (related actions skipped): {', '.join(missing_optional)}"
        return DiagnosticResult(name=name, status=status, details=details)

    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details="Host tools available",
    )
