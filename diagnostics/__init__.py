"""Self-diagnostics and failure snapshots for the tunnel supervisor."""

from diagnostics.models import (
    DiagnosticBlock,
    DiagnosticResult,
    DiagnosticStatus,
    DiagnosticsSnapshot,
)
from diagnostics.runner import format_results, run_diagnostics

__all__ = [
    "DiagnosticBlock",
    "DiagnosticResult",
    "DiagnosticStatus",
    "DiagnosticsSnapshot",
    "format_results",
    "run_diagnostics",
]
