"""Diagnostics runner utilities."""

from __future__ import annotations

from collections.abc import Callable, Iterable

from core.logging import logger as LOGGER
from diagnostics.models import DiagnosticResult, DiagnosticStatus


def format_results(results: Iterable[DiagnosticResult]) -> str:
    """Return a human-friendly diagnostics report."""

    lines = ["Supervisor preflight report", "-" * 60]
    counts = {status: 0 for status in DiagnosticStatus}
    for result in results:
        counts[result.status] += 1
        status = result.status.value
        name = result.name
        details = result.details
        lines.append(f"[{status}] {name}: {details}")
    lines.append("-" * 60)
    lines.append(" ".join(f"{status.value}={count}" for status, count in counts.items()))
    return "\n".join(lines)


def run_diagnostics(probes: Iterable[Callable[[], DiagnosticResult]]) -> list[DiagnosticResult]:
    """Run diagnostics probes and return results."""

    results: list[DiagnosticResult] = []
    for probe in probes:
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001 - diagnostics must keep running
            LOGGER.exception("[Diagnostics] Probe failed: %s", getattr(probe, "__name__", probe))
            result = DiagnosticResult(
                name=getattr(probe, "__name__", "unknown_probe"),
                status=DiagnosticStatus.FAIL,
                details=f"Probe raised exception: {exc}",
            )
        results.append(result)
    return results
