"""Diagnostics routines for the core subsystem."""

from __future__ import annotations

import importlib.util

from diagnostics.models import DiagnosticResult, DiagnosticStatus


def probe() -> DiagnosticResult:
    """Check that the supervisor logger is configured and has a handler."""

    name = "core_logging"
    from core import logging as core_logging

    logger = core_logging.logger
    if logger is None or not logger.handlers:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.FAIL,
            details="Supervisor logger has no handlers",
        )
    rich_available = importlib.util.find_spec("rich") is not None
    if not rich_available:
        return DiagnosticResult(
            name=name,
            status=DiagnosticStatus.WARN,
            details=f"Logger {logger.name!r} using plain stream output (rich not installed)",
        )
    return DiagnosticResult(
        name=name,
        status=DiagnosticStatus.PASS,
        details=f"Logger {logger.name!r} at {core_logging.logging.getLevelName(logger.level)} with rich output",
    )
