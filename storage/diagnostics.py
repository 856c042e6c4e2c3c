"""Diagnostics routines for the storage subsystem."""

from __future__ import annotations

from pathlib import Path

from core.errors import PersistenceFailure
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from storage.controller import read_json, write_json_atomic


def probe(base_dir: Path | None = None) -> DiagnosticResult:
    """Run a storage probe to validate atomic writes in the state directories.

    Args:
        base_dir: Optional base directory for offline testing.

    Returns:
        Diagnostic result indicating storage readiness.
    """

    name = "storage"
    sentinel = None
    try:
        if base_dir is None:
            from config import ConfigController

            config = ConfigController.get_instance().get_config()
            storage_config = config.get("storage", {}) or {}
            var_dir = Path(
                storage_config.get("var_dir", config.get("var_dir", "./var/"))
            ).expanduser()
            log_dir = Path(
                storage_config.get("log_dir", config.get("log_dir", "./log/"))
            ).expanduser()
        else:
            var_dir = base_dir / "var"
            log_dir = base_dir / "log"

        var_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)

        sentinel = var_dir / "diagnostics_probe.json"
        write_json_atomic(sentinel, {"ok": True})
        if read_json(sentinel) != {"ok": True}:
            return DiagnosticResult(
                name=name,
                status=DiagnosticStatus.FAIL,
                details=f"Atomic write round trip mismatch at {var_dir}",
            )

        details = f"State directories writable at {var_dir} and {log_dir}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.PASS, details=details)
    except (OSError, PersistenceFailure) as exc:
        details = f"Filesystem access failed: {exc}"
        return DiagnosticResult(name=name, status=DiagnosticStatus.FAIL, details=details)
    finally:
        if sentinel is not None:
            sentinel.unlink(missing_ok=True)
