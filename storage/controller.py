"""File-backed storage controller for supervisor state."""

from __future__ import annotations

from dataclasses import dataclass
import json
import os
from pathlib import Path
import tempfile
import threading
import time
from typing import Any, Mapping

from core.errors import PersistenceFailure


def write_text_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` so readers never see a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_name, path)
    except OSError as exc:
        Path(temp_name).unlink(missing_ok=True)
        raise PersistenceFailure(f"Failed to write {path}: {exc}") from exc


def write_json_atomic(path: Path, payload: Mapping[str, Any]) -> None:
    write_text_atomic(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


def read_json(path: Path) -> dict[str, Any] | None:
    """Return the decoded object at ``path``, None when absent.

    Raises PersistenceFailure for unreadable or malformed files.
    """

    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise PersistenceFailure(f"Failed to read {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise PersistenceFailure(f"Unexpected content in {path}")
    return payload


@dataclass(frozen=True)
class StorageInfo:
    """Metadata about the current storage run."""

    run_id: int
    run_id_file: Path
    var_dir: Path
    log_dir: Path
    log_file: Path
    ledger_file: Path
    status_file: Path
    heartbeat_file: Path
    diagnostics_log: Path


class StorageController:
    """Resolve and own the supervisor's persisted files."""

    _instance: "StorageController | None" = None
    _lock = threading.Lock()

    def __init__(self, config: Mapping[str, Any] | None = None) -> None:
        if StorageController._instance is not None:
            raise RuntimeError("You cannot create another StorageController class")

        if config is None:
            from config import ConfigController

            config = ConfigController.get_instance().get_config()
        self.config = dict(config)

        var_dir, log_dir = self._resolve_storage_dirs()
        self.var_dir = var_dir
        self.log_dir = log_dir

        self.run_id_file = var_dir / "current_run"
        self.run_id = self.get_next_run_number(var_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        StorageController._instance = self

    @classmethod
    def get_instance(cls) -> "StorageController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def get_next_run_number(self, var_dir: Path) -> int:
        """Return the next run number, persisting to the run-id file."""

        var_dir.mkdir(parents=True, exist_ok=True)

        next_run_number = 0
        if self.run_id_file.is_file():
            current_run_number = self.run_id_file.read_text(encoding="utf-8").strip()
            if current_run_number.isdigit():
                next_run_number = int(current_run_number) + 1
        write_text_atomic(self.run_id_file, str(next_run_number))
        return next_run_number

    def get_log_file_path(self) -> Path:
        """Return the log file path for the current run."""

        return self.log_dir / f"supervisor_{self.run_id}.log"

    def get_ledger_path(self) -> Path:
        return self.var_dir / "usage_ledger.json"

    def get_status_path(self) -> Path:
        return self.var_dir / "status.json"

    def get_heartbeat_path(self) -> Path:
        return self.var_dir / "last_success"

    def get_diagnostics_log_path(self) -> Path:
        return self.log_dir / "diagnostics.log"

    def record_success(self, timestamp: float | None = None) -> None:
        """Persist the time of the last successful liveness tick."""

        stamp = time.time() if timestamp is None else timestamp
        with self._lock:
            write_text_atomic(self.get_heartbeat_path(), f"{stamp:.3f}\n")

    def read_last_success(self) -> float | None:
        path = self.get_heartbeat_path()
        try:
            return float(path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def get_storage_info(self) -> StorageInfo:
        """Return metadata about the current run storage."""

        return StorageInfo(
            run_id=self.run_id,
            run_id_file=self.run_id_file,
            var_dir=self.var_dir,
            log_dir=self.log_dir,
            log_file=self.get_log_file_path(),
            ledger_file=self.get_ledger_path(),
            status_file=self.get_status_path(),
            heartbeat_file=self.get_heartbeat_path(),
            diagnostics_log=self.get_diagnostics_log_path(),
        )

    def _resolve_storage_dirs(self) -> tuple[Path, Path]:
        """Resolve storage directories from configuration."""

        storage_config = self.config.get("storage", {}) or {}
        var_dir = storage_config.get("var_dir", self.config.get("var_dir", "./var/"))
        log_dir = storage_config.get("log_dir", self.config.get("log_dir", "./log/"))

        return Path(var_dir).expanduser(), Path(log_dir).expanduser()
