"""Machine-readable status artifact for the status page."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Mapping

from core.errors import PersistenceFailure
from core.logging import logger as LOGGER
from storage.controller import write_json_atomic


class StatusBoard:
    """Merge per-loop sections into one JSON file.

    Both loops publish here, so writes are serialized by a lock and each
    write atomically replaces the file.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._sections: dict[str, Any] = {}

    @property
    def path(self) -> Path:
        return self._path

    def publish(self, section: str, payload: Mapping[str, Any]) -> None:
        with self._lock:
            self._sections[section] = dict(payload)
            document = {"updated_at": time.time(), **self._sections}
            try:
                write_json_atomic(self._path, document)
            except PersistenceFailure as exc:
                LOGGER.warning("[Status] Status artifact not written: %s", exc)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {key: value for key, value in self._sections.items()}
