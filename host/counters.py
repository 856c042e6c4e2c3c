"""Cumulative interface byte counters."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from core.errors import PersistenceFailure


class ByteCounter(Protocol):
    """Source of a monotonic since-boot byte counter."""

    def total_bytes(self) -> int:
        """Return rx+tx bytes over all non-loopback interfaces."""


class SysfsByteCounter:
    """ByteCounter reading ``/sys/class/net/*/statistics``."""

    def __init__(self, net_dir: Path = Path("/sys/class/net")) -> None:
        self._net_dir = net_dir

    def total_bytes(self) -> int:
        if not self._net_dir.is_dir():
            raise PersistenceFailure(f"Interface statistics unavailable at {self._net_dir}")
        total = 0
        for stats_dir in sorted(self._net_dir.glob("*/statistics")):
            if stats_dir.parent.name == "lo":
                continue
            for counter in ("rx_bytes", "tx_bytes"):
                total += _read_int(stats_dir / counter)
        return total


def _read_int(path: Path) -> int:
    try:
        return int(path.read_text(encoding="utf-8").strip() or 0)
    except (OSError, ValueError):
        return 0


@dataclass
class FakeByteCounter:
    """Settable ByteCounter for tests."""

    value: int = 0

    def total_bytes(self) -> int:
        return self.value
