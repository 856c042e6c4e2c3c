"""Models for diagnostics results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import time


class DiagnosticStatus(str, Enum):
    """Status for diagnostics checks."""

    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


@dataclass(frozen=True)
class DiagnosticResult:
    """Result for a single diagnostic check."""

    name: str
    status: DiagnosticStatus
    details: str


@dataclass(frozen=True)
class DiagnosticBlock:
    """One labeled block of captured host state."""

    label: str
    text: str


@dataclass(frozen=True)
class DiagnosticsSnapshot:
    """Write-once capture taken when an escalation episode begins."""

    episode: int
    captured_at: float
    reason: str
    blocks: tuple[DiagnosticBlock, ...] = ()

    def block(self, label: str) -> DiagnosticBlock | None:
        for block in self.blocks:
            if block.label == label:
                return block
        return None

    def render(self) -> str:
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(self.captured_at))
        lines = [f"=== Diagnostics snapshot (episode {self.episode}) {stamp} ===", f"reason: {self.reason}"]
        for block in self.blocks:
            lines.append(f"--- {block.label} ---")
            lines.append(block.text.rstrip() or "(empty)")
        lines.append("=== end of snapshot ===")
        return "\n".join(lines) + "\n"
