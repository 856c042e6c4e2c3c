"""Diagnostics recorder: capture host state when an escalation episode begins."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from pathlib import Path
import socket
import threading
import time
from typing import Callable, Iterable, Sequence

from core.errors import CollaboratorUnavailable, PersistenceFailure
from core.logging import logger as LOGGER
from core.ops_models import HealthVerdict
from diagnostics.models import DiagnosticBlock, DiagnosticsSnapshot
from host.commands import CommandRunner
from host.processes import find_processes


@dataclass(frozen=True)
class BlockSource:
    """A labeled producer of one diagnostics block."""

    label: str
    collect: Callable[[], str]


def _head(text: str, limit: int | None) -> str:
    lines = text.splitlines()
    if limit is not None and len(lines) > limit:
        lines = lines[:limit] + [f"... ({len(lines) - limit} more lines)"]
    return "\n".join(lines)


def command_block(
    label: str,
    runner: CommandRunner,
    args: Sequence[str],
    *,
    limit: int | None = None,
    timeout_s: float = 10.0,
) -> BlockSource:
    """Block from a command's output; a non-zero exit keeps whatever was printed."""

    def collect() -> str:
        result = runner.run(args, timeout_s=timeout_s)
        output = result.stdout if result.stdout.strip() else result.stderr
        if not result.ok and not output.strip():
            raise RuntimeError(result.describe())
        return _head(output, limit)

    return BlockSource(label, collect)


def file_block(label: str, path: Path, *, limit: int | None = None) -> BlockSource:
    return BlockSource(label, lambda: _head(path.read_text(encoding="utf-8"), limit))


def process_block(label: str, daemon: str, proc_root: Path = Path("/proc")) -> BlockSource:
    def collect() -> str:
        matches = find_processes(daemon, proc_root)
        if not matches:
            return f"no {daemon} process found"
        return "\n".join(f"{pid} {cmdline}" for pid, cmdline in matches)

    return BlockSource(label, collect)


def host_identity_block(label: str = "host identity") -> BlockSource:
    def collect() -> str:
        hostname = socket.gethostname()
        try:
            address = socket.gethostbyname(hostname)
        except OSError as exc:
            address = f"unresolved ({exc})"
        return f"hostname: {hostname}\naddress: {address}"

    return BlockSource(label, collect)


def default_block_sources(
    runner: CommandRunner,
    *,
    vpn_cli: str = "tailscale",
    daemon: str = "tailscaled",
    filter_command: str = "iptables",
    line_limit: int = 20,
    resolv_conf: Path = Path("/etc/resolv.conf"),
    proc_root: Path = Path("/proc"),
) -> list[BlockSource]:
    """Blocks captured for every snapshot, in report order."""

    return [
        command_block("vpn version", runner, [vpn_cli, "version"]),
        host_identity_block(),
        process_block("daemon processes", daemon, proc_root),
        command_block("interfaces", runner, ["ip", "addr", "show"]),
        command_block("vpn status", runner, [vpn_cli, "status"]),
        command_block("netcheck", runner, [vpn_cli, "netcheck"], timeout_s=30.0),
        file_block("dns configuration", resolv_conf),
        command_block("routes", runner, ["ip", "route", "show"], limit=line_limit),
        command_block("filter rules", runner, [filter_command, "-L", "-n"], limit=line_limit),
    ]


class DiagnosticsRecorder:
    """Capture a snapshot per escalation episode and append it to a log file."""

    def __init__(
        self,
        sources: Iterable[BlockSource],
        log_path: Path,
        *,
        history_size: int = 20,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sources = list(sources)
        self._log_path = log_path
        self._clock = clock
        self._history: deque[HealthVerdict] = deque(maxlen=max(int(history_size), 1))
        self._lock = threading.Lock()
        self._snapshots = 0

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def snapshot_count(self) -> int:
        return self._snapshots

    def record_verdict(self, verdict: HealthVerdict) -> None:
        with self._lock:
            self._history.append(verdict)

    def history(self) -> list[HealthVerdict]:
        with self._lock:
            return list(self._history)

    def snapshot(self, reason: str, episode: int = 0) -> DiagnosticsSnapshot:
        """Capture every block; failures are recorded inline rather than raised."""

        LOGGER.info("[Diagnostics] Capturing snapshot for episode %s: %s", episode, reason)
        blocks = [self._capture(source) for source in self._sources]
        blocks.append(DiagnosticBlock("verdict history", self._render_history()))
        snapshot = DiagnosticsSnapshot(
            episode=episode,
            captured_at=self._clock(),
            reason=reason,
            blocks=tuple(blocks),
        )
        try:
            self._append(snapshot)
        except PersistenceFailure as exc:
            LOGGER.error("[Diagnostics] %s", exc)
        with self._lock:
            self._snapshots += 1
        return snapshot

    def _capture(self, source: BlockSource) -> DiagnosticBlock:
        try:
            text = source.collect()
        except CollaboratorUnavailable as exc:
            text = f"unavailable: {exc.tool} is not installed"
        except Exception as exc:  # noqa: BLE001 - one block must not spoil the snapshot
            text = f"unavailable: {exc}"
        return DiagnosticBlock(source.label, text)

    def _render_history(self) -> str:
        verdicts = self.history()
        if not verdicts:
            return "no verdicts recorded"
        lines = []
        for verdict in verdicts:
            stamp = time.strftime("%H:%M:%S", time.localtime(verdict.observed_at))
            lines.append(f"{stamp} {verdict.summary()}")
        return "\n".join(lines)

    def _append(self, snapshot: DiagnosticsSnapshot) -> None:
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(snapshot.render())
        except OSError as exc:
            raise PersistenceFailure(f"Failed to append diagnostics to {self._log_path}: {exc}") from exc
