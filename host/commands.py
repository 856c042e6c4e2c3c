"""Subprocess runner shared by the CLI-backed collaborators."""

from __future__ import annotations

from dataclasses import dataclass
import subprocess
import threading
from typing import Sequence

from core.errors import CollaboratorUnavailable
from core.logging import logger as LOGGER


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = (self.stderr or self.stdout).strip().splitlines()
        tail = detail[-1] if detail else ""
        return f"{' '.join(self.args)} exited {self.returncode}" + (f": {tail}" if tail else "")


class CommandRunner:
    """Run host commands with a timeout and remember missing tools.

    A missing executable raises ``CollaboratorUnavailable``; it is logged
    loudly the first time only.
    """

    def __init__(self, default_timeout_s: float = 30.0) -> None:
        self._default_timeout_s = default_timeout_s
        self._missing: set[str] = set()
        self._lock = threading.Lock()

    def is_missing(self, tool: str) -> bool:
        with self._lock:
            return tool in self._missing

    def run(self, args: Sequence[str], timeout_s: float | None = None) -> CommandResult:
        cmd = [str(arg) for arg in args]
        tool = cmd[0]
        timeout = self._default_timeout_s if timeout_s is None else timeout_s
        try:
            completed = subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            self._mark_missing(tool)
            raise CollaboratorUnavailable(tool) from exc
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                args=tuple(cmd),
                returncode=124,
                stdout=_decode(exc.stdout),
                stderr=f"timed out after {timeout:.1f}s",
            )
        return CommandResult(
            args=tuple(cmd),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )

    def _mark_missing(self, tool: str) -> None:
        with self._lock:
            if tool in self._missing:
                return
            self._missing.add(tool)
        LOGGER.error(
            "[Host] Required tool %r is not installed; actions depending on it are skipped.",
            tool,
        )


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class FakeCommandRunner:
    """CommandRunner stand-in returning canned results keyed by argv prefix."""

    def __init__(
        self,
        responses: dict[tuple[str, ...], CommandResult | str] | None = None,
        missing: set[str] | None = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.missing = set(missing or ())
        self.calls: list[tuple[str, ...]] = []
        self.timeouts: list[float | None] = []

    def is_missing(self, tool: str) -> bool:
        return tool in self.missing

    def run(self, args: Sequence[str], timeout_s: float | None = None) -> CommandResult:
        cmd = tuple(str(arg) for arg in args)
        self.calls.append(cmd)
        self.timeouts.append(timeout_s)
        if cmd[0] in self.missing:
            raise CollaboratorUnavailable(cmd[0])
        best: tuple[str, ...] | None = None
        for prefix in self.responses:
            if cmd[: len(prefix)] == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return CommandResult(args=cmd, returncode=0, stdout="", stderr="")
        response = self.responses[best]
        if isinstance(response, str):
            return CommandResult(args=cmd, returncode=0, stdout=response, stderr="")
        return CommandResult(
            args=cmd,
            returncode=response.returncode,
            stdout=response.stdout,
            stderr=response.stderr,
        )
