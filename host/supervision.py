"""Process supervision interface and the supervisorctl backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from core.errors import RemediationFailure
from host.commands import CommandRunner


class ProcessSupervisor(Protocol):
    """Restart primitives of the host's process supervisor."""

    def restart(self, service: str) -> None:
        """Restart a supervised service."""

    def stop(self, service: str) -> None:
        """Stop a supervised service."""

    def start(self, service: str) -> None:
        """Start a supervised service."""


class SupervisorctlCli:
    """ProcessSupervisor backed by ``supervisorctl``."""

    def __init__(self, runner: CommandRunner, command: str = "supervisorctl", timeout_s: float = 30.0) -> None:
        self._runner = runner
        self._command = command
        self._timeout_s = timeout_s

    def restart(self, service: str) -> None:
        self._run("restart", service)

    def stop(self, service: str) -> None:
        self._run("stop", service)

    def start(self, service: str) -> None:
        self._run("start", service)

    def _run(self, action: str, service: str) -> None:
        result = self._runner.run([self._command, action, service], timeout_s=self._timeout_s)
        if not result.ok:
            raise RemediationFailure(result.describe())


@dataclass
class FakeProcessSupervisor:
    """Recording ProcessSupervisor for tests."""

    fail_actions: set[str] = field(default_factory=set)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def restart(self, service: str) -> None:
        self._record("restart", service)

    def stop(self, service: str) -> None:
        self._record("stop", service)

    def start(self, service: str) -> None:
        self._record("start", service)

    def _record(self, action: str, service: str) -> None:
        self.calls.append((action, service))
        if action in self.fail_actions:
            raise RemediationFailure(f"fake {action} {service} failed")
