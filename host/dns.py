"""DNS repair hook."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from core.errors import RemediationFailure
from core.logging import logger as LOGGER
from host.commands import CommandRunner


class DnsRepair(Protocol):
    """Repair entry point of the host's DNS manager."""

    def repair(self) -> bool:
        """Run the repair; return False when no repair is configured."""


class CommandDnsRepair:
    """Run an operator-configured DNS repair command."""

    def __init__(self, runner: CommandRunner, command: Sequence[str], timeout_s: float = 30.0) -> None:
        self._runner = runner
        self._command = list(command)
        self._timeout_s = timeout_s

    def repair(self) -> bool:
        if not self._command:
            LOGGER.debug("[DNS] No repair command configured; skipping.")
            return False
        result = self._runner.run(self._command, timeout_s=self._timeout_s)
        if not result.ok:
            raise RemediationFailure(result.describe())
        return True


@dataclass
class FakeDnsRepair:
    """Counting DnsRepair for tests."""

    repairs: int = 0

    def repair(self) -> bool:
        self.repairs += 1
        return True
