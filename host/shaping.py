"""Traffic shaping interface and the ``tc`` token-bucket backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from core.errors import RemediationFailure
from host.commands import CommandRunner


class TrafficShaper(Protocol):
    """Egress rate cap control for one interface."""

    def set_cap(self, interface: str, rate_kbit: int) -> None:
        """Install or replace the egress cap."""

    def clear_cap(self, interface: str) -> None:
        """Remove any egress cap."""


class TcShaper:
    """TrafficShaper using a ``tbf`` root qdisc."""

    def __init__(self, runner: CommandRunner, command: str = "tc", timeout_s: float = 10.0) -> None:
        self._runner = runner
        self._command = command
        self._timeout_s = timeout_s

    def set_cap(self, interface: str, rate_kbit: int) -> None:
        result = self._runner.run(
            [
                self._command, "qdisc", "replace", "dev", interface, "root", "handle", "1:",
                "tbf", "rate", f"{int(rate_kbit)}kbit", "burst", "32kbit", "latency", "400ms",
            ],
            timeout_s=self._timeout_s,
        )
        if not result.ok:
            raise RemediationFailure(result.describe())

    def clear_cap(self, interface: str) -> None:
        result = self._runner.run(
            [self._command, "qdisc", "del", "dev", interface, "root"],
            timeout_s=self._timeout_s,
        )
        # tc reports an error when no root qdisc is installed; that is the desired end state.
        if not result.ok and "No such file or directory" not in result.stderr and "Cannot delete" not in result.stderr:
            raise RemediationFailure(result.describe())


@dataclass
class FakeShaper:
    """Recording TrafficShaper for tests."""

    caps: dict[str, int] = field(default_factory=dict)
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def set_cap(self, interface: str, rate_kbit: int) -> None:
        self.calls.append(("set", interface, rate_kbit))
        self.caps[interface] = rate_kbit

    def clear_cap(self, interface: str) -> None:
        self.calls.append(("clear", interface, 0))
        self.caps.pop(interface, None)
