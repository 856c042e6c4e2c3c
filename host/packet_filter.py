"""Packet filter repair interface and the iptables backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from core.errors import RemediationFailure
from core.logging import logger as LOGGER
from host.commands import CommandResult, CommandRunner


class PacketFilter(Protocol):
    """Repair entry points of the packet filter."""

    def apply_baseline_rules(self) -> None:
        """Ensure the rules the tunnel needs are present."""

    def remove_rule(self, rule: Sequence[str]) -> bool:
        """Delete one rule if present; return True when something was removed."""


class IptablesCli:
    """PacketFilter backed by ``iptables`` check/append/delete calls."""

    def __init__(
        self,
        runner: CommandRunner,
        baseline_rules: Sequence[Sequence[str]],
        *,
        command: str = "iptables",
        timeout_s: float = 10.0,
    ) -> None:
        self._runner = runner
        self._baseline_rules = [tuple(rule) for rule in baseline_rules]
        self._command = command
        self._timeout_s = timeout_s

    def apply_baseline_rules(self) -> None:
        added = 0
        for rule in self._baseline_rules:
            if self._run("-C", rule).ok:
                continue
            result = self._run("-A", rule)
            if not result.ok:
                raise RemediationFailure(result.describe())
            added += 1
        LOGGER.info("[Filter] Baseline rules ensured (added=%s)", added)

    def remove_rule(self, rule: Sequence[str]) -> bool:
        if not self._run("-C", rule).ok:
            return False
        result = self._run("-D", rule)
        if not result.ok:
            raise RemediationFailure(result.describe())
        LOGGER.warning("[Filter] Removed rule: %s", " ".join(rule))
        return True

    def _run(self, action: str, rule: Sequence[str]) -> CommandResult:
        return self._runner.run([self._command, action, *rule], timeout_s=self._timeout_s)


@dataclass
class FakePacketFilter:
    """In-memory PacketFilter for tests."""

    rules: list[tuple[str, ...]] = field(default_factory=list)
    baseline_applied: int = 0

    def apply_baseline_rules(self) -> None:
        self.baseline_applied += 1

    def remove_rule(self, rule: Sequence[str]) -> bool:
        key = tuple(rule)
        if key in self.rules:
            self.rules.remove(key)
            return True
        return False
