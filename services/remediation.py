"""Remediation executor: apply one ladder tier against the VPN collaborators."""

from __future__ import annotations

from dataclasses import replace
import threading
import time
from typing import Callable, Sequence

from core.errors import CollaboratorUnavailable, RemediationFailure
from core.logging import logger as LOGGER
from core.ops_models import RemediationTier
from host.dns import DnsRepair
from host.packet_filter import PacketFilter
from host.supervision import ProcessSupervisor
from host.vpn import UpFlags, VpnControl


class RemediationExecutor:
    """Run remediation tiers; each tier is idempotent and returns a bool.

    The executor does not verify connectivity afterwards. It refuses any tier
    that would skip an untried lower tier of the current episode.
    """

    def __init__(
        self,
        vpn: VpnControl,
        supervisor: ProcessSupervisor,
        *,
        daemon: str,
        up_flags: UpFlags,
        soft_restart_pause_s: float = 5.0,
        hard_restart_settle_s: float = 10.0,
        full_reset_settle_s: float = 15.0,
        packet_filter: PacketFilter | None = None,
        problem_rules: Sequence[Sequence[str]] = (),
        dns_repair: DnsRepair | None = None,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self._vpn = vpn
        self._supervisor = supervisor
        self._daemon = daemon
        self._up_flags = up_flags
        self._soft_restart_pause_s = soft_restart_pause_s
        self._hard_restart_settle_s = hard_restart_settle_s
        self._full_reset_settle_s = full_reset_settle_s
        self._packet_filter = packet_filter
        self._problem_rules = [tuple(rule) for rule in problem_rules]
        self._dns_repair = dns_repair
        self._sleep = sleep
        self._highest_attempted = RemediationTier.NONE
        self._lock = threading.Lock()
        self._actions = {
            RemediationTier.SOFT_RESTART: self._soft_restart,
            RemediationTier.CREDENTIAL_REFRESH: self._credential_refresh,
            RemediationTier.HARD_RESTART: self._hard_restart,
            RemediationTier.FULL_RESET: self._full_reset,
        }

    def begin_episode(self) -> None:
        """Forget attempted tiers; the next attempt must start the ladder."""

        with self._lock:
            self._highest_attempted = RemediationTier.NONE

    def attempt(self, tier: RemediationTier) -> bool:
        action = self._actions.get(tier)
        if action is None:
            LOGGER.error("[Remediation] Refusing non-remediation tier %s", tier.value)
            return False
        with self._lock:
            highest = self._highest_attempted
            if tier is not RemediationTier.SOFT_RESTART and tier.rank > highest.rank + 1:
                LOGGER.error(
                    "[Remediation] Refusing %s: highest tier attempted this episode is %s",
                    tier.value,
                    highest.value,
                )
                return False
            if tier.rank > highest.rank:
                self._highest_attempted = tier

        LOGGER.warning("[Remediation] Attempting %s", tier.value)
        try:
            action()
        except CollaboratorUnavailable as exc:
            LOGGER.error("[Remediation] %s skipped: %s", tier.value, exc)
            return False
        except RemediationFailure as exc:
            LOGGER.warning("[Remediation] %s failed: %s", tier.value, exc)
            return False
        except Exception as exc:  # noqa: BLE001 - a tier failure must not end the loop
            LOGGER.exception("[Remediation] %s raised unexpectedly: %s", tier.value, exc)
            return False
        LOGGER.info("[Remediation] %s commands succeeded", tier.value)
        return True

    def _soft_restart(self) -> None:
        self._vpn.down()
        self._sleep(self._soft_restart_pause_s)
        self._vpn.up(self._up_flags)

    def _credential_refresh(self) -> None:
        self._vpn.up(replace(self._up_flags, force_reauth=True))

    def _hard_restart(self) -> None:
        self._supervisor.restart(self._daemon)
        self._sleep(self._hard_restart_settle_s)
        self._vpn.up(self._up_flags)

    def _full_reset(self) -> None:
        LOGGER.warning("[Remediation] Performing full reset - persisted session state will be deleted")
        try:
            self._vpn.down()
        except RemediationFailure as exc:
            LOGGER.info("[Remediation] Tunnel down before reset failed (continuing): %s", exc)
        self._supervisor.stop(self._daemon)
        self._vpn.reset()
        self._supervisor.start(self._daemon)
        self._sleep(self._full_reset_settle_s)
        self._vpn.up(replace(self._up_flags, reset=True))

    def repair_network(self) -> bool:
        """Side-channel repair through the packet-filter and DNS entry points."""

        repaired = True
        if self._packet_filter is not None:
            try:
                removed = sum(1 for rule in self._problem_rules if self._packet_filter.remove_rule(rule))
                self._packet_filter.apply_baseline_rules()
                LOGGER.warning("[Remediation] Packet filter repaired (removed=%s)", removed)
            except (CollaboratorUnavailable, RemediationFailure) as exc:
                LOGGER.warning("[Remediation] Packet filter repair failed: %s", exc)
                repaired = False
        if self._dns_repair is not None:
            try:
                if self._dns_repair.repair():
                    LOGGER.warning("[Remediation] DNS repair completed")
            except (CollaboratorUnavailable, RemediationFailure) as exc:
                LOGGER.warning("[Remediation] DNS repair failed: %s", exc)
                repaired = False
        return repaired
