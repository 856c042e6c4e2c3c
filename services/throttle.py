"""Throttle controller: map billing-period usage onto egress caps."""

from __future__ import annotations

import threading

from config.settings import UsageSettings, UsageThresholds
from core.errors import CollaboratorUnavailable, RemediationFailure
from core.logging import logger as LOGGER
from core.ops_models import ThrottleState, UsageLedger, UsageTier
from host.shaping import TrafficShaper
from host.supervision import ProcessSupervisor


_UNKNOWN_RATE = -1


def classify_usage(billable_bytes: int, thresholds: UsageThresholds, unit_bytes: int) -> UsageTier:
    """Classify usage against the warn/throttle/limit thresholds."""

    units = billable_bytes / float(unit_bytes)
    if units < thresholds.warn:
        return UsageTier.NORMAL
    if units < thresholds.throttle:
        return UsageTier.WARNING
    if units < thresholds.limit:
        return UsageTier.THROTTLED
    return UsageTier.EXCEEDED


def kbit_to_bytes_per_sec(rate_kbit: int) -> int:
    return int(rate_kbit) * 1000 // 8


class ThrottleController:
    """Apply the cap for the current usage tier, issuing commands only on change.

    At the limit the VPN daemon is stopped once for the billing period and
    remediation is held until the period rolls over.
    """

    def __init__(
        self,
        shaper: TrafficShaper,
        supervisor: ProcessSupervisor,
        *,
        daemon: str,
        settings: UsageSettings,
    ) -> None:
        self._shaper = shaper
        self._supervisor = supervisor
        self._daemon = daemon
        self._settings = settings
        self._applied_rate = _UNKNOWN_RATE
        self._stopped_period: str | None = None
        self._last_tier: UsageTier | None = None
        self._hold = threading.Event()
        self._lock = threading.Lock()
        self._state = ThrottleState()

    @property
    def remediation_held(self) -> bool:
        return self._hold.is_set()

    @property
    def state(self) -> ThrottleState:
        return self._state

    def rate_for(self, tier: UsageTier) -> int:
        if tier is UsageTier.WARNING:
            return self._settings.warning_rate_kbit
        if tier in (UsageTier.THROTTLED, UsageTier.EXCEEDED):
            return self._settings.throttled_rate_kbit
        return 0

    def reconcile(self, ledger: UsageLedger) -> ThrottleState:
        with self._lock:
            return self._reconcile(ledger)

    def reassert_stop(self) -> bool:
        """Stop the daemon again if this period's stop was undone.

        The liveness loop calls this after a remediation tier ran while the
        hold was raised, since that tier may have restarted the daemon.
        """

        with self._lock:
            if self._stopped_period is None:
                return False
            LOGGER.error("[Throttle] Remediation ran during the usage hold; stopping %s again", self._daemon)
            try:
                self._supervisor.stop(self._daemon)
            except (CollaboratorUnavailable, RemediationFailure) as exc:
                LOGGER.error("[Throttle] Failed to stop %s: %s", self._daemon, exc)
                return False
            return True

    def _reconcile(self, ledger: UsageLedger) -> ThrottleState:
        tier = classify_usage(ledger.billable_bytes, self._settings.thresholds, self._settings.unit_bytes)
        if tier is not self._last_tier:
            LOGGER.warning(
                "[Throttle] Usage tier %s -> %s (%.2f GiB in %s)",
                self._last_tier.value if self._last_tier else "unknown",
                tier.value,
                ledger.billable_bytes / 1024**3,
                ledger.billing_period,
            )
            self._last_tier = tier

        if self._stopped_period is not None and ledger.billing_period != self._stopped_period:
            self._resume_tunnel(ledger.billing_period)

        self._apply_rate(self.rate_for(tier))

        if tier is UsageTier.EXCEEDED:
            self._hold.set()
            if self._stopped_period != ledger.billing_period:
                self._stop_tunnel(ledger.billing_period)
        elif self._stopped_period is None:
            self._hold.clear()

        rate = self._applied_rate if self._applied_rate > 0 else 0
        self._state = ThrottleState(
            tier=tier,
            active=rate > 0,
            cap_bytes_per_sec=kbit_to_bytes_per_sec(rate),
            tunnel_stopped=self._stopped_period is not None,
        )
        return self._state

    def _apply_rate(self, rate_kbit: int) -> None:
        if rate_kbit == self._applied_rate:
            return
        interface = self._settings.interface
        try:
            if rate_kbit > 0:
                self._shaper.set_cap(interface, rate_kbit)
                LOGGER.warning("[Throttle] Egress on %s capped at %s kbit/s", interface, rate_kbit)
            else:
                self._shaper.clear_cap(interface)
                LOGGER.info("[Throttle] Egress cap on %s cleared", interface)
        except (CollaboratorUnavailable, RemediationFailure) as exc:
            LOGGER.error("[Throttle] Could not apply %s kbit/s on %s: %s", rate_kbit, interface, exc)
            return
        self._applied_rate = rate_kbit

    def _stop_tunnel(self, period: str) -> None:
        LOGGER.error(
            "[Throttle] Usage limit exceeded for %s; stopping %s until the next period",
            period,
            self._daemon,
        )
        try:
            self._supervisor.stop(self._daemon)
        except (CollaboratorUnavailable, RemediationFailure) as exc:
            LOGGER.error("[Throttle] Failed to stop %s (will retry): %s", self._daemon, exc)
            return
        self._stopped_period = period

    def _resume_tunnel(self, period: str) -> None:
        LOGGER.warning("[Throttle] Billing period %s started; starting %s", period, self._daemon)
        try:
            self._supervisor.start(self._daemon)
        except (CollaboratorUnavailable, RemediationFailure) as exc:
            LOGGER.error("[Throttle] Failed to start %s (will retry): %s", self._daemon, exc)
            return
        self._stopped_period = None
        self._hold.clear()
