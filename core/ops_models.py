"""Models for liveness evaluation, escalation and usage tracking."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class RemediationTier(str, Enum):
    """Remediation ladder tiers ordered by blast radius."""

    NONE = "none"
    SOFT_RESTART = "soft_restart"
    CREDENTIAL_REFRESH = "credential_refresh"
    HARD_RESTART = "hard_restart"
    FULL_RESET = "full_reset"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)


_TIER_ORDER = (
    RemediationTier.NONE,
    RemediationTier.SOFT_RESTART,
    RemediationTier.CREDENTIAL_REFRESH,
    RemediationTier.HARD_RESTART,
    RemediationTier.FULL_RESET,
)

REMEDIATION_LADDER = _TIER_ORDER[1:]


def next_tier(tier: RemediationTier) -> RemediationTier:
    """Return the tier that follows ``tier`` on the ladder.

    NONE starts the ladder at SOFT_RESTART and FULL_RESET wraps back to it.
    """

    if tier is RemediationTier.NONE or tier is RemediationTier.FULL_RESET:
        return RemediationTier.SOFT_RESTART
    return _TIER_ORDER[tier.rank + 1]


class EscalationPhase(str, Enum):
    """Phase of the escalation state machine."""

    HEALTHY = "healthy"
    DEGRADING = "degrading"
    ESCALATING = "escalating"
    RECOVERING = "recovering"


class UsageTier(str, Enum):
    """Billing-period usage classification."""

    NORMAL = "normal"
    WARNING = "warning"
    THROTTLED = "throttled"
    EXCEEDED = "exceeded"


@dataclass(frozen=True)
class HealthSignal:
    """Verdict of a single probe run."""

    name: str
    passed: bool
    detail: str
    observed_at: float
    critical: bool = False
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "detail": self.detail,
            "observed_at": self.observed_at,
            "critical": self.critical,
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class HealthVerdict:
    """Aggregate of one tick's health signals."""

    passed: bool
    failing_signals: tuple[str, ...]
    observed_at: float
    signals: tuple[HealthSignal, ...] = ()

    def summary(self) -> str:
        if self.passed and not self.failing_signals:
            return "All probes passed"
        if self.passed:
            return f"Healthy with advisory failures: {', '.join(self.failing_signals)}"
        return f"Unhealthy: {', '.join(self.failing_signals) or 'no usable probes'}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "failing_signals": list(self.failing_signals),
            "observed_at": self.observed_at,
            "signals": [signal.to_dict() for signal in self.signals],
        }


@dataclass(frozen=True)
class EscalationState:
    """Escalation state owned by the escalation state machine.

    Instances are immutable; the tick functions in ``services.escalation``
    return replacements.
    """

    last_success_at: float
    phase: EscalationPhase = EscalationPhase.HEALTHY
    consecutive_failures: int = 0
    last_escalation_tier: RemediationTier = RemediationTier.NONE
    total_remediations: int = 0
    episodes: int = 0
    failed_attempts: int = 0
    ladder_cycles: int = 0
    cooldown_until: float | None = None
    last_watchdog_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "consecutive_failures": self.consecutive_failures,
            "last_success_at": self.last_success_at,
            "last_escalation_tier": self.last_escalation_tier.value,
            "total_remediations": self.total_remediations,
            "episodes": self.episodes,
            "failed_attempts": self.failed_attempts,
            "ladder_cycles": self.ladder_cycles,
            "cooldown_until": self.cooldown_until,
            "last_watchdog_at": self.last_watchdog_at,
        }


@dataclass(frozen=True)
class EscalationDecision:
    """Outcome of feeding one verdict into the state machine."""

    state: EscalationState
    start_tier: RemediationTier = RemediationTier.NONE
    snapshot: bool = False
    watchdog: bool = False
    recovered: bool = False


@dataclass(frozen=True)
class UsageLedger:
    """Durable billing-period egress record."""

    billing_period: str
    accumulated_bytes: int = 0
    last_sample_at: float = 0.0
    checkpoint_bytes: int = 0
    last_counter_bytes: int = 0
    last_update_hour: str = ""

    @property
    def pending_bytes(self) -> int:
        """Bytes observed since the last hourly fold."""

        if self.last_counter_bytes < self.checkpoint_bytes:
            return self.last_counter_bytes
        return self.last_counter_bytes - self.checkpoint_bytes

    @property
    def billable_bytes(self) -> int:
        return self.accumulated_bytes + self.pending_bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "billing_period": self.billing_period,
            "accumulated_bytes": self.accumulated_bytes,
            "last_sample_at": self.last_sample_at,
            "checkpoint_bytes": self.checkpoint_bytes,
            "last_counter_bytes": self.last_counter_bytes,
            "last_update_hour": self.last_update_hour,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "UsageLedger":
        return cls(
            billing_period=str(payload["billing_period"]),
            accumulated_bytes=int(payload.get("accumulated_bytes", 0)),
            last_sample_at=float(payload.get("last_sample_at", 0.0)),
            checkpoint_bytes=int(payload.get("checkpoint_bytes", 0)),
            last_counter_bytes=int(payload.get("last_counter_bytes", 0)),
            last_update_hour=str(payload.get("last_update_hour", "")),
        )


@dataclass(frozen=True)
class ThrottleState:
    """Egress cap derived from the usage tier."""

    tier: UsageTier = UsageTier.NORMAL
    active: bool = False
    cap_bytes_per_sec: int = 0
    tunnel_stopped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tier": self.tier.value,
            "active": self.active,
            "cap_bytes_per_sec": self.cap_bytes_per_sec,
            "tunnel_stopped": self.tunnel_stopped,
        }


@dataclass
class LoopCounters:
    """Mutable counters for the supervisor loops."""

    liveness_ticks: int = 0
    usage_ticks: int = 0
    errors: int = 0
    snapshots: int = 0
    watchdog_repairs: int = 0
