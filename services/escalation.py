"""Escalation state machine.

Pure tick functions over an immutable ``EscalationState``. The supervisor
feeds each verdict through ``observe``, runs whatever remediation the decision
asks for, and records each attempt with ``record_attempt``.
"""

from __future__ import annotations

from dataclasses import replace

from config.settings import EscalationPolicy
from core.ops_models import (
    EscalationDecision,
    EscalationPhase,
    EscalationState,
    HealthVerdict,
    RemediationTier,
    next_tier,
)


_ACTIVE_PHASES = (EscalationPhase.ESCALATING, EscalationPhase.RECOVERING)


def initial_state(now: float) -> EscalationState:
    """Return the state of a freshly started supervisor."""

    return EscalationState(last_success_at=now)


def observe(
    state: EscalationState,
    verdict: HealthVerdict,
    policy: EscalationPolicy,
    *,
    remediation_held: bool = False,
) -> EscalationDecision:
    """Fold one verdict into the state and decide what to do this tick."""

    now = verdict.observed_at

    if verdict.passed:
        recovered = state.phase is not EscalationPhase.HEALTHY
        healthy = EscalationState(
            last_success_at=now,
            total_remediations=state.total_remediations,
            episodes=state.episodes,
        )
        return EscalationDecision(state=healthy, recovered=recovered)

    failures = state.consecutive_failures + 1
    if state.phase not in _ACTIVE_PHASES and failures < policy.failure_threshold:
        return EscalationDecision(
            state=replace(state, phase=EscalationPhase.DEGRADING, consecutive_failures=failures)
        )

    entering = state.phase not in _ACTIVE_PHASES
    if entering:
        new_state = replace(
            state,
            phase=EscalationPhase.ESCALATING,
            consecutive_failures=failures,
            last_escalation_tier=RemediationTier.NONE,
            episodes=state.episodes + 1,
            failed_attempts=0,
            ladder_cycles=0,
            cooldown_until=None,
            last_watchdog_at=None,
        )
    else:
        failed_attempts = state.failed_attempts
        if state.phase is EscalationPhase.RECOVERING:
            # The last command succeeded but the tunnel did not come back.
            failed_attempts += 1
        new_state = replace(
            state,
            phase=EscalationPhase.ESCALATING,
            consecutive_failures=failures,
            failed_attempts=failed_attempts,
        )
        if new_state.last_escalation_tier is RemediationTier.FULL_RESET:
            cycles = new_state.ladder_cycles + 1
            cooldown = cycle_cooldown(cycles, policy)
            new_state = replace(
                new_state,
                last_escalation_tier=RemediationTier.NONE,
                ladder_cycles=cycles,
                cooldown_until=now + cooldown if cooldown > 0 else None,
            )

    watchdog = False
    if now - new_state.last_success_at >= policy.watchdog_after_s and (
        new_state.last_watchdog_at is None
        or now - new_state.last_watchdog_at >= policy.watchdog_after_s
    ):
        watchdog = True
        new_state = replace(new_state, last_watchdog_at=now)

    start_tier = next_tier(new_state.last_escalation_tier)
    if remediation_held:
        start_tier = RemediationTier.NONE
    elif new_state.cooldown_until is not None and now < new_state.cooldown_until:
        start_tier = RemediationTier.NONE

    return EscalationDecision(
        state=new_state,
        start_tier=start_tier,
        snapshot=entering,
        watchdog=watchdog,
    )


def record_attempt(
    state: EscalationState,
    tier: RemediationTier,
    succeeded: bool,
) -> EscalationState:
    """Record one remediation attempt at ``tier``."""

    if succeeded:
        return replace(
            state,
            phase=EscalationPhase.RECOVERING,
            last_escalation_tier=tier,
            total_remediations=state.total_remediations + 1,
        )
    return replace(
        state,
        phase=EscalationPhase.ESCALATING,
        last_escalation_tier=tier,
        total_remediations=state.total_remediations + 1,
        failed_attempts=state.failed_attempts + 1,
    )


def attempt_delay(state: EscalationState, policy: EscalationPolicy) -> float:
    """Exponential backoff before the next tier, reset on recovery."""

    if state.failed_attempts <= 0:
        return 0.0
    delay = policy.tier_delay_s * (policy.backoff_factor ** (state.failed_attempts - 1))
    return min(delay, policy.max_tier_delay_s)


def cycle_cooldown(cycles: int, policy: EscalationPolicy) -> float:
    """Pause imposed after ``cycles`` complete ladder passes in one episode."""

    if cycles <= 0 or policy.cycle_cooldown_s <= 0:
        return 0.0
    cooldown = policy.cycle_cooldown_s * (policy.backoff_factor ** (cycles - 1))
    return min(cooldown, policy.max_cycle_cooldown_s)
