"""Tests for the escalation state machine tick functions."""

from __future__ import annotations

from dataclasses import replace
import random

import pytest

from config.settings import EscalationPolicy
from core.ops_models import EscalationPhase, HealthVerdict, RemediationTier
from services.escalation import (
    attempt_delay,
    cycle_cooldown,
    initial_state,
    observe,
    record_attempt,
)


POLICY = EscalationPolicy(
    failure_threshold=3,
    tier_delay_s=10.0,
    max_tier_delay_s=120.0,
    backoff_factor=2.0,
    watchdog_after_s=300.0,
    cycle_cooldown_s=60.0,
    max_cycle_cooldown_s=1800.0,
)
NO_COOLDOWN = replace(POLICY, cycle_cooldown_s=0.0)


def _failing(at: float) -> HealthVerdict:
    return HealthVerdict(passed=False, failing_signals=("control_socket",), observed_at=at)


def _passing(at: float) -> HealthVerdict:
    return HealthVerdict(passed=True, failing_signals=(), observed_at=at)


def _escalate(policy: EscalationPolicy = POLICY, start: float = 0.0):
    state = initial_state(start)
    decision = None
    for tick in range(policy.failure_threshold):
        decision = observe(state, _failing(start + 10.0 * (tick + 1)), policy)
        state = decision.state
    return decision


def test_failures_below_threshold_only_degrade() -> None:
    state = initial_state(0.0)
    for tick in (1, 2):
        decision = observe(state, _failing(tick * 10.0), POLICY)
        state = decision.state
        assert state.phase is EscalationPhase.DEGRADING
        assert state.consecutive_failures == tick
        assert decision.start_tier is RemediationTier.NONE
        assert decision.snapshot is False


def test_threshold_enters_escalating_at_soft_restart_with_one_snapshot() -> None:
    decision = _escalate()

    assert decision.state.phase is EscalationPhase.ESCALATING
    assert decision.state.consecutive_failures == 3
    assert decision.state.episodes == 1
    assert decision.start_tier is RemediationTier.SOFT_RESTART
    assert decision.snapshot is True


def test_passing_verdict_resets_from_any_phase() -> None:
    state = record_attempt(_escalate().state, RemediationTier.SOFT_RESTART, succeeded=True)
    assert state.phase is EscalationPhase.RECOVERING

    decision = observe(state, _passing(100.0), POLICY)

    assert decision.recovered is True
    assert decision.state.phase is EscalationPhase.HEALTHY
    assert decision.state.consecutive_failures == 0
    assert decision.state.last_escalation_tier is RemediationTier.NONE
    assert decision.state.last_success_at == 100.0
    assert decision.state.total_remediations == 1
    assert decision.start_tier is RemediationTier.NONE


def test_passing_verdict_while_degrading_resets_counter() -> None:
    decision = observe(initial_state(0.0), _failing(10.0), POLICY)
    decision = observe(decision.state, _passing(20.0), POLICY)

    assert decision.state.consecutive_failures == 0
    assert decision.state.phase is EscalationPhase.HEALTHY
    assert decision.recovered is True


def test_ladder_advances_one_tier_per_failed_attempt() -> None:
    decision = _escalate()
    state = decision.state
    tier = decision.start_tier
    seen = []
    now = 100.0
    for _ in range(4):
        seen.append(tier)
        state = record_attempt(state, tier, succeeded=False)
        now += 10.0
        decision = observe(state, _failing(now), POLICY)
        assert decision.snapshot is False
        state = decision.state
        tier = decision.start_tier

    assert seen == [
        RemediationTier.SOFT_RESTART,
        RemediationTier.CREDENTIAL_REFRESH,
        RemediationTier.HARD_RESTART,
        RemediationTier.FULL_RESET,
    ]
    assert state.failed_attempts == 4


def test_successful_command_that_does_not_heal_continues_the_ladder() -> None:
    state = record_attempt(_escalate().state, RemediationTier.SOFT_RESTART, succeeded=True)

    decision = observe(state, _failing(100.0), POLICY)

    assert decision.state.phase is EscalationPhase.ESCALATING
    assert decision.start_tier is RemediationTier.CREDENTIAL_REFRESH
    assert decision.state.failed_attempts == 1


def test_full_reset_failure_wraps_without_new_snapshot() -> None:
    state = record_attempt(_escalate(NO_COOLDOWN).state, RemediationTier.FULL_RESET, succeeded=False)

    decision = observe(state, _failing(200.0), NO_COOLDOWN)

    assert decision.start_tier is RemediationTier.SOFT_RESTART
    assert decision.snapshot is False
    assert decision.state.episodes == 1
    assert decision.state.ladder_cycles == 1
    assert decision.state.cooldown_until is None


def test_ladder_wrap_waits_out_the_cycle_cooldown() -> None:
    state = record_attempt(_escalate().state, RemediationTier.FULL_RESET, succeeded=False)

    decision = observe(state, _failing(200.0), POLICY)
    assert decision.start_tier is RemediationTier.NONE
    assert decision.state.cooldown_until == 260.0

    decision = observe(decision.state, _failing(230.0), POLICY)
    assert decision.start_tier is RemediationTier.NONE
    assert decision.state.consecutive_failures == 5

    decision = observe(decision.state, _failing(261.0), POLICY)
    assert decision.start_tier is RemediationTier.SOFT_RESTART


def test_first_remediation_of_an_episode_is_never_full_reset() -> None:
    for threshold in (1, 2, 5):
        policy = replace(POLICY, failure_threshold=threshold)
        assert _escalate(policy).start_tier is RemediationTier.SOFT_RESTART


def test_new_episode_after_recovery_restarts_the_ladder() -> None:
    state = record_attempt(_escalate().state, RemediationTier.HARD_RESTART, succeeded=True)
    state = observe(state, _passing(100.0), POLICY).state

    decision = None
    for tick in range(3):
        decision = observe(state, _failing(200.0 + tick), POLICY)
        state = decision.state

    assert decision.snapshot is True
    assert decision.state.episodes == 2
    assert decision.start_tier is RemediationTier.SOFT_RESTART


def test_held_remediation_counts_failures_without_a_tier() -> None:
    state = initial_state(0.0)
    decision = None
    for tick in range(3):
        decision = observe(state, _failing(10.0 * (tick + 1)), POLICY, remediation_held=True)
        state = decision.state

    assert decision.state.phase is EscalationPhase.ESCALATING
    assert decision.start_tier is RemediationTier.NONE


def test_watchdog_fires_at_most_once_per_interval() -> None:
    state = initial_state(0.0)
    decisions = []
    for now in (100.0, 200.0, 300.0, 330.0, 599.0, 600.0):
        decision = observe(state, _failing(now), POLICY)
        decisions.append(decision.watchdog)
        state = decision.state

    assert decisions == [False, False, True, False, False, True]


def test_attempt_delay_backs_off_and_caps() -> None:
    state = initial_state(0.0)
    delays = [attempt_delay(replace(state, failed_attempts=count), POLICY) for count in range(6)]

    assert delays == [0.0, 10.0, 20.0, 40.0, 80.0, 120.0]


def test_attempt_delay_resets_on_recovery() -> None:
    state = replace(_escalate().state, failed_attempts=3)
    healthy = observe(state, _passing(500.0), POLICY).state

    assert attempt_delay(healthy, POLICY) == 0.0


def test_cycle_cooldown_grows_and_caps() -> None:
    assert cycle_cooldown(0, POLICY) == 0.0
    assert cycle_cooldown(1, POLICY) == 60.0
    assert cycle_cooldown(2, POLICY) == 120.0
    assert cycle_cooldown(10, POLICY) == 1800.0
    assert cycle_cooldown(3, NO_COOLDOWN) == 0.0


@pytest.mark.parametrize("seed", range(8))
def test_consecutive_failures_track_trailing_failures(seed: int) -> None:
    rng = random.Random(seed)
    state = initial_state(0.0)
    trailing = 0
    for tick in range(1, 120):
        passed = rng.random() < 0.3
        verdict = _passing(tick * 10.0) if passed else _failing(tick * 10.0)
        decision = observe(state, verdict, POLICY, remediation_held=rng.random() < 0.1)
        state = decision.state
        if decision.start_tier is not RemediationTier.NONE:
            state = record_attempt(state, decision.start_tier, rng.random() < 0.5)
        trailing = 0 if passed else trailing + 1

        assert state.consecutive_failures == trailing
        assert (state.phase is EscalationPhase.HEALTHY) == passed
