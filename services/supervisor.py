"""Network supervisor: the liveness and usage loops around the tunnel."""

from __future__ import annotations

from dataclasses import asdict, replace
import threading
import time
from typing import Callable

from config.settings import SupervisorSettings
from core.errors import PersistenceFailure
from core.logging import logger as LOGGER
from core.ops_models import (
    EscalationPhase,
    EscalationState,
    HealthVerdict,
    LoopCounters,
    RemediationTier,
    ThrottleState,
    UsageLedger,
    next_tier,
)
from diagnostics.models import DiagnosticsSnapshot
from diagnostics.recorder import DiagnosticsRecorder
from services.escalation import attempt_delay, initial_state, observe, record_attempt
from services.liveness import LivenessEvaluator
from services.remediation import RemediationExecutor
from services.throttle import ThrottleController
from services.usage_ledger import ResourceUsageLedger
from storage.status import StatusBoard


class NetworkSupervisor:
    """Own the two tick loops and the escalation state.

    The liveness loop evaluates probes, advances the escalation state machine
    and runs remediation. The usage loop samples the ledger and reconciles the
    throttle. They touch disjoint collaborators and share only the status
    board and the stop event.
    """

    def __init__(
        self,
        settings: SupervisorSettings,
        *,
        evaluator: LivenessEvaluator,
        executor: RemediationExecutor,
        recorder: DiagnosticsRecorder,
        ledger: ResourceUsageLedger,
        throttle: ThrottleController,
        status: StatusBoard,
        record_success: Callable[[float], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._policy = settings.escalation
        self._evaluator = evaluator
        self._executor = executor
        self._recorder = recorder
        self._ledger = ledger
        self._throttle = throttle
        self._status = status
        self._record_success = record_success
        self._clock = clock

        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._state = initial_state(clock())
        self._counters = LoopCounters()
        self._latest_verdict: HealthVerdict | None = None
        self._heartbeat_period_s = 300.0
        self._next_heartbeat = time.monotonic() + self._heartbeat_period_s

    @property
    def state(self) -> EscalationState:
        with self._lock:
            return self._state

    @property
    def counters(self) -> LoopCounters:
        with self._lock:
            return replace(self._counters)

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # Loop lifecycle

    def start(self) -> None:
        if any(thread.is_alive() for thread in self._threads):
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._loop,
                args=("liveness", self._settings.liveness.tick_interval_s, self.check_once),
                name="liveness-loop",
                daemon=True,
            ),
            threading.Thread(
                target=self._loop,
                args=("usage", self._settings.usage.tick_interval_s, self.usage_tick),
                name="usage-loop",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        LOGGER.info(
            "[Supervisor] Started (check interval %.0fs, failure threshold %s, usage interval %.0fs)",
            self._settings.liveness.tick_interval_s,
            self._policy.failure_threshold,
            self._settings.usage.tick_interval_s,
        )

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self, timeout_s: float = 30.0) -> None:
        """Stop both loops, letting an in-flight tick finish."""

        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout_s)
            if thread.is_alive():
                LOGGER.warning(
                    "[Supervisor] %s did not exit within %.2fs; continuing shutdown.",
                    thread.name,
                    timeout_s,
                )
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        state = self.state
        LOGGER.info(
            "[Supervisor] Stopped: failures=%s total remediations=%s episodes=%s",
            state.consecutive_failures,
            state.total_remediations,
            state.episodes,
        )

    def run_forever(self, poll_s: float = 1.0) -> None:
        """Run both loops until ``request_stop`` (or a signal handler) fires."""

        self.start()
        try:
            while not self._stop_event.wait(timeout=poll_s):
                pass
        finally:
            self.stop()

    def _loop(self, name: str, period_s: float, tick: Callable[[], object]) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                tick()
            except Exception as exc:
                LOGGER.exception("[Supervisor] Error in %s loop (retrying): %s", name, exc)
                with self._lock:
                    self._counters.errors += 1
            remaining = period_s - (time.monotonic() - started)
            self._stop_event.wait(timeout=max(remaining, 0.0))

    # Liveness

    def check_once(self) -> HealthVerdict:
        """Run one liveness tick: evaluate, escalate, remediate, publish."""

        verdict = self._evaluator.evaluate()
        self._recorder.record_verdict(verdict)
        held = self._throttle.remediation_held
        with self._lock:
            previous = self._state
            self._counters.liveness_ticks += 1
            self._latest_verdict = verdict

        decision = observe(previous, verdict, self._policy, remediation_held=held)
        state = decision.state

        if verdict.passed:
            self._note_success(verdict.observed_at)
            if decision.recovered:
                LOGGER.warning(
                    "[Supervisor] Connection restored after %s failure(s) (episode %s)",
                    previous.consecutive_failures,
                    previous.episodes,
                )
                self._executor.begin_episode()
        else:
            LOGGER.warning(
                "[Supervisor] Health check failed (%s/%s, phase %s): %s",
                state.consecutive_failures,
                self._policy.failure_threshold,
                state.phase.value,
                ", ".join(verdict.failing_signals) or "no usable probes",
            )

        if decision.snapshot:
            LOGGER.error(
                "[Supervisor] Failure threshold reached; opening escalation episode %s",
                state.episodes,
            )
            self._recorder.snapshot(
                reason=f"threshold reached after {state.consecutive_failures} failures: "
                + verdict.summary(),
                episode=state.episodes,
            )
            self._executor.begin_episode()
            with self._lock:
                self._counters.snapshots += 1
        elif state.ladder_cycles > previous.ladder_cycles:
            LOGGER.error(
                "[Supervisor] Ladder exhausted %s time(s) in episode %s; restarting from %s",
                state.ladder_cycles,
                state.episodes,
                RemediationTier.SOFT_RESTART.value,
            )
            self._executor.begin_episode()

        if not verdict.passed and state.phase is EscalationPhase.ESCALATING:
            if held:
                LOGGER.warning("[Supervisor] Remediation held: usage limit exceeded this period")
            elif decision.start_tier is RemediationTier.NONE and state.cooldown_until is not None:
                LOGGER.info(
                    "[Supervisor] Ladder cooldown: next pass in %.0fs",
                    max(state.cooldown_until - verdict.observed_at, 0.0),
                )

        state = self._run_ladder(state, decision.start_tier)

        if decision.watchdog and self._throttle.remediation_held:
            LOGGER.warning("[Supervisor] Network repair skipped: usage limit exceeded this period")
        elif decision.watchdog:
            LOGGER.error(
                "[Supervisor] No successful check for %.0fs; running network repair",
                verdict.observed_at - state.last_success_at,
            )
            self._executor.repair_network()
            with self._lock:
                self._counters.watchdog_repairs += 1

        with self._lock:
            self._state = state
        self._publish_health(verdict, state)
        self._maybe_log_heartbeat(state)
        return verdict

    def force_remediation(self) -> bool:
        """Open an episode now and walk the ladder until a tier succeeds."""

        if self._throttle.remediation_held:
            LOGGER.error("[Supervisor] Refusing forced remediation: usage limit exceeded")
            return False
        with self._lock:
            state = replace(
                self._state,
                phase=EscalationPhase.ESCALATING,
                last_escalation_tier=RemediationTier.NONE,
                episodes=self._state.episodes + 1,
                failed_attempts=0,
                ladder_cycles=0,
                cooldown_until=None,
            )
        LOGGER.warning("[Supervisor] Forced remediation (episode %s)", state.episodes)
        self._recorder.snapshot(reason="forced remediation", episode=state.episodes)
        self._executor.begin_episode()
        state = self._run_ladder(state, RemediationTier.SOFT_RESTART)
        with self._lock:
            self._state = state
            self._counters.snapshots += 1
        return state.phase is EscalationPhase.RECOVERING

    def dump_diagnostics(self, reason: str = "requested") -> DiagnosticsSnapshot:
        with self._lock:
            episode = self._state.episodes
        return self._recorder.snapshot(reason=reason, episode=episode)

    def _run_ladder(self, state: EscalationState, tier: RemediationTier) -> EscalationState:
        while tier is not RemediationTier.NONE and not self._stop_event.is_set():
            if self._throttle.remediation_held:
                LOGGER.warning(
                    "[Supervisor] Usage limit reached; abandoning ladder before %s (episode %s)",
                    tier.value,
                    state.episodes,
                )
                break
            succeeded = self._executor.attempt(tier)
            state = record_attempt(state, tier, succeeded)
            if self._throttle.remediation_held:
                self._throttle.reassert_stop()
                LOGGER.warning(
                    "[Supervisor] Usage limit reached during %s; ladder abandoned (episode %s)",
                    tier.value,
                    state.episodes,
                )
                break
            if succeeded:
                LOGGER.warning(
                    "[Supervisor] %s completed (episode %s, failures %s); verifying next tick",
                    tier.value,
                    state.episodes,
                    state.consecutive_failures,
                )
                break
            LOGGER.warning(
                "[Supervisor] %s failed (episode %s, failures %s, failed attempts %s)",
                tier.value,
                state.episodes,
                state.consecutive_failures,
                state.failed_attempts,
            )
            if tier is RemediationTier.FULL_RESET:
                LOGGER.error("[Supervisor] All tiers failed; will retry on a later tick")
                break
            delay = attempt_delay(state, self._policy)
            if delay > 0 and self._stop_event.wait(timeout=delay):
                break
            tier = next_tier(tier)
        return state

    def _note_success(self, timestamp: float) -> None:
        if self._record_success is None:
            return
        try:
            self._record_success(timestamp)
        except PersistenceFailure as exc:
            LOGGER.error("[Supervisor] Last-success timestamp not persisted: %s", exc)

    def _publish_health(self, verdict: HealthVerdict, state: EscalationState) -> None:
        self._status.publish("health", verdict.to_dict())
        escalation = state.to_dict()
        escalation["counters"] = asdict(self.counters)
        escalation["retired_probes"] = self._evaluator.retired_probes()
        self._status.publish("escalation", escalation)

    def _maybe_log_heartbeat(self, state: EscalationState) -> None:
        now = time.monotonic()
        if now < self._next_heartbeat:
            return
        self._next_heartbeat = now + self._heartbeat_period_s
        LOGGER.info(
            "[Supervisor] Status: phase=%s failures=%s total remediations=%s last success=%s",
            state.phase.value,
            state.consecutive_failures,
            state.total_remediations,
            time.strftime("%H:%M:%S", time.localtime(state.last_success_at)),
        )

    # Usage

    def usage_tick(self) -> ThrottleState:
        """Sample the ledger and reconcile the throttle."""

        ledger = self._ledger.sample()
        throttle_state = self._throttle.reconcile(ledger)
        with self._lock:
            self._counters.usage_ticks += 1
        self._publish_usage(ledger, throttle_state)
        return throttle_state

    def _publish_usage(self, ledger: UsageLedger, throttle_state: ThrottleState) -> None:
        usage = self._settings.usage
        usage_section = ledger.to_dict()
        usage_section.update(
            {
                "billable_bytes": ledger.billable_bytes,
                "billable_units": round(ledger.billable_bytes / usage.unit_bytes, 3),
                "warn_units": usage.thresholds.warn,
                "throttle_units": usage.thresholds.throttle,
                "limit_units": usage.thresholds.limit,
            }
        )
        self._status.publish("usage", usage_section)
        self._status.publish("throttle", throttle_state.to_dict())
