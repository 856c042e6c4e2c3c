"""Liveness evaluator: run probes concurrently and reduce them to a verdict."""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, replace
import threading
import time
from typing import Callable, Iterable, Sequence

from core.errors import CollaboratorUnavailable
from core.logging import logger as LOGGER
from core.ops_models import HealthSignal, HealthVerdict


@dataclass(frozen=True)
class ProbeSpec:
    """A named probe and whether its failure alone fails the verdict."""

    name: str
    run: Callable[[], HealthSignal]
    critical: bool = False


def reduce_signals(signals: Sequence[HealthSignal], observed_at: float) -> HealthVerdict:
    """Fold signals into a verdict.

    Passes iff every critical signal passes and at least half of the advisory
    signals pass. Skipped signals take no part in either rule.
    """

    considered = [signal for signal in signals if not signal.skipped]
    critical_ok = all(signal.passed for signal in considered if signal.critical)
    advisory = [signal for signal in considered if not signal.critical]
    advisory_passed = sum(1 for signal in advisory if signal.passed)
    quorum_ok = advisory_passed * 2 >= len(advisory)
    has_critical = any(signal.critical for signal in considered)
    return HealthVerdict(
        passed=critical_ok and quorum_ok and (has_critical or bool(advisory)),
        failing_signals=tuple(signal.name for signal in considered if not signal.passed),
        observed_at=observed_at,
        signals=tuple(signals),
    )


class LivenessEvaluator:
    """Run a fixed probe set within a deadline and return a HealthVerdict."""

    def __init__(
        self,
        probes: Iterable[ProbeSpec],
        *,
        deadline_s: float = 20.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._probes = list(probes)
        self._deadline_s = max(float(deadline_s), 0.1)
        self._clock = clock
        self._retired: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def probe_names(self) -> list[str]:
        return [probe.name for probe in self._probes]

    def retired_probes(self) -> dict[str, str]:
        with self._lock:
            return dict(self._retired)

    def evaluate(self) -> HealthVerdict:
        observed_at = self._clock()
        active = [probe for probe in self._probes if not self._is_retired(probe.name)]
        signals: dict[str, HealthSignal] = {}

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(len(active), 1),
            thread_name_prefix="liveness-probe",
        )
        try:
            futures = {executor.submit(probe.run): probe for probe in active}
            done, not_done = concurrent.futures.wait(futures, timeout=self._deadline_s)
            for future in done:
                probe = futures[future]
                signals[probe.name] = self._collect(probe, future, observed_at)
            for future in not_done:
                probe = futures[future]
                future.cancel()
                signals[probe.name] = HealthSignal(
                    name=probe.name,
                    passed=False,
                    detail=f"Probe timed out after {self._deadline_s:.1f}s",
                    observed_at=observed_at,
                    critical=probe.critical,
                )
        finally:
            # Hung probes are abandoned rather than joined so the tick stays bounded.
            executor.shutdown(wait=False, cancel_futures=True)

        ordered: list[HealthSignal] = []
        for probe in self._probes:
            if probe.name in signals:
                ordered.append(signals[probe.name])
            else:
                ordered.append(
                    HealthSignal(
                        name=probe.name,
                        passed=False,
                        detail=f"Skipped: {self._retired.get(probe.name, 'retired')}",
                        observed_at=observed_at,
                        critical=probe.critical,
                        skipped=True,
                    )
                )

        verdict = reduce_signals(ordered, observed_at)
        for signal in ordered:
            if not signal.passed and not signal.skipped:
                LOGGER.info(
                    "[Liveness] Probe %s failed (%s): %s",
                    signal.name,
                    "critical" if signal.critical else "advisory",
                    signal.detail,
                )
        return verdict

    def _collect(
        self,
        probe: ProbeSpec,
        future: concurrent.futures.Future,
        observed_at: float,
    ) -> HealthSignal:
        try:
            signal = future.result()
        except CollaboratorUnavailable as exc:
            if probe.critical:
                return HealthSignal(
                    name=probe.name,
                    passed=False,
                    detail=f"Collaborator unavailable: {exc}",
                    observed_at=observed_at,
                    critical=True,
                )
            self._retire(probe.name, str(exc))
            return HealthSignal(
                name=probe.name,
                passed=False,
                detail=f"Skipped: {exc}",
                observed_at=observed_at,
                skipped=True,
            )
        except Exception as exc:  # noqa: BLE001 - probes must not fail the evaluator
            LOGGER.exception("[Liveness] Probe %s raised: %s", probe.name, exc)
            return HealthSignal(
                name=probe.name,
                passed=False,
                detail=f"Probe raised exception: {exc}",
                observed_at=observed_at,
                critical=probe.critical,
            )
        return replace(signal, name=probe.name, critical=probe.critical)

    def _is_retired(self, name: str) -> bool:
        with self._lock:
            return name in self._retired

    def _retire(self, name: str, reason: str) -> None:
        with self._lock:
            if name in self._retired:
                return
            self._retired[name] = reason
        LOGGER.error(
            "[Liveness] Advisory probe %s disabled for the rest of this run: %s",
            name,
            reason,
        )
