"""Tests for the liveness evaluator and verdict reduction."""

from __future__ import annotations

import threading
import time

from core.errors import CollaboratorUnavailable
from core.ops_models import HealthSignal
from services.liveness import LivenessEvaluator, ProbeSpec, reduce_signals


def _signal(name: str, passed: bool, *, critical: bool = False, skipped: bool = False) -> HealthSignal:
    return HealthSignal(
        name=name,
        passed=passed,
        detail="ok" if passed else "failed",
        observed_at=0.0,
        critical=critical,
        skipped=skipped,
    )


def _fixed(name: str, passed: bool):
    return lambda: _signal(name, passed)


def test_critical_failure_fails_the_verdict() -> None:
    verdict = reduce_signals(
        [
            _signal("daemon_process", False, critical=True),
            _signal("dns", True),
            _signal("egress", True),
        ],
        observed_at=1.0,
    )

    assert verdict.passed is False
    assert verdict.failing_signals == ("daemon_process",)


def test_advisory_quorum_is_half_or_more() -> None:
    critical = _signal("control_socket", True, critical=True)
    half = reduce_signals(
        [critical, _signal("dns", True), _signal("peers", True), _signal("egress", False), _signal("exit_node", False)],
        observed_at=1.0,
    )
    minority = reduce_signals(
        [critical, _signal("dns", True), _signal("peers", False), _signal("egress", False), _signal("exit_node", False)],
        observed_at=1.0,
    )

    assert half.passed is True
    assert half.failing_signals == ("egress", "exit_node")
    assert minority.passed is False


def test_skipped_signals_take_no_part() -> None:
    verdict = reduce_signals(
        [
            _signal("control_socket", True, critical=True),
            _signal("dns", True),
            _signal("peers", False, skipped=True),
            _signal("egress", False, skipped=True),
        ],
        observed_at=1.0,
    )

    assert verdict.passed is True
    assert verdict.failing_signals == ()


def test_nothing_considered_is_not_healthy() -> None:
    verdict = reduce_signals([_signal("dns", False, skipped=True)], observed_at=1.0)

    assert verdict.passed is False


def test_evaluate_marks_slow_probe_as_timed_out() -> None:
    release = threading.Event()

    def slow() -> HealthSignal:
        release.wait(5.0)
        return _signal("egress", True)

    evaluator = LivenessEvaluator(
        [
            ProbeSpec("control_socket", _fixed("control_socket", True), critical=True),
            ProbeSpec("dns", _fixed("dns", True)),
            ProbeSpec("egress", slow),
        ],
        deadline_s=0.2,
        clock=lambda: 42.0,
    )
    try:
        started = time.monotonic()
        verdict = evaluator.evaluate()
        elapsed = time.monotonic() - started
    finally:
        release.set()

    egress = [signal for signal in verdict.signals if signal.name == "egress"][0]
    assert elapsed < 2.0
    assert egress.passed is False
    assert "timed out" in egress.detail
    assert verdict.observed_at == 42.0
    assert verdict.passed is True


def test_probe_exception_becomes_failed_signal() -> None:
    def broken() -> HealthSignal:
        raise ValueError("boom")

    evaluator = LivenessEvaluator([ProbeSpec("control_socket", broken, critical=True)], deadline_s=1.0)

    verdict = evaluator.evaluate()

    assert verdict.passed is False
    assert "boom" in verdict.signals[0].detail
    assert verdict.signals[0].critical is True


def test_missing_collaborator_retires_advisory_probe() -> None:
    calls = {"egress": 0}

    def missing_tool() -> HealthSignal:
        calls["egress"] += 1
        raise CollaboratorUnavailable("curl")

    evaluator = LivenessEvaluator(
        [
            ProbeSpec("control_socket", _fixed("control_socket", True), critical=True),
            ProbeSpec("dns", _fixed("dns", True)),
            ProbeSpec("egress", missing_tool),
        ],
        deadline_s=1.0,
    )

    first = evaluator.evaluate()
    second = evaluator.evaluate()

    assert calls["egress"] == 1
    assert "egress" in evaluator.retired_probes()
    assert first.passed is True
    assert second.passed is True
    assert [signal.skipped for signal in second.signals] == [False, False, True]


def test_missing_collaborator_on_critical_probe_is_a_failure() -> None:
    calls = {"count": 0}

    def missing_tool() -> HealthSignal:
        calls["count"] += 1
        raise CollaboratorUnavailable("tailscale")

    evaluator = LivenessEvaluator(
        [ProbeSpec("control_socket", missing_tool, critical=True), ProbeSpec("dns", _fixed("dns", True))],
        deadline_s=1.0,
    )

    evaluator.evaluate()
    verdict = evaluator.evaluate()

    assert calls["count"] == 2
    assert verdict.passed is False
    assert verdict.failing_signals == ("control_socket",)
    assert evaluator.retired_probes() == {}


def test_signal_names_follow_probe_specs() -> None:
    evaluator = LivenessEvaluator(
        [ProbeSpec("peers", _fixed("something_else", True), critical=False)],
        deadline_s=1.0,
    )

    verdict = evaluator.evaluate()

    assert evaluator.probe_names == ["peers"]
    assert verdict.signals[0].name == "peers"
