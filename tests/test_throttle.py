"""Tests for usage classification and the throttle controller."""

from __future__ import annotations

import pytest

from config.settings import UsageSettings, UsageThresholds
from core.errors import RemediationFailure
from core.ops_models import UsageLedger, UsageTier
from host.shaping import FakeShaper
from host.supervision import FakeProcessSupervisor
from services.throttle import ThrottleController, classify_usage


UNIT = 1000
SETTINGS = UsageSettings(unit_bytes=UNIT, interface="eth0")


def _ledger(units: float, period: str = "2025-03") -> UsageLedger:
    return UsageLedger(billing_period=period, accumulated_bytes=int(units * UNIT))


def _controller(shaper=None, supervisor=None) -> ThrottleController:
    return ThrottleController(
        shaper or FakeShaper(),
        supervisor or FakeProcessSupervisor(),
        daemon="tailscaled",
        settings=SETTINGS,
    )


@pytest.mark.parametrize(
    ("units", "tier"),
    [
        (29, UsageTier.NORMAL),
        (30, UsageTier.WARNING),
        (31, UsageTier.WARNING),
        (33, UsageTier.THROTTLED),
        (35, UsageTier.EXCEEDED),
        (36, UsageTier.EXCEEDED),
    ],
)
def test_classify_usage_boundaries(units: int, tier: UsageTier) -> None:
    assert classify_usage(units * UNIT, UsageThresholds(), UNIT) is tier


def test_first_reconcile_clears_unknown_host_state_once() -> None:
    shaper = FakeShaper()
    controller = _controller(shaper=shaper)

    state = controller.reconcile(_ledger(29))
    controller.reconcile(_ledger(29.5))

    assert shaper.calls == [("clear", "eth0", 0)]
    assert state.active is False
    assert state.cap_bytes_per_sec == 0


def test_caps_follow_tier_and_are_applied_only_on_change() -> None:
    shaper = FakeShaper()
    controller = _controller(shaper=shaper)

    warning = controller.reconcile(_ledger(31))
    controller.reconcile(_ledger(31.5))
    throttled = controller.reconcile(_ledger(33))
    controller.reconcile(_ledger(34))

    assert shaper.calls == [("set", "eth0", 512), ("set", "eth0", 128)]
    assert warning.active is True
    assert warning.cap_bytes_per_sec == 64_000
    assert throttled.tier is UsageTier.THROTTLED
    assert throttled.cap_bytes_per_sec == 16_000


def test_exceeded_stops_daemon_once_and_holds_remediation() -> None:
    shaper = FakeShaper()
    supervisor = FakeProcessSupervisor()
    controller = _controller(shaper=shaper, supervisor=supervisor)

    first = controller.reconcile(_ledger(36))
    second = controller.reconcile(_ledger(37))

    assert supervisor.calls == [("stop", "tailscaled")]
    assert shaper.calls == [("set", "eth0", 128)]
    assert controller.remediation_held is True
    assert first.tunnel_stopped is True
    assert second.tier is UsageTier.EXCEEDED


def test_reassert_stop_only_acts_while_tunnel_is_stopped() -> None:
    supervisor = FakeProcessSupervisor()
    controller = _controller(supervisor=supervisor)

    assert controller.reassert_stop() is False
    controller.reconcile(_ledger(36))

    assert controller.reassert_stop() is True
    assert supervisor.calls == [("stop", "tailscaled"), ("stop", "tailscaled")]
    assert controller.remediation_held is True


def test_rollover_restarts_daemon_and_clears_cap() -> None:
    shaper = FakeShaper()
    supervisor = FakeProcessSupervisor()
    controller = _controller(shaper=shaper, supervisor=supervisor)
    controller.reconcile(_ledger(36, period="2025-03"))

    state = controller.reconcile(_ledger(0, period="2025-04"))

    assert supervisor.calls == [("stop", "tailscaled"), ("start", "tailscaled")]
    assert shaper.calls[-1] == ("clear", "eth0", 0)
    assert controller.remediation_held is False
    assert state.tier is UsageTier.NORMAL
    assert state.tunnel_stopped is False


def test_failed_stop_is_retried_next_tick() -> None:
    supervisor = FakeProcessSupervisor(fail_actions={"stop"})
    controller = _controller(supervisor=supervisor)

    controller.reconcile(_ledger(36))
    assert controller.remediation_held is True
    supervisor.fail_actions.clear()
    state = controller.reconcile(_ledger(36))

    assert supervisor.calls == [("stop", "tailscaled"), ("stop", "tailscaled")]
    assert state.tunnel_stopped is True


def test_failed_cap_is_retried_next_tick() -> None:
    class FlakyShaper(FakeShaper):
        failures = 1

        def set_cap(self, interface: str, rate_kbit: int) -> None:
            if self.failures:
                self.failures -= 1
                raise RemediationFailure("tc failed")
            super().set_cap(interface, rate_kbit)

    shaper = FlakyShaper()
    controller = _controller(shaper=shaper)

    first = controller.reconcile(_ledger(31))
    second = controller.reconcile(_ledger(31))

    assert first.active is False
    assert second.active is True
    assert shaper.caps == {"eth0": 512}
