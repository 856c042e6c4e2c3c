"""Tests for the billing-period usage ledger."""

from __future__ import annotations

import json
from pathlib import Path
import time

from core.ops_models import UsageLedger
from host.counters import FakeByteCounter
from services.usage_ledger import ResourceUsageLedger, billing_period, hour_marker


def _local(year: int, month: int, day: int, hour: int, minute: int = 0) -> float:
    return time.mktime((year, month, day, hour, minute, 0, 0, 0, -1))


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_period_and_hour_markers() -> None:
    stamp = _local(2025, 3, 15, 10, 30)

    assert billing_period(stamp) == "2025-03"
    assert hour_marker(stamp) == "2025-03-15T10"


def test_first_sample_counts_since_boot_and_persists(tmp_path: Path) -> None:
    path = tmp_path / "usage_ledger.json"
    ledger = ResourceUsageLedger(path, FakeByteCounter(1000), clock=_Clock(_local(2025, 3, 15, 10)))

    sample = ledger.sample()

    assert sample.billing_period == "2025-03"
    assert sample.accumulated_bytes == 1000
    assert sample.checkpoint_bytes == 1000
    assert sample.billable_bytes == 1000
    assert json.loads(path.read_text(encoding="utf-8"))["accumulated_bytes"] == 1000


def test_fold_happens_once_per_hour(tmp_path: Path) -> None:
    counter = FakeByteCounter(1000)
    clock = _Clock(_local(2025, 3, 15, 10, 5))
    ledger = ResourceUsageLedger(tmp_path / "ledger.json", counter, clock=clock)
    ledger.sample()

    counter.value = 1500
    clock.now = _local(2025, 3, 15, 10, 45)
    within_hour = ledger.sample()

    assert within_hour.accumulated_bytes == 1000
    assert within_hour.pending_bytes == 500
    assert within_hour.billable_bytes == 1500

    counter.value = 2000
    clock.now = _local(2025, 3, 15, 11, 5)
    next_hour = ledger.sample()

    assert next_hour.accumulated_bytes == 2000
    assert next_hour.checkpoint_bytes == 2000
    assert next_hour.billable_bytes == 2000


def test_counter_reset_after_reboot_counts_whole_counter(tmp_path: Path) -> None:
    counter = FakeByteCounter(2000)
    clock = _Clock(_local(2025, 3, 15, 10))
    ledger = ResourceUsageLedger(tmp_path / "ledger.json", counter, clock=clock)
    ledger.sample()

    counter.value = 300
    clock.now = _local(2025, 3, 15, 11)
    sample = ledger.sample()

    assert sample.accumulated_bytes == 2300
    assert sample.checkpoint_bytes == 300


def test_accumulation_never_decreases_within_a_period(tmp_path: Path) -> None:
    counter = FakeByteCounter(0)
    clock = _Clock(_local(2025, 3, 1, 0))
    ledger = ResourceUsageLedger(tmp_path / "ledger.json", counter, clock=clock)
    previous = -1
    for hour, value in enumerate([10, 50, 20, 5, 400, 400]):
        counter.value = value
        clock.now = _local(2025, 3, 1, hour)
        accumulated = ledger.sample().accumulated_bytes
        assert accumulated >= previous
        previous = accumulated


def test_period_rollover_discards_previous_accumulation(tmp_path: Path) -> None:
    path = tmp_path / "ledger.json"
    path.write_text(
        json.dumps(
            UsageLedger(
                billing_period="2025-03",
                accumulated_bytes=40_000_000_000,
                checkpoint_bytes=100,
                last_counter_bytes=100,
                last_update_hour="2025-03-31T23",
            ).to_dict()
        ),
        encoding="utf-8",
    )
    ledger = ResourceUsageLedger(path, FakeByteCounter(5000), clock=_Clock(_local(2025, 4, 1, 0, 10)))

    sample = ledger.sample()

    assert sample.billing_period == "2025-04"
    assert sample.accumulated_bytes == 0
    assert sample.billable_bytes == 0
    assert sample.checkpoint_bytes == 5000


def test_existing_ledger_is_resumed(tmp_path: Path) -> None:
    path = tmp_path / "ledger.json"
    counter = FakeByteCounter(1000)
    clock = _Clock(_local(2025, 3, 15, 10))
    ResourceUsageLedger(path, counter, clock=clock).sample()

    counter.value = 1600
    clock.now = _local(2025, 3, 15, 12)
    sample = ResourceUsageLedger(path, counter, clock=clock).sample()

    assert sample.accumulated_bytes == 1600


def test_corrupt_ledger_is_reinitialized(tmp_path: Path) -> None:
    path = tmp_path / "ledger.json"
    path.write_text("{not json", encoding="utf-8")
    ledger = ResourceUsageLedger(path, FakeByteCounter(7000), clock=_Clock(_local(2025, 3, 15, 10)))

    sample = ledger.sample()

    assert sample.accumulated_bytes == 7000
    assert json.loads(path.read_text(encoding="utf-8"))["billing_period"] == "2025-03"


def test_ledger_missing_fields_is_reinitialized(tmp_path: Path) -> None:
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps({"accumulated_bytes": 12}), encoding="utf-8")
    ledger = ResourceUsageLedger(path, FakeByteCounter(10), clock=_Clock(_local(2025, 3, 15, 10)))

    assert ledger.sample().accumulated_bytes == 10
