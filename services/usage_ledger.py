"""Billing-period egress accounting backed by a small JSON ledger file."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
import threading
import time
from typing import Callable

from core.errors import PersistenceFailure
from core.logging import logger as LOGGER
from core.ops_models import UsageLedger
from host.counters import ByteCounter
from storage.controller import read_json, write_json_atomic


def billing_period(timestamp: float) -> str:
    """Return the ``YYYY-MM`` billing period containing ``timestamp`` (local time)."""

    return time.strftime("%Y-%m", time.localtime(timestamp))


def hour_marker(timestamp: float) -> str:
    return time.strftime("%Y-%m-%dT%H", time.localtime(timestamp))


class ResourceUsageLedger:
    """Track bytes moved through the host during the current billing period.

    The raw interface counters reset on reboot, so the ledger folds the
    delta since its last checkpoint into ``accumulated_bytes`` once per hour.
    Between folds the unfolded delta is still reported through
    ``UsageLedger.billable_bytes``.
    """

    def __init__(
        self,
        path: Path,
        counter: ByteCounter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = path
        self._counter = counter
        self._clock = clock
        self._lock = threading.Lock()
        self._ledger: UsageLedger | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def current(self) -> UsageLedger | None:
        return self._ledger

    def sample(self) -> UsageLedger:
        """Read the counters, fold and persist; returns the updated ledger."""

        with self._lock:
            now = self._clock()
            counter_bytes = int(self._counter.total_bytes())
            period = billing_period(now)
            hour = hour_marker(now)

            ledger = self._ledger if self._ledger is not None else self._load(period)

            if ledger.billing_period != period:
                LOGGER.warning(
                    "[Usage] Billing period rollover %s -> %s (discarding %.2f GiB)",
                    ledger.billing_period,
                    period,
                    ledger.billable_bytes / 1024**3,
                )
                ledger = UsageLedger(
                    billing_period=period,
                    accumulated_bytes=0,
                    last_sample_at=now,
                    checkpoint_bytes=counter_bytes,
                    last_counter_bytes=counter_bytes,
                    last_update_hour=hour,
                )
            else:
                ledger = replace(ledger, last_sample_at=now, last_counter_bytes=counter_bytes)
                if ledger.last_update_hour != hour:
                    if counter_bytes < ledger.checkpoint_bytes:
                        LOGGER.info(
                            "[Usage] Counter went backwards (%s < %s); assuming host reboot",
                            counter_bytes,
                            ledger.checkpoint_bytes,
                        )
                    ledger = replace(
                        ledger,
                        accumulated_bytes=ledger.accumulated_bytes + ledger.pending_bytes,
                        checkpoint_bytes=counter_bytes,
                        last_update_hour=hour,
                    )
                    LOGGER.info(
                        "[Usage] Folded hourly usage: %.3f GiB this period",
                        ledger.accumulated_bytes / 1024**3,
                    )

            self._ledger = ledger
            try:
                write_json_atomic(self._path, ledger.to_dict())
            except PersistenceFailure as exc:
                LOGGER.error("[Usage] Ledger not persisted: %s", exc)
            return ledger

    def _load(self, period: str) -> UsageLedger:
        try:
            payload = read_json(self._path)
            if payload is not None:
                return UsageLedger.from_dict(payload)
        except (PersistenceFailure, KeyError, TypeError, ValueError) as exc:
            failure = exc if isinstance(exc, PersistenceFailure) else PersistenceFailure(
                f"Malformed ledger {self._path}: {exc}"
            )
            LOGGER.error("[Usage] %s; re-initializing ledger", failure)
        else:
            LOGGER.info("[Usage] No ledger at %s; starting a new one", self._path)
        # Checkpoint 0 counts every byte since boot against this period.
        return UsageLedger(billing_period=period)
