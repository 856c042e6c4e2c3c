"""Tests for failure snapshots captured by the diagnostics recorder."""

from __future__ import annotations

from pathlib import Path

from core.ops_models import HealthVerdict
from diagnostics.recorder import (
    BlockSource,
    DiagnosticsRecorder,
    command_block,
    default_block_sources,
    file_block,
    process_block,
)
from host.commands import CommandResult, FakeCommandRunner


def _boom() -> str:
    raise RuntimeError("boom")


def test_block_failures_are_recorded_inline(tmp_path: Path) -> None:
    runner = FakeCommandRunner(missing={"tailscale"})
    recorder = DiagnosticsRecorder(
        [
            BlockSource("healthy", lambda: "all good"),
            BlockSource("broken", _boom),
            command_block("vpn status", runner, ["tailscale", "status"]),
            file_block("dns configuration", tmp_path / "missing-resolv.conf"),
        ],
        tmp_path / "diagnostics.log",
    )

    snapshot = recorder.snapshot("threshold reached", episode=1)

    assert snapshot.block("healthy").text == "all good"
    assert snapshot.block("broken").text == "unavailable: boom"
    assert snapshot.block("vpn status").text == "unavailable: tailscale is not installed"
    assert snapshot.block("dns configuration").text.startswith("unavailable:")
    assert [block.label for block in snapshot.blocks][-1] == "verdict history"


def test_snapshots_are_appended_to_the_log(tmp_path: Path) -> None:
    log_path = tmp_path / "log" / "diagnostics.log"
    recorder = DiagnosticsRecorder([BlockSource("host", lambda: "exit-node-1")], log_path, clock=lambda: 0.0)

    recorder.snapshot("first", episode=1)
    recorder.snapshot("second", episode=2)

    text = log_path.read_text(encoding="utf-8")
    assert text.count("=== Diagnostics snapshot") == 2
    assert "reason: first" in text
    assert "reason: second" in text
    assert recorder.snapshot_count == 2


def test_command_block_keeps_first_lines(tmp_path: Path) -> None:
    routes = "\n".join(f"10.0.{index}.0/24 dev eth0" for index in range(5))
    runner = FakeCommandRunner({("ip", "route"): routes})
    recorder = DiagnosticsRecorder(
        [command_block("routes", runner, ["ip", "route", "show"], limit=2)],
        tmp_path / "diagnostics.log",
    )

    text = recorder.snapshot("limit").block("routes").text

    assert text.splitlines() == ["10.0.0.0/24 dev eth0", "10.0.1.0/24 dev eth0", "... (3 more lines)"]


def test_failed_command_without_output_is_unavailable(tmp_path: Path) -> None:
    runner = FakeCommandRunner({("tailscale", "netcheck"): CommandResult((), 1, "", "")})
    recorder = DiagnosticsRecorder(
        [command_block("netcheck", runner, ["tailscale", "netcheck"])],
        tmp_path / "diagnostics.log",
    )

    text = recorder.snapshot("netcheck").block("netcheck").text

    assert text.startswith("unavailable: tailscale netcheck exited 1")


def test_verdict_history_is_bounded(tmp_path: Path) -> None:
    recorder = DiagnosticsRecorder([], tmp_path / "diagnostics.log", history_size=2)
    for index in range(3):
        recorder.record_verdict(
            HealthVerdict(passed=False, failing_signals=(f"probe{index}",), observed_at=float(index))
        )

    history = recorder.snapshot("history").block("verdict history").text

    assert "probe0" not in history
    assert "probe1" in history
    assert "probe2" in history


def test_process_block_lists_daemon(tmp_path: Path) -> None:
    proc = tmp_path / "proc"
    (proc / "812").mkdir(parents=True)
    (proc / "812" / "cmdline").write_bytes(b"/usr/sbin/tailscaled\x00--state=/var/lib/tailscale/tailscaled.state\x00")

    assert process_block("daemon", "tailscaled", proc).collect().startswith("812 /usr/sbin/tailscaled")
    assert process_block("daemon", "missing", proc).collect() == "no missing process found"


def test_default_blocks_cover_the_report(tmp_path: Path) -> None:
    (tmp_path / "proc").mkdir()
    sources = default_block_sources(
        FakeCommandRunner(),
        resolv_conf=tmp_path / "resolv.conf",
        proc_root=tmp_path / "proc",
    )

    assert [source.label for source in sources] == [
        "vpn version",
        "host identity",
        "daemon processes",
        "interfaces",
        "vpn status",
        "netcheck",
        "dns configuration",
        "routes",
        "filter rules",
    ]
