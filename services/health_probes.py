"""Health probes for tunnel liveness.

Each probe returns a ``HealthSignal`` and never raises, with one exception:
``CollaboratorUnavailable`` propagates so the evaluator can retire the probe.
"""

from __future__ import annotations

from pathlib import Path
import time

from core.errors import CollaboratorUnavailable
from core.ops_models import HealthSignal
from host.processes import find_processes
from host.reachability import Reachability
from host.vpn import VpnControl


def _signal(name: str, passed: bool, detail: str, *, skipped: bool = False) -> HealthSignal:
    return HealthSignal(
        name=name,
        passed=passed,
        detail=detail,
        observed_at=time.time(),
        skipped=skipped,
    )


def probe_daemon_process(daemon: str, proc_root: Path = Path("/proc")) -> HealthSignal:
    """Probe that the VPN daemon is in the process table."""

    try:
        matches = find_processes(daemon, proc_root)
    except OSError as exc:
        return _signal("daemon_process", False, f"Process table unreadable: {exc}")
    if not matches:
        return _signal("daemon_process", False, f"{daemon} not running")
    pids = ", ".join(str(pid) for pid, _ in matches)
    return _signal("daemon_process", True, f"{daemon} running (pid {pids})")


def probe_control_socket(vpn: VpnControl, timeout_s: float | None = None) -> HealthSignal:
    """Probe that the daemon answers on its control socket and is connected."""

    try:
        status = vpn.status(timeout_s)
    except CollaboratorUnavailable:
        raise
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("control_socket", False, f"Status unavailable: {exc}")

    if not status.authenticated:
        return _signal("control_socket", False, f"Needs login (state={status.backend_state})")
    if not status.running:
        return _signal("control_socket", False, f"Backend not running (state={status.backend_state})")
    return _signal("control_socket", True, "Backend running")


def probe_exit_node(vpn: VpnControl, timeout_s: float | None = None) -> HealthSignal:
    """Probe exit-node functionality."""

    try:
        status = vpn.status(timeout_s)
    except CollaboratorUnavailable:
        raise
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("exit_node", False, f"Status unavailable: {exc}")
    if status.exit_node_active:
        return _signal("exit_node", True, "Exit node active")
    return _signal("exit_node", False, "Exit node not functioning")


def probe_peers(vpn: VpnControl, timeout_s: float | None = None) -> HealthSignal:
    """Probe that at least one tailnet peer is reachable.

    Skipped when the tailnet has no other nodes.
    """

    try:
        status = vpn.status(timeout_s)
    except CollaboratorUnavailable:
        raise
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("peers", False, f"Status unavailable: {exc}")
    if not status.peers:
        return _signal("peers", False, "No peers in tailnet", skipped=True)
    online = [peer.name for peer in status.peers if peer.online]
    if online:
        return _signal("peers", True, f"{len(online)}/{len(status.peers)} peers online")
    return _signal("peers", False, f"0/{len(status.peers)} peers online")


def probe_dns(reachability: Reachability, target: str, timeout_s: float) -> HealthSignal:
    """Probe DNS resolution of a named target."""

    try:
        addresses = reachability.resolve(target, timeout_s)
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("dns", False, f"DNS resolution of {target} failed: {exc}")
    if not addresses:
        return _signal("dns", False, f"DNS resolution of {target} returned no addresses")
    return _signal("dns", True, f"{target} -> {addresses[0]}")


def probe_coordination(
    reachability: Reachability,
    host: str,
    port: int,
    timeout_s: float,
) -> HealthSignal:
    """Probe TCP reachability of the coordination server."""

    try:
        latency_ms = reachability.connect(host, port, timeout_s)
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("coordination", False, f"{host}:{port} unreachable: {exc}")
    return _signal("coordination", True, f"{host}:{port} reachable ({int(latency_ms)} ms)")


def probe_egress(reachability: Reachability, url: str, timeout_s: float) -> HealthSignal:
    """Probe internet egress through the tunnel."""

    try:
        status_code = reachability.fetch(url, timeout_s)
    except Exception as exc:  # noqa: BLE001 - probe should not raise
        return _signal("egress", False, f"Fetch of {url} failed: {exc}")
    if status_code >= 500:
        return _signal("egress", False, f"Fetch of {url} returned HTTP {status_code}")
    return _signal("egress", True, f"Fetch of {url} returned HTTP {status_code}")
