"""VPN client control interface and the Tailscale CLI backend."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, Protocol

from core.errors import CollaboratorUnavailable, ProbeFailure, RemediationFailure
from core.logging import logger as LOGGER
from host.commands import CommandRunner


@dataclass(frozen=True)
class PeerStatus:
    """One tailnet peer as reported by the VPN client."""

    name: str
    address: str
    online: bool


@dataclass(frozen=True)
class VpnStatus:
    """Snapshot of the VPN client's state."""

    running: bool
    authenticated: bool
    exit_node_active: bool
    backend_state: str = "Unknown"
    peers: tuple[PeerStatus, ...] = ()


@dataclass(frozen=True)
class UpFlags:
    """Flags for bringing the tunnel up."""

    auth_key: str | None = None
    hostname: str | None = None
    advertise_exit_node: bool = True
    accept_routes: bool = True
    accept_dns: bool = False
    netfilter_mode: str = "on"
    force_reauth: bool = False
    reset: bool = False


class VpnControl(Protocol):
    """Narrow control surface of the VPN client."""

    def status(self, timeout_s: float | None = None) -> VpnStatus:
        """Return the client status; raise if the control socket does not answer."""

    def up(self, flags: UpFlags) -> None:
        """Bring the tunnel up; raise RemediationFailure when it fails."""

    def down(self) -> None:
        """Bring the tunnel down."""

    def reset(self) -> None:
        """Delete persisted session state."""


def parse_status(payload: dict[str, Any]) -> VpnStatus:
    """Translate ``tailscale status --json`` output into a VpnStatus."""

    backend_state = str(payload.get("BackendState") or "Unknown")
    self_info = payload.get("Self") or {}
    exit_status = payload.get("ExitNodeStatus")
    if isinstance(exit_status, dict):
        exit_node_active = bool(exit_status.get("Online"))
    else:
        exit_node_active = bool(self_info.get("ExitNodeOption")) and backend_state == "Running"

    peers: list[PeerStatus] = []
    for key, peer in (payload.get("Peer") or {}).items():
        if not isinstance(peer, dict):
            continue
        addresses = peer.get("TailscaleIPs") or []
        peers.append(
            PeerStatus(
                name=str(peer.get("HostName") or key),
                address=str(addresses[0]) if addresses else "",
                online=bool(peer.get("Online")),
            )
        )

    return VpnStatus(
        running=backend_state == "Running",
        authenticated=backend_state not in {"NeedsLogin", "NeedsMachineAuth", "NoState"},
        exit_node_active=exit_node_active,
        backend_state=backend_state,
        peers=tuple(peers),
    )


class TailscaleCli:
    """VpnControl backed by the ``tailscale`` command-line client."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        cli: str = "tailscale",
        socket: str | None = None,
        state_dir: Path = Path("/var/lib/tailscale"),
        state_glob: str = "tailscaled.state*",
        timeout_s: float = 30.0,
    ) -> None:
        self._runner = runner
        self._cli = cli
        self._socket = socket
        self._state_dir = state_dir
        self._state_glob = state_glob
        self._timeout_s = timeout_s

    def _base(self) -> list[str]:
        cmd = [self._cli]
        if self._socket:
            cmd.append(f"--socket={self._socket}")
        return cmd

    def status(self, timeout_s: float | None = None) -> VpnStatus:
        result = self._runner.run(
            self._base() + ["status", "--json"],
            timeout_s=self._timeout_s if timeout_s is None else timeout_s,
        )
        if not result.ok:
            raise ProbeFailure(result.describe())
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ProbeFailure(f"Unparseable status output: {exc}") from exc
        return parse_status(payload)

    def up(self, flags: UpFlags) -> None:
        cmd = self._base() + ["up"]
        if flags.auth_key:
            cmd.append(f"--authkey={flags.auth_key}")
        if flags.hostname:
            cmd.append(f"--hostname={flags.hostname}")
        if flags.advertise_exit_node:
            cmd.append("--advertise-exit-node")
        if flags.accept_routes:
            cmd.append("--accept-routes")
        cmd.append(f"--accept-dns={'true' if flags.accept_dns else 'false'}")
        cmd.append(f"--netfilter-mode={flags.netfilter_mode}")
        if flags.force_reauth:
            cmd.append("--force-reauth")
        if flags.reset:
            cmd.append("--reset")
        result = self._runner.run(cmd, timeout_s=self._timeout_s)
        if not result.ok:
            raise RemediationFailure(_redact(result.describe(), flags.auth_key))

    def down(self) -> None:
        result = self._runner.run(self._base() + ["down"], timeout_s=self._timeout_s)
        if not result.ok:
            raise RemediationFailure(result.describe())

    def reset(self) -> None:
        removed = 0
        for path in sorted(self._state_dir.glob(self._state_glob)):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise RemediationFailure(f"Failed to remove {path}: {exc}") from exc
        LOGGER.warning("[VPN] Removed %s persisted session state file(s) from %s", removed, self._state_dir)

    def version(self) -> str:
        try:
            result = self._runner.run([self._cli, "version"], timeout_s=self._timeout_s)
        except CollaboratorUnavailable:
            return "unknown"
        return result.stdout.strip().splitlines()[0] if result.ok and result.stdout.strip() else "unknown"


def _redact(message: str, secret: str | None) -> str:
    if secret:
        return message.replace(secret, "<redacted>")
    return message


@dataclass
class FakeVpn:
    """In-memory VpnControl for tests and offline runs."""

    status_value: VpnStatus = field(
        default_factory=lambda: VpnStatus(
            running=True,
            authenticated=True,
            exit_node_active=True,
            backend_state="Running",
        )
    )
    status_error: Exception | None = None
    fail_up: bool = False
    fail_down: bool = False
    calls: list[str] = field(default_factory=list)
    up_flags: list[UpFlags] = field(default_factory=list)
    status_timeouts: list[float | None] = field(default_factory=list)

    def status(self, timeout_s: float | None = None) -> VpnStatus:
        self.calls.append("status")
        self.status_timeouts.append(timeout_s)
        if self.status_error is not None:
            raise self.status_error
        return self.status_value

    def up(self, flags: UpFlags) -> None:
        self.calls.append("up")
        self.up_flags.append(flags)
        if self.fail_up:
            raise RemediationFailure("fake up failed")

    def down(self) -> None:
        self.calls.append("down")
        if self.fail_down:
            raise RemediationFailure("fake down failed")

    def reset(self) -> None:
        self.calls.append("reset")
