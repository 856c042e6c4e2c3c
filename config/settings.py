"""Typed supervisor settings derived from the loaded configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

from core.errors import ConfigurationError


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name) if isinstance(config, Mapping) else None
    return value if isinstance(value, Mapping) else {}


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off", ""}


def _flag(value: Any, default: bool) -> bool:
    """Read a YAML boolean, accepting quoted words like ``"false"``."""

    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _rules(value: Any) -> tuple[tuple[str, ...], ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(tuple(str(part) for part in rule) for rule in value if isinstance(rule, (list, tuple)))


@dataclass(frozen=True)
class UsageThresholds:
    """Monthly usage thresholds in units of ``unit_bytes``."""

    warn: float = 30.0
    throttle: float = 32.0
    limit: float = 35.0


@dataclass(frozen=True)
class VpnSettings:
    """VPN client collaborator settings."""

    cli: str = "tailscale"
    socket: str = "/var/run/tailscale/tailscaled.sock"
    daemon: str = "tailscaled"
    state_dir: Path = Path("/var/lib/tailscale")
    state_glob: str = "tailscaled.state*"
    auth_key: str | None = None
    advertise_exit_node: bool = True
    accept_routes: bool = True
    accept_dns: bool = False
    netfilter_mode: str = "on"
    command_timeout_s: float = 30.0


@dataclass(frozen=True)
class LivenessSettings:
    """Probe targets and timing."""

    tick_interval_s: float = 30.0
    probe_timeout_s: float = 5.0
    evaluation_deadline_s: float = 20.0
    dns_target: str = "google.com"
    coordination_host: str = "login.tailscale.com"
    coordination_port: int = 443
    egress_url: str = "http://www.google.com"


@dataclass(frozen=True)
class EscalationPolicy:
    """Thresholds and delays for the escalation state machine."""

    failure_threshold: int = 3
    tier_delay_s: float = 10.0
    max_tier_delay_s: float = 120.0
    backoff_factor: float = 2.0
    watchdog_after_s: float = 300.0
    cycle_cooldown_s: float = 60.0
    max_cycle_cooldown_s: float = 1800.0
    soft_restart_pause_s: float = 5.0
    hard_restart_settle_s: float = 10.0
    full_reset_settle_s: float = 15.0


@dataclass(frozen=True)
class UsageSettings:
    """Bandwidth accounting and shaping settings."""

    tick_interval_s: float = 60.0
    unit_bytes: int = 1024**3
    thresholds: UsageThresholds = field(default_factory=UsageThresholds)
    warning_rate_kbit: int = 512
    throttled_rate_kbit: int = 128
    interface: str = "eth0"
    sysfs_net_dir: Path = Path("/sys/class/net")


@dataclass(frozen=True)
class PacketFilterSettings:
    """Packet filter repair settings."""

    command: str = "iptables"
    command_timeout_s: float = 10.0
    baseline_rules: tuple[tuple[str, ...], ...] = ()
    problem_rules: tuple[tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class SupervisorSettings:
    """Complete, validated supervisor configuration."""

    vpn: VpnSettings = field(default_factory=VpnSettings)
    liveness: LivenessSettings = field(default_factory=LivenessSettings)
    escalation: EscalationPolicy = field(default_factory=EscalationPolicy)
    usage: UsageSettings = field(default_factory=UsageSettings)
    packet_filter: PacketFilterSettings = field(default_factory=PacketFilterSettings)
    supervisor_command: str = "supervisorctl"
    supervisor_timeout_s: float = 30.0
    dns_repair_command: tuple[str, ...] = ()
    history_size: int = 20
    block_line_limit: int = 20

    @property
    def failure_threshold(self) -> int:
        return self.escalation.failure_threshold

    @property
    def tick_interval_s(self) -> float:
        return self.liveness.tick_interval_s

    @property
    def tier_delay_s(self) -> float:
        return self.escalation.tier_delay_s

    @property
    def usage_thresholds(self) -> UsageThresholds:
        return self.usage.thresholds

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        environ: Mapping[str, str] | None = None,
    ) -> "SupervisorSettings":
        """Build settings from a config mapping and validate them.

        Values of the wrong type are reported as ConfigurationError.
        """

        try:
            settings = cls._parse(config, os.environ if environ is None else environ)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid configuration value: {exc}") from exc
        settings.validate()
        return settings

    @classmethod
    def _parse(cls, config: Mapping[str, Any], environ: Mapping[str, str]) -> "SupervisorSettings":
        vpn_cfg = _section(config, "vpn")
        auth_key = vpn_cfg.get("auth_key")
        if not auth_key:
            env_name = str(vpn_cfg.get("auth_key_env", "TAILSCALE_AUTHKEY"))
            auth_key = environ.get(env_name) or None
        vpn = VpnSettings(
            cli=str(vpn_cfg.get("cli", "tailscale")),
            socket=str(vpn_cfg.get("socket", VpnSettings.socket)),
            daemon=str(vpn_cfg.get("daemon", "tailscaled")),
            state_dir=Path(str(vpn_cfg.get("state_dir", "/var/lib/tailscale"))).expanduser(),
            state_glob=str(vpn_cfg.get("state_glob", "tailscaled.state*")),
            auth_key=str(auth_key) if auth_key else None,
            advertise_exit_node=_flag(vpn_cfg.get("advertise_exit_node"), True),
            accept_routes=_flag(vpn_cfg.get("accept_routes"), True),
            accept_dns=_flag(vpn_cfg.get("accept_dns"), False),
            netfilter_mode=str(vpn_cfg.get("netfilter_mode", "on")),
            command_timeout_s=float(vpn_cfg.get("command_timeout_s", 30.0)),
        )

        liveness_cfg = _section(config, "liveness")
        liveness = LivenessSettings(
            tick_interval_s=float(liveness_cfg.get("tick_interval_s", 30.0)),
            probe_timeout_s=float(liveness_cfg.get("probe_timeout_s", 5.0)),
            evaluation_deadline_s=float(liveness_cfg.get("evaluation_deadline_s", 20.0)),
            dns_target=str(liveness_cfg.get("dns_target", "google.com")),
            coordination_host=str(liveness_cfg.get("coordination_host", "login.tailscale.com")),
            coordination_port=int(liveness_cfg.get("coordination_port", 443)),
            egress_url=str(liveness_cfg.get("egress_url", "http://www.google.com")),
        )

        escalation_cfg = _section(config, "escalation")
        defaults = EscalationPolicy()
        escalation = EscalationPolicy(
            **{
                name: type(getattr(defaults, name))(escalation_cfg.get(name, getattr(defaults, name)))
                for name in defaults.__dataclass_fields__
            }
        )

        usage_cfg = _section(config, "usage")
        thresholds_cfg = _section(usage_cfg, "thresholds")
        usage = UsageSettings(
            tick_interval_s=float(usage_cfg.get("tick_interval_s", 60.0)),
            unit_bytes=int(usage_cfg.get("unit_bytes", 1024**3)),
            thresholds=UsageThresholds(
                warn=float(thresholds_cfg.get("warn", 30.0)),
                throttle=float(thresholds_cfg.get("throttle", 32.0)),
                limit=float(thresholds_cfg.get("limit", 35.0)),
            ),
            warning_rate_kbit=int(usage_cfg.get("warning_rate_kbit", 512)),
            throttled_rate_kbit=int(usage_cfg.get("throttled_rate_kbit", 128)),
            interface=str(usage_cfg.get("interface", "eth0")),
            sysfs_net_dir=Path(str(usage_cfg.get("sysfs_net_dir", "/sys/class/net"))),
        )

        filter_cfg = _section(config, "packet_filter")
        packet_filter = PacketFilterSettings(
            command=str(filter_cfg.get("command", "iptables")),
            command_timeout_s=float(filter_cfg.get("command_timeout_s", 10.0)),
            baseline_rules=_rules(filter_cfg.get("baseline_rules")),
            problem_rules=_rules(filter_cfg.get("problem_rules")),
        )

        supervisor_cfg = _section(config, "process_supervisor")
        dns_cfg = _section(config, "dns")
        repair_command = dns_cfg.get("repair_command")
        if isinstance(repair_command, str):
            repair_command = repair_command.split()
        diagnostics_cfg = _section(config, "diagnostics")

        return cls(
            vpn=vpn,
            liveness=liveness,
            escalation=escalation,
            usage=usage,
            packet_filter=packet_filter,
            supervisor_command=str(supervisor_cfg.get("command", "supervisorctl")),
            supervisor_timeout_s=float(supervisor_cfg.get("command_timeout_s", 30.0)),
            dns_repair_command=tuple(str(part) for part in (repair_command or ())),
            history_size=int(diagnostics_cfg.get("history_size", 20)),
            block_line_limit=int(diagnostics_cfg.get("block_line_limit", 20)),
        )

    def validate(self) -> None:
        """Raise ConfigurationError for values the loops cannot run with."""

        if self.escalation.failure_threshold < 1:
            raise ConfigurationError("escalation.failure_threshold must be at least 1")
        if self.liveness.tick_interval_s <= 0 or self.usage.tick_interval_s <= 0:
            raise ConfigurationError("tick intervals must be positive")
        if self.liveness.evaluation_deadline_s >= self.liveness.tick_interval_s:
            raise ConfigurationError(
                "liveness.evaluation_deadline_s must be shorter than liveness.tick_interval_s"
            )
        if self.escalation.backoff_factor < 1.0:
            raise ConfigurationError("escalation.backoff_factor must be >= 1.0")
        thresholds = self.usage.thresholds
        if not 0 < thresholds.warn < thresholds.throttle < thresholds.limit:
            raise ConfigurationError(
                "usage thresholds must satisfy 0 < warn < throttle < limit "
                f"(got {thresholds.warn}/{thresholds.throttle}/{thresholds.limit})"
            )
        if self.usage.unit_bytes <= 0:
            raise ConfigurationError("usage.unit_bytes must be positive")

    def require_credentials(self) -> None:
        """Raise ConfigurationError when the VPN auth key is missing."""

        if not self.vpn.auth_key:
            raise ConfigurationError(
                "VPN auth key is required (set vpn.auth_key or the vpn.auth_key_env variable)"
            )
