"""Application wiring: build the supervisor and its collaborators from settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from config.settings import SupervisorSettings
from core.logging import logger as LOGGER
from diagnostics.recorder import DiagnosticsRecorder, default_block_sources
from host.commands import CommandRunner
from host.counters import ByteCounter, SysfsByteCounter
from host.dns import CommandDnsRepair, DnsRepair
from host.packet_filter import IptablesCli, PacketFilter
from host.reachability import Reachability, SocketReachability
from host.shaping import TcShaper, TrafficShaper
from host.supervision import ProcessSupervisor, SupervisorctlCli
from host.vpn import TailscaleCli, UpFlags, VpnControl
from services import health_probes
from services.liveness import LivenessEvaluator, ProbeSpec
from services.remediation import RemediationExecutor
from services.supervisor import NetworkSupervisor
from services.throttle import ThrottleController
from services.usage_ledger import ResourceUsageLedger
from storage.controller import StorageController
from storage.status import StatusBoard


@dataclass
class Collaborators:
    """Host-facing collaborators the supervisor acts through."""

    runner: CommandRunner
    vpn: VpnControl
    process_supervisor: ProcessSupervisor
    packet_filter: PacketFilter
    shaper: TrafficShaper
    reachability: Reachability
    counter: ByteCounter
    dns_repair: DnsRepair | None = None


def build_collaborators(settings: SupervisorSettings) -> Collaborators:
    """Construct the CLI-backed collaborators."""

    runner = CommandRunner(default_timeout_s=settings.vpn.command_timeout_s)
    vpn = TailscaleCli(
        runner,
        cli=settings.vpn.cli,
        socket=settings.vpn.socket,
        state_dir=settings.vpn.state_dir,
        state_glob=settings.vpn.state_glob,
        timeout_s=settings.vpn.command_timeout_s,
    )
    dns_repair = None
    if settings.dns_repair_command:
        dns_repair = CommandDnsRepair(runner, settings.dns_repair_command)
    return Collaborators(
        runner=runner,
        vpn=vpn,
        process_supervisor=SupervisorctlCli(
            runner,
            command=settings.supervisor_command,
            timeout_s=settings.supervisor_timeout_s,
        ),
        packet_filter=IptablesCli(
            runner,
            baseline_rules=settings.packet_filter.baseline_rules,
            command=settings.packet_filter.command,
            timeout_s=settings.packet_filter.command_timeout_s,
        ),
        shaper=TcShaper(runner),
        reachability=SocketReachability(),
        counter=SysfsByteCounter(settings.usage.sysfs_net_dir),
        dns_repair=dns_repair,
    )


def build_probes(
    settings: SupervisorSettings,
    collaborators: Collaborators,
    proc_root: Path = Path("/proc"),
) -> list[ProbeSpec]:
    """Critical probes first, then the advisory quorum."""

    liveness = settings.liveness
    vpn = collaborators.vpn
    reach = collaborators.reachability
    timeout = liveness.probe_timeout_s
    return [
        ProbeSpec(
            "daemon_process",
            lambda: health_probes.probe_daemon_process(settings.vpn.daemon, proc_root),
            critical=True,
        ),
        ProbeSpec(
            "control_socket",
            lambda: health_probes.probe_control_socket(vpn, timeout),
            critical=True,
        ),
        ProbeSpec("dns", lambda: health_probes.probe_dns(reach, liveness.dns_target, timeout)),
        ProbeSpec(
            "coordination",
            lambda: health_probes.probe_coordination(
                reach, liveness.coordination_host, liveness.coordination_port, timeout
            ),
        ),
        ProbeSpec("peers", lambda: health_probes.probe_peers(vpn, timeout)),
        ProbeSpec("exit_node", lambda: health_probes.probe_exit_node(vpn, timeout)),
        ProbeSpec("egress", lambda: health_probes.probe_egress(reach, liveness.egress_url, timeout)),
    ]


def standard_up_flags(settings: SupervisorSettings) -> UpFlags:
    vpn = settings.vpn
    return UpFlags(
        auth_key=vpn.auth_key,
        advertise_exit_node=vpn.advertise_exit_node,
        accept_routes=vpn.accept_routes,
        accept_dns=vpn.accept_dns,
        netfilter_mode=vpn.netfilter_mode,
    )


def build_supervisor(
    settings: SupervisorSettings,
    storage: StorageController,
    collaborators: Collaborators | None = None,
    *,
    proc_root: Path = Path("/proc"),
    sleep: Callable[[float], object] | None = None,
) -> NetworkSupervisor:
    """Wire every component of the supervisor."""

    if collaborators is None:
        collaborators = build_collaborators(settings)
    policy = settings.escalation

    evaluator = LivenessEvaluator(
        build_probes(settings, collaborators, proc_root),
        deadline_s=settings.liveness.evaluation_deadline_s,
    )
    executor_kwargs = {}
    if sleep is not None:
        executor_kwargs["sleep"] = sleep
    executor = RemediationExecutor(
        collaborators.vpn,
        collaborators.process_supervisor,
        daemon=settings.vpn.daemon,
        up_flags=standard_up_flags(settings),
        soft_restart_pause_s=policy.soft_restart_pause_s,
        hard_restart_settle_s=policy.hard_restart_settle_s,
        full_reset_settle_s=policy.full_reset_settle_s,
        packet_filter=collaborators.packet_filter,
        problem_rules=settings.packet_filter.problem_rules,
        dns_repair=collaborators.dns_repair,
        **executor_kwargs,
    )
    recorder = DiagnosticsRecorder(
        default_block_sources(
            collaborators.runner,
            vpn_cli=settings.vpn.cli,
            daemon=settings.vpn.daemon,
            filter_command=settings.packet_filter.command,
            line_limit=settings.block_line_limit,
            proc_root=proc_root,
        ),
        storage.get_diagnostics_log_path(),
        history_size=settings.history_size,
    )
    ledger = ResourceUsageLedger(storage.get_ledger_path(), collaborators.counter)
    throttle = ThrottleController(
        collaborators.shaper,
        collaborators.process_supervisor,
        daemon=settings.vpn.daemon,
        settings=settings.usage,
    )
    storage_info = storage.get_storage_info()
    LOGGER.info(
        "Storage ready (run_id=%s, ledger=%s, status=%s)",
        storage_info.run_id,
        storage_info.ledger_file,
        storage_info.status_file,
    )
    return NetworkSupervisor(
        settings,
        evaluator=evaluator,
        executor=executor,
        recorder=recorder,
        ledger=ledger,
        throttle=throttle,
        status=StatusBoard(storage.get_status_path()),
        record_success=storage.record_success,
    )
