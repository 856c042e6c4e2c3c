"""Command-line entry point for the tunnel supervisor."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import signal
import sys

import yaml

from config import ConfigController
from config.settings import SupervisorSettings
from core.errors import ConfigurationError
from core.logging import (
    enable_file_logging,
    format_context,
    log_error,
    log_info,
    log_warning,
    logger,
    set_level,
    shutdown_file_logging,
)
from diagnostics.models import DiagnosticStatus
from storage.controller import StorageController


COMMANDS = ("check", "remediate", "diagnostics", "preflight", "monitor")


def configure_logging(level_name: str) -> None:
    """Configure application logging."""

    level = logging._nameToLevel.get(str(level_name).upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    set_level(level_name)


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """

    parser = argparse.ArgumentParser(
        description="Supervise a VPN exit node: liveness, remediation and usage caps."
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="monitor",
        choices=COMMANDS,
        help="check: one liveness tick; remediate: walk the remediation ladder now; "
        "diagnostics: capture a snapshot; preflight: report tool availability; "
        "monitor: run until signalled (default).",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding default.yaml and override.yaml.",
    )
    parser.add_argument("--log-level", type=str, default=None, help="Override logging_level.")
    return parser.parse_args(argv)


def run_preflight(base_dir: Path | None = None) -> int:
    """Print the preflight report; exit code 1 when any probe failed."""

    from diagnostics.run import collect_results
    from diagnostics.runner import format_results

    results = collect_results(base_dir=base_dir)
    print(format_results(results))
    return 1 if any(result.status is DiagnosticStatus.FAIL for result in results) else 0


def log_startup_preflight() -> None:
    """Log missing host tools loudly once at startup."""

    from services.diagnostics import probe as host_tools_probe

    result = host_tools_probe()
    if result.status is DiagnosticStatus.FAIL:
        log_error(f"[Preflight] {result.details}")
    elif result.status is DiagnosticStatus.WARN:
        log_warning(f"[Preflight] {result.details}")


def install_signal_handlers(supervisor) -> None:
    def handle(signum, _frame) -> None:
        logger.info("Received %s; finishing in-flight ticks", signal.Signals(signum).name)
        supervisor.request_stop()

    signal.signal(signal.SIGTERM, handle)
    signal.signal(signal.SIGINT, handle)


def main(argv: list[str] | None = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """

    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    if args.command == "preflight":
        base_dir = args.config_dir.parent if args.config_dir is not None else None
        return run_preflight(base_dir)

    try:
        if args.config_dir is not None:
            ConfigController._instance = ConfigController(config_dir=args.config_dir)
        config = ConfigController.get_instance().get_config()
    except (OSError, yaml.YAMLError) as exc:
        log_error(f"Configuration could not be loaded: {exc}")
        return 2

    configure_logging(args.log_level or config.get("logging_level", "INFO"))

    try:
        settings = SupervisorSettings.from_config(config)
        if args.command in ("remediate", "monitor"):
            settings.require_credentials()
    except ConfigurationError as exc:
        log_error(f"Configuration error: {exc}")
        return 2

    storage_controller = StorageController.get_instance()
    if config.get("file_logging_enabled", True) and args.command == "monitor":
        log_file_path = storage_controller.get_log_file_path()
        enable_file_logging(log_file_path, level=logger.getEffectiveLevel())
        logger.info("Writing logs to %s", log_file_path)

    from core.app import build_supervisor

    supervisor = build_supervisor(settings, storage_controller)

    if args.command == "check":
        verdict = supervisor.check_once()
        for signal_result in verdict.signals:
            state = "SKIP" if signal_result.skipped else ("PASS" if signal_result.passed else "FAIL")
            print(f"[{state}] {signal_result.name}: {signal_result.detail}")
        print(verdict.summary())
        return 0 if verdict.passed else 1

    if args.command == "remediate":
        return 0 if supervisor.force_remediation() else 1

    if args.command == "diagnostics":
        snapshot = supervisor.dump_diagnostics()
        print(snapshot.render(), end="")
        return 0

    log_info("Tunnel supervisor starting", style="bold green")
    logger.info(
        "Settings: %s",
        format_context(
            {
                "check_interval_s": settings.tick_interval_s,
                "failure_threshold": settings.failure_threshold,
                "tier_delay_s": settings.tier_delay_s,
                "warn": settings.usage_thresholds.warn,
                "throttle": settings.usage_thresholds.throttle,
                "limit": settings.usage_thresholds.limit,
                "interface": settings.usage.interface,
            }
        ),
    )
    log_startup_preflight()
    install_signal_handlers(supervisor)
    try:
        supervisor.run_forever()
    except KeyboardInterrupt:
        logger.info("Program terminated by user")
        supervisor.stop()
    logger.info("Tunnel supervisor stopped; any active egress cap is left in place")
    shutdown_file_logging()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
