"""Command-line entry point for running preflight diagnostics."""

from __future__ import annotations

import argparse
from pathlib import Path
import shutil
import tempfile

from config.diagnostics import probe as config_probe
from core.diagnostics import probe as core_probe
from diagnostics.models import DiagnosticResult, DiagnosticStatus
from diagnostics.runner import format_results, run_diagnostics
from services.diagnostics import HostToolsProbeConfig, probe as host_tools_probe
from storage.diagnostics import probe as storage_probe


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""

    parser = argparse.ArgumentParser(description="Run supervisor preflight probes.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Run probes against a temporary offline directory.",
    )
    parser.add_argument(
        "--base-dir",
        type=Path,
        default=None,
        help="Optional base directory for offline diagnostics.",
    )
    return parser.parse_args(argv)


def collect_results(base_dir: Path | None = None, offline: bool = False) -> list[DiagnosticResult]:
    """Run every preflight probe and return the results."""

    if offline and base_dir is None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_base = Path(tmp_dir)
            config_dir = tmp_base / "config"
            config_dir.mkdir(parents=True, exist_ok=True)
            packaged_default = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
            shutil.copyfile(packaged_default, config_dir / "default.yaml")

            def config_probe_offline():
                return config_probe(base_dir=tmp_base)

            def host_tools_probe_offline():
                return host_tools_probe(
                    config=HostToolsProbeConfig(require_all=False),
                    available_tools={"tailscale", "supervisorctl", "tc", "iptables", "ip"},
                )

            def storage_probe_offline():
                return storage_probe(base_dir=tmp_base)

            return run_diagnostics(
                [config_probe_offline, core_probe, host_tools_probe_offline, storage_probe_offline]
            )

    def config_probe_with_base():
        return config_probe(base_dir=base_dir)

    def storage_probe_with_base():
        return storage_probe(base_dir=base_dir)

    return run_diagnostics(
        [config_probe_with_base, core_probe, host_tools_probe, storage_probe_with_base]
    )


def main(argv: list[str] | None = None) -> int:
    """Run diagnostics and return an exit code."""

    args = parse_args(argv)
    results = collect_results(base_dir=args.base_dir, offline=args.offline)
    print(format_results(results))

    has_failures = any(result.status is DiagnosticStatus.FAIL for result in results)
    return 1 if has_failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
