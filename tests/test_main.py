"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

import main
from config.controller import ConfigController
from storage.controller import StorageController


@pytest.fixture(autouse=True)
def _reset_singletons():
    ConfigController._instance = None
    StorageController._instance = None
    yield
    ConfigController._instance = None
    StorageController._instance = None


def _config_dir(tmp_path: Path, body: str) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "default.yaml").write_text(body, encoding="utf-8")
    return config_dir


def test_monitor_is_the_default_command() -> None:
    assert main.parse_args([]).command == "monitor"
    assert main.parse_args(["check"]).command == "check"


def test_invalid_settings_exit_with_code_2(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, "usage:\n  thresholds:\n    warn: 36\n    throttle: 32\n    limit: 35\n")

    assert main.main(["check", "--config-dir", str(config_dir)]) == 2


def test_wrongly_typed_setting_exits_with_code_2(tmp_path: Path) -> None:
    config_dir = _config_dir(tmp_path, "liveness:\n  tick_interval_s: abc\n")

    assert main.main(["check", "--config-dir", str(config_dir)]) == 2


def test_remediate_requires_auth_key(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv("TAILSCALE_AUTHKEY", raising=False)
    config_dir = _config_dir(tmp_path, "logging_level: WARNING\n")

    assert main.main(["remediate", "--config-dir", str(config_dir)]) == 2


def test_missing_config_exits_with_code_2(tmp_path: Path) -> None:
    assert main.main(["check", "--config-dir", str(tmp_path / "nowhere")]) == 2


def test_preflight_reports_results(tmp_path: Path, monkeypatch, capsys) -> None:
    monkeypatch.setattr("shutil.which", lambda tool: f"/usr/bin/{tool}")
    monkeypatch.setenv("TAILSCALE_AUTHKEY", "tskey-abc")
    config_dir = _config_dir(tmp_path, "{}\n")

    exit_code = main.main(["preflight", "--config-dir", str(config_dir)])

    output = capsys.readouterr().out
    assert exit_code == 0
    assert "Supervisor preflight report" in output
    assert "[PASS] host_tools" in output
    assert "[PASS] storage" in output
