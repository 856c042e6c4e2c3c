"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


# Flat keys understood by the shell monitors this supervisor replaced.
_LEGACY_KEYS: tuple[tuple[str, str, str], ...] = (
    ("check_interval", "liveness", "tick_interval_s"),
    ("failure_threshold", "escalation", "failure_threshold"),
    ("reconnect_delay", "escalation", "tier_delay_s"),
    ("bandwidth_interval", "usage", "tick_interval_s"),
    ("warning_gb", "usage", "warn"),
    ("throttle_gb", "usage", "throttle"),
    ("limit_gb", "usage", "limit"),
)


class ConfigController:
    """Singleton controller for loading layered configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml", config_dir: Path | None = None) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = config_dir if config_dir is not None else Path("config")
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        with self.paths.config_file.open("r", encoding="utf-8") as file:
            config = self._normalize_legacy_config(yaml.safe_load(file) or {})

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = self._normalize_legacy_config(yaml.safe_load(file) or {})
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = config

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_legacy_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Fold flat shell-era keys into their nested sections.

        Each file is normalized before merging, so a legacy key in
        override.yaml beats the nested default. Within one file the nested
        value wins.
        """

        normalized = dict(config)
        for legacy_key, section, key in _LEGACY_KEYS:
            if legacy_key not in normalized:
                continue
            legacy_value = normalized.pop(legacy_key)
            section_cfg = dict(normalized.get(section) or {})
            if section == "usage" and key in {"warn", "throttle", "limit"}:
                thresholds = dict(section_cfg.get("thresholds") or {})
                thresholds.setdefault(key, legacy_value)
                section_cfg["thresholds"] = thresholds
            else:
                section_cfg.setdefault(key, legacy_value)
            normalized[section] = section_cfg
        return normalized
