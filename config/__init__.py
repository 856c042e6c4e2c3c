"""Configuration package utilities."""

__all__ = ["ConfigController", "SupervisorSettings"]


def __getattr__(name: str):
    if name == "ConfigController":
        from config.controller import ConfigController

        return ConfigController
    if name == "SupervisorSettings":
        from config.settings import SupervisorSettings

        return SupervisorSettings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
