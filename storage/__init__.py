"""Storage package utilities."""

__all__ = ["StatusBoard", "StorageController", "probe"]


def __getattr__(name: str):
    if name == "StorageController":
        from storage.controller import StorageController

        return StorageController
    if name == "StatusBoard":
        from storage.status import StatusBoard

        return StatusBoard
    if name == "probe":
        from storage.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
