"""Supervisor services: liveness, escalation, remediation and usage control."""

__all__ = ["NetworkSupervisor"]


def __getattr__(name: str):
    if name == "NetworkSupervisor":
        from services.supervisor import NetworkSupervisor

        return NetworkSupervisor
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
