"""Host collaborator interfaces and their command-line backends."""

from host.commands import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
