"""Error taxonomy for command execution and native launches."""

from __future__ import annotations


class GatewayError(Exception):
    pass


class CommandBlocked(GatewayError):
    """The command matched the permanent blocklist. Never retryable."""

    def __init__(self, command: str, pattern: str) -> None:
        super().__init__("Command permanently blocked")
        self.command = command
        self.pattern = pattern


class LaunchError(GatewayError):
    """A native launch failed. Reported to the client as ``app:error``."""


class SpawnFailure(LaunchError):
    pass


class ParseFailure(LaunchError):
    pass


class UnknownBackend(LaunchError):
    def __init__(self, backend: str | None) -> None:
        super().__init__(f"Unknown stream type: {backend}")
        self.backend = backend


class DuplicateInstance(LaunchError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance {instance_id} is already running")
        self.instance_id = instance_id
