"""Errors raised while configuring and launching the local node."""

from typing import Optional


class NodeError(Exception):
    """Base class for recognized, user-facing node errors."""


class UnsupportedNetworkError(NodeError):
    """Raised when the node command is run against an explicit non-local network."""

    def __init__(self, network_name: str, local_network_name: str) -> None:
        self.network_name: str = network_name
        super().__init__(
            f"Unsupported network '{network_name}' for the JSON-RPC server. "
            f"Only '{local_network_name}' is supported."
        )


class ConfigurationError(NodeError):
    """Raised when the node or project configuration is invalid."""


class UnknownTaskError(NodeError):
    """Raised when running a phase that has no registered action."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name: str = name
        super().__init__(f"No task registered as '{name}'. Available tasks: {available}")


class ServerLaunchError(NodeError):
    """Wraps any unexpected failure that happens while starting the server."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.original_message: str = message
        self.cause: Optional[BaseException] = cause
        super().__init__(f"Error running JSON-RPC server: {message}")


class AuxiliaryWatchFailure(Exception):
    """Non-fatal failure while watching compiler output."""

    def __init__(self, cause: BaseException) -> None:
        self.cause: BaseException = cause
        super().__init__(f"Compilation output can't be watched: {cause}")
        self.__cause__ = cause
