"""Exceptions raised by the CCM bridge."""


class BridgeError(Exception):
    pass


class CapacityExhaustedError(BridgeError):
    """All node slots of the cluster are in use."""


class SessionError(BridgeError):
    """The remote session failed (connection lost, protocol error, ...)."""


class ConnectFailedError(SessionError):
    pass


class HandshakeFailedError(SessionError):
    pass


class InvalidCredentialsError(SessionError):
    """Neither or both of password and key pair credentials were supplied."""


class AuthFailedError(SessionError):
    pass


class CommandTimeoutError(SessionError):
    pass


class ExecutionFailedError(BridgeError):
    """Command ran but exited with non-zero exit code."""

    def __init__(self, msg: str, *, exit_code: int, output: str) -> None:
        super().__init__(msg)
        self.exit_code = exit_code
        self.output = output

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} (exit code {self.exit_code}): {self.output.strip()}"


class ClusterNotFoundError(BridgeError):
    pass


class NodeNotFoundError(BridgeError):
    pass


class StatusParseError(BridgeError):
    """Status output didn't contain any recognizable node line."""
