"""
Exception types raised by portbounce.

Fatal errors derive from StartupError and end the process with status 1.
Everything else is scoped to a single relayed connection.
"""


class BounceError(Exception):
    """Base class for all portbounce errors."""


class ConfigError(BounceError, ValueError):
    """A port, timeout or buffer setting is out of range."""


class StartupError(BounceError):
    """The listening socket could not be allocated, bound or put in listen mode."""


class DispatchError(StartupError):
    """The accept loop failed after the server was up."""


class TargetUnavailableError(BounceError):
    """Nothing accepted the outbound connection to the target port."""

    def __init__(self, host, port, reason=None):
        self.host = host
        self.port = port
        self.reason = reason
        message = f"cannot reach target {host}:{port}"
        if reason is not None:
            message += f": {reason}"
        super().__init__(message)

    @property
    def refused(self):
        """True when the target host answered but no one is listening on the port."""
        return isinstance(self.reason, ConnectionRefusedError)
