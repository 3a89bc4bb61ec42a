"""
Runtime settings for a port bouncer.

There is no config file; everything arrives from the command line.
"""

from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError

MAX_PORT = 65535
DEFAULT_LISTEN_HOST = "0.0.0.0"
DEFAULT_TARGET_HOST = "localhost"
DEFAULT_BACKLOG = 10
DEFAULT_BUFFER_SIZE = 4096


def parse_port(text: str) -> int:
    """
    Convert command-line text to a TCP port number.

    Args:
        text (str): The raw argument, e.g. "9000"

    Returns:
        int: The port, guaranteed to be in 1..65535

    Raises:
        ConfigError: If the text is not an integer or is out of range
    """
    try:
        port = int(text)
    except (TypeError, ValueError):
        raise ConfigError(f"port numbers look bogus: {text!r}") from None
    if not 0 < port <= MAX_PORT:
        raise ConfigError(f"port numbers look bogus: {text!r}")
    return port


@dataclass
class BounceConfig:
    """
    Settings for one PortBouncer.

    Attributes:
        listen_port (int): Port accepting inbound clients
        target_port (int): Local port every client is forwarded to
        listen_host (str): Address to bind, all interfaces by default
        target_host (str): Host of the target, resolved once per connection
        backlog (int): Pending connection queue length for listen()
        buffer_size (int): Largest chunk read from a socket in one go
        idle_timeout (float): Seconds of silence before a relay is closed, None to wait forever
        allow_ephemeral (bool): Accept listen_port 0 and let the OS pick one
    """
    listen_port: int
    target_port: int
    listen_host: str = DEFAULT_LISTEN_HOST
    target_host: str = DEFAULT_TARGET_HOST
    backlog: int = DEFAULT_BACKLOG
    buffer_size: int = DEFAULT_BUFFER_SIZE
    idle_timeout: Optional[float] = None
    allow_ephemeral: bool = False

    def __post_init__(self):
        self._check_port("listen_port", self.listen_port, self.allow_ephemeral)
        self._check_port("target_port", self.target_port, False)
        if self.backlog < 1:
            raise ConfigError(f"backlog must be positive, got {self.backlog}")
        if self.buffer_size < 1:
            raise ConfigError(f"buffer_size must be positive, got {self.buffer_size}")
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ConfigError(f"idle_timeout must be positive, got {self.idle_timeout}")

    @staticmethod
    def _check_port(name, value, zero_ok):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{name} must be an integer, got {value!r}")
        low = 0 if zero_ok else 1
        if not low <= value <= MAX_PORT:
            raise ConfigError(f"{name} out of range: {value}")
