"""
portbounce - redirect traffic between ports.

Accepts TCP connections on one port and relays them, byte for byte, to
another port on the local host.
"""

from .config import BounceConfig, parse_port
from .dispatcher import PortBouncer
from .errors import (
    BounceError,
    ConfigError,
    DispatchError,
    StartupError,
    TargetUnavailableError,
)
from .relay import Relay, RelayedConnection, RelayState, bounce

__version__ = "0.2.0"

__all__ = [
    "BounceConfig",
    "BounceError",
    "ConfigError",
    "DispatchError",
    "PortBouncer",
    "Relay",
    "RelayState",
    "RelayedConnection",
    "StartupError",
    "TargetUnavailableError",
    "bounce",
    "parse_port",
]
