"""
Connection dispatcher: owns the listening socket and pairs every accepted
client with a fresh connection to the target port.

Each pairing is handed to its own thread running a Relay, so the accept loop
never waits on a client.
"""

import logging
import socket
import threading
from typing import Optional, Tuple

from .config import BounceConfig
from .errors import DispatchError, StartupError, TargetUnavailableError
from .relay import Relay, RelayedConnection

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 1.0


class PortBouncer:
    """
    Accepts TCP connections on one port and relays them to a local target port.

    Attributes:
        config (BounceConfig): Ports, hosts and relay tuning
        server_socket (socket): The listening socket, None until bind()
        client_threads (list): Relay threads that may still be running
        running (bool): True while the accept loop is serving and no stop was requested
    """

    def __init__(self, config: BounceConfig):
        self.config = config
        self.server_socket = None
        self.client_threads = []
        self._serving = False
        self._stopping = threading.Event()
        self._active = set()
        self._lock = threading.Lock()

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """The (host, port) actually bound, or None before bind()."""
        if self.server_socket is None:
            return None
        host, port = self.server_socket.getsockname()[:2]
        return host, port

    @property
    def running(self) -> bool:
        return self._serving and not self._stopping.is_set()

    @property
    def active_connections(self) -> int:
        with self._lock:
            return len(self._active)

    def bind(self) -> Tuple[str, int]:
        """
        Create, bind and listen on the server socket.

        Returns:
            tuple: The bound (host, port)

        Raises:
            StartupError: If the socket cannot be allocated, bound or listened on
        """
        host, port = self.config.listen_host, self.config.listen_port
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise StartupError(f"socket allocation error: {e}") from e

        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(self.config.backlog)
            sock.settimeout(ACCEPT_POLL_INTERVAL)
        except OSError as e:
            sock.close()
            raise StartupError(f"bind error on {host}:{port}: {e}") from e

        self.server_socket = sock
        bound_host, bound_port = self.address
        logger.info(
            f"Listening on {bound_host}:{bound_port}, "
            f"forwarding to {self.config.target_host}:{self.config.target_port}"
        )
        return bound_host, bound_port

    def start(self):
        """Bind if needed and serve until stop() is called or accept fails."""
        if self._stopping.is_set():
            return
        if self.server_socket is None:
            self.bind()
        self.serve_forever()

    def serve_forever(self):
        """
        Accept clients until stopped.

        Returns at once if stop() was already called.

        Raises:
            StartupError: If called before bind()
            DispatchError: If accept() fails while the server is running
        """
        if self._stopping.is_set():
            self.cleanup()
            return

        server_socket = self.server_socket
        if server_socket is None:
            if self._stopping.is_set():
                return
            raise StartupError("serve_forever() called before bind()")

        self._serving = True
        try:
            while not self._stopping.is_set():
                try:
                    client_socket, client_addr = server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._stopping.is_set():
                        break
                    raise DispatchError(f"socket accept error: {e}") from e

                self._dispatch(client_socket, client_addr)
        finally:
            self._serving = False
            self.cleanup()

    def _dispatch(self, client_socket: socket.socket, client_addr):
        logger.info(f"Accepted connection from {client_addr[0]}:{client_addr[1]}")

        thread = threading.Thread(
            target=self.handle_client,
            args=(client_socket, client_addr),
            name=f"relay-{client_addr[0]}:{client_addr[1]}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError as e:
            client_socket.close()
            raise DispatchError(f"cannot start relay thread: {e}") from e

        self.client_threads.append(thread)
        self.client_threads = [t for t in self.client_threads if t.is_alive()]

    def connect_target(self) -> socket.socket:
        """
        Open a new connection to the target, resolving its host each time.

        Raises:
            TargetUnavailableError: If the connection cannot be established
        """
        host, port = self.config.target_host, self.config.target_port
        try:
            return socket.create_connection((host, port))
        except OSError as e:
            raise TargetUnavailableError(host, port, e) from e

    def handle_client(self, client_socket: socket.socket, client_addr) -> Optional[RelayedConnection]:
        """
        Pair one accepted client with the target and relay until either side ends.

        Runs in the client's own thread. Nothing raised here reaches the accept loop.

        Returns:
            RelayedConnection: The finished connection, or None if the target was unreachable
        """
        try:
            target_socket = self.connect_target()
        except TargetUnavailableError as e:
            if e.refused:
                logger.warning(
                    f"Got connection from {client_addr[0]}:{client_addr[1]} "
                    f"but nothing listening on other end ({e})"
                )
            else:
                logger.warning(f"Dropping {client_addr[0]}:{client_addr[1]}, cannot reach target ({e})")
            client_socket.close()
            return None
        except Exception:
            logger.exception(f"Unexpected error pairing {client_addr[0]}:{client_addr[1]}")
            client_socket.close()
            return None

        connection = RelayedConnection(
            client_socket=client_socket,
            target_socket=target_socket,
            client_addr=client_addr,
        )
        with self._lock:
            self._active.add(connection.connection_id)
        logger.debug(
            f"[{connection.connection_id}] {client_addr[0]}:{client_addr[1]} -> "
            f"{self.config.target_host}:{self.config.target_port}"
        )

        relay = Relay(
            connection,
            buffer_size=self.config.buffer_size,
            idle_timeout=self.config.idle_timeout,
        )
        try:
            relay.run()
        except Exception:
            logger.exception(f"[{connection.connection_id}] relay failed")
        finally:
            connection.close()
            with self._lock:
                self._active.discard(connection.connection_id)
        return connection

    def stop(self):
        """
        Stop accepting. Running relays are left to finish on their own.

        The request sticks: a later serve_forever() returns without serving.
        """
        self._stopping.set()
        if not self._serving:
            self.cleanup()

    def cleanup(self):
        """
        Close the listening socket.
        """
        sock, self.server_socket = self.server_socket, None
        if sock:
            sock.close()
