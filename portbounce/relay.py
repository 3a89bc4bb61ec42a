"""
Relay engine: shuttles bytes between two connected sockets.

A Relay owns both sockets of one RelayedConnection. It waits for either side
to become readable, reads one chunk and writes it to the other side. If the
other side cannot take the whole chunk at once, the remainder is held and
reading in that direction pauses until the chunk has been delivered in full.
The first end-of-stream, I/O error or idle timeout tears the pair down.
"""

import logging
import selectors
import socket
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .config import DEFAULT_BUFFER_SIZE

logger = logging.getLogger(__name__)


class RelayState(Enum):
    CONNECTING = "connecting"
    RELAYING = "relaying"
    CLOSED = "closed"


def new_connection_id() -> str:
    return uuid.uuid4().hex[:8]


@dataclass
class RelayedConnection:
    """
    One client session being forwarded to the target.

    Attributes:
        client_socket (socket): Socket connected to the originating peer
        target_socket (socket): Socket connected to the local target service
        client_addr (tuple): Peer address of the client, if known
        connection_id (str): Short id used in log lines
        state (RelayState): Where the connection is in its lifecycle
        bytes_up (int): Bytes delivered client -> target
        bytes_down (int): Bytes delivered target -> client
        started (datetime): When the pairing was created, for display
        started_at (float): time.monotonic() reading at creation, for durations
    """
    client_socket: socket.socket
    target_socket: socket.socket
    client_addr: Optional[Tuple[str, int]] = None
    connection_id: str = field(default_factory=new_connection_id)
    state: RelayState = RelayState.CONNECTING
    bytes_up: int = 0
    bytes_down: int = 0
    started: datetime = field(default_factory=datetime.now)
    started_at: float = field(default_factory=time.monotonic, repr=False)

    @property
    def elapsed(self) -> float:
        """Seconds since the pairing was created, immune to wall-clock changes."""
        return time.monotonic() - self.started_at

    @property
    def closed(self) -> bool:
        return self.state is RelayState.CLOSED

    def peer_of(self, sock: socket.socket) -> socket.socket:
        return self.target_socket if sock is self.client_socket else self.client_socket

    def side_of(self, sock: socket.socket) -> str:
        return "client" if sock is self.client_socket else "target"

    def close(self):
        """Close both sockets. Safe to call more than once."""
        if self.state is RelayState.CLOSED:
            return
        self.state = RelayState.CLOSED
        for sock in (self.client_socket, self.target_socket):
            try:
                sock.close()
            except OSError as e:
                logger.debug(f"[{self.connection_id}] error closing {self.side_of(sock)} socket: {e}")


class Relay:
    """
    Bidirectional byte pump over a RelayedConnection.

    Attributes:
        connection (RelayedConnection): The socket pair this relay owns
        buffer_size (int): Largest chunk read in one go
        idle_timeout (float): Seconds without traffic before closing, None to wait forever
        close_reason (str): Why the relay stopped, set once run() returns
    """

    def __init__(self, connection: RelayedConnection, buffer_size: int = DEFAULT_BUFFER_SIZE,
                 idle_timeout: Optional[float] = None):
        self.connection = connection
        self.buffer_size = buffer_size
        self.idle_timeout = idle_timeout
        self.close_reason = None
        # Undelivered tail of the last chunk, keyed by the socket it is bound for
        self._pending = {}
        self._events = {}

    def run(self) -> RelayedConnection:
        """
        Pump data in both directions until either side ends, then close both.

        Returns:
            RelayedConnection: The connection, now in the CLOSED state
        """
        conn = self.connection
        if conn.closed:
            raise ValueError(f"connection {conn.connection_id} is already closed")

        conn.state = RelayState.RELAYING
        logger.debug(f"[{conn.connection_id}] relaying")
        try:
            with selectors.DefaultSelector() as selector:
                for sock in (conn.client_socket, conn.target_socket):
                    sock.setblocking(False)
                    self._pending[sock] = None
                    self._events[sock] = selectors.EVENT_READ
                    selector.register(sock, selectors.EVENT_READ)
                self.close_reason = self._pump(selector)
        except OSError as e:
            self.close_reason = f"selector error: {e}"
        finally:
            conn.close()
            if self.close_reason is None:
                self.close_reason = "aborted"
            self._log_closed()
        return conn

    def _pump(self, selector) -> Optional[str]:
        while True:
            ready = selector.select(self.idle_timeout)
            if not ready:
                return f"idle for {self.idle_timeout:g}s"

            for key, events in ready:
                sock = key.fileobj
                if events & selectors.EVENT_WRITE:
                    reason = self._flush(sock)
                    if reason:
                        return reason
                if events & selectors.EVENT_READ and self._pending[self.connection.peer_of(sock)] is None:
                    reason = self._forward(sock)
                    if reason:
                        return reason

            self._update_interest(selector)

    def _forward(self, src: socket.socket) -> Optional[str]:
        conn = self.connection
        side = conn.side_of(src)
        try:
            data = src.recv(self.buffer_size)
        except BlockingIOError:
            return None
        except OSError as e:
            return f"read error on {side}: {e}"
        if not data:
            return f"{side} closed"

        dst = conn.peer_of(src)
        self._pending[dst] = memoryview(data)
        return self._flush(dst)

    def _flush(self, dst: socket.socket) -> Optional[str]:
        """Write as much of the pending chunk for dst as the socket will take."""
        conn = self.connection
        view = self._pending[dst]
        if view is None:
            return None

        try:
            sent = dst.send(view)
        except BlockingIOError:
            sent = 0
        except OSError as e:
            return f"write error on {conn.side_of(dst)}: {e}"

        if dst is conn.target_socket:
            conn.bytes_up += sent
        else:
            conn.bytes_down += sent

        if sent < len(view):
            logger.debug(
                f"[{conn.connection_id}] partial send to {conn.side_of(dst)}: "
                f"{sent} of {len(view)} bytes, retrying remainder"
            )
            self._pending[dst] = view[sent:]
        else:
            self._pending[dst] = None
        return None

    def _update_interest(self, selector):
        # Read from a socket only when nothing is still owed to its peer;
        # wait for writability only while something is owed to it.
        for sock in (self.connection.client_socket, self.connection.target_socket):
            events = 0
            if self._pending[self.connection.peer_of(sock)] is None:
                events |= selectors.EVENT_READ
            if self._pending[sock] is not None:
                events |= selectors.EVENT_WRITE

            current = self._events[sock]
            if events == current:
                continue
            if not events:
                selector.unregister(sock)
            elif not current:
                selector.register(sock, events)
            else:
                selector.modify(sock, events)
            self._events[sock] = events

    def _log_closed(self):
        conn = self.connection
        logger.info(
            f"[{conn.connection_id}] closed after {conn.elapsed:.1f}s ({self.close_reason}): "
            f"↑{conn.bytes_up} ↓{conn.bytes_down} bytes"
        )


def bounce(stream_a: socket.socket, stream_b: socket.socket, buffer_size: int = DEFAULT_BUFFER_SIZE,
           idle_timeout: Optional[float] = None) -> RelayedConnection:
    """
    Relay between two already-connected sockets until one of them ends.

    stream_a is treated as the client side for the byte counters.
    Both sockets are closed on return.
    """
    connection = RelayedConnection(client_socket=stream_a, target_socket=stream_b)
    return Relay(connection, buffer_size=buffer_size, idle_timeout=idle_timeout).run()
