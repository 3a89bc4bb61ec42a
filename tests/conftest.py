import socket
import threading
import time

import pytest

from portbounce import BounceConfig, PortBouncer

CLIENT_TIMEOUT = 5.0


class EchoServer:
    """Threaded TCP echo service on an ephemeral loopback port."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(16)
        self.sock.settimeout(0.2)
        self.port = self.sock.getsockname()[1]
        self.closed = []
        self.running = True
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self):
        while self.running:
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            done = threading.Event()
            self.closed.append(done)
            threading.Thread(target=self._echo, args=(conn, done), daemon=True).start()

    def _echo(self, conn, done):
        conn.setblocking(True)
        try:
            while True:
                data = conn.recv(4096)
                if not data:
                    break
                conn.sendall(data)
        except OSError:
            pass
        finally:
            conn.close()
            done.set()

    def stop(self):
        self.running = False
        self.thread.join(timeout=2)
        self.sock.close()


def free_port():
    """A loopback port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def wait_for(predicate, timeout=CLIENT_TIMEOUT, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def recv_exactly(sock, size):
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(min(remaining, 65536))
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_until_closed(sock):
    """Read until EOF; a reset counts as closed too."""
    chunks = []
    try:
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
    except ConnectionResetError:
        pass
    return b"".join(chunks)


def connect(port):
    sock = socket.create_connection(("127.0.0.1", port), timeout=CLIENT_TIMEOUT)
    sock.settimeout(CLIENT_TIMEOUT)
    return sock


class RunningBouncer:
    """PortBouncer serving on an ephemeral port in a background thread."""

    def __init__(self, target_port, **overrides):
        settings = dict(
            listen_port=0,
            target_port=target_port,
            listen_host="127.0.0.1",
            target_host="127.0.0.1",
            allow_ephemeral=True,
        )
        settings.update(overrides)
        self.bouncer = PortBouncer(BounceConfig(**settings))
        self.port = self.bouncer.bind()[1]
        self.thread = threading.Thread(target=self.bouncer.serve_forever, daemon=True)
        self.thread.start()

    def stop(self):
        self.bouncer.stop()
        self.thread.join(timeout=3)


@pytest.fixture
def echo_server():
    server = EchoServer()
    yield server
    server.stop()


@pytest.fixture
def start_bouncer():
    started = []

    def _start(target_port, **overrides):
        running = RunningBouncer(target_port, **overrides)
        started.append(running)
        return running

    yield _start
    for running in started:
        running.stop()


@pytest.fixture
def bouncer(echo_server, start_bouncer):
    return start_bouncer(echo_server.port)
