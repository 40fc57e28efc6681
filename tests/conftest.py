import socket
import struct
import threading
import time
from dataclasses import dataclass, field

import pytest

from clamd_gateway import app


EICAR = br"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"

# reply action: keep the connection open without answering
SILENT = None
# reply action: stop reading after the command, the client writes block
STALLED = object()


@dataclass
class StubSession:
    """What the stub daemon saw on one connection."""
    command: bytes = b""
    chunks: list[bytes] = field(default_factory=list)
    stream_ended: bool = False
    client_closed: bool = False
    done: threading.Event = field(default_factory=threading.Event)


class StubClamd:
    """Minimal clamd speaking the TCP protocol, one connection at a time.

    Each connection consumes the next scripted reply: bytes are sent and
    then the daemon stops writing like clamd does, SILENT never answers
    and STALLED stops reading right after the command.
    The daemon then waits for the client to close its side.
    """

    def __init__(self):
        self.replies = []
        self.sessions = []
        self._server = socket.create_server(("127.0.0.1", 0))
        self._server.settimeout(0.1)
        self.port = self._server.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def reply(self, *replies):
        self.replies.extend(replies)

    def wait_closed(self, index=-1, timeout=5):
        """True once the client closed the connection number ``index``."""
        deadline = time.monotonic() + timeout
        while not self.sessions:
            if time.monotonic() > deadline:
                return False
            time.sleep(0.01)
        session = self.sessions[index]
        session.done.wait(max(deadline - time.monotonic(), 0))
        return session.client_closed

    def stop(self):
        self._stop.set()
        self._thread.join(5)
        self._server.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self._server.accept()
            except TimeoutError:
                continue
            session = StubSession()
            self.sessions.append(session)
            with conn:
                conn.settimeout(5)
                try:
                    self._handle(conn, session)
                except TimeoutError:
                    # client kept the connection open
                    pass
                except OSError:
                    # client went away abruptly
                    session.client_closed = True
                finally:
                    session.done.set()

    def _handle(self, conn, session):
        reply = self.replies.pop(0) if self.replies else b""
        reader = _Reader(conn)
        session.command = reader.read_command()
        if reply is STALLED:
            self._stop.wait(5)
            return
        if session.command == b"zINSTREAM\x00":
            while True:
                header = reader.read_exact(4)
                if len(header) < 4:
                    break
                (length,) = struct.unpack("!L", header)
                if length == 0:
                    session.stream_ended = True
                    break
                session.chunks.append(reader.read_exact(length))

        if reply is not SILENT:
            conn.sendall(reply)
            conn.shutdown(socket.SHUT_WR)
        # wait for the client to close the connection
        while conn.recv(4096):
            pass
        session.client_closed = True


class _Reader:

    def __init__(self, conn):
        self.conn = conn
        self.buf = b""

    def _fill(self):
        data = self.conn.recv(4096)
        self.buf += data
        return bool(data)

    def read_command(self):
        while b"\n" not in self.buf and b"\x00" not in self.buf:
            if not self._fill():
                return self.buf
        ends = [i for i in (self.buf.find(b"\n"), self.buf.find(b"\x00"))
                if i >= 0]
        end = min(ends) + 1
        command, self.buf = self.buf[:end], self.buf[end:]
        return command

    def read_exact(self, size):
        while len(self.buf) < size:
            if not self._fill():
                break
        data, self.buf = self.buf[:size], self.buf[size:]
        return data


@pytest.fixture()
def clamd_stub():
    stub = StubClamd()
    yield stub
    stub.stop()


@pytest.fixture()
def test_app(clamd_stub):
    app.config.update({
        "TESTING": True,
        "CLAMD_HOST": "127.0.0.1",
        "CLAMD_PORT": clamd_stub.port,
        "CLAMD_TIMEOUT": 5,
        "INCLUDE_RAW_DATA": False,
    })

    yield app


@pytest.fixture()
def client(test_app):
    return test_app.test_client()
