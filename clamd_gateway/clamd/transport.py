"""TCP connection to clamd.

A ClamdConnection carries exactly one command and its reply, then it
is closed.  Use it as a context manager so the socket is released on
every exit path:

.. code-block:: python

    with ClamdConnection.open("127.0.0.1", 3310, timeout=10) as conn:
        conn.send(b"PING\\n")
        reply = conn.receive_until(b"\\n")

"""
import logging
import socket

from .types import ClamdCommandError, \
    ClamdConnectError, \
    ClamdIOError, \
    ClamdTimeoutError

log = logging.getLogger(__name__)


def _io_error(err: OSError, action: str, host: str, port: int) -> ClamdIOError:
    if isinstance(err, TimeoutError):
        return ClamdTimeoutError(f"Timed out {action} clamd at {host}:{port}")
    return ClamdIOError(f"Error {action} clamd at {host}:{port}: {err}")


class ClamdConnection():
    """Blocking TCP connection to clamd.
    """
    def __init__(self,
                 sock: socket.socket,
                 host: str,
                 port: int,
                 buffer_size: int = 4096):
        self._sock = sock
        self.host = host
        self.port = port
        self.buffer_size = buffer_size

    @classmethod
    def open(cls,
             host: str,
             port: int,
             timeout: float | None = None,
             buffer_size: int = 4096) -> "ClamdConnection":
        """Connect to clamd.

        :param host: TCP host, name or address
        :param port: TCP port, in [1, 65535]
        :param timeout: Deadline in seconds of connect, each write and
            each read; None blocks forever
        :param buffer_size: Size of the buffer to read from clamd
        :raise ClamdCommandError: if the port is not a valid TCP port
        :raise ClamdConnectError: if the connection cannot be established
        """
        if isinstance(port, bool) or not isinstance(port, int) \
                or not 1 <= port <= 65535:
            raise ClamdCommandError(f"Invalid clamd port: {port!r}")

        log.debug("Connecting to clamd at %s:%d", host, port)
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise ClamdConnectError(
                f"Unable to connect to clamd at {host}:{port}: {e}. "
                "Is the clamd daemon running?") from e
        # create_connection only applies the timeout to connect when
        # it is given, keep it for every following operation too
        sock.settimeout(timeout)
        return cls(sock, host, port, buffer_size=buffer_size)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def __enter__(self):
        return self

    def __exit__(self, *args, **kwargs):
        self.close()
        return False

    def close(self) -> None:
        """Close connection to clamd daemon.
        """
        if self._sock is not None:
            log.debug("Closing connection to clamd at %s:%d",
                      self.host, self.port)
            self._sock.close()
            self._sock = None

    def _check_open(self):
        if self._sock is None:
            raise ClamdIOError("Connection to clamd is closed")

    def send(self, data: bytes) -> None:
        """Write all of ``data`` to clamd.

        :raise ClamdIOError: on any socket failure, including timeout
        """
        self._check_open()
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise _io_error(e, "writing to", self.host, self.port) from e

    def _recv(self) -> bytes:
        self._check_open()
        try:
            return self._sock.recv(self.buffer_size)
        except OSError as e:
            raise _io_error(e, "reading from", self.host, self.port) from e

    def receive_until(self, terminator: bytes) -> bytes:
        """Read until the received data ends with ``terminator``.

        Reading also stops when clamd closes the connection.

        :return: Raw data received, terminator included
        """
        recd_data = bytearray()
        recd_buf = self._recv()
        while recd_buf:
            recd_data.extend(recd_buf)
            if recd_data.endswith(terminator):
                break
            recd_buf = self._recv()
        return bytes(recd_data)

    def receive_all(self) -> bytes:
        """Read until clamd closes the connection.

        clamd closes the connection after replying to any command sent
        outside of a session, so this collects multi-line replies.
        """
        # block until we receive everything from daemon
        recd_data = bytearray()
        recd_buf = self._recv()
        while recd_buf:
            recd_data.extend(recd_buf)
            recd_buf = self._recv()
        return bytes(recd_data)
