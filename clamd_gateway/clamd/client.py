"""Client for clamd over a TCP socket.

Every call opens its own connection, sends one command, reads the
reply and closes the connection, so a client instance can be shared
freely: it only holds configuration.

"""
import logging
import typing as t

from .protocol import ClamdCommand, \
    ClamdFraming, \
    parse_response, \
    parse_scan_reply, \
    parse_stats, \
    parse_version
from .streaming import ChunkStreamer
from .transport import ClamdConnection
from .types import ClamdCmdResponse, \
    ClamdScanResult, \
    ClamdStats, \
    ClamdVersion

log = logging.getLogger(__name__)


class ClamdTCPSocket():
    """Client for clamd daemon over TCP socket.

    When using this option, clamd should be running with 'TCPSocket <port>'
    configuration option in clamd.conf (see man clamd.conf(5)).
    """
    def __init__(self,
                 host: str = "127.0.0.1",
                 port: int = 3310,
                 timeout: float | None = 300,  # seconds
                 framing: ClamdFraming = ClamdFraming.NEWLINE,
                 chunk_size: int = 4096,
                 buffer_size: int = 4096):
        """Create clamd client instance for TCP socket.

        :param host: TCP host
        :param port: TCP port
        :param timeout: Timeout of the socket, None to block forever
        :param framing: Framing of the commands, INSTREAM is always
            NUL terminated whatever this is
        :param chunk_size: Size of the chunks streamed with INSTREAM
        :param buffer_size: Size of the buffer to read from clamd
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.framing = framing
        self.buffer_size = buffer_size
        self.streamer = ChunkStreamer(chunk_size)

    def __repr__(self):
        return f"ClamdTCPSocket(host={self.host!r}, port={self.port!r})"

    def ping(self) -> bool:
        """Execute clamd PING command.

        Check the server's state.

        :return: True if clamd replied "PONG"
        """
        return self._simple_command(ClamdCommand.ping).message == "PONG"

    def version(self) -> ClamdVersion:
        """Execute clamd VERSION command.

        Print program and database versions.
        """
        command = ClamdCommand.version(self.framing)
        return parse_version(self._execute(command), command.framing)

    def stats(self) -> ClamdStats:
        """Execute clamd STATS command.

        Replies with statistics about the scan queue, contents of scan
        queue, and memory usage.
        """
        return parse_stats(self._execute(ClamdCommand.stats(self.framing)))

    def reload(self) -> str:
        """Execute clamd RELOAD command.

        Reload the virus databases.
        """
        return self._simple_command(ClamdCommand.reload).message

    def shutdown(self) -> str:
        """Execute clamd SHUTDOWN command.

        Perform a clean exit of clamd: every later command fails.
        """
        return self._simple_command(ClamdCommand.shutdown).message

    def scan_path(self,
                  path: str,
                  recursive: bool = False,
                  parallel: bool = False) -> list[ClamdScanResult]:
        """Scan a file or a directory on the clamd host.

        A full path is required, and it must be readable by clamd.

        :param path: Path of the file or directory to scan
        :param recursive: Use CONTSCAN, keep on scanning after a match
        :param parallel: Use MULTISCAN, scan the directory with several
            clamd threads; results come in daemon-defined order
        :return: One result per file reported by clamd, in reply order
        """
        if parallel:
            command = ClamdCommand.multiscan(path, self.framing)
        elif recursive:
            command = ClamdCommand.contscan(path, self.framing)
        else:
            command = ClamdCommand.scan(path, self.framing)
        return parse_scan_reply(self._execute(command), command.framing)

    def multiscan_path(self, path: str) -> list[ClamdScanResult]:
        """Execute clamd MULTISCAN command.
        """
        return self.scan_path(path, parallel=True)

    def scan_stream(self, input_stream: t.IO[bytes]) -> ClamdScanResult:
        """Execute clamd INSTREAM command.

        Scan a stream of data. The stream is sent to clamd in chunks,
        after INSTREAM, on the same socket on which the command was
        sent.  The file pointer is left at the end of the stream.

        :param input_stream: Input stream to analyze
        :return: Result of the scanning; its location is "stream"
        """
        with self._connect() as conn:
            return self.streamer.stream(conn, input_stream)

    def _connect(self) -> ClamdConnection:
        return ClamdConnection.open(self.host,
                                    self.port,
                                    timeout=self.timeout,
                                    buffer_size=self.buffer_size)

    def _execute(self, command: ClamdCommand) -> str:
        """Send one command on a fresh connection and read the whole reply.

        :return: Raw data received (UTF-8)
        """
        full_cmd = command.encode()
        with self._connect() as conn:
            log.debug("Sending command: %s", full_cmd)
            conn.send(full_cmd)
            recd_raw = conn.receive_all().decode(errors="replace")
        log.debug("Raw response: %r", recd_raw)
        return recd_raw

    def _simple_command(self, factory) -> ClamdCmdResponse:
        command = factory(self.framing)
        return parse_response(self._execute(command), command.framing)
