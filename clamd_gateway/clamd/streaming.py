"""Chunked payload transfer of the INSTREAM command.

After ``zINSTREAM\\0`` the payload is sent as a sequence of chunks, each
one a 4-byte unsigned big endian length followed by that many bytes,
and a zero length chunk marks the end of the stream.  Read more in
man clamd(8).

"""
import logging
import struct
import typing as t

from .protocol import ClamdCommand, parse_scan_reply
from .transport import ClamdConnection
from .types import ClamdIOError, ClamdParseError, ClamdScanResult

log = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 0xFFFFFFFF
END_OF_STREAM = struct.pack('!L', 0)


class ChunkStreamer():
    """Send a byte stream to clamd with INSTREAM and read the result.
    """
    def __init__(self, chunk_size: int = 4096):
        """
        :param chunk_size: Maximum number of payload bytes per chunk
        """
        if not 0 < chunk_size <= MAX_CHUNK_SIZE:
            raise ValueError(f"Invalid chunk size: {chunk_size}")
        self.chunk_size = chunk_size

    def send_chunks(self,
                    conn: ClamdConnection,
                    input_stream: t.IO[bytes]) -> int:
        """Write ``input_stream`` as chunks, then the end of stream marker.

        Nothing is ever re-sent: any failure aborts the whole transfer.

        :return: Number of payload chunks sent
        :raise ClamdIOError: if reading the source or writing fails
        """
        chunks = 0
        buf = self._read(input_stream)
        while buf:
            buflen = len(buf)
            # pack buf as man clamd(8) says for INSTREAM command
            conn.send(struct.pack('!L', buflen) + buf)
            chunks += 1
            buf = self._read(input_stream)

        # send an empty chunk to signal that we are finished
        conn.send(END_OF_STREAM)
        log.debug("Sent %d chunks to clamd", chunks)
        return chunks

    def stream(self,
               conn: ClamdConnection,
               input_stream: t.IO[bytes]) -> ClamdScanResult:
        """Execute INSTREAM on ``conn`` for the content of ``input_stream``.

        :return: Result of the scanning
        :raise ClamdIOError: on source or socket failures
        :raise ClamdParseError: if the reply cannot be parsed
        """
        command = ClamdCommand.instream()
        conn.send(command.encode())
        self.send_chunks(conn, input_stream)

        recd_raw = conn.receive_until(
            command.framing.terminator).decode(errors="replace")
        log.debug("INSTREAM raw response: %r", recd_raw)
        results = parse_scan_reply(recd_raw, command.framing)
        if len(results) != 1:
            raise ClamdParseError("Expected a single INSTREAM result, got "
                                  f"{len(results)}", raw_data=recd_raw)
        return results[0]

    def _read(self, input_stream: t.IO[bytes]) -> bytes:
        try:
            return input_stream.read(self.chunk_size)
        except OSError as e:
            raise ClamdIOError(f"Unable to read the stream to scan: {e}") \
                from e
