"""Encoding of clamd commands and parsing of clamd replies.

clamd accepts two framings, read more in man clamd(8):

 - newline: ``COMMAND args\\n``, the daemon answers with newline
   terminated lines
 - NUL: ``zCOMMAND args\\0``, the daemon answers with NUL terminated
   lines

The framing is a property of each command, so the encoder and the
parser always agree on the terminator in use.

"""
import datetime
import os
import re
from dataclasses import dataclass
from enum import Enum

from .types import ClamdCommandError, \
    ClamdCmdResponse, \
    ClamdParseError, \
    ClamdScanError, \
    ClamdScanFound, \
    ClamdScanOk, \
    ClamdScanResult, \
    ClamdStats, \
    ClamdVersion


class ClamdFraming(Enum):
    """Terminator convention of a command and of its reply.
    """
    NEWLINE = b'\n'
    NUL = b'\x00'

    @property
    def terminator(self) -> bytes:
        return self.value

    @property
    def prefix(self) -> bytes:
        # NUL terminated commands must be announced with 'z'
        return b'z' if self is ClamdFraming.NUL else b''


# commands taking a path argument
PATH_COMMANDS = frozenset(["SCAN", "CONTSCAN", "MULTISCAN"])
SIMPLE_COMMANDS = frozenset(["PING", "VERSION", "STATS", "RELOAD", "SHUTDOWN"])
# commands followed by a binary payload, they only work NUL terminated
STREAM_COMMANDS = frozenset(["INSTREAM"])


@dataclass(frozen=True)
class ClamdCommand():
    """A command for clamd, with its argument and framing.

    Paths are validated here: once built, a command always encodes.
    """
    keyword: str
    path: str | None = None
    framing: ClamdFraming | None = None

    def __post_init__(self):
        keyword = self.keyword.upper()
        object.__setattr__(self, "keyword", keyword)

        if keyword in PATH_COMMANDS:
            if not self.path:
                raise ClamdCommandError(f"{keyword} requires a non-empty path")
            if "\x00" in self.path:
                raise ClamdCommandError("Path must not contain NUL bytes")
            if "\n" in self.path:
                raise ClamdCommandError("Path must not contain newlines")
            try:
                os.fsencode(self.path)
            except UnicodeEncodeError as e:
                raise ClamdCommandError(
                    f"Path cannot be encoded for clamd: {self.path!r}") from e
        elif keyword in SIMPLE_COMMANDS or keyword in STREAM_COMMANDS:
            if self.path is not None:
                raise ClamdCommandError(f"{keyword} takes no argument")
        else:
            raise ClamdCommandError(f"Unknown clamd command: {self.keyword}")

        if keyword in STREAM_COMMANDS:
            if self.framing is ClamdFraming.NEWLINE:
                raise ClamdCommandError(f"{keyword} must be NUL terminated")
            object.__setattr__(self, "framing", ClamdFraming.NUL)
        elif self.framing is None:
            object.__setattr__(self, "framing", ClamdFraming.NEWLINE)

    @classmethod
    def ping(cls, framing=None):
        return cls("PING", framing=framing)

    @classmethod
    def version(cls, framing=None):
        return cls("VERSION", framing=framing)

    @classmethod
    def stats(cls, framing=None):
        return cls("STATS", framing=framing)

    @classmethod
    def reload(cls, framing=None):
        return cls("RELOAD", framing=framing)

    @classmethod
    def shutdown(cls, framing=None):
        return cls("SHUTDOWN", framing=framing)

    @classmethod
    def scan(cls, path, framing=None):
        return cls("SCAN", path, framing=framing)

    @classmethod
    def contscan(cls, path, framing=None):
        return cls("CONTSCAN", path, framing=framing)

    @classmethod
    def multiscan(cls, path, framing=None):
        return cls("MULTISCAN", path, framing=framing)

    @classmethod
    def instream(cls):
        return cls("INSTREAM")

    def encode(self) -> bytes:
        """Serialize the command as clamd expects it on the wire.
        """
        parts = [self.framing.prefix, self.keyword.encode()]
        if self.path is not None:
            parts.append(b' ')
            # the bytes of the path on the filesystem, undecodable names included
            parts.append(os.fsencode(self.path))
        parts.append(self.framing.terminator)
        return b''.join(parts)


def encode(command: ClamdCommand) -> bytes:
    return command.encode()


def split_reply(raw_resp: str, framing: ClamdFraming) -> list[str]:
    """Split a raw reply into lines, dropping empty ones.
    """
    return [line for line in raw_resp.split(framing.terminator.decode())
            if line]


def parse_response(raw_resp: str, framing: ClamdFraming) -> ClamdCmdResponse:
    """Parse a generic clamd response to a command.

    :param raw_resp: Raw clamd response string
    :param framing: Framing of the command that was sent
    :return: Structured response object
    """
    # clamd respects the terminator that we chose
    lines = split_reply(raw_resp, framing)
    return ClamdCmdResponse(
        raw_data=raw_resp,
        message=lines[0] if lines else "",
        details=lines[1:],
    )


def parse_scan_line(line: str) -> ClamdScanResult:
    """Parse one line of a scanning command reply.

    Accepted shapes are ``<path>: OK``, ``<path>: <virus> FOUND`` and
    ``<path>: <message> ERROR``.  Whole-request errors such as
    ``INSTREAM size limit exceeded. ERROR`` have no path.

    :raise ClamdParseError: if the line matches none of them
    """
    line = line.rstrip("\r\n")
    location, sep, rest = line.partition(": ")
    if not sep:
        # no path, only a daemon error may look like this
        if line.endswith(" ERROR"):
            message = line[:-len(" ERROR")].strip()
            if message:
                return ClamdScanError(None, message, raw_data=line)
        raise ClamdParseError(f"Unable to parse clamd reply: {line!r}",
                              raw_data=line)

    if rest == "OK":
        return ClamdScanOk(location, raw_data=line)

    middle, _, keyword = rest.rpartition(" ")
    middle = middle.strip()
    if middle:
        if keyword == "FOUND":
            return ClamdScanFound(location, middle, raw_data=line)
        if keyword == "ERROR":
            return ClamdScanError(location, middle, raw_data=line)

    raise ClamdParseError(f"Unable to parse clamd reply: {line!r}",
                          raw_data=line)


def parse_scan_reply(raw_resp: str,
                     framing: ClamdFraming) -> list[ClamdScanResult]:
    """Parse a scanning command reply, one result per line.

    Order of the lines is preserved.

    :raise ClamdParseError: if the reply is empty or any line is malformed
    """
    lines = split_reply(raw_resp, framing)
    if not lines:
        raise ClamdParseError("Empty reply from clamd", raw_data=raw_resp)
    return [parse_scan_line(line) for line in lines]


VERSION_DATE_FORMAT = "%a %b %d %H:%M:%S %Y"


def parse_version(raw_resp: str, framing: ClamdFraming) -> ClamdVersion:
    """Parse the VERSION reply.

    The reply looks like ``ClamAV 1.4.2/27500/Mon Jan 13 09:35:43 2025``,
    or just ``ClamAV 1.4.2`` when no database is loaded.
    """
    message = parse_response(raw_resp, framing).message.strip()
    parts = message.split("/")
    if not parts[0].startswith("ClamAV ") or len(parts) not in (1, 3):
        raise ClamdParseError(f"Unable to parse clamd version: {message!r}",
                              raw_data=raw_resp)
    if len(parts) == 1:
        return ClamdVersion(raw_data=raw_resp, version_tag=parts[0])

    try:
        build_number = int(parts[1])
        release_date = datetime.datetime.strptime(
            parts[2].strip(), VERSION_DATE_FORMAT
        ).replace(tzinfo=datetime.timezone.utc)
    except ValueError as e:
        raise ClamdParseError(f"Unable to parse clamd version: {e}",
                              raw_data=raw_resp) from e

    return ClamdVersion(
        raw_data=raw_resp,
        version_tag=parts[0],
        build_number=build_number,
        release_date=release_date,
    )


stats_pattern = re.compile(
    r"POOLS:\s+(?P<pools>\d+)\s+"
    r"STATE:\s+(?P<state>[^\n]+?)\s*\n"
    r"THREADS:\s+live\s+(?P<threads_live>\d+)\s+idle\s+(?P<threads_idle>\d+)"
    r"\s+max\s+(?P<threads_max>\d+)"
    r"\s+idle-timeout\s+(?P<threads_idle_timeout_secs>\d+)\s*\n"
    r"QUEUE:\s+(?P<queue>\d+)\s+items"
    r".*?MEMSTATS:\s+heap\s+(?P<mem_heap>\S+)\s+mmap\s+(?P<mem_mmap>\S+)"
    r"\s+used\s+(?P<mem_used>\S+)\s+free\s+(?P<mem_free>\S+)"
    r"\s+releasable\s+(?P<mem_releasable>\S+)\s+pools\s+\d+"
    r"\s+pools_used\s+(?P<pools_used>\S+)"
    r"\s+pools_total\s+(?P<pools_total>\S+)",
    re.DOTALL,
)

STATS_INT_FIELDS = ("pools", "threads_live", "threads_idle", "threads_max",
                    "threads_idle_timeout_secs", "queue")


def parse_stats(raw_resp: str) -> ClamdStats:
    """Parse the STATS reply.

    The STATS reply spans several newline separated lines whatever the
    framing, ending with ``END``.  Its format changes across clamd
    versions; this matches the one of clamd >= 0.100.
    """
    m = stats_pattern.search(raw_resp)
    if not m:
        raise ClamdParseError("Unable to parse clamd stats",
                              raw_data=raw_resp)

    values = m.groupdict()
    for name in STATS_INT_FIELDS:
        values[name] = int(values[name])
    return ClamdStats(raw_data=raw_resp, **values)
