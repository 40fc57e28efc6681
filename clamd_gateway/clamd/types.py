"""Types for clamd communication.

"""
import datetime
from dataclasses import dataclass, field
from enum import Enum


class ClamdException(Exception):
    """Raised when error occurred communicating with the clamd daemon.
    """


class ClamdIOError(ClamdException):
    """Raised when sending to or receiving from clamd failed.

    The operation may be retried on a fresh connection.
    """
    retryable = True


class ClamdConnectError(ClamdIOError):
    """Raised when the connection to clamd cannot be established.
    """


class ClamdTimeoutError(ClamdIOError):
    """Raised when a socket operation exceeded the configured deadline.
    """


class ClamdParseError(ClamdException):
    """Raised when a clamd reply does not match any known grammar.

    This is a protocol-compatibility failure, never a scan outcome:
    retrying will not help.
    """
    retryable = False

    def __init__(self, message: str, raw_data: str | None = None):
        super().__init__(message)
        self.raw_data = raw_data


class ClamdCommandError(ClamdException, ValueError):
    """Raised when a command or a connection cannot be built from the
    given arguments.
    """
    retryable = False


class ClamdScanStatus(Enum):
    """Status of clamd scanning.
    """
    OK = "OK"
    FOUND = "FOUND"
    ERROR = "ERROR"


@dataclass
class ClamdCmdResponse():
    """Response of a clamd command.
    """
    raw_data: str
    message: str
    details: list[str]

    def __str__(self):
        return self.raw_data


@dataclass(frozen=True)
class ClamdScanResult():
    """Result of the scan of a single file (or stream).

    Never instantiated directly: a result is always one of
    ClamdScanOk, ClamdScanFound or ClamdScanError, so callers can
    ``match`` on the concrete class.
    """
    location: str | None
    raw_data: str = field(default="", kw_only=True, compare=False)

    status = None

    def __str__(self):
        return self.raw_data


@dataclass(frozen=True)
class ClamdScanOk(ClamdScanResult):
    """No threat found.
    """
    status = ClamdScanStatus.OK


@dataclass(frozen=True)
class ClamdScanFound(ClamdScanResult):
    """A signature matched at ``location``.
    """
    virus: str

    status = ClamdScanStatus.FOUND


@dataclass(frozen=True)
class ClamdScanError(ClamdScanResult):
    """clamd itself failed to scan ``location``.

    The exchange with the daemon succeeded; this is data, not a client
    failure.  ``location`` is None for errors that refer to the whole
    request (e.g. "INSTREAM size limit exceeded").
    """
    err_msg: str

    status = ClamdScanStatus.ERROR


@dataclass
class ClamdVersion():
    """Parsed reply of the VERSION command.
    """
    raw_data: str
    version_tag: str
    # both None when clamd has no signature database loaded
    build_number: int | None = None
    release_date: datetime.datetime | None = None


@dataclass
class ClamdStats():
    """Parsed reply of the STATS command.
    """
    raw_data: str
    pools: int
    state: str
    threads_live: int
    threads_idle: int
    threads_max: int
    threads_idle_timeout_secs: int
    queue: int
    mem_heap: str
    mem_mmap: str
    mem_used: str
    mem_free: str
    mem_releasable: str
    pools_used: str
    pools_total: str
