"""Python bindings for clamd daemon on TCP socket.

For details about commands, see man clamd(8).

Usage:
.. code-block:: python

    clamd = ClamdTCPSocket("127.0.0.1", 3310)
    for result in clamd.scan_path("/my/dir", recursive=True):
        match result:
            case ClamdScanOk():
                pass
            case ClamdScanFound(location, virus):
                print(f"{virus} found in {location}")
            case ClamdScanError(location, err_msg):
                print(f"unable to scan {location}: {err_msg}")

A connection is opened and closed for each command.

NOTE: clamd sessions (IDSESSION/END) are not implemented.

"""

from .types import ClamdScanStatus, \
    ClamdScanResult, \
    ClamdScanOk, \
    ClamdScanFound, \
    ClamdScanError, \
    ClamdCmdResponse, \
    ClamdVersion, \
    ClamdStats, \
    ClamdException, \
    ClamdIOError, \
    ClamdConnectError, \
    ClamdTimeoutError, \
    ClamdParseError, \
    ClamdCommandError  # noqa
from .protocol import ClamdCommand, ClamdFraming  # noqa
from .transport import ClamdConnection  # noqa
from .streaming import ChunkStreamer  # noqa
from .client import ClamdTCPSocket  # noqa
