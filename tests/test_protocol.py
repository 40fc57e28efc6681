import datetime

import pytest

from clamd_gateway.clamd import ClamdCommand, \
    ClamdCommandError, \
    ClamdFraming, \
    ClamdParseError, \
    ClamdScanError, \
    ClamdScanFound, \
    ClamdScanOk, \
    ClamdScanStatus
from clamd_gateway.clamd.protocol import encode, \
    parse_response, \
    parse_scan_line, \
    parse_scan_reply, \
    parse_stats, \
    parse_version


STATS_REPLY = (
    "POOLS: 1\n\nSTATE: VALID PRIMARY\n"
    "THREADS: live 1  idle 0 max 12 idle-timeout 30\n"
    "QUEUE: 0 items\n\tSTATS 0.000394 \n\n"
    "MEMSTATS: heap N/A mmap N/A used N/A free N/A releasable N/A "
    "pools 1 pools_used 1306.837M pools_total 1306.882M\nEND\n"
)


def test_encode_newline_commands():
    assert encode(ClamdCommand.ping()) == b"PING\n"
    assert encode(ClamdCommand.version()) == b"VERSION\n"
    assert encode(ClamdCommand.scan("/tmp/a b.txt")) == b"SCAN /tmp/a b.txt\n"
    assert encode(ClamdCommand.contscan("/srv")) == b"CONTSCAN /srv\n"
    assert encode(ClamdCommand.multiscan("/srv")) == b"MULTISCAN /srv\n"


def test_encode_nul_commands():
    assert encode(ClamdCommand.instream()) == b"zINSTREAM\x00"
    assert encode(ClamdCommand.ping(ClamdFraming.NUL)) == b"zPING\x00"
    assert encode(ClamdCommand.scan("/srv", ClamdFraming.NUL)) \
        == b"zSCAN /srv\x00"


def test_instream_is_always_nul_framed():
    assert ClamdCommand("instream").framing is ClamdFraming.NUL
    with pytest.raises(ClamdCommandError):
        ClamdCommand("INSTREAM", framing=ClamdFraming.NEWLINE)


@pytest.mark.parametrize("path", ["", None, "/tmp/a\x00b", "/tmp/a\nb"])
def test_invalid_paths_are_rejected(path):
    with pytest.raises(ClamdCommandError):
        ClamdCommand.scan(path)


def test_encode_undecodable_path():
    # what os.fsdecode gives for a name that is not valid UTF-8
    command = ClamdCommand.scan("/tmp/\udcff.txt")

    assert command.encode() == b"SCAN /tmp/\xff.txt\n"


def test_unencodable_path_is_rejected():
    with pytest.raises(ClamdCommandError):
        ClamdCommand.scan("/tmp/\ud800.txt")


def test_invalid_commands_are_rejected():
    with pytest.raises(ClamdCommandError):
        ClamdCommand("FILDES")
    with pytest.raises(ClamdCommandError):
        ClamdCommand("PING", "/tmp")
    # also a ValueError for callers not knowing about clamd exceptions
    with pytest.raises(ValueError):
        ClamdCommand("SCAN")


def test_parse_ok():
    result = parse_scan_line("/tmp/clean.txt: OK\n")

    assert result == ClamdScanOk("/tmp/clean.txt")
    assert result.status == ClamdScanStatus.OK


def test_parse_found():
    result = parse_scan_line("/tmp/bad.txt: Eicar-Test-Signature FOUND\n")

    assert result == ClamdScanFound("/tmp/bad.txt", "Eicar-Test-Signature")
    assert result.status == ClamdScanStatus.FOUND
    assert result.raw_data == "/tmp/bad.txt: Eicar-Test-Signature FOUND"


def test_parse_error():
    result = parse_scan_line("/tmp/x.txt: Access denied ERROR\n")

    assert result == ClamdScanError("/tmp/x.txt", "Access denied")
    assert result.status == ClamdScanStatus.ERROR


def test_parse_error_without_path():
    result = parse_scan_line("INSTREAM size limit exceeded. ERROR")

    assert result == ClamdScanError(None, "INSTREAM size limit exceeded.")


def test_parse_path_with_separator():
    result = parse_scan_line("/tmp/odd: name.txt: Win.Test.EICAR_HDB-1 FOUND")

    assert result == ClamdScanFound("/tmp/odd",
                                    "name.txt: Win.Test.EICAR_HDB-1")


@pytest.mark.parametrize("line", [
    "garbage\n",
    "UNKNOWN COMMAND",
    "/tmp/x.txt: FOUND",
    "/tmp/x.txt: ERROR",
    "/tmp/x.txt: fine OK",
    "/tmp/x.txt: something",
    " ERROR",
])
def test_parse_malformed(line):
    with pytest.raises(ClamdParseError) as exc:
        parse_scan_line(line)

    assert exc.value.raw_data == line.rstrip("\n")


def test_parse_scan_reply_keeps_order():
    raw = ("/srv/b.txt: OK\n"
           "/srv/a.txt: Eicar-Test-Signature FOUND\n"
           "/srv/c.txt: Access denied ERROR\n")

    results = parse_scan_reply(raw, ClamdFraming.NEWLINE)

    assert results == [
        ClamdScanOk("/srv/b.txt"),
        ClamdScanFound("/srv/a.txt", "Eicar-Test-Signature"),
        ClamdScanError("/srv/c.txt", "Access denied"),
    ]


def test_parse_scan_reply_nul_framing():
    raw = "/srv/a.txt: OK\x00/srv/b.txt: OK\x00"

    results = parse_scan_reply(raw, ClamdFraming.NUL)

    assert [r.location for r in results] == ["/srv/a.txt", "/srv/b.txt"]


def test_parse_scan_reply_empty():
    with pytest.raises(ClamdParseError):
        parse_scan_reply("", ClamdFraming.NEWLINE)


def test_parse_scan_reply_one_malformed_line():
    with pytest.raises(ClamdParseError):
        parse_scan_reply("/srv/a.txt: OK\ngarbage\n", ClamdFraming.NEWLINE)


def test_parse_response():
    resp = parse_response("PONG\x00", ClamdFraming.NUL)

    assert resp.message == "PONG"
    assert not resp.details
    assert str(resp) == "PONG\x00"


def test_parse_version():
    version = parse_version("ClamAV 1.4.2/27500/Mon Jan 13 09:35:43 2025\n",
                            ClamdFraming.NEWLINE)

    assert version.version_tag == "ClamAV 1.4.2"
    assert version.build_number == 27500
    assert version.release_date == datetime.datetime(
        2025, 1, 13, 9, 35, 43, tzinfo=datetime.timezone.utc)


def test_parse_version_space_padded_day():
    version = parse_version("ClamAV 0.103.8/26800/Tue Feb  7 08:21:03 2023\n",
                            ClamdFraming.NEWLINE)

    assert version.release_date.day == 7


def test_parse_version_without_database():
    version = parse_version("ClamAV 1.4.2\n", ClamdFraming.NEWLINE)

    assert version.version_tag == "ClamAV 1.4.2"
    assert version.build_number is None
    assert version.release_date is None


@pytest.mark.parametrize("raw", [
    "PONG\n",
    "ClamAV 1.4.2/abc/Mon Jan 13 09:35:43 2025\n",
    "ClamAV 1.4.2/27500/yesterday\n",
    "ClamAV 1.4.2/27500\n",
])
def test_parse_version_malformed(raw):
    with pytest.raises(ClamdParseError):
        parse_version(raw, ClamdFraming.NEWLINE)


def test_parse_stats():
    stats = parse_stats(STATS_REPLY)

    assert stats.pools == 1
    assert stats.state == "VALID PRIMARY"
    assert stats.threads_live == 1
    assert stats.threads_idle == 0
    assert stats.threads_max == 12
    assert stats.threads_idle_timeout_secs == 30
    assert stats.queue == 0
    assert stats.mem_heap == "N/A"
    assert stats.pools_used == "1306.837M"
    assert stats.pools_total == "1306.882M"


def test_parse_stats_malformed():
    with pytest.raises(ClamdParseError) as exc:
        parse_stats("POOLS: x\nEND\n")

    assert exc.value.raw_data == "POOLS: x\nEND\n"
