"""
Tests for the movie-atom prober using synthetic MP4 files served from memory.
"""

import struct

import pytest
from fakes import BytesFetcher, atom, mvhd_v0, mvhd_v1

from remoteviewer.adapters.probers.moov_prober import (
    HttpRangeFetcher,
    MoovAtomProber,
    find_child,
    parse_mvhd,
    read_atom_header,
    scan_for_moov,
)
from remoteviewer.infra.exceptions import RemoteViewerError, TransientNetworkError

FTYP = atom(b"ftyp", b"isom\x00\x00\x02\x00isomiso2avc1mp41")


def test_fast_start_file():
    data = FTYP + atom(b"moov", mvhd_v0(600, 18000)) + atom(b"mdat", b"\x00" * 1000)
    fetcher = BytesFetcher(data)

    result = MoovAtomProber(fetcher, fetch_bytes=4096).probe("http://media/a.mp4")

    assert result.success
    assert result.duration_seconds == 30
    assert result.strategy == "moov"
    assert fetcher.length_requests == 0


def test_version_1_movie_header():
    data = FTYP + atom(b"moov", mvhd_v1(1000, 5_400_000))
    result = MoovAtomProber(BytesFetcher(data)).probe("http://media/long.mp4")
    assert result.duration_seconds == 5400


def test_mvhd_nested_after_other_children():
    moov = atom(b"moov", atom(b"udta", atom(b"meta", b"\x00" * 20)) + mvhd_v0(90000, 90000 * 42))
    data = FTYP + moov
    assert MoovAtomProber(BytesFetcher(data)).probe("u").duration_seconds == 42


def test_moov_after_mdat_reads_tail():
    data = FTYP + atom(b"mdat", b"\x00" * 8192) + atom(b"moov", mvhd_v0(600, 18000))
    fetcher = BytesFetcher(data)

    result = MoovAtomProber(fetcher, fetch_bytes=1024).probe("http://media/a.mp4")

    assert result.duration_seconds == 30
    assert fetcher.length_requests == 1
    assert fetcher.ranges[0] == (0, 1024)
    assert fetcher.ranges[1] == (len(data) - 1024, 1024)


def test_extended_size_mdat_before_moov():
    payload = b"\x00" * 4000
    mdat = struct.pack(">I4sQ", 1, b"mdat", 16 + len(payload)) + payload
    data = FTYP + mdat + atom(b"moov", mvhd_v0(1000, 61_000))

    result = MoovAtomProber(BytesFetcher(data), fetch_bytes=512).probe("u")

    assert result.duration_seconds == 61


def test_truncated_moov_is_fetched_exactly():
    moov = atom(b"moov", atom(b"udta", b"\x00" * 2000) + mvhd_v0(600, 18000))
    data = FTYP + moov
    fetcher = BytesFetcher(data)

    result = MoovAtomProber(fetcher, fetch_bytes=512).probe("u")

    assert result.duration_seconds == 30
    assert fetcher.ranges[-1] == (len(FTYP), len(moov))


def test_header_beyond_first_window_is_fetched():
    free = atom(b"free", b"\x00" * 700)
    data = FTYP + free + atom(b"moov", mvhd_v0(600, 6000))
    fetcher = BytesFetcher(data)

    result = MoovAtomProber(fetcher, fetch_bytes=256).probe("u")

    assert result.duration_seconds == 10
    assert fetcher.ranges[1][0] == len(FTYP) + len(free)


def test_file_without_movie_header_fails():
    result = MoovAtomProber(BytesFetcher(b"not an mp4 file at all")).probe("u")
    assert not result.success
    assert result.error == "No movie header found"


def test_fetch_errors_become_probe_failures():
    fetcher = BytesFetcher(b"", error=TransientNetworkError("connection reset"))
    result = MoovAtomProber(fetcher).probe("u")
    assert not result.success
    assert "connection reset" in result.error


def test_unknown_duration_is_rejected():
    data = mvhd_v0(600, 0xFFFFFFFF)
    assert parse_mvhd(data, read_atom_header(data, 0)) is None


def test_zero_size_atom_runs_to_limit():
    data = struct.pack(">I4s", 0, b"mdat") + b"\x00" * 10
    header = read_atom_header(data, 0, len(data))
    assert header.size == len(data)
    assert read_atom_header(data, 0) is None


def test_find_child_and_scan_for_moov():
    moov = atom(b"moov", atom(b"trak", atom(b"tkhd", b"\x00" * 8)) + mvhd_v0(1, 5))
    tail = b"\x00garbage" + moov
    found = scan_for_moov(tail)
    assert found is not None
    assert found.start == 8
    assert find_child(tail, found, b"tkhd") is not None
    assert find_child(tail, found, b"stsd") is None


class FakeResponse:
    def __init__(self, status_code=206, body=b"", headers=None):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}

    def raise_for_status(self):
        pass

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i : i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, get_response=None, head_response=None):
        self.get_response = get_response
        self.head_response = head_response
        self.requests = []

    def get(self, url, headers=None, timeout=None, stream=False):
        self.requests.append(("GET", url, headers))
        return self.get_response

    def head(self, url, timeout=None, allow_redirects=False):
        self.requests.append(("HEAD", url, None))
        return self.head_response


def test_http_fetcher_sends_range_header():
    session = FakeSession(get_response=FakeResponse(206, b"abcdef"))
    fetcher = HttpRangeFetcher(session=session)

    assert fetcher.fetch_range("http://media/a.mp4", 100, 6) == b"abcdef"
    assert session.requests[0][2] == {"Range": "bytes=100-105"}


def test_http_fetcher_truncates_full_response_from_start():
    session = FakeSession(get_response=FakeResponse(200, b"x" * 1000))
    assert HttpRangeFetcher(session=session).fetch_range("u", 0, 10) == b"x" * 10


def test_http_fetcher_rejects_ignored_range_past_start():
    session = FakeSession(get_response=FakeResponse(200, b"x" * 1000))
    with pytest.raises(RemoteViewerError, match="ignored Range"):
        HttpRangeFetcher(session=session).fetch_range("u", 500, 10)


def test_http_content_length_falls_back_to_content_range():
    session = FakeSession(
        head_response=FakeResponse(200, headers={}),
        get_response=FakeResponse(206, b"x", headers={"Content-Range": "bytes 0-0/123456"}),
    )
    assert HttpRangeFetcher(session=session).content_length("u") == 123456


def test_http_content_length_from_head():
    session = FakeSession(head_response=FakeResponse(200, headers={"Content-Length": "2048"}))
    assert HttpRangeFetcher(session=session).content_length("u") == 2048
