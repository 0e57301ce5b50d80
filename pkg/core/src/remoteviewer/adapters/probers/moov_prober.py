"""
Movie-atom prober: duration from the container header via partial HTTP fetches.

MP4/QuickTime files are a sequence of atoms, each a 4-byte big-endian size
followed by a 4-byte ASCII type. The ``moov`` atom holds an ``mvhd`` (movie
header) child with the timescale and duration. Fast-start files carry
``moov`` near the start; others put it after the media data (``mdat``), in
which case the file size is read with a HEAD request and the tail is fetched
instead. Only a few hundred KiB are transferred either way.
"""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ...infra.exceptions import RemoteViewerError, TransientNetworkError
from .base import ProbeResult

logger = logging.getLogger(__name__)

ATOM_HEADER = 8
MAX_TOP_LEVEL_ATOMS = 64
MAX_MOOV_BYTES = 16 * 1024 * 1024
# Atoms whose payload is a plain list of child atoms
CONTAINER_ATOMS = {b"moov", b"trak", b"mdia", b"minf", b"stbl", b"udta", b"edts"}


@dataclass(frozen=True)
class Atom:
    type: bytes
    start: int
    header_size: int
    size: int

    @property
    def end(self) -> int:
        return self.start + self.size

    @property
    def payload_start(self) -> int:
        return self.start + self.header_size


def read_atom_header(buffer: bytes, offset: int, limit: int | None = None) -> Atom | None:
    """
    Parse the atom header at ``offset``.

    Size 1 means a 64-bit size follows the type; size 0 means the atom runs to
    ``limit`` (end of file or enclosing atom). None if the header is cut off
    or nonsensical.
    """
    if offset < 0 or offset + ATOM_HEADER > len(buffer):
        return None
    size, kind = struct.unpack_from(">I4s", buffer, offset)
    header_size = ATOM_HEADER
    if size == 1:
        if offset + 16 > len(buffer):
            return None
        (size,) = struct.unpack_from(">Q", buffer, offset + 8)
        header_size = 16
    elif size == 0:
        if limit is None:
            return None
        size = limit - offset
    if size < header_size:
        return None
    return Atom(type=kind, start=offset, header_size=header_size, size=size)


def iter_atoms(buffer: bytes, start: int = 0, end: int | None = None) -> Iterator[Atom]:
    """Walk sibling atoms between ``start`` and ``end`` while headers are in the buffer."""
    limit = len(buffer) if end is None else end
    offset = start
    count = 0
    while offset + ATOM_HEADER <= limit and count < MAX_TOP_LEVEL_ATOMS:
        atom = read_atom_header(buffer, offset, limit)
        if atom is None:
            return
        yield atom
        offset = atom.end
        count += 1


def find_child(buffer: bytes, parent: Atom, kind: bytes) -> Atom | None:
    """Depth-first search for ``kind`` below a container atom."""
    end = min(parent.end, len(buffer))
    for child in iter_atoms(buffer, parent.payload_start, end):
        if child.type == kind:
            return child
        if child.type in CONTAINER_ATOMS:
            found = find_child(buffer, child, kind)
            if found is not None:
                return found
    return None


def parse_mvhd(buffer: bytes, atom: Atom) -> tuple[int, int] | None:
    """
    (timescale, duration) from a movie header atom.

    Version 0 stores creation/modification/duration as 32-bit fields,
    version 1 as 64-bit; the timescale is 32-bit in both.
    """
    payload = atom.payload_start
    if payload >= len(buffer):
        return None
    version = buffer[payload]
    try:
        if version == 1:
            _created, _modified, timescale, duration = struct.unpack_from(">QQIQ", buffer, payload + 4)
        elif version == 0:
            _created, _modified, timescale, duration = struct.unpack_from(">IIII", buffer, payload + 4)
            if duration == 0xFFFFFFFF:
                return None
        else:
            return None
    except struct.error:
        return None
    if timescale <= 0 or duration <= 0:
        return None
    return timescale, duration


def moov_duration_seconds(buffer: bytes, moov: Atom) -> int | None:
    mvhd = find_child(buffer, moov, b"mvhd")
    if mvhd is None:
        return None
    parsed = parse_mvhd(buffer, mvhd)
    if parsed is None:
        return None
    timescale, duration = parsed
    return round(duration / timescale)


def scan_for_moov(buffer: bytes) -> Atom | None:
    """Locate a plausible moov header anywhere in a buffer (used on file tails)."""
    for match in re.finditer(b"moov", buffer):
        atom = read_atom_header(buffer, match.start() - 4)
        if atom is not None and atom.type == b"moov" and find_child(buffer, atom, b"mvhd"):
            return atom
    return None


class RangeFetcher(Protocol):
    def fetch_range(self, url: str, start: int, length: int) -> bytes:
        """Bytes ``[start, start + length)`` of the resource (fewer at end of file)."""
        ...

    def content_length(self, url: str) -> int | None:
        """Total size of the resource without downloading it."""
        ...


_CONTENT_RANGE_TOTAL = re.compile(r"/(\d+)\s*$")


class HttpRangeFetcher:
    """Partial-content HTTP client with retry on transient server errors."""

    def __init__(self, timeout: float = 10.0, session: requests.Session | None = None):
        self.timeout = timeout
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry logic."""
        session = requests.Session()
        retry_strategy = Retry(
            total=2,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"User-Agent": "remote-viewer/1.0"})
        return session

    def fetch_range(self, url: str, start: int, length: int) -> bytes:
        headers = {"Range": f"bytes={start}-{start + length - 1}"}
        try:
            with self.session.get(url, headers=headers, timeout=self.timeout, stream=True) as response:
                response.raise_for_status()
                if response.status_code != 206 and start > 0:
                    raise RemoteViewerError(f"Server ignored Range request for {url}")
                # 200 from offset 0: take the prefix and drop the connection
                data = bytearray()
                for chunk in response.iter_content(chunk_size=64 * 1024):
                    data.extend(chunk)
                    if len(data) >= length:
                        break
                return bytes(data[:length])
        except requests.RequestException as e:
            raise TransientNetworkError(f"Range fetch of {url} failed: {e}") from e

    def content_length(self, url: str) -> int | None:
        try:
            response = self.session.head(url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
            length = response.headers.get("Content-Length")
            if length and length.isdigit():
                return int(length)
            # Some servers omit Content-Length on HEAD; a one-byte range reveals the total
            with self.session.get(
                url, headers={"Range": "bytes=0-0"}, timeout=self.timeout, stream=True
            ) as ranged:
                match = _CONTENT_RANGE_TOTAL.search(ranged.headers.get("Content-Range", ""))
                return int(match.group(1)) if match else None
        except requests.RequestException as e:
            raise TransientNetworkError(f"HEAD of {url} failed: {e}") from e


class MoovAtomProber:
    """Fallback prober parsing the movie header from partial fetches."""

    name = "moov"

    def __init__(self, fetcher: RangeFetcher, fetch_bytes: int = 512 * 1024):
        self.fetcher = fetcher
        self.fetch_bytes = fetch_bytes

    def probe(self, url: str) -> ProbeResult:
        try:
            duration = self._probe_duration(url)
        except RemoteViewerError as e:
            return ProbeResult(error=str(e))
        if duration is None or duration <= 0:
            return ProbeResult(error="No movie header found")
        return ProbeResult(duration_seconds=duration, strategy=self.name)

    def _probe_duration(self, url: str) -> int | None:
        window_start = 0
        buffer = self.fetcher.fetch_range(url, 0, self.fetch_bytes)
        offset = 0
        for _ in range(MAX_TOP_LEVEL_ATOMS):
            relative = offset - window_start
            atom = read_atom_header(buffer, relative, len(buffer))
            if atom is None:
                if relative >= len(buffer) - ATOM_HEADER and len(buffer) >= self.fetch_bytes:
                    # Next header lies past the window; fetch a window starting there
                    window_start = offset
                    buffer = self.fetcher.fetch_range(url, offset, self.fetch_bytes)
                    if len(buffer) < ATOM_HEADER:
                        return None
                    continue
                return None
            if atom.type == b"moov":
                duration = moov_duration_seconds(buffer, atom)
                if duration is None and atom.end > len(buffer):
                    # Window cut the movie atom short; fetch exactly its range
                    exact = self.fetcher.fetch_range(
                        url, window_start + atom.start, min(atom.size, MAX_MOOV_BYTES)
                    )
                    moov = read_atom_header(exact, 0)
                    duration = moov_duration_seconds(exact, moov) if moov else None
                return duration
            if atom.type == b"mdat":
                logger.debug("mdat before moov in %s; reading the file tail", url)
                return self._probe_tail(url, mdat_end=window_start + atom.end)
            offset = window_start + atom.end
        return None

    def _probe_tail(self, url: str, mdat_end: int) -> int | None:
        total = self.fetcher.content_length(url)
        if not total:
            return None
        tail_start = max(0, total - self.fetch_bytes)
        tail = self.fetcher.fetch_range(url, tail_start, total - tail_start)

        # The atom right after mdat is usually moov; walk from there first
        relative = mdat_end - tail_start
        if 0 <= relative < len(tail):
            for atom in iter_atoms(tail, relative, len(tail)):
                if atom.type == b"moov":
                    return moov_duration_seconds(tail, atom)

        moov = scan_for_moov(tail)
        if moov is None:
            return None
        return moov_duration_seconds(tail, moov)
