"""
Duration probers for remote media files.

ProberChain runs the strategies in order (ffprobe first, then the
movie-atom parser) and stops at the first usable duration.
"""

from .base import ProbeResult, Prober, ProberChain
from .ffprobe_prober import FFprobeProber
from .moov_prober import HttpRangeFetcher, MoovAtomProber


def default_prober_chain(
    *,
    ffprobe_path: str = "ffprobe",
    probe_timeout: float = 12.0,
    http_timeout: float = 10.0,
    fetch_kib: int = 512,
) -> ProberChain:
    """ffprobe against the URL, then the partial-fetch movie atom parser."""
    return ProberChain(
        [
            FFprobeProber(ffprobe_path=ffprobe_path, timeout=probe_timeout),
            MoovAtomProber(HttpRangeFetcher(timeout=http_timeout), fetch_bytes=fetch_kib * 1024),
        ]
    )


__all__ = [
    "FFprobeProber",
    "HttpRangeFetcher",
    "MoovAtomProber",
    "ProbeResult",
    "Prober",
    "ProberChain",
    "default_prober_chain",
]
