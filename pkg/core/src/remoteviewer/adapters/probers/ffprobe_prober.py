"""
FFprobe prober for remote media URLs.

Runs ffprobe directly against the file's HTTP URL with bounded network
timeouts and reconnect-on-drop, and reads duration and codecs from its JSON
output.
"""

from __future__ import annotations

import json
import logging
import math
import subprocess
from typing import Any

from .base import ProbeResult

logger = logging.getLogger(__name__)


def parse_fps(value: str | None) -> float | None:
    """Parse "24000/1001" or "25" into frames per second."""
    if not value or value == "0/0":
        return None
    parts = value.split("/")
    try:
        if len(parts) == 2:
            num, den = float(parts[0]), float(parts[1])
            if den == 0:
                return None
            return num / den
        return float(value)
    except ValueError:
        return None


def _positive_float(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isfinite(number) and number > 0:
        return number
    return None


def extract_duration_seconds(meta: dict[str, Any]) -> int | None:
    """
    Duration in whole seconds from an ffprobe document.

    Container duration first, then the first stream carrying a duration, then
    frame count over average frame rate.
    """
    if not isinstance(meta, dict):
        return None
    fmt = meta.get("format") or {}
    from_format = _positive_float(fmt.get("duration"))
    if from_format is not None:
        return round(from_format)

    for stream in meta.get("streams") or []:
        from_stream = _positive_float(stream.get("duration"))
        if from_stream is not None:
            return round(from_stream)
        frames = _positive_float(stream.get("nb_frames"))
        fps = parse_fps(stream.get("avg_frame_rate"))
        if frames is not None and fps and fps > 0:
            seconds = frames / fps
            if seconds > 0:
                return round(seconds)
    return None


def extract_codec_names(meta: dict[str, Any]) -> tuple[str | None, str | None]:
    """(video codec, audio codec) of the first video and first audio stream."""
    streams = (meta.get("streams") or []) if isinstance(meta, dict) else []

    def codec_of(kind: str) -> str | None:
        for stream in streams:
            if stream.get("codec_type") == kind:
                name = stream.get("codec_name") or stream.get("codec_tag_string")
                return name if isinstance(name, str) else None
        return None

    return codec_of("video"), codec_of("audio")


class FFprobeProber:
    """
    Prober that runs FFprobe against a network URL.

    ffprobe's own read timeout (``-rw_timeout``) is kept below the subprocess
    timeout so a stalled connection is reported by ffprobe, not killed.
    """

    name = "ffprobe"

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 12.0):
        """
        Initialize the FFprobe prober.

        Args:
            ffprobe_path: Path to the ffprobe executable
            timeout: Timeout in seconds for the whole ffprobe invocation
        """
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def build_command(self, url: str) -> list[str]:
        rw_timeout_us = int(max(self.timeout - 2, 1) * 1_000_000)
        return [
            self.ffprobe_path,
            "-v",
            "error",
            "-rw_timeout",
            str(rw_timeout_us),
            "-reconnect",
            "1",
            "-reconnect_streamed",
            "1",
            "-reconnect_delay_max",
            "5",
            "-probesize",
            "10000000",
            "-analyzeduration",
            "10000000",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            url,
        ]

    def probe(self, url: str) -> ProbeResult:
        try:
            result = subprocess.run(
                self.build_command(url),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError:
            return ProbeResult(
                error="FFprobe executable not found. Install ffprobe and ensure it is on PATH, "
                "or set FFPROBE_PATH."
            )
        except subprocess.TimeoutExpired:
            return ProbeResult(error=f"FFprobe timed out after {self.timeout}s")

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.warning("ffprobe failed for %s: %s", url, stderr)
            return ProbeResult(error=f"FFprobe failed: {stderr or result.returncode}")

        try:
            meta = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            return ProbeResult(error=f"Failed to parse FFprobe output: {e}")

        video_codec, audio_codec = extract_codec_names(meta)
        duration = extract_duration_seconds(meta)
        if duration is None:
            return ProbeResult(
                video_codec=video_codec,
                audio_codec=audio_codec,
                error="No duration found in metadata",
            )
        return ProbeResult(
            duration_seconds=duration,
            video_codec=video_codec,
            audio_codec=audio_codec,
            strategy=self.name,
        )
