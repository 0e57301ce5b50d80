"""
Media index document: one entry per physical media file.

``size`` and ``modifiedAt`` fingerprint the file for change detection;
``probeFailedAt`` records the last failed probe so retries honour a cooldown.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..infra.exceptions import CorruptedStateError

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".mov", ".avi", ".m4v", ".webm")


class MediaIndexItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    rel_path: str
    title: str = ""
    duration_seconds: int = 0
    size: int | None = None
    modified_at: str | None = None
    probe_failed_at: str | None = None
    date_added: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    format: str = "unknown"
    supported: bool = False

    @property
    def has_duration(self) -> bool:
        return self.duration_seconds > 0


class MediaIndex(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    generated_at: str = Field(default_factory=lambda: utc_now_iso())
    items: list[MediaIndexItem] = Field(default_factory=list)

    def by_path(self) -> dict[str, MediaIndexItem]:
        return {item.rel_path: item for item in self.items}

    def durations(self) -> dict[str, int]:
        """relPath -> duration for every item with a positive duration."""
        return {item.rel_path: item.duration_seconds for item in self.items if item.has_duration}

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_media_index(data: Any) -> MediaIndex:
    if not isinstance(data, dict):
        raise CorruptedStateError("Media index must be a JSON object")
    try:
        return MediaIndex.model_validate(data)
    except ValidationError as e:
        raise CorruptedStateError(f"Malformed media index: {e}") from e


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def is_media_file(name: str) -> bool:
    return PurePosixPath(name).suffix.lower() in MEDIA_EXTENSIONS


def format_from_path(rel_path: str) -> str:
    ext = PurePosixPath(rel_path).suffix.lower().lstrip(".")
    return ext or "unknown"


def is_probably_browser_supported(
    rel_path: str,
    video_codec: str | None = None,
) -> bool:
    """
    Guess whether a browser can play the file natively.

    The probed video codec wins; without one, filename hints (x265, h264, ...)
    are used. HEVC is treated as unsupported everywhere.
    """
    ext = PurePosixPath(rel_path).suffix.lower()
    filename = rel_path.lower()
    codec = (video_codec or "").lower()

    name_hevc = any(tag in filename for tag in ("x265", "hevc", "h265", "h.265"))
    name_h264 = any(tag in filename for tag in ("x264", "h264", "h.264", "avc"))

    video_is_hevc = any(tag in codec for tag in ("hevc", "h265", "h.265"))
    video_is_avc = "h264" in codec or "avc" in codec
    video_is_vpx = "vp8" in codec or "vp9" in codec

    hevc_likely = video_is_hevc or (not codec and name_hevc)
    avc_likely = video_is_avc or (not codec and name_h264)

    if ext in (".mp4", ".m4v", ".mov", ".webm"):
        if video_is_avc or video_is_vpx:
            return True
        return not hevc_likely
    if ext == ".mkv":
        # Most MKVs without hints are H.264 and play in Chrome/Firefox
        return not hevc_likely
    if ext == ".avi":
        # Legacy XviD/DivX payloads; only H.264 inside AVI plays
        return avc_likely
    return False
