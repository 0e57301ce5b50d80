"""
Schedule document: channels built from 24-hour slots or looping playlists.

The whole schedule lives in one JSON document::

    {"channels": {"<channel-id>": {"type": "24hour", "slots": [...]}, ...}}

Models accept the camelCase keys used on the wire and expose snake_case
attributes. ``validate_*`` functions apply the editor rules and raise
InvalidScheduleError; loading a document always goes through them.
"""

from __future__ import annotations

import math
import re
from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..infra.exceptions import InvalidScheduleError

SECONDS_PER_DAY = 86_400

ScheduleType = Literal["24hour", "looping"]

_TIME_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")
_CHANNEL_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


class _Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Wire form: camelCase keys, unset optionals omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ScheduleSlot(_Document):
    """A fixed daily time-of-day interval mapped to one media file."""

    start: str
    end: str
    file: str
    title: str | None = None


class PlaylistItem(_Document):
    """One entry of a looping playlist."""

    file: str
    title: str | None = None
    duration_seconds: int = 0

    @field_validator("duration_seconds", mode="before")
    @classmethod
    def _round_duration(cls, value: Any) -> Any:
        # Durations arrive as floats from older indexes; the loop math is integral.
        if isinstance(value, bool):
            raise ValueError("durationSeconds must be a number")
        if isinstance(value, float):
            if not math.isfinite(value):
                raise ValueError("durationSeconds must be finite")
            return round(value)
        return value


class ChannelSchedule(_Document):
    """Schedule of a single channel."""

    type: ScheduleType = "24hour"
    slots: list[ScheduleSlot] | None = None
    playlist: list[PlaylistItem] | None = None
    short_name: str | None = None
    active: bool = True
    epoch_offset_hours: float | None = None

    @property
    def is_looping(self) -> bool:
        return self.type == "looping"


class Schedule(_Document):
    """All channels, keyed by normalized channel id."""

    channels: dict[str, ChannelSchedule] = Field(default_factory=dict)
    version: int | None = None

    @classmethod
    def empty(cls) -> Schedule:
        return cls(channels={})


def parse_time_to_seconds(value: str | None) -> int | None:
    """Parse "HH:MM" or "HH:MM:SS" into seconds after midnight; None if malformed."""
    if not value:
        return None
    match = _TIME_PATTERN.match(value.strip())
    if not match:
        return None
    hours = int(match.group(1))
    minutes = int(match.group(2))
    seconds = int(match.group(3)) if match.group(3) else 0
    return hours * 3600 + minutes * 60 + seconds


def slot_duration_seconds(start_seconds: int, end_seconds: int) -> int:
    """Length of a slot; end <= start crosses midnight (23:00 -> 01:00 is two hours)."""
    if end_seconds > start_seconds:
        return end_seconds - start_seconds
    return (SECONDS_PER_DAY - start_seconds) + end_seconds


def normalize_channel_id(channel: str | None) -> str:
    """Replace anything outside [A-Za-z0-9_-] with '-'."""
    if not channel:
        return ""
    base = channel.strip()
    if not base:
        return ""
    return _CHANNEL_ID_UNSAFE.sub("-", base)


def normalize_rel_path(rel: str) -> str:
    """Collapse a media path to a clean relative POSIX path without leading '../'."""
    parts = [p for p in PurePosixPath(rel.replace("\\", "/")).parts if p not in ("", ".", "/")]
    while parts and parts[0] == "..":
        parts.pop(0)
    return "/".join(parts)


def title_from_path(rel_path: str) -> str:
    """Base name without extension."""
    return PurePosixPath(rel_path).stem


def validate_channel_schedule(schedule: ChannelSchedule, channel_id: str | None = None) -> None:
    """Raise InvalidScheduleError if the channel violates the editor rules."""
    prefix = f"Channel {channel_id}: " if channel_id else ""
    if schedule.is_looping:
        _validate_looping(schedule, prefix)
    else:
        _validate_24hour(schedule, prefix)


def _validate_24hour(schedule: ChannelSchedule, prefix: str) -> None:
    if schedule.slots is None:
        raise InvalidScheduleError(f"{prefix}24hour schedule requires slots array")

    previous = -1
    for slot in schedule.slots:
        start_seconds = parse_time_to_seconds(slot.start)
        end_seconds = parse_time_to_seconds(slot.end)
        if start_seconds is None:
            raise InvalidScheduleError(f"{prefix}Invalid start time: {slot.start}")
        if end_seconds is None:
            raise InvalidScheduleError(f"{prefix}Invalid end time: {slot.end}")
        # end < start wraps past midnight; only an empty slot is rejected
        if start_seconds == end_seconds:
            raise InvalidScheduleError(
                f"{prefix}Slot cannot have zero duration ({slot.start} -> {slot.end})"
            )
        if start_seconds <= previous:
            raise InvalidScheduleError(f"{prefix}Start times must be ascending")
        previous = start_seconds
        if not slot.file:
            raise InvalidScheduleError(f"{prefix}Missing file path at {slot.start}")


def _validate_looping(schedule: ChannelSchedule, prefix: str) -> None:
    if schedule.playlist is None:
        raise InvalidScheduleError(f"{prefix}Looping schedule requires playlist array")

    for index, item in enumerate(schedule.playlist, start=1):
        if not item.file:
            raise InvalidScheduleError(f"{prefix}Playlist item {index} is missing file path")
        if item.duration_seconds <= 0:
            raise InvalidScheduleError(
                f'{prefix}Playlist item "{item.file}" has invalid duration (must be positive number)'
            )


def validate_schedule(schedule: Schedule) -> None:
    for channel_id, channel in schedule.channels.items():
        validate_channel_schedule(channel, channel_id)


def parse_channel_schedule(data: Any, channel_id: str | None = None) -> ChannelSchedule:
    """Build and validate a ChannelSchedule from a decoded JSON object."""
    if not isinstance(data, dict):
        raise InvalidScheduleError("Channel schedule must be a JSON object")
    try:
        channel = ChannelSchedule.model_validate(data)
    except ValidationError as e:
        raise InvalidScheduleError(f"Malformed channel schedule: {e}") from e
    validate_channel_schedule(channel, channel_id)
    return channel


def parse_schedule(data: Any, *, strict: bool = True) -> Schedule:
    """
    Build a Schedule from a decoded JSON document.

    With ``strict`` every channel must pass the editor rules. Readers pass
    ``strict=False`` so one broken channel does not take the others off air;
    the resolver still rejects that channel when it is queried.
    """
    if not isinstance(data, dict) or not isinstance(data.get("channels"), dict):
        raise InvalidScheduleError("Schedule requires channels object")
    try:
        schedule = Schedule.model_validate(data)
    except ValidationError as e:
        raise InvalidScheduleError(f"Malformed schedule document: {e}") from e
    if strict:
        validate_schedule(schedule)
    return schedule


def prepare_channel_for_write(
    existing: ChannelSchedule | None, payload: ChannelSchedule
) -> ChannelSchedule:
    """
    Merge an edited channel into its stored entry.

    shortName, active and epochOffsetHours survive from the stored entry unless
    the payload sets them; the member that does not match the type is cleared.
    """
    base = existing or ChannelSchedule()
    update: dict[str, Any] = {"type": payload.type}
    if payload.is_looping:
        update["playlist"] = list(payload.playlist or [])
        update["slots"] = None
    else:
        update["slots"] = list(payload.slots or [])
        update["playlist"] = None
    if payload.short_name is not None:
        update["short_name"] = payload.short_name
    if "active" in payload.model_fields_set:
        update["active"] = payload.active
    if payload.epoch_offset_hours is not None:
        update["epoch_offset_hours"] = payload.epoch_offset_hours
    return base.model_copy(update=update)


def normalize_for_push(document: dict[str, Any]) -> dict[str, Any]:
    """Make every channel's ``active`` flag explicit (missing means true)."""
    channels = document.get("channels") or {}
    normalized = {}
    for channel_id, channel in channels.items():
        entry = dict(channel)
        if entry.get("active") is None:
            entry["active"] = True
        normalized[channel_id] = entry
    return {**document, "channels": normalized}
