"""
Now-playing resolver: (channel schedule, instant) -> current item and offset.

Pure functions. No I/O, no caches, no clock reads: identical inputs always
produce identical answers, and every failure is a distinguishable exception.

24-hour channels
    The instant is converted to seconds after local midnight in ``tz``. A slot
    covers ``[start, end)``; when ``end < start`` it crosses midnight and
    covers ``[start, 86400) + [0, end)``. The first covering slot in start
    order plays, with offset ``(t - start) mod 86400``. If the media's known
    duration is shorter than that offset the file has already ended and the
    channel is off air.

Looping channels
    Items play back to back forever. The loop position is
    ``(floor(at_ms / 1000) - epochOffsetHours * 3600) mod total`` and the item
    whose span contains it plays.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any

from ..domain.schedule import (
    SECONDS_PER_DAY,
    ChannelSchedule,
    Schedule,
    normalize_channel_id,
    normalize_rel_path,
    parse_time_to_seconds,
    slot_duration_seconds,
    title_from_path,
)
from ..infra.exceptions import (
    ChannelNotFoundError,
    EmptyLoopError,
    InvalidScheduleError,
    NotScheduledError,
)


@dataclass(frozen=True)
class NowPlaying:
    rel_path: str
    title: str
    duration_seconds: int
    start_offset_seconds: int
    ends_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "relPath": self.rel_path,
            "title": self.title,
            "durationSeconds": self.duration_seconds,
            "startOffsetSeconds": self.start_offset_seconds,
            "endsAt": self.ends_at,
        }


def seconds_of_day(at_ms: int, tz: tzinfo = timezone.utc) -> int:
    local = datetime.fromtimestamp(at_ms / 1000, tz=tz)
    return local.hour * 3600 + local.minute * 60 + local.second


def resolve(
    schedule: ChannelSchedule,
    at_ms: int,
    *,
    durations: Mapping[str, int] | None = None,
    tz: tzinfo = timezone.utc,
) -> NowPlaying:
    """
    Resolve what a channel plays at ``at_ms`` (epoch milliseconds).

    Args:
        schedule: The channel's schedule
        at_ms: Query instant in epoch milliseconds
        durations: Known media durations by relative path (24-hour channels)
        tz: Timezone whose midnight anchors 24-hour slots

    Raises:
        NotScheduledError: 24-hour channel with no slot playing at ``at_ms``
        EmptyLoopError: looping channel without playable duration
        InvalidScheduleError: malformed schedule type or fields
    """
    if schedule.type == "looping":
        return _resolve_looping(schedule, at_ms)
    if schedule.type == "24hour":
        return _resolve_24hour(schedule, at_ms, durations or {}, tz)
    raise InvalidScheduleError(f"Unknown schedule type: {schedule.type!r}")


def resolve_channel(
    schedule: Schedule,
    channel_id: str,
    at_ms: int,
    *,
    durations: Mapping[str, int] | None = None,
    tz: tzinfo = timezone.utc,
) -> NowPlaying:
    """Look up ``channel_id`` (normalized) in the full schedule and resolve it."""
    normalized = normalize_channel_id(channel_id)
    channel = schedule.channels.get(normalized)
    if channel is None:
        raise ChannelNotFoundError(normalized or channel_id)
    return resolve(channel, at_ms, durations=durations, tz=tz)


def _resolve_24hour(
    schedule: ChannelSchedule,
    at_ms: int,
    durations: Mapping[str, int],
    tz: tzinfo,
) -> NowPlaying:
    if schedule.slots is None:
        raise InvalidScheduleError("24hour schedule requires slots array")

    parsed = []
    for slot in schedule.slots:
        start = parse_time_to_seconds(slot.start)
        end = parse_time_to_seconds(slot.end)
        if start is None or end is None:
            raise InvalidScheduleError(f"Invalid slot time: {slot.start} -> {slot.end}")
        if start == end or not slot.file:
            raise InvalidScheduleError(f"Unplayable slot at {slot.start}")
        parsed.append((start, end, slot))
    parsed.sort(key=lambda entry: entry[0])

    t = seconds_of_day(at_ms, tz)
    for start, end, slot in parsed:
        if start < end:
            covered = start <= t < end
        else:
            covered = t >= start or t < end
        if not covered:
            continue

        rel_path = normalize_rel_path(slot.file)
        offset = (t - start) % SECONDS_PER_DAY
        known = durations.get(rel_path, 0)
        if known > 0 and offset >= known:
            raise NotScheduledError(
                f"Slot {slot.start}-{slot.end} media ended {offset - known}s ago"
            )
        duration = known if known > 0 else slot_duration_seconds(start, end)
        return NowPlaying(
            rel_path=rel_path,
            title=slot.title or title_from_path(rel_path),
            duration_seconds=duration,
            start_offset_seconds=offset,
            ends_at=at_ms + (duration - offset) * 1000,
        )

    raise NotScheduledError(f"No slot scheduled at {t // 3600:02d}:{t % 3600 // 60:02d}")


def _resolve_looping(schedule: ChannelSchedule, at_ms: int) -> NowPlaying:
    if schedule.playlist is None:
        raise InvalidScheduleError("Looping schedule requires playlist array")

    items = [item for item in schedule.playlist if item.duration_seconds > 0]
    total = sum(item.duration_seconds for item in items)
    if total <= 0:
        raise EmptyLoopError("Looping playlist has no playable duration")

    offset_hours = schedule.epoch_offset_hours or 0
    if not math.isfinite(offset_hours):
        raise InvalidScheduleError(f"Invalid epochOffsetHours: {offset_hours}")
    epoch_offset_seconds = round(offset_hours * 3600)

    elapsed = at_ms // 1000 - epoch_offset_seconds
    position = ((elapsed % total) + total) % total

    item_start = 0
    for item in items:
        if item_start <= position < item_start + item.duration_seconds:
            rel_path = normalize_rel_path(item.file)
            offset = position - item_start
            return NowPlaying(
                rel_path=rel_path,
                title=item.title or title_from_path(rel_path),
                duration_seconds=item.duration_seconds,
                start_offset_seconds=offset,
                ends_at=at_ms + (item.duration_seconds - offset) * 1000,
            )
        item_start += item.duration_seconds

    # position < total always lands inside an item
    raise EmptyLoopError("Loop position fell outside the playlist")
