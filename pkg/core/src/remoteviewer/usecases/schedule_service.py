"""
Use-case: channel and schedule operations over one schedule document.

Every mutation is a read-modify-write through AtomicJsonStore in safe mode:
a failed read aborts the edit instead of writing over the stored schedule,
and a corrupted document is repaired (with a backup) before the edit is
applied.
"""

from __future__ import annotations

import logging
from datetime import timezone, tzinfo
from typing import Any

from pydantic import ValidationError

from ..domain.media_index import MediaIndex
from ..domain.schedule import (
    ChannelSchedule,
    Schedule,
    ScheduleType,
    normalize_channel_id,
    normalize_for_push,
    parse_channel_schedule,
    parse_schedule,
    prepare_channel_for_write,
    validate_channel_schedule,
)
from ..infra.atomic_json import AtomicJsonStore
from ..infra.exceptions import (
    ChannelExistsError,
    ChannelNotFoundError,
    CorruptedStateError,
    InvalidScheduleError,
    RemoteViewerError,
    TransientNetworkError,
)
from ..infra.json_repair import RepairReport, StatusReport
from ..runtime.now_playing import NowPlaying, resolve_channel
from .media_scan import MEDIA_INDEX_NAME, load_media_index

logger = logging.getLogger(__name__)

SCHEDULE_NAME = "schedule.json"


def _empty_document() -> dict[str, Any]:
    return {"channels": {}}


def _channels_of(document: Any) -> dict[str, Any]:
    if not isinstance(document, dict):
        raise InvalidScheduleError("Schedule document must be a JSON object")
    channels = document.get("channels")
    if channels is None:
        channels = {}
        document["channels"] = channels
    if not isinstance(channels, dict):
        raise InvalidScheduleError("Schedule requires channels object")
    return channels


def _stored_channel(data: dict[str, Any], channel_id: str) -> ChannelSchedule:
    try:
        return ChannelSchedule.model_validate(data)
    except ValidationError as e:
        raise InvalidScheduleError(f"Stored channel {channel_id} is malformed: {e}") from e


def _require_channel_id(channel_id: str) -> str:
    normalized = normalize_channel_id(channel_id)
    if not normalized:
        raise InvalidScheduleError("Channel id must not be empty")
    return normalized


def default_channel_id(schedule: Schedule) -> str:
    """First active channel, numeric ids in numeric order first."""
    ordered = sorted(
        schedule.channels,
        key=lambda cid: (0, int(cid), "") if cid.isdigit() else (1, 0, cid),
    )
    for channel_id in ordered:
        if schedule.channels[channel_id].active:
            return channel_id
    raise ChannelNotFoundError("(default)")


class ScheduleService:
    """Channel CRUD, reset, repair and now-playing for one source."""

    def __init__(
        self,
        atomic: AtomicJsonStore,
        *,
        schedule_name: str = SCHEDULE_NAME,
        media_index_name: str = MEDIA_INDEX_NAME,
        tz: tzinfo = timezone.utc,
    ):
        self.atomic = atomic
        self.schedule_name = schedule_name
        self.media_index_name = media_index_name
        self.tz = tz

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_schedule(self) -> Schedule:
        """Current schedule; an absent document is an empty schedule."""
        data = self.atomic.read(self.schedule_name, _empty_document())
        return parse_schedule(data, strict=False)

    def get_channel(self, channel_id: str) -> ChannelSchedule:
        normalized = normalize_channel_id(channel_id)
        channel = self.load_schedule().channels.get(normalized)
        if channel is None:
            raise ChannelNotFoundError(normalized or channel_id)
        return channel

    def list_channels(self) -> list[dict[str, Any]]:
        channels = []
        for channel_id, channel in sorted(self.load_schedule().channels.items()):
            items = channel.playlist if channel.is_looping else channel.slots
            channels.append(
                {
                    "id": channel_id,
                    "shortName": channel.short_name,
                    "type": channel.type,
                    "active": channel.active,
                    "itemCount": len(items or []),
                }
            )
        return channels

    def media_durations(self) -> dict[str, int]:
        """Known durations from the media index; empty when the index is unreadable."""
        try:
            index: MediaIndex = load_media_index(self.atomic, self.media_index_name)
        except (CorruptedStateError, TransientNetworkError) as e:
            logger.warning("Media index unavailable, using slot lengths: %s", e)
            return {}
        return index.durations()

    def now_playing(self, channel_id: str | None, at_ms: int) -> NowPlaying:
        """Resolve a channel, or the first active channel when ``channel_id`` is None."""
        schedule = self.load_schedule()
        if channel_id is None:
            channel_id = default_channel_id(schedule)
        return resolve_channel(
            schedule,
            channel_id,
            at_ms,
            durations=self.media_durations(),
            tz=self.tz,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _update(self, modifier) -> dict[str, Any]:
        return self.atomic.atomic_update(
            self.schedule_name,
            modifier,
            _empty_document(),
            require_existing_on_error=True,
            repair_key="channels",
        )

    def save_channel_schedule(
        self, channel_id: str, payload: ChannelSchedule | dict[str, Any]
    ) -> ChannelSchedule:
        """
        Replace a channel's slots or playlist, creating the channel if needed.

        shortName, active and epochOffsetHours of the stored entry survive
        unless the payload sets them.
        """
        normalized = _require_channel_id(channel_id)
        if isinstance(payload, dict):
            incoming = parse_channel_schedule(payload, normalized)
        else:
            incoming = payload
            validate_channel_schedule(incoming, normalized)

        saved: dict[str, ChannelSchedule] = {}

        def modifier(document: dict[str, Any]) -> dict[str, Any]:
            channels = _channels_of(document)
            existing_data = channels.get(normalized)
            existing = (
                _stored_channel(existing_data, normalized)
                if isinstance(existing_data, dict)
                else None
            )
            merged = prepare_channel_for_write(existing, incoming)
            channels[normalized] = merged.to_document()
            saved["channel"] = merged
            return normalize_for_push(document)

        self._update(modifier)
        logger.info("Saved %s schedule for channel %s", incoming.type, normalized)
        return saved["channel"]

    def create_channel(
        self,
        channel_id: str,
        *,
        short_name: str | None = None,
        schedule_type: ScheduleType = "24hour",
    ) -> ChannelSchedule:
        normalized = _require_channel_id(channel_id)
        if schedule_type == "looping":
            channel = ChannelSchedule(type="looping", playlist=[], short_name=short_name)
        else:
            channel = ChannelSchedule(type="24hour", slots=[], short_name=short_name)

        def modifier(document: dict[str, Any]) -> dict[str, Any]:
            channels = _channels_of(document)
            if normalized in channels:
                raise ChannelExistsError(normalized)
            channels[normalized] = channel.to_document()
            return normalize_for_push(document)

        self._update(modifier)
        logger.info("Created channel %s (%s)", normalized, schedule_type)
        return channel

    def delete_channel(self, channel_id: str) -> None:
        normalized = normalize_channel_id(channel_id)

        def modifier(document: dict[str, Any]) -> dict[str, Any]:
            channels = _channels_of(document)
            if normalized not in channels:
                raise ChannelNotFoundError(normalized or channel_id)
            del channels[normalized]
            return document

        self._update(modifier)
        logger.info("Deleted channel %s", normalized)

    def update_channel(
        self,
        channel_id: str,
        *,
        short_name: str | None = None,
        active: bool | None = None,
        epoch_offset_hours: float | None = None,
    ) -> ChannelSchedule:
        """Change channel metadata without touching its slots or playlist."""
        normalized = normalize_channel_id(channel_id)
        updated: dict[str, ChannelSchedule] = {}

        def modifier(document: dict[str, Any]) -> dict[str, Any]:
            channels = _channels_of(document)
            current = channels.get(normalized)
            if not isinstance(current, dict):
                raise ChannelNotFoundError(normalized or channel_id)
            entry = dict(current)
            if short_name is not None:
                entry["shortName"] = short_name.strip() or None
            if active is not None:
                entry["active"] = active
            if epoch_offset_hours is not None:
                entry["epochOffsetHours"] = epoch_offset_hours
            channel = _stored_channel(entry, normalized)
            channels[normalized] = channel.to_document()
            updated["channel"] = channel
            return normalize_for_push(document)

        self._update(modifier)
        return updated["channel"]

    def reset(self) -> str:
        """Replace the schedule with an empty one; returns its location."""
        location = self.atomic.write(self.schedule_name, _empty_document())
        logger.warning("Schedule reset to empty at %s", location)
        return location

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def check_status(self) -> StatusReport:
        if self.atomic.repairer is None:
            raise RemoteViewerError("No repairer configured for this store")
        return self.atomic.repairer.check_status(self.schedule_name, "channels")

    def repair(self) -> RepairReport:
        return self.atomic.repair(self.schedule_name, "channels")
