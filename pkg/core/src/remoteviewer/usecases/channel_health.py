"""
Use-case: verify that every file a channel references is in the media library.

Each channel's slots or playlist items are checked against the set of known
media paths. Items without a file, or whose file is not in the library, are
reported as ``missing``; looping items with a non-positive duration as
``zero_duration``. For remote sources, missing files can be double-checked
with a HEAD request: a reachable file is still reported, as a soft warning
asking for a re-scan, but counts as healthy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from ..domain.schedule import Schedule, normalize_rel_path
from ..infra.exceptions import RemoteViewerError

logger = logging.getLogger(__name__)

IssueKind = Literal["missing", "zero_duration"]

MAX_CONCURRENT_CHECKS = 10


@dataclass
class ChannelHealthIssue:
    file: str
    issue: IssueKind
    details: str
    title: str | None = None
    reachable: bool = False
    item_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"file": self.file, "issue": self.issue, "details": self.details}
        if self.title:
            data["title"] = self.title
        return data


@dataclass
class ChannelHealth:
    channel_id: str
    type: str
    active: bool
    total_items: int
    short_name: str | None = None
    issues: list[ChannelHealthIssue] = field(default_factory=list)

    @property
    def healthy_items(self) -> int:
        # An item with several issues is still one unhealthy item
        unhealthy = {i.item_index for i in self.issues if not i.reachable}
        return max(0, self.total_items - len(unhealthy))

    def to_dict(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "shortName": self.short_name,
            "type": self.type,
            "active": self.active,
            "totalItems": self.total_items,
            "healthyItems": self.healthy_items,
            "issues": [issue.to_dict() for issue in self.issues],
        }


@dataclass
class HealthReport:
    source: str
    checked_at: str
    channels: list[ChannelHealth] = field(default_factory=list)

    @property
    def total_items(self) -> int:
        return sum(c.total_items for c in self.channels)

    @property
    def total_issues(self) -> int:
        return sum(len(c.issues) for c in self.channels)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "checkedAt": self.checked_at,
            "totalChannels": len(self.channels),
            "totalItems": self.total_items,
            "totalIssues": self.total_issues,
            "channels": [c.to_dict() for c in self.channels],
        }


def _channel_sort_key(channel_id: str) -> tuple[int, int | str]:
    # Numeric ids first, in numeric order
    if channel_id.isdigit():
        return (0, int(channel_id))
    return (1, channel_id)


def check_channels(
    schedule: Schedule,
    available_files: Iterable[str],
    *,
    source: str = "local",
    is_reachable: Callable[[str], bool] | None = None,
    now: datetime | None = None,
) -> HealthReport:
    """
    Check every channel of ``schedule`` against the available media paths.

    Args:
        schedule: Schedule snapshot to check
        available_files: Relative paths present in the media library
        source: Source label copied into the report
        is_reachable: Optional double-check for files missing from the library
        now: Report timestamp, defaults to the current time
    """
    available = {normalize_rel_path(path) for path in available_files}
    checked_at = (now or datetime.now(timezone.utc)).isoformat().replace("+00:00", "Z")
    report = HealthReport(source=source, checked_at=checked_at)

    for channel_id in sorted(schedule.channels, key=_channel_sort_key):
        channel = schedule.channels[channel_id]
        health = ChannelHealth(
            channel_id=channel_id,
            short_name=channel.short_name,
            type=channel.type,
            active=channel.active,
            total_items=0,
        )
        if channel.is_looping:
            entries = [(item.file, item.title, item.duration_seconds) for item in channel.playlist or []]
            empty_details = "Playlist item has no file path"
        else:
            entries = [(slot.file, slot.title, None) for slot in channel.slots or []]
            empty_details = "Slot has no file path"
        health.total_items = len(entries)

        for index, (file, title, duration) in enumerate(entries):
            if not file:
                health.issues.append(
                    ChannelHealthIssue("(empty)", "missing", empty_details, title, item_index=index)
                )
                continue
            if normalize_rel_path(file) not in available:
                health.issues.append(
                    ChannelHealthIssue(
                        file, "missing", "File not found in media library", title, item_index=index
                    )
                )
            if duration is not None and duration <= 0:
                health.issues.append(
                    ChannelHealthIssue(
                        file, "zero_duration", "Item has zero or negative duration", title, item_index=index
                    )
                )
        report.channels.append(health)

    if is_reachable is not None:
        _recheck_missing(report, is_reachable)

    logger.info(
        "Health check (%s): %d channels, %d items, %d issues",
        source,
        len(report.channels),
        report.total_items,
        report.total_issues,
    )
    return report


def _recheck_missing(report: HealthReport, is_reachable: Callable[[str], bool]) -> None:
    missing = sorted(
        {
            issue.file
            for channel in report.channels
            for issue in channel.issues
            if issue.issue == "missing" and issue.file != "(empty)"
        }
    )
    if not missing:
        return

    def check(file: str) -> bool:
        try:
            return is_reachable(file)
        except RemoteViewerError as e:
            logger.info("Reachability check failed for %s: %s", file, e)
            return False

    logger.info("Verifying %d missing files over HTTP", len(missing))
    with ThreadPoolExecutor(max_workers=MAX_CONCURRENT_CHECKS) as pool:
        reachable = {file for file, ok in zip(missing, pool.map(check, missing)) if ok}

    for channel in report.channels:
        for issue in channel.issues:
            if issue.issue == "missing" and issue.file in reachable:
                issue.reachable = True
                issue.details = "File exists on the media server but not in media-index.json (re-scan needed)"
