"""
Use-case: scan a media library and refresh its media index.

Each listed file is compared with its cached index entry. Unchanged files
with a known duration reuse the cache; unchanged files whose last probe
failed inside the cooldown window are skipped; everything else is probed.
Probes run with bounded parallelism per batch, batches run one after the
other with a short pause so the media server is not flooded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

from ..adapters.probers import Prober, ProbeResult
from ..domain.media_index import (
    MediaIndex,
    MediaIndexItem,
    format_from_path,
    is_media_file,
    is_probably_browser_supported,
    parse_media_index,
)
from ..domain.schedule import normalize_rel_path, title_from_path
from ..infra.atomic_json import AtomicJsonStore
from ..infra.exceptions import ProbeFailure
from ..infra.remote_store import DocumentStore, RemoteFileInfo

logger = logging.getLogger(__name__)

MEDIA_INDEX_NAME = "media-index.json"


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def media_url(base: str, rel_path: str) -> str:
    """Public URL of a media file: base joined with the percent-encoded relative path."""
    return f"{base.rstrip('/')}/{quote(rel_path, safe='/')}"


@dataclass
class FileScanResult:
    rel_path: str
    duration_seconds: int = 0
    video_codec: str | None = None
    audio_codec: str | None = None
    success: bool = False
    error: str | None = None
    was_reprobed: bool = False
    was_cached: bool = False
    skipped_by_cooldown: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "relPath": self.rel_path,
            "durationSeconds": self.duration_seconds,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
            "success": self.success,
            "error": self.error,
            "wasReprobed": self.was_reprobed,
            "wasCached": self.was_cached,
            "skippedByCooldown": self.skipped_by_cooldown,
        }


@dataclass
class ScanStats:
    total: int = 0
    unchanged: int = 0
    probed: int = 0
    skipped_by_cooldown: int = 0
    succeeded: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "unchanged": self.unchanged,
            "probed": self.probed,
            "skippedByCooldown": self.skipped_by_cooldown,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


@dataclass
class ScanReport:
    items: list[MediaIndexItem] = field(default_factory=list)
    results: list[FileScanResult] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)
    generated_at: str = ""
    location: str | None = None

    def to_index(self) -> MediaIndex:
        return MediaIndex(generated_at=self.generated_at, items=self.items)

    def failures(self) -> list[FileScanResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "generatedAt": self.generated_at,
            "count": len(self.items),
            "stats": self.stats.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }
        if self.location:
            payload["location"] = self.location
        return payload


class MediaScanner:
    """Change-detecting, batch-parallel media prober."""

    def __init__(
        self,
        prober: Prober,
        *,
        url_for: Callable[[str], str],
        concurrency: int = 2,
        batch_pause_seconds: float = 0.5,
        cooldown_hours: float = 24.0,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the scanner.

        Args:
            prober: Strategy (usually a ProberChain) used for files needing a probe
            url_for: Maps a relative path to the URL handed to the prober
            concurrency: Probes in flight per batch
            batch_pause_seconds: Pause between batches
            cooldown_hours: How long a failed probe is not retried for an unchanged file
            clock: Current UTC time, injectable for tests
            sleep: Pause function, injectable for tests
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.prober = prober
        self.url_for = url_for
        self.concurrency = concurrency
        self.batch_pause_seconds = batch_pause_seconds
        self.cooldown = timedelta(hours=cooldown_hours)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

    def scan(
        self,
        files: Sequence[RemoteFileInfo],
        cache: MediaIndex | Mapping[str, MediaIndexItem] | None = None,
    ) -> ScanReport:
        now = self._clock()
        now_iso = _iso(now)
        if isinstance(cache, MediaIndex):
            cached_by_path = cache.by_path()
        else:
            cached_by_path = dict(cache or {})

        media_files = [f for f in files if is_media_file(f.rel_path)]
        stats = ScanStats(total=len(media_files))
        slots: list[tuple[MediaIndexItem, FileScanResult] | None] = []
        pending: list[tuple[int, RemoteFileInfo, MediaIndexItem | None]] = []

        for info in media_files:
            rel_path = normalize_rel_path(info.rel_path)
            cached = cached_by_path.get(rel_path)
            unchanged = (
                cached is not None
                and cached.size == info.size
                and cached.modified_at == info.modified_at
            )

            if unchanged and cached.has_duration:
                stats.unchanged += 1
                slots.append(
                    (
                        cached,
                        FileScanResult(
                            rel_path=rel_path,
                            duration_seconds=cached.duration_seconds,
                            video_codec=cached.video_codec,
                            audio_codec=cached.audio_codec,
                            success=True,
                            was_cached=True,
                        ),
                    )
                )
                continue

            failed_at = _parse_iso(cached.probe_failed_at) if unchanged else None
            if failed_at is not None and now - failed_at < self.cooldown:
                stats.skipped_by_cooldown += 1
                slots.append(
                    (
                        cached,
                        FileScanResult(
                            rel_path=rel_path,
                            error=f"Probe failed at {cached.probe_failed_at}; retry after cooldown",
                            skipped_by_cooldown=True,
                        ),
                    )
                )
                continue

            pending.append((len(slots), info, cached))
            slots.append(None)

        for batch_start in range(0, len(pending), self.concurrency):
            if batch_start > 0 and self.batch_pause_seconds > 0:
                self._sleep(self.batch_pause_seconds)
            batch = pending[batch_start : batch_start + self.concurrency]
            with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
                probes = list(pool.map(lambda entry: self._probe(entry[1]), batch))
            for (slot_index, info, cached), probe in zip(batch, probes):
                stats.probed += 1
                if probe.success:
                    stats.succeeded += 1
                else:
                    stats.failed += 1
                slots[slot_index] = self._probed_entry(info, cached, probe, now_iso)

        items: list[MediaIndexItem] = []
        results: list[FileScanResult] = []
        for entry in slots:
            assert entry is not None
            items.append(entry[0])
            results.append(entry[1])

        logger.info(
            "Scanned %d media files: %d unchanged, %d probed (%d ok, %d failed), %d in cooldown",
            stats.total,
            stats.unchanged,
            stats.probed,
            stats.succeeded,
            stats.failed,
            stats.skipped_by_cooldown,
        )
        return ScanReport(items=items, results=results, stats=stats, generated_at=now_iso)

    def _probe(self, info: RemoteFileInfo) -> ProbeResult:
        url = self.url_for(normalize_rel_path(info.rel_path))
        try:
            result = self.prober.probe(url)
        except Exception as e:
            # One unreadable file must not abort the batch
            logger.warning("Probe of %s raised: %s", info.rel_path, e)
            return ProbeResult(error=f"{type(e).__name__}: {e}")
        try:
            result.raise_for_failure()
        except ProbeFailure as e:
            logger.warning("No duration for %s: %s", info.rel_path, e)
            return replace(result, error=str(e))
        return result

    def _probed_entry(
        self,
        info: RemoteFileInfo,
        cached: MediaIndexItem | None,
        probe: ProbeResult,
        now_iso: str,
    ) -> tuple[MediaIndexItem, FileScanResult]:
        rel_path = normalize_rel_path(info.rel_path)
        video_codec = probe.video_codec or (cached.video_codec if cached else None)
        audio_codec = probe.audio_codec or (cached.audio_codec if cached else None)
        item = MediaIndexItem(
            rel_path=rel_path,
            title=(cached.title if cached and cached.title else title_from_path(rel_path)),
            duration_seconds=probe.duration_seconds if probe.success else 0,
            size=info.size,
            modified_at=info.modified_at,
            probe_failed_at=None if probe.success else now_iso,
            date_added=(cached.date_added if cached and cached.date_added else now_iso),
            video_codec=video_codec,
            audio_codec=audio_codec,
            format=format_from_path(rel_path),
            supported=is_probably_browser_supported(rel_path, video_codec),
        )
        result = FileScanResult(
            rel_path=rel_path,
            duration_seconds=item.duration_seconds,
            video_codec=video_codec,
            audio_codec=audio_codec,
            success=probe.success,
            error=None if probe.success else probe.error,
            was_reprobed=cached is not None,
        )
        return item, result


def load_media_index(atomic: AtomicJsonStore, name: str = MEDIA_INDEX_NAME) -> MediaIndex:
    """Current media index; an absent document is an empty index."""
    data = atomic.read(name, {"items": []})
    return parse_media_index(data)


def sync_remote_media_index(
    atomic: AtomicJsonStore,
    store: DocumentStore,
    scanner: MediaScanner,
    *,
    media_subdir: str = "",
    name: str = MEDIA_INDEX_NAME,
) -> ScanReport:
    """
    Rescan the library behind ``store`` and persist the refreshed index.

    The cached index is read before listing; a failed read aborts the sync
    instead of rescanning everything against an empty cache.
    """
    cache = load_media_index(atomic, name)
    files = [
        f
        for f in store.list_files(media_subdir)
        if is_media_file(f.rel_path) and f.rel_path != name
    ]
    logger.info("Found %d media files (%d cached entries)", len(files), len(cache.items))

    report = scanner.scan(files, cache)
    report.location = atomic.write(name, report.to_index().to_document())
    return report
