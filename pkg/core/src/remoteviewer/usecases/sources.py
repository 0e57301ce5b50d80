"""
Store wiring for the two media sources.

``remote`` documents live on the FTP server next to FTP_REMOTE_PATH and
media is served from REMOTE_MEDIA_BASE; ``local`` documents live in the
data root and media under MEDIA_ROOT.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..adapters.probers import HttpRangeFetcher, default_prober_chain
from ..domain.schedule import normalize_rel_path
from ..infra.atomic_json import AtomicJsonStore, ResourceLockTable
from ..infra.exceptions import NotConfiguredError
from ..infra.json_repair import DocumentRepairer
from ..infra.remote_store import DocumentStore, FtpDocumentStore, LocalDocumentStore
from ..infra.settings import Settings, settings as default_settings
from .channel_health import HealthReport, check_channels
from .media_scan import (
    MediaScanner,
    ScanReport,
    load_media_index,
    media_url,
    sync_remote_media_index,
)
from .schedule_service import ScheduleService

MediaSource = Literal["local", "remote"]
SOURCES: tuple[MediaSource, ...] = ("local", "remote")


def parse_source(value: str | None) -> MediaSource:
    source = (value or "local").strip().lower()
    if source not in SOURCES:
        raise ValueError(f"Unknown source '{value}'. Use one of: {', '.join(SOURCES)}")
    return source  # type: ignore[return-value]


def document_store(source: MediaSource, cfg: Settings | None = None) -> DocumentStore:
    """Store holding schedule.json and media-index.json for ``source``."""
    cfg = cfg or default_settings
    if source == "remote":
        return FtpDocumentStore(
            cfg.require_remote_config(),
            timeout=cfg.store_timeout_seconds,
            list_timeout=cfg.list_timeout_seconds,
        )
    return LocalDocumentStore(cfg.resolve_data_root())


def media_store(source: MediaSource, cfg: Settings | None = None) -> DocumentStore:
    """Store whose listing is the media library of ``source``."""
    cfg = cfg or default_settings
    if source == "remote":
        return document_store("remote", cfg)
    if not cfg.media_root:
        raise NotConfiguredError("MEDIA_ROOT is not set")
    return LocalDocumentStore(Path(cfg.media_root).expanduser())


def atomic_store(
    store: DocumentStore,
    locks: ResourceLockTable | None = None,
) -> AtomicJsonStore:
    """Atomic JSON store with the repair pipeline attached."""
    return AtomicJsonStore(store, locks=locks, repairer=DocumentRepairer(store))


def media_url_for(source: MediaSource, cfg: Settings | None = None) -> Callable[[str], str]:
    cfg = cfg or default_settings
    if source == "remote":
        if not cfg.remote_media_base:
            raise NotConfiguredError("REMOTE_MEDIA_BASE is not set")
        base = cfg.remote_media_base
        return lambda rel_path: media_url(base, rel_path)
    root = Path(cfg.media_root).expanduser()
    return lambda rel_path: str(root / rel_path)


def media_scanner(source: MediaSource, cfg: Settings | None = None) -> MediaScanner:
    cfg = cfg or default_settings
    chain = default_prober_chain(
        ffprobe_path=cfg.ffprobe_path,
        probe_timeout=cfg.probe_timeout_seconds,
        http_timeout=cfg.http_timeout_seconds,
        fetch_kib=cfg.moov_fetch_kib,
    )
    return MediaScanner(
        chain,
        url_for=media_url_for(source, cfg),
        concurrency=cfg.probe_concurrency,
        batch_pause_seconds=cfg.probe_batch_pause_seconds,
        cooldown_hours=cfg.probe_failure_cooldown_hours,
    )


def schedule_timezone(cfg: Settings | None = None) -> ZoneInfo:
    cfg = cfg or default_settings
    try:
        return ZoneInfo(cfg.schedule_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise NotConfiguredError(f"Unknown SCHEDULE_TIMEZONE '{cfg.schedule_timezone}'") from e


def _head_check(base: str, timeout: float) -> Callable[[str], bool]:
    fetcher = HttpRangeFetcher(timeout=timeout)

    def is_reachable(rel_path: str) -> bool:
        return fetcher.content_length(media_url(base, normalize_rel_path(rel_path))) is not None

    return is_reachable


class SourceContext:
    """
    Everything one source needs, built lazily from settings.

    One context per process and source: its AtomicJsonStore owns the lock
    table that serializes updates of the same document. Pass ``locks`` to
    share one table across contexts of the same source.
    """

    def __init__(
        self,
        source: MediaSource,
        cfg: Settings | None = None,
        *,
        locks: ResourceLockTable | None = None,
        store: DocumentStore | None = None,
    ):
        self.source = source
        self.settings = cfg or default_settings
        self.locks = locks if locks is not None else ResourceLockTable()
        self._store = store
        self._atomic: AtomicJsonStore | None = None

    @property
    def store(self) -> DocumentStore:
        if self._store is None:
            self._store = document_store(self.source, self.settings)
        return self._store

    @property
    def atomic(self) -> AtomicJsonStore:
        if self._atomic is None:
            self._atomic = atomic_store(self.store, self.locks)
        return self._atomic

    def schedule_service(self) -> ScheduleService:
        return ScheduleService(self.atomic, tz=schedule_timezone(self.settings))

    def scan_media(self, scanner: MediaScanner | None = None) -> ScanReport:
        scanner = scanner or media_scanner(self.source, self.settings)
        media = self.store if self.source == "remote" else media_store("local", self.settings)
        return sync_remote_media_index(self.atomic, media, scanner)

    def health_check(self, *, verify_missing: bool = True) -> HealthReport:
        schedule = self.schedule_service().load_schedule()
        is_reachable = None
        if self.source == "remote":
            available = [item.rel_path for item in load_media_index(self.atomic).items]
            if verify_missing and self.settings.remote_media_base:
                is_reachable = _head_check(
                    self.settings.remote_media_base, self.settings.http_timeout_seconds
                )
        else:
            available = [f.rel_path for f in media_store("local", self.settings).list_files()]
        return check_channels(
            schedule,
            available,
            source=self.source,
            is_reachable=is_reachable,
        )
