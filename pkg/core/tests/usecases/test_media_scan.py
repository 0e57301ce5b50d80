"""
Tests for the change-detecting media scanner and the media index sync.
"""

import json
from datetime import datetime, timedelta, timezone

from fakes import StubProber

from remoteviewer.adapters.probers import ProbeResult
from remoteviewer.domain.media_index import MediaIndexItem
from remoteviewer.infra.remote_store import LocalDocumentStore, RemoteFileInfo
from remoteviewer.usecases.media_scan import (
    MediaScanner,
    load_media_index,
    media_url,
    sync_remote_media_index,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
NOW_ISO = "2024-03-01T12:00:00Z"
BASE = "https://cdn.example.com/media"


def scanner(prober, **kwargs):
    kwargs.setdefault("concurrency", 2)
    kwargs.setdefault("batch_pause_seconds", 0)
    return MediaScanner(
        prober,
        url_for=lambda rel: media_url(BASE, rel),
        clock=lambda: NOW,
        **kwargs,
    )


def info(rel_path, size=100, modified_at="2024-01-01T00:00:00Z"):
    return RemoteFileInfo(rel_path=rel_path, size=size, modified_at=modified_at)


def cached(rel_path, size=100, modified_at="2024-01-01T00:00:00Z", **fields):
    return MediaIndexItem(rel_path=rel_path, size=size, modified_at=modified_at, **fields)


def test_media_url_encodes_path_segments():
    assert media_url(BASE + "/", "Shows/Ep 1 #2.mp4") == BASE + "/Shows/Ep%201%20%232.mp4"


def test_unchanged_files_with_duration_are_not_probed():
    prober = StubProber()
    cache = {
        "a.mp4": cached("a.mp4", duration_seconds=120, title="A", date_added="2023-12-01T00:00:00Z"),
        "b.mkv": cached("b.mkv", duration_seconds=60),
    }

    report = scanner(prober).scan([info("a.mp4"), info("b.mkv")], cache)

    assert prober.probed == []
    assert report.stats.unchanged == 2
    assert report.stats.probed == 0
    assert all(r.was_cached for r in report.results)
    assert report.items[0] is cache["a.mp4"]


def test_changed_size_is_reprobed():
    prober = StubProber(default=ProbeResult(duration_seconds=300, video_codec="h264", audio_codec="aac"))
    cache = {"a.mp4": cached("a.mp4", duration_seconds=120, title="Custom", date_added="2023-12-01T00:00:00Z")}

    report = scanner(prober).scan([info("a.mp4", size=101)], cache)

    assert prober.probed == [BASE + "/a.mp4"]
    item = report.items[0]
    assert item.duration_seconds == 300
    assert item.size == 101
    assert item.title == "Custom"
    assert item.date_added == "2023-12-01T00:00:00Z"
    assert item.supported is True
    assert report.results[0].was_reprobed is True


def test_changed_modification_time_is_reprobed():
    prober = StubProber()
    cache = {"a.mp4": cached("a.mp4", duration_seconds=120)}
    scanner(prober).scan([info("a.mp4", modified_at="2024-02-01T00:00:00Z")], cache)
    assert len(prober.probed) == 1


def test_recent_failure_is_skipped_until_cooldown_passes():
    prober = StubProber()
    recent = (NOW - timedelta(hours=1)).isoformat().replace("+00:00", "Z")
    stale = (NOW - timedelta(hours=25)).isoformat().replace("+00:00", "Z")
    cache = {
        "recent.mp4": cached("recent.mp4", probe_failed_at=recent),
        "stale.mp4": cached("stale.mp4", probe_failed_at=stale),
    }

    report = scanner(prober, cooldown_hours=24).scan([info("recent.mp4"), info("stale.mp4")], cache)

    assert prober.probed == [BASE + "/stale.mp4"]
    assert report.stats.skipped_by_cooldown == 1
    assert report.results[0].skipped_by_cooldown is True
    assert report.items[0].probe_failed_at == recent


def test_failed_probe_records_failure_time():
    prober = StubProber(default=ProbeResult(error="FFprobe failed: 403"))

    report = scanner(prober).scan([info("new.mp4")], {})

    item = report.items[0]
    assert item.duration_seconds == 0
    assert item.probe_failed_at == NOW_ISO
    assert item.date_added == NOW_ISO
    assert item.title == "new"
    assert report.stats.failed == 1
    assert report.failures()[0].error == "FFprobe failed: 403"
    assert report.results[0].was_reprobed is False


def test_result_without_duration_is_recorded_as_failure():
    prober = StubProber(default=ProbeResult(duration_seconds=0, video_codec="hevc"))

    report = scanner(prober).scan([info("odd.mp4")], {})

    assert report.stats.failed == 1
    assert report.failures()[0].error == "No duration found"
    assert report.items[0].probe_failed_at == NOW_ISO
    assert report.items[0].video_codec == "hevc"


def test_success_clears_previous_failure():
    prober = StubProber()
    cache = {"a.mp4": cached("a.mp4", size=1, probe_failed_at="2020-01-01T00:00:00Z")}
    report = scanner(prober).scan([info("a.mp4", size=2)], cache)
    assert report.items[0].probe_failed_at is None
    assert report.items[0].duration_seconds == 60


def test_non_media_files_are_ignored():
    prober = StubProber()
    report = scanner(prober).scan([info("notes.txt"), info("poster.jpg"), info("movie.mp4")], {})
    assert [item.rel_path for item in report.items] == ["movie.mp4"]
    assert report.stats.total == 1


def test_probes_run_in_paused_batches_and_keep_order():
    pauses = []
    prober = StubProber()
    files = [info(f"{n}.mp4") for n in range(5)]

    report = scanner(prober, concurrency=2, batch_pause_seconds=0.25, sleep=pauses.append).scan(files, {})

    assert pauses == [0.25, 0.25]
    assert [item.rel_path for item in report.items] == [f"{n}.mp4" for n in range(5)]
    assert sorted(prober.probed) == sorted(BASE + f"/{n}.mp4" for n in range(5))


def test_prober_exception_is_recorded_per_file():
    class Exploding:
        name = "exploding"

        def probe(self, url):
            raise RuntimeError("socket closed")

    report = scanner(Exploding()).scan([info("a.mp4")], {})
    assert report.results[0].success is False
    assert "socket closed" in report.results[0].error


def test_sync_writes_index_and_second_sync_probes_nothing(media_dir, atomic, data_dir):
    (media_dir / "shows").mkdir()
    (media_dir / "shows" / "ep1.mp4").write_bytes(b"\x00" * 10)
    (media_dir / "movie.mkv").write_bytes(b"\x00" * 20)
    (media_dir / "cover.png").write_bytes(b"\x00")
    media = LocalDocumentStore(media_dir)
    prober = StubProber()

    first = sync_remote_media_index(atomic, media, scanner(prober))

    assert first.location == str(data_dir / "media-index.json")
    stored = json.loads((data_dir / "media-index.json").read_text())
    assert sorted(item["relPath"] for item in stored["items"]) == ["movie.mkv", "shows/ep1.mp4"]
    assert stored["items"][0]["durationSeconds"] == 60
    assert load_media_index(atomic).durations() == {"movie.mkv": 60, "shows/ep1.mp4": 60}
    assert len(prober.probed) == 2

    second = sync_remote_media_index(atomic, media, scanner(prober))

    assert len(prober.probed) == 2
    assert second.stats.unchanged == 2
    assert second.to_dict()["count"] == 2
