"""
Tests for the HTTP API using FastAPI's TestClient.

The "remote" context is backed by a local directory store injected into the
app, so repair and scan run end to end without an FTP server.
"""

import json

import pytest
from fakes import StubProber
from fastapi.testclient import TestClient

from remoteviewer.infra.remote_store import LocalDocumentStore
from remoteviewer.usecases import sources
from remoteviewer.usecases.sources import SourceContext
from remoteviewer.web.server import create_app

LOOP = {
    "type": "looping",
    "playlist": [
        {"file": "a.mp4", "durationSeconds": 600},
        {"file": "b.mp4", "durationSeconds": 300},
    ],
}


@pytest.fixture
def remote_dir(tmp_path):
    path = tmp_path / "remote"
    path.mkdir()
    return path


@pytest.fixture
def remote_settings(test_settings):
    return test_settings.model_copy(
        update={
            "ftp_host": "ftp.example.com",
            "ftp_user": "viewer",
            "ftp_pass": "secret",
            "ftp_remote_path": "/media/videos/media-index.json",
            "remote_media_base": "https://cdn.example.com/videos",
        }
    )


@pytest.fixture
def client(test_settings, remote_settings, remote_dir):
    contexts = {
        "local": SourceContext("local", test_settings),
        "remote": SourceContext("remote", remote_settings, store=LocalDocumentStore(remote_dir)),
    }
    return TestClient(create_app(test_settings, contexts=contexts))


@pytest.fixture
def unconfigured_client(test_settings):
    return TestClient(create_app(test_settings))


def write_schedule(directory, channels):
    (directory / "schedule.json").write_text(json.dumps({"channels": channels}))


def test_healthz(unconfigured_client):
    response = unconfigured_client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "remoteConfigured": False}


def test_now_playing(client, data_dir):
    write_schedule(data_dir, {"1": LOOP})

    response = client.get("/api/now-playing", params={"channel": "1", "at": 650_000})

    assert response.status_code == 200
    body = response.json()
    assert body["relPath"] == "b.mp4"
    assert body["startOffsetSeconds"] == 50
    assert body["endsAt"] == 900_000
    assert isinstance(body["serverTimeMs"], int)


def test_now_playing_defaults_to_first_active_channel(client, remote_dir):
    write_schedule(remote_dir, {"5": {**LOOP, "active": False}, "7": LOOP})
    response = client.get("/api/now-playing", params={"source": "remote", "at": 0})
    assert response.status_code == 200
    assert response.json()["relPath"] == "a.mp4"


def test_now_playing_unknown_channel_is_404(client, data_dir):
    write_schedule(data_dir, {"1": LOOP})
    response = client.get("/api/now-playing", params={"channel": "9"})
    assert response.status_code == 404
    assert response.json()["kind"] == "channel_not_found"


def test_now_playing_off_air_is_404(client, data_dir):
    write_schedule(data_dir, {"1": {"type": "24hour", "slots": [{"start": "10:00", "end": "11:00", "file": "a.mp4"}]}})
    response = client.get("/api/now-playing", params={"channel": "1", "at": 0})
    assert response.status_code == 404
    assert response.json()["kind"] == "not_scheduled"


def test_now_playing_rejects_unknown_source(client):
    response = client.get("/api/now-playing", params={"source": "s3"})
    assert response.status_code == 400


def test_now_playing_remote_without_ftp_is_400(unconfigured_client):
    response = unconfigured_client.get("/api/now-playing", params={"channel": "1", "source": "remote"})

    assert response.status_code == 400
    assert response.json()["kind"] == "not_configured"


def test_repair_requires_ftp(unconfigured_client):
    assert unconfigured_client.get("/api/channels/repair").status_code == 400
    response = unconfigured_client.post("/api/channels/repair")
    assert response.status_code == 400
    assert response.json() == {"error": "FTP not configured"}


def test_repair_status_and_repair(client, remote_dir):
    (remote_dir / "schedule.json").write_text('{"channels": {"1": {"type": "24hour", "slots": []}, "2": {"ty')

    status = client.get("/api/channels/repair").json()
    assert status["status"] == "corrupted"

    response = client.post("/api/channels/repair")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["wasCorrupted"] is True
    assert body["recoveredEntryCount"] == 1
    assert body["message"] == "Repaired schedule.json - recovered 1 channels"
    assert body["backupLocation"].startswith(str(remote_dir / "schedule.backup."))


def test_repair_missing_schedule_is_404(client):
    response = client.post("/api/channels/repair")
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_repair_unrecoverable_is_500(client, remote_dir):
    (remote_dir / "schedule.json").write_text("garbage")
    response = client.post("/api/channels/repair")
    assert response.status_code == 500
    assert "manual intervention" in response.json()["error"]


def test_channel_health_local(client, data_dir, media_dir):
    (media_dir / "a.mp4").write_bytes(b"\x00")
    write_schedule(data_dir, {"1": LOOP})

    response = client.post("/api/channels/health", params={"source": "local"})

    assert response.status_code == 200
    body = response.json()
    assert body["totalItems"] == 2
    assert [issue["file"] for issue in body["channels"][0]["issues"]] == ["b.mp4"]


def test_scan_remote(client, remote_dir, monkeypatch):
    (remote_dir / "show.mp4").write_bytes(b"\x00" * 16)
    stub = StubProber()
    monkeypatch.setattr(
        sources,
        "media_scanner",
        lambda source, cfg=None: sources.MediaScanner(
            stub, url_for=sources.media_url_for(source, cfg), batch_pause_seconds=0
        ),
    )

    response = client.post("/api/media-index/scan-remote")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Media index updated with 1 files"
    assert stub.probed == ["https://cdn.example.com/videos/show.mp4"]
    stored = json.loads((remote_dir / "media-index.json").read_text())
    assert stored["items"][0]["durationSeconds"] == 60


def test_scan_remote_without_ftp_is_400(unconfigured_client):
    response = unconfigured_client.post("/api/media-index/scan-remote")
    assert response.status_code == 400
    assert response.json()["success"] is False
