"""
Global test configuration for remote-viewer.

Puts ``src`` on sys.path and provides directory-backed stores plus isolated
settings so no test ever reaches a real FTP server or media host.
"""

import sys
from pathlib import Path

import pytest

# Ensure the project src directory is importable without relying on external environment.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

TESTS_PATH = Path(__file__).resolve().parent
if str(TESTS_PATH) not in sys.path:
    sys.path.insert(0, str(TESTS_PATH))

from remoteviewer.infra.atomic_json import AtomicJsonStore  # noqa: E402
from remoteviewer.infra.json_repair import DocumentRepairer  # noqa: E402
from remoteviewer.infra.remote_store import LocalDocumentStore  # noqa: E402
from remoteviewer.infra.settings import Settings  # noqa: E402
from fakes import FIXED_MS  # noqa: E402


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def media_dir(tmp_path):
    path = tmp_path / "media"
    path.mkdir()
    return path


@pytest.fixture
def local_store(data_dir):
    return LocalDocumentStore(data_dir)


@pytest.fixture
def atomic(local_store):
    return AtomicJsonStore(
        local_store,
        repairer=DocumentRepairer(local_store, clock_ms=lambda: FIXED_MS),
        clock_ms=lambda: FIXED_MS,
    )


@pytest.fixture
def test_settings(data_dir, media_dir):
    """Settings pointing at temporary directories with the remote store unconfigured."""
    return Settings(
        _env_file=None,
        FTP_HOST="",
        FTP_USER="",
        FTP_PASS="",
        FTP_REMOTE_PATH="",
        REMOTE_MEDIA_BASE="",
        DATA_ROOT=str(data_dir),
        MEDIA_ROOT=str(media_dir),
        SCHEDULE_TIMEZONE="UTC",
        PROBE_BATCH_PAUSE_SECONDS=0,
    )


@pytest.fixture
def patched_settings(monkeypatch, test_settings):
    """Make every settings-driven factory use ``test_settings``."""
    from remoteviewer.cli.commands import _common
    from remoteviewer.usecases import sources

    monkeypatch.setattr(sources, "default_settings", test_settings)
    _common.reset_contexts()
    yield test_settings
    _common.reset_contexts()
