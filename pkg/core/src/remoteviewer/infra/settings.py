"""
Application settings for remote-viewer.

This module defines all configuration settings for remote-viewer using Pydantic BaseSettings.
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import NotConfiguredError


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    # Remote document store (FTP)
    ftp_host: str = Field(default="", alias="FTP_HOST")
    ftp_user: str = Field(default="", alias="FTP_USER")
    ftp_pass: str = Field(default="", alias="FTP_PASS")
    ftp_port: int = Field(default=21, alias="FTP_PORT")
    ftp_remote_path: str = Field(default="", alias="FTP_REMOTE_PATH")
    ftp_secure: bool = Field(default=False, alias="FTP_SECURE")

    # Public base URL the remote media files are served from
    remote_media_base: str = Field(default="", alias="REMOTE_MEDIA_BASE")

    # Local mode
    media_root: str = Field(default="", alias="MEDIA_ROOT")
    data_root: str = Field(default="", alias="DATA_ROOT")

    ffprobe_path: str = Field(default="ffprobe", alias="FFPROBE_PATH")
    schedule_timezone: str = Field(default="UTC", alias="SCHEDULE_TIMEZONE")

    # I/O budgets (seconds)
    store_timeout_seconds: float = Field(default=15.0, alias="STORE_TIMEOUT_SECONDS")
    list_timeout_seconds: float = Field(default=10.0, alias="LIST_TIMEOUT_SECONDS")
    probe_timeout_seconds: float = Field(default=12.0, alias="PROBE_TIMEOUT_SECONDS")
    http_timeout_seconds: float = Field(default=10.0, alias="HTTP_TIMEOUT_SECONDS")

    # Prober tuning
    probe_concurrency: int = Field(default=2, alias="PROBE_CONCURRENCY")
    probe_batch_pause_seconds: float = Field(default=0.5, alias="PROBE_BATCH_PAUSE_SECONDS")
    probe_failure_cooldown_hours: float = Field(default=24.0, alias="PROBE_FAILURE_COOLDOWN_HOURS")
    moov_fetch_kib: int = Field(default=512, alias="MOOV_FETCH_KIB")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    env: str = Field(default="dev", alias="ENV")  # dev|prod|test

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    def is_remote_configured(self) -> bool:
        """True when host, user, password and remote path are all set."""
        return bool(
            self.ftp_host.strip()
            and self.ftp_user.strip()
            and self.ftp_pass.strip()
            and self.ftp_remote_path.strip()
        )

    def require_remote_config(self) -> RemoteConfig:
        """Return validated FTP settings or raise NotConfiguredError."""
        if not self.is_remote_configured():
            raise NotConfiguredError(
                "FTP not configured. Set FTP_HOST, FTP_USER, FTP_PASS, FTP_REMOTE_PATH."
            )
        return RemoteConfig(
            host=self.ftp_host.strip(),
            user=self.ftp_user.strip(),
            password=self.ftp_pass.strip(),
            port=self.ftp_port,
            remote_path=self.ftp_remote_path.strip(),
            secure=self.ftp_secure,
        )

    def resolve_data_root(self) -> Path:
        """
        Directory holding the local schedule and media index.

        DATA_ROOT wins; otherwise <MEDIA_ROOT>/.remote-viewer; otherwise ./data/local.
        """
        if self.data_root:
            return Path(self.data_root).expanduser().resolve()
        if self.media_root:
            return Path(self.media_root).expanduser().resolve() / ".remote-viewer"
        return Path.cwd() / "data" / "local"


@dataclass(frozen=True)
class RemoteConfig:
    """FTP settings after the configured check has passed."""

    host: str
    user: str
    password: str
    port: int
    remote_path: str
    secure: bool

    @property
    def base_dir(self) -> str:
        """Directory of FTP_REMOTE_PATH, e.g. "/media/videos/index.json" -> "/media/videos"."""
        return posixpath.dirname(self.remote_path)


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("REMOTEVIEWER_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)

    # 3) Walk up from this file to find nearest .env
    here = Path(__file__).resolve()
    for parent in here.parents:
        candidate = parent / ".env"
        if candidate.is_file():
            return str(candidate)
    return None


# Global settings instance (load from best-effort .env discovery)
_env_file = _resolve_env_file()
settings = Settings(_env_file=_env_file) if _env_file else Settings()  # type: ignore[call-arg]
