"""
Document stores: the byte-level primitives the JSON synchronizer builds on.

Two implementations share the DocumentStore protocol:

- FtpDocumentStore talks to the remote FTP server configured through
  FTP_HOST / FTP_USER / FTP_PASS / FTP_REMOTE_PATH. Every operation opens its
  own connection with an explicit timeout, like the editor routes always did.
- LocalDocumentStore keeps the same documents in a local directory so local
  mode goes through the same read-modify-write contract.

Library errors are translated at this boundary: a missing object becomes
NotFoundError, timeouts and dropped connections become TransientNetworkError,
anything else the server refuses becomes RemoteStoreError.
"""

from __future__ import annotations

import ftplib
import io
import logging
import os
import posixpath
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .exceptions import NotFoundError, RemoteStoreError, TransientNetworkError
from .settings import RemoteConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteFileInfo:
    """A file found by a directory listing."""

    rel_path: str
    size: int | None
    modified_at: str | None


class DocumentStore(Protocol):
    """Byte-level object store addressed by names relative to its base directory."""

    def locate(self, name: str) -> str:
        """Full location of ``name`` for operator-facing reports."""
        ...

    def download(self, name: str) -> bytes:
        """Return the object's bytes. Raises NotFoundError when absent."""
        ...

    def upload(self, name: str, data: bytes) -> str:
        """Create or overwrite an object and return its location."""
        ...

    def rename(self, source: str, target: str) -> None:
        """Move ``source`` onto ``target``, replacing it."""
        ...

    def delete(self, name: str) -> None:
        ...

    def list_files(self, subdir: str = "") -> list[RemoteFileInfo]:
        """Recursively list regular files below ``subdir``."""
        ...


def _is_not_found(error: ftplib.error_perm) -> bool:
    return str(error).startswith("550")


def _parse_mdtm(value: str | None) -> str | None:
    """Convert an FTP timestamp (YYYYMMDDHHMMSS[.fff], UTC) to ISO-8601."""
    if not value:
        return None
    raw = value.strip().split(".", 1)[0]
    try:
        parsed = datetime.strptime(raw[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return parsed.isoformat().replace("+00:00", "Z")


class FtpDocumentStore:
    """DocumentStore backed by an FTP (or explicit FTPS) server."""

    def __init__(
        self,
        config: RemoteConfig,
        *,
        timeout: float = 15.0,
        list_timeout: float = 10.0,
        ftp_factory: Callable[..., ftplib.FTP] | None = None,
    ):
        """
        Initialize the store.

        Args:
            config: Validated FTP settings; documents live next to FTP_REMOTE_PATH
            timeout: Connect/read timeout for single-object operations
            list_timeout: Timeout for directory listings
            ftp_factory: Connection constructor, defaults to FTP or FTP_TLS
        """
        self.config = config
        self.base_dir = config.base_dir
        self.timeout = timeout
        self.list_timeout = list_timeout
        if ftp_factory is None:
            ftp_factory = ftplib.FTP_TLS if config.secure else ftplib.FTP
        self._ftp_factory = ftp_factory

    def locate(self, name: str) -> str:
        if self.base_dir and self.base_dir != ".":
            return posixpath.join(self.base_dir, name)
        return name

    @contextmanager
    def _connect(self, timeout: float | None = None) -> Iterator[ftplib.FTP]:
        ftp = self._ftp_factory(timeout=timeout or self.timeout)
        try:
            try:
                ftp.connect(self.config.host, self.config.port)
                ftp.login(self.config.user, self.config.password)
                if isinstance(ftp, ftplib.FTP_TLS):
                    ftp.prot_p()
            except ftplib.error_perm as e:
                raise RemoteStoreError(f"FTP login rejected: {e}") from e
            yield ftp
        except (ftplib.error_temp, ftplib.error_reply, ftplib.error_proto, EOFError, OSError) as e:
            raise TransientNetworkError(f"FTP connection to {self.config.host} failed: {e}") from e
        finally:
            try:
                ftp.close()
            except OSError:
                pass

    def _ensure_dir(self, ftp: ftplib.FTP, directory: str) -> None:
        if not directory or directory in (".", "/"):
            return
        current = "/" if directory.startswith("/") else ""
        for part in [p for p in directory.split("/") if p]:
            current = posixpath.join(current, part) if current else part
            try:
                ftp.mkd(current)
            except ftplib.error_perm:
                # 550 when it already exists
                pass

    def download(self, name: str) -> bytes:
        path = self.locate(name)
        buffer = io.BytesIO()
        with self._connect() as ftp:
            try:
                ftp.retrbinary(f"RETR {path}", buffer.write)
            except ftplib.error_perm as e:
                if _is_not_found(e):
                    raise NotFoundError(f"{path} does not exist") from e
                raise RemoteStoreError(f"Download of {path} refused: {e}") from e
        return buffer.getvalue()

    def upload(self, name: str, data: bytes) -> str:
        path = self.locate(name)
        with self._connect() as ftp:
            try:
                self._ensure_dir(ftp, posixpath.dirname(path))
                ftp.storbinary(f"STOR {path}", io.BytesIO(data))
            except ftplib.error_perm as e:
                raise RemoteStoreError(f"Upload of {path} refused: {e}") from e
        return path

    def rename(self, source: str, target: str) -> None:
        source_path = self.locate(source)
        target_path = self.locate(target)
        with self._connect() as ftp:
            try:
                ftp.rename(source_path, target_path)
            except ftplib.error_perm as e:
                if _is_not_found(e):
                    raise NotFoundError(f"{source_path} does not exist") from e
                raise RemoteStoreError(
                    f"Rename {source_path} -> {target_path} refused: {e}"
                ) from e

    def delete(self, name: str) -> None:
        path = self.locate(name)
        with self._connect() as ftp:
            try:
                ftp.delete(path)
            except ftplib.error_perm as e:
                if _is_not_found(e):
                    raise NotFoundError(f"{path} does not exist") from e
                raise RemoteStoreError(f"Delete of {path} refused: {e}") from e

    def list_files(self, subdir: str = "") -> list[RemoteFileInfo]:
        root = self.locate(subdir) if subdir else (self.base_dir or ".")
        files: list[RemoteFileInfo] = []
        with self._connect(self.list_timeout) as ftp:
            self._walk(ftp, root, "", files)
        return files

    def _walk(self, ftp: ftplib.FTP, root: str, prefix: str, out: list[RemoteFileInfo]) -> None:
        directory = posixpath.join(root, prefix) if prefix else root
        try:
            entries = list(ftp.mlsd(directory, facts=["type", "size", "modify"]))
        except ftplib.error_perm as e:
            if _is_not_found(e):
                raise NotFoundError(f"{directory} does not exist") from e
            # Server without MLSD: flat listing with per-file SIZE/MDTM
            logger.debug("MLSD unsupported on %s (%s), falling back to NLST", directory, e)
            self._walk_nlst(ftp, directory, prefix, out)
            return

        for entry_name, facts in entries:
            if entry_name in (".", "..") or entry_name.startswith("."):
                continue
            rel = posixpath.join(prefix, entry_name) if prefix else entry_name
            kind = facts.get("type", "")
            if kind == "dir":
                self._walk(ftp, root, rel, out)
            elif kind == "file":
                size = facts.get("size")
                out.append(
                    RemoteFileInfo(
                        rel_path=rel,
                        size=int(size) if size and size.isdigit() else None,
                        modified_at=_parse_mdtm(facts.get("modify")),
                    )
                )

    def _walk_nlst(self, ftp: ftplib.FTP, directory: str, prefix: str, out: list[RemoteFileInfo]) -> None:
        for entry in ftp.nlst(directory):
            entry_name = posixpath.basename(entry)
            if entry_name.startswith("."):
                continue
            full = posixpath.join(directory, entry_name)
            try:
                size = ftp.size(full)
            except ftplib.error_perm:
                # Directories and unreadable entries have no SIZE
                continue
            try:
                modified = _parse_mdtm(ftp.voidcmd(f"MDTM {full}")[4:])
            except ftplib.error_perm:
                modified = None
            rel = posixpath.join(prefix, entry_name) if prefix else entry_name
            out.append(RemoteFileInfo(rel_path=rel, size=size, modified_at=modified))


class LocalDocumentStore:
    """DocumentStore backed by a local directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _path(self, name: str) -> Path:
        return self.root / name

    def locate(self, name: str) -> str:
        return str(self._path(name))

    def download(self, name: str) -> bytes:
        path = self._path(name)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"{path} does not exist") from e
        except OSError as e:
            raise RemoteStoreError(f"Cannot read {path}: {e}") from e

    def upload(self, name: str, data: bytes) -> str:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise RemoteStoreError(f"Cannot write {path}: {e}") from e
        return str(path)

    def rename(self, source: str, target: str) -> None:
        try:
            os.replace(self._path(source), self._path(target))
        except FileNotFoundError as e:
            raise NotFoundError(f"{self._path(source)} does not exist") from e
        except OSError as e:
            raise RemoteStoreError(f"Cannot rename {source} -> {target}: {e}") from e

    def delete(self, name: str) -> None:
        path = self._path(name)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFoundError(f"{path} does not exist") from e
        except OSError as e:
            raise RemoteStoreError(f"Cannot delete {path}: {e}") from e

    def list_files(self, subdir: str = "") -> list[RemoteFileInfo]:
        base = self._path(subdir) if subdir else self.root
        if not base.is_dir():
            raise NotFoundError(f"{base} does not exist")
        files: list[RemoteFileInfo] = []
        for path in sorted(base.rglob("*")):
            rel = path.relative_to(base)
            if any(part.startswith(".") for part in rel.parts) or not path.is_file():
                continue
            stat = path.stat()
            modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            files.append(
                RemoteFileInfo(
                    rel_path=rel.as_posix(),
                    size=stat.st_size,
                    modified_at=modified.isoformat().replace("+00:00", "Z"),
                )
            )
        return files
