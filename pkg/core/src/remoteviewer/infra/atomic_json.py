"""
Atomic read-modify-write of JSON documents on a store without transactions.

AtomicJsonStore serializes every operation on the same document name through
a per-name lock held in a ResourceLockTable. The table belongs to the store
instance; build one AtomicJsonStore per process and pass it to whoever needs
it. Serialization is per process only: two independently running instances
can still interleave their writes on the remote server.

Writes never touch the target directly. The document is serialized, checked
to survive a parse round trip, uploaded to a hidden temporary object and then
renamed onto the target, so readers see either the old or the new document.

Reads for an update distinguish three outcomes:

- found      -> the modifier receives the stored document
- not found  -> the caller's default is used (or NotFoundError if required)
- error      -> a network failure or an unparseable document. Substituting the
                default here can wipe good remote state, so callers choose:
                ``require_existing_on_error=True`` aborts, the legacy default
                logs a loud warning and falls back. Corrupted documents are
                first handed to the repair pipeline when ``repair_key`` is given.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Literal, TypeVar

from .exceptions import (
    CorruptedStateError,
    NotFoundError,
    RemoteViewerError,
    SerializationError,
)
from .json_repair import DocumentRepairer, RepairReport, entry_names
from .remote_store import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ReadOutcome = Literal["found", "not_found", "error"]


class ResourceLockTable:
    """One lock per resource name, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    @contextmanager
    def hold(self, name: str) -> Iterator[None]:
        lock = self.lock_for(name)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class ReadResult:
    outcome: ReadOutcome
    value: Any = None
    raw: bytes | None = None
    error: RemoteViewerError | None = None


def temp_name(name: str, at_ms: int) -> str:
    """Hidden sibling of the target: .schedule.json.tmp-<ms>-<hex>."""
    path = PurePosixPath(name)
    return str(path.with_name(f".{path.name}.tmp-{at_ms}-{uuid.uuid4().hex[:8]}"))


def serialize_document(value: Any) -> bytes:
    """Serialize and prove the text parses back to the same value."""
    try:
        text = json.dumps(value, indent=2, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Document is not JSON serializable: {e}") from e
    if json.loads(text) != value:
        raise SerializationError("Document did not survive a JSON round trip")
    return text.encode("utf-8")


class AtomicJsonStore:
    """Lock-coordinated JSON documents on top of a DocumentStore."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        locks: ResourceLockTable | None = None,
        repairer: DocumentRepairer | None = None,
        clock_ms: Callable[[], int] | None = None,
    ):
        self.store = store
        self.locks = locks if locks is not None else ResourceLockTable()
        self.repairer = repairer
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def read(self, name: str, default: T) -> T:
        """
        Read a document.

        Returns ``default`` only when the document does not exist; network
        failures raise TransientNetworkError and unparseable content raises
        CorruptedStateError.
        """
        with self.locks.hold(name):
            result = self._read(name)
        if result.outcome == "found":
            return result.value
        if result.outcome == "not_found":
            return copy.deepcopy(default)
        assert result.error is not None
        raise result.error

    def write(self, name: str, value: Any) -> str:
        """Replace a document atomically and return its location."""
        with self.locks.hold(name):
            return self._write(name, value)

    def atomic_update(
        self,
        name: str,
        modifier: Callable[[T], T | None],
        default: T,
        *,
        require_existing: bool = False,
        require_existing_on_error: bool = False,
        repair_key: str | None = None,
    ) -> T:
        """
        Read, modify and write a document without interleaving other updates of ``name``.

        Args:
            name: Document name relative to the store's base directory
            modifier: Receives the current document and returns the new one
                (returning None keeps the in-place modified argument)
            default: Seed used when the document does not exist
            require_existing: Raise NotFoundError instead of seeding the default
            require_existing_on_error: Raise instead of falling back to the
                default when the read fails
            repair_key: Top-level key a valid document contains; enables
                automatic repair of corrupted content

        Returns:
            The document as written
        """
        with self.locks.hold(name):
            current = self._current_for_update(
                name,
                default,
                require_existing=require_existing,
                require_existing_on_error=require_existing_on_error,
                repair_key=repair_key,
            )
            updated = modifier(current)
            if updated is None:
                updated = current
            self._write(name, updated)
            return updated

    def repair(self, name: str, expected_key: str = "channels") -> RepairReport:
        """
        Repair a corrupted document in place.

        A valid document is left untouched and reported as not corrupted.
        Otherwise the original bytes are backed up, a document is recovered
        and written back with the atomic write protocol.
        """
        if self.repairer is None:
            raise RemoteViewerError("No repairer configured for this store")
        with self.locks.hold(name):
            raw = self.store.download(name)
            try:
                parsed = json.loads(raw.decode("utf-8"))
            except ValueError:
                parsed = None
            if isinstance(parsed, dict) and expected_key in parsed:
                entries = entry_names(parsed, expected_key)
                logger.info("%s is valid - %d entries found", name, len(entries))
                return RepairReport(
                    was_corrupted=False,
                    recovered_entry_count=len(entries),
                    entries=entries,
                )
            document, report = self.repairer.recover(name, raw, expected_key)
            self._write(name, document)
            logger.info(
                "Repaired %s - recovered %d entries. Backup saved to %s",
                name,
                report.recovered_entry_count,
                report.backup_location,
            )
            return report

    # ------------------------------------------------------------------
    # Internals (caller holds the resource lock)
    # ------------------------------------------------------------------

    def _read(self, name: str) -> ReadResult:
        try:
            raw = self.store.download(name)
        except NotFoundError:
            return ReadResult("not_found")
        except RemoteViewerError as e:
            return ReadResult("error", error=e)

        try:
            value = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            return ReadResult(
                "error",
                raw=raw,
                error=CorruptedStateError(f"{name} is not valid JSON: {e}", raw=raw),
            )
        return ReadResult("found", value=value, raw=raw)

    def _current_for_update(
        self,
        name: str,
        default: Any,
        *,
        require_existing: bool,
        require_existing_on_error: bool,
        repair_key: str | None,
    ) -> Any:
        result = self._read(name)
        if result.outcome == "found":
            return result.value

        if result.outcome == "not_found":
            if require_existing:
                raise NotFoundError(f"{name} does not exist and require_existing is set")
            logger.info("%s not found, seeding with default", name)
            return copy.deepcopy(default)

        error = result.error
        assert error is not None
        if (
            isinstance(error, CorruptedStateError)
            and result.raw is not None
            and repair_key is not None
            and self.repairer is not None
        ):
            try:
                document, report = self.repairer.recover(name, result.raw, repair_key)
            except CorruptedStateError as e:
                error = e
            else:
                logger.warning(
                    "%s was corrupted; continuing update with %d recovered entries (backup: %s)",
                    name,
                    report.recovered_entry_count,
                    report.backup_location,
                )
                return document

        if require_existing_on_error:
            logger.error("Aborting update of %s: read failed (%s)", name, error)
            raise error

        logger.warning(
            "!!! Read of %s failed (%s); falling back to the default value. "
            "Existing remote state will be OVERWRITTEN. "
            "Pass require_existing_on_error=True to abort instead.",
            name,
            error,
        )
        return copy.deepcopy(default)

    def _write(self, name: str, value: Any) -> str:
        payload = serialize_document(value)
        temp = temp_name(name, self._clock_ms())
        self.store.upload(temp, payload)
        try:
            self.store.rename(temp, name)
        except RemoteViewerError:
            try:
                self.store.delete(temp)
            except RemoteViewerError as cleanup_error:
                logger.warning("Could not remove temporary object %s: %s", temp, cleanup_error)
            raise
        location = self.store.locate(name)
        logger.debug("Wrote %s (%d bytes)", location, len(payload))
        return location
