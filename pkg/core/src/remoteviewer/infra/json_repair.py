"""
Corruption detection and repair for JSON documents in a DocumentStore.

The failure mode seen in practice is an interrupted upload: the document is
cut off mid-value. Recovery runs an ordered list of named strategies and stops
at the first one that yields an object containing the expected top-level key:

1. ``balanced_span``      - the first complete ``{...}`` object in the text
2. ``truncate_and_close`` - shorter and shorter prefixes, cut back to the last
                            closed entry and completed with the missing closers

The original bytes are always uploaded to a timestamped backup object before
the caller is handed a recovered document, so repair never destroys evidence.
"""

from __future__ import annotations

import bisect
import json
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Literal, Protocol

from .exceptions import CorruptedStateError, NotFoundError, RemoteViewerError
from .logging import get_logger
from .remote_store import DocumentStore

_log = get_logger(__name__)

StatusKind = Literal["ok", "corrupted", "not_found", "error"]

_CLOSERS = {"{": "}", "[": "]"}


class RepairStrategy(Protocol):
    name: str

    def attempt(self, raw: str, expected_key: str) -> dict[str, Any] | None:
        """Return a recovered document or None."""
        ...


def _loads_object(candidate: str, expected_key: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    if isinstance(parsed, dict) and expected_key in parsed:
        return parsed
    return None


def _structural_chars(raw: str, start: int = 0) -> Iterator[tuple[int, str]]:
    """Yield (index, char) for braces and brackets outside string literals."""
    in_string = False
    escape_next = False
    for i in range(start, len(raw)):
        char = raw[i]
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{}[]":
            yield i, char


class BalancedSpanStrategy:
    """Extract the first balanced object starting at the first '{'."""

    name = "balanced_span"

    def attempt(self, raw: str, expected_key: str) -> dict[str, Any] | None:
        first = raw.find("{")
        if first == -1:
            return None
        depth = 0
        for i, char in _structural_chars(raw, first):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    document = _loads_object(raw[first : i + 1], expected_key)
                    if document is not None:
                        _log.info("json_repair_balanced_span", start=first, end=i + 1)
                        return document
        return None


@dataclass
class TruncateAndCloseStrategy:
    """
    Cut the text back in fixed-size steps and close what is still open.

    Each cut snaps back to the last position where an entry of the top-level
    container was closed, so complete entries survive and the half-written one
    is dropped. Cuts needing ``max_missing`` or more closers are skipped.
    """

    step: int = 100
    max_missing: int = 10
    max_attempts: int = 500
    name: str = "truncate_and_close"

    def attempt(self, raw: str, expected_key: str) -> dict[str, Any] | None:
        boundaries = self._entry_boundaries(raw)
        if not boundaries:
            return None
        ends = [cut for cut, _ in boundaries]
        tried: set[int] = set()
        end = len(raw)
        attempts = 0
        while end > 0 and attempts < self.max_attempts:
            index = bisect.bisect_right(ends, end) - 1
            if index < 0:
                break
            cut, open_stack = boundaries[index]
            if cut not in tried:
                tried.add(cut)
                attempts += 1
                if len(open_stack) < self.max_missing:
                    closers = "".join(_CLOSERS[opener] for opener in reversed(open_stack))
                    document = _loads_object(raw[:cut] + closers, expected_key)
                    if document is not None:
                        _log.info(
                            "json_repair_truncated",
                            cut=cut,
                            original_length=len(raw),
                            closers_added=len(closers),
                        )
                        return document
            end = min(end - self.step, cut - 1)
        return None

    @staticmethod
    def _entry_boundaries(raw: str) -> list[tuple[int, tuple[str, ...]]]:
        """Positions just after a container closes at depth <= 2, with the openers still pending."""
        first = raw.find("{")
        if first == -1:
            return []
        stack: list[str] = []
        boundaries: list[tuple[int, tuple[str, ...]]] = []
        for i, char in _structural_chars(raw, first):
            if char in "{[":
                stack.append(char)
                continue
            if not stack or _CLOSERS[stack[-1]] != char:
                # Mismatched closer: nothing after this point is trustworthy
                break
            stack.pop()
            if 1 <= len(stack) <= 2:
                boundaries.append((i + 1, tuple(stack)))
        return boundaries


DEFAULT_STRATEGIES: tuple[RepairStrategy, ...] = (
    BalancedSpanStrategy(),
    TruncateAndCloseStrategy(),
)


@dataclass
class Recovery:
    document: dict[str, Any]
    strategy: str


def recover_document(
    raw: str,
    expected_key: str,
    strategies: Sequence[RepairStrategy] = DEFAULT_STRATEGIES,
) -> Recovery | None:
    """Run the strategies in order; first success wins."""
    for strategy in strategies:
        document = strategy.attempt(raw, expected_key)
        if document is not None:
            return Recovery(document=document, strategy=strategy.name)
        _log.info("json_repair_strategy_failed", strategy=strategy.name)
    return None


def entry_names(document: dict[str, Any], expected_key: str) -> list[str]:
    container = document.get(expected_key)
    if isinstance(container, dict):
        return list(container.keys())
    if isinstance(container, list):
        return [
            str(entry.get("relPath", index)) if isinstance(entry, dict) else str(index)
            for index, entry in enumerate(container)
        ]
    return []


def backup_name(name: str, at_ms: int) -> str:
    """schedule.json -> schedule.backup.<ms>.json, next to the original."""
    path = PurePosixPath(name)
    backup = f"{path.stem}.backup.{at_ms}{path.suffix}"
    return str(path.with_name(backup))


@dataclass
class RepairReport:
    was_corrupted: bool
    recovered_entry_count: int
    backup_location: str | None = None
    strategy: str | None = None
    entries: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "wasCorrupted": self.was_corrupted,
            "recoveredEntryCount": self.recovered_entry_count,
            "backupLocation": self.backup_location,
            "strategy": self.strategy,
            "entries": self.entries,
        }


@dataclass
class StatusReport:
    status: StatusKind
    message: str
    entry_count: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status, "message": self.message}
        if self.entry_count is not None:
            data["entryCount"] = self.entry_count
        if self.error is not None:
            data["error"] = self.error
        return data


class DocumentRepairer:
    """Detects corrupted documents and recovers them, backing up the original bytes first."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        strategies: Sequence[RepairStrategy] = DEFAULT_STRATEGIES,
        clock_ms: Callable[[], int] | None = None,
    ):
        self.store = store
        self.strategies = tuple(strategies)
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    def check_status(self, name: str, expected_key: str = "channels") -> StatusReport:
        """Read-only status of a document; never writes."""
        try:
            raw = self.store.download(name)
        except NotFoundError:
            return StatusReport("not_found", f"{name} does not exist")
        except RemoteViewerError as e:
            return StatusReport("error", f"Error checking {name}: {e}", error=str(e))

        try:
            parsed = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            return StatusReport("corrupted", f"{name} is corrupted: {e}", error=str(e))

        if not isinstance(parsed, dict) or not isinstance(parsed.get(expected_key), (dict, list)):
            return StatusReport(
                "corrupted",
                f"{name} parses but has no valid '{expected_key}' member",
                error="missing expected key",
            )
        count = len(parsed[expected_key])
        return StatusReport("ok", f"{name} is valid with {count} entries", entry_count=count)

    def recover(self, name: str, raw: bytes, expected_key: str) -> tuple[dict[str, Any], RepairReport]:
        """
        Recover a document from corrupted bytes.

        The raw bytes are uploaded unmodified to a backup object first. Raises
        CorruptedStateError if no strategy recovers the document; the backup
        is kept in that case too.
        """
        text = raw.decode("utf-8", errors="replace")
        backup_location = self.store.upload(backup_name(name, self._clock_ms()), raw)
        _log.info("json_repair_backup_written", document=name, backup=backup_location, size=len(raw))

        recovery = recover_document(text, expected_key, self.strategies)
        if recovery is None:
            _log.error("json_repair_failed", document=name, size=len(raw))
            raise CorruptedStateError(
                f"Could not repair {name} - manual intervention required "
                f"(backup at {backup_location}, preview: {text[:200]!r})",
                raw=raw,
            )

        entries = entry_names(recovery.document, expected_key)
        report = RepairReport(
            was_corrupted=True,
            recovered_entry_count=len(entries),
            backup_location=backup_location,
            strategy=recovery.strategy,
            entries=entries,
        )
        _log.info(
            "json_repair_recovered",
            document=name,
            strategy=recovery.strategy,
            entries=len(entries),
        )
        return recovery.document, report
