"""
Version Ledger for workflow documents.

The Version Ledger keeps an append-only history of previous document
states. Before a document is overwritten, its current bytes are copied
into the versions directory under a timestamped key:

    <versions_dir>/<document_id>_<YYYYMMDD>_<HHMMSSffffff>.json
    <versions_dir>/<document_id>_<YYYYMMDD>_<HHMMSSffffff>.json.gz

Entries written by the first editor backend
(``<document_id>_<YYYYMMDDHHMMSS><d>.json``) are listed, read, restored
and pruned like current ones.

Invariants:
    - An entry always holds the state *before* a write, never after
    - Keys of one document are strictly increasing in insertion order,
      even when the clock does not advance between snapshots
    - Listing orders by capture time, then key, newest first
    - At most keep_limit entries are kept per document; pruning failures
      never fail the write that triggered them
    - Deleting a document creates no entry

How to change safely:
    - Readers must keep accepting both .json and .json.gz entries
    - Never rename existing entries; the key encodes the capture time
"""

from __future__ import annotations

import asyncio
import gzip
import logging
import re
import zlib
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ..config import DEFAULT_KEEP_LIMIT
from ..errors import CorruptEntryError, NotFoundError, Outcome, StoreIOError, successes
from ..store.record_store import RecordStore, decode_document, write_atomic
from ..timestamps import (
    STAMP_PATTERN,
    format_display,
    next_free_stamp,
    parse_stamp_match,
    utc_now,
)

logger = logging.getLogger(__name__)

KEEP_LIMIT = DEFAULT_KEEP_LIMIT
PLAIN_SUFFIX = ".json"
COMPRESSED_SUFFIX = ".json.gz"

_KEY_RE = re.compile(rf"^(?P<document_id>.+)_{STAMP_PATTERN}(?P<suffix>\.json(?:\.gz)?)$")


@dataclass(frozen=True)
class VersionEntry:
    """Metadata of one version entry.

    Attributes:
        document_id: Document the entry belongs to
        captured_at: When the previous state was captured (UTC)
        key: File name of the entry inside the versions directory
        compressed: Whether the payload is gzip-compressed
    """

    document_id: str
    captured_at: datetime
    key: str
    compressed: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.key,
            "id": self.document_id,
            "date": format_display(self.captured_at),
            "captured_at": self.captured_at.isoformat(),
            "compressed": self.compressed,
        }


def parse_version_key(key: str) -> VersionEntry:
    """Decode a version key.

    Raises:
        CorruptEntryError: If the key does not follow the key encoding
    """
    match = _KEY_RE.match(key)
    if not match:
        raise CorruptEntryError(f"Unrecognized version key: {key}", key=key)
    try:
        captured_at = parse_stamp_match(match)
    except ValueError as e:
        raise CorruptEntryError(f"Bad timestamp in version key {key}: {e}", key=key) from e
    return VersionEntry(
        document_id=match["document_id"],
        captured_at=captured_at,
        key=key,
        compressed=match["suffix"] == COMPRESSED_SUFFIX,
    )


class VersionLedger:
    """Per-document history of previous states.

    Attributes:
        record_store: Record Store the ledger snapshots and restores into
        keep_limit: Maximum entries kept per document
        compression: "gzip" to compress new entries, "none" otherwise

    Example:
        >>> ledger = VersionLedger(store)
        >>> entry = await ledger.capture("wf-1")   # before store.put("wf-1", ...)
        >>> [e.key for e in await ledger.list("wf-1")]
        ['wf-1_20250921_184637123456.json']
    """

    def __init__(
        self,
        record_store: RecordStore,
        keep_limit: int = KEEP_LIMIT,
        compression: str = "none",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the ledger.

        Args:
            record_store: RecordStore instance
            keep_limit: Retention cap per document
            compression: Compression for new entries ("gzip" or "none")
            clock: Source of the capture timestamp
        """
        if keep_limit < 1:
            raise ValueError("keep_limit must be at least 1")
        self.record_store = record_store
        self.keep_limit = keep_limit
        self.compression = compression
        self.clock = clock

    @property
    def versions_dir(self) -> Path:
        return self.record_store.layout.versions_dir

    async def _run(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def snapshot(self, document_id: str, current: bytes | None) -> VersionEntry | None:
        """Capture the state about to be overwritten.

        Args:
            document_id: Document being overwritten
            current: Its current bytes, or None if it does not exist yet

        Returns:
            The new entry, or None when there was no prior state
        """
        if current is None:
            return None

        entry = await self._run(self._snapshot_sync, document_id, current)
        logger.info(
            "Captured version",
            extra={"document_id": document_id, "key": entry.key, "size_bytes": len(current)},
        )

        try:
            await self.prune(document_id)
        except Exception as e:
            logger.warning(f"Pruning versions of {document_id} failed: {e}", exc_info=True)

        return entry

    async def capture(self, document_id: str) -> VersionEntry | None:
        """Snapshot the current state of a document if it exists."""
        current = await self.record_store.get_or_none(document_id)
        return await self.snapshot(document_id, current)

    async def list(self, document_id: str) -> list[VersionEntry]:
        """List entries of one document, newest first."""
        outcomes = await self._run(self._scan_sync, f"{document_id}_")
        entries = [e for e in successes(outcomes, logger) if e.document_id == document_id]
        return sorted(entries, key=lambda e: (e.captured_at, e.key), reverse=True)

    async def list_all(self, limit: int | None = KEEP_LIMIT) -> list[VersionEntry]:
        """List entries of every document, newest first.

        Args:
            limit: Maximum entries returned (None for all)
        """
        outcomes = await self._run(self._scan_sync, "")
        entries = sorted(
            successes(outcomes, logger), key=lambda e: (e.captured_at, e.key), reverse=True
        )
        return entries if limit is None else entries[:limit]

    async def read_bytes(self, key: str) -> bytes:
        """Read the decompressed payload of an entry.

        Raises:
            NotFoundError: If the key does not resolve to an entry
            CorruptEntryError: If the payload cannot be decompressed
        """
        return await self._run(self._read_sync, key)

    async def read(self, key: str) -> dict[str, Any]:
        """Read and decode the document held by an entry."""
        payload = await self.read_bytes(key)
        return decode_document(payload, key)

    async def restore_to_live(self, key: str) -> VersionEntry:
        """Write an entry back as the current state of its document.

        The state being overwritten is not snapshotted: the write that
        produced it already left an entry behind.
        """
        entry = self.entry_for(key)
        payload = await self.read_bytes(key)
        document = decode_document(payload, key)
        if document.get("id", entry.document_id) != entry.document_id:
            raise CorruptEntryError(
                f"{key} holds document {document.get('id')!r}, not {entry.document_id!r}",
                key=key,
            )
        await self.record_store.put(entry.document_id, payload)
        logger.info(
            "Restored version to live",
            extra={"document_id": entry.document_id, "key": key},
        )
        return entry

    async def prune(self, document_id: str) -> int:
        """Delete entries beyond the retention cap.

        Returns:
            Number of entries deleted
        """
        excess = (await self.list(document_id))[self.keep_limit :]
        if not excess:
            return 0
        deleted = await self._run(self._delete_sync, excess)
        logger.info(
            "Pruned versions",
            extra={"document_id": document_id, "deleted": deleted, "keep_limit": self.keep_limit},
        )
        return deleted

    def entry_for(self, key: str) -> VersionEntry:
        """Resolve a key to its entry metadata, raising NotFoundError if malformed."""
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise NotFoundError(f"Version not found: {key}", resource_type="version", resource_id=key)
        try:
            return parse_version_key(key)
        except CorruptEntryError:
            raise NotFoundError(
                f"Version not found: {key}", resource_type="version", resource_id=key
            ) from None

    def _iter_names(self, prefix: str) -> Iterator[str]:
        if not self.versions_dir.exists():
            return
        for path in self.versions_dir.iterdir():
            if path.name.startswith(prefix) and not path.name.startswith("."):
                yield path.name

    def _scan_sync(self, prefix: str) -> list[Outcome[VersionEntry]]:
        outcomes: list[Outcome[VersionEntry]] = []
        try:
            names = list(self._iter_names(prefix))
        except OSError as e:
            raise StoreIOError(
                f"Cannot list {self.versions_dir}: {e}",
                path=str(self.versions_dir),
                operation="list",
            ) from e
        for name in names:
            try:
                outcomes.append(Outcome(source=name, value=parse_version_key(name)))
            except CorruptEntryError as e:
                outcomes.append(Outcome(source=name, error=e))
        return outcomes

    def _snapshot_sync(self, document_id: str, current: bytes) -> VersionEntry:
        suffix = COMPRESSED_SUFFIX if self.compression == "gzip" else PLAIN_SUFFIX

        when = self.clock()
        existing = [
            o.value
            for o in self._scan_sync(f"{document_id}_")
            if o.ok and o.value.document_id == document_id
        ]
        if existing:
            latest = max(e.captured_at for e in existing)
            if when <= latest:
                when = latest + timedelta(microseconds=1)

        def is_taken(stamp: str) -> bool:
            return any(
                (self.versions_dir / f"{document_id}_{stamp}{s}").exists()
                for s in (PLAIN_SUFFIX, COMPRESSED_SUFFIX)
            )

        captured_at, stamp = next_free_stamp(when, is_taken)
        key = f"{document_id}_{stamp}{suffix}"
        path = self.versions_dir / key
        payload = gzip.compress(current) if self.compression == "gzip" else current

        try:
            self.versions_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(path, payload)
        except OSError as e:
            raise StoreIOError(f"Cannot write {path}: {e}", path=str(path), operation="write") from e

        return VersionEntry(
            document_id=document_id,
            captured_at=captured_at,
            key=key,
            compressed=self.compression == "gzip",
        )

    def _read_sync(self, key: str) -> bytes:
        entry = self.entry_for(key)
        path = self.versions_dir / key
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(
                f"Version not found: {key}", resource_type="version", resource_id=key
            ) from None
        except OSError as e:
            raise StoreIOError(f"Cannot read {path}: {e}", path=str(path), operation="read") from e

        if not entry.compressed:
            return raw
        try:
            return gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptEntryError(f"Cannot decompress {key}: {e}", key=key) from e

    def _delete_sync(self, entries: list[VersionEntry]) -> int:
        deleted = 0
        for entry in entries:
            try:
                (self.versions_dir / entry.key).unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Cannot delete version {entry.key}: {e}")
        return deleted
