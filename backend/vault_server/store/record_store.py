"""
Record Store for workflow documents.

This module manages the flat directory of JSON files that holds the
current state of every workflow:
- <data_dir>/<document_id>.json: one file per workflow document
- <data_dir>/tags.json, teams.json, owners.json: metadata lists

The Record Store is a thin I/O wrapper. It does not version anything by
itself; callers snapshot through the Version Ledger before each put that
overwrites an existing document.

Invariants:
    - Document ids are sanitized to prevent path traversal
    - put() replaces a file atomically (temp file + os.replace)
    - Metadata files are never treated as documents

How to change safely:
    - Keep the <id>.json naming; archives and versions depend on it
    - Test with archives produced by older releases
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from ..errors import CorruptEntryError, NotFoundError, StoreIOError
from .layout import StoreLayout
from .locks import StoreLocks

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIX = ".json"
METADATA_FILES = {
    "tags": "tags.json",
    "teams": "teams.json",
    "owners": "owners.json",
}

_ALLOWED_ID_CHARS = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


def is_document_file(name: str) -> bool:
    """Tell whether a top-level file name holds a workflow document."""
    return (
        name.endswith(DOCUMENT_SUFFIX)
        and not name.startswith(".")
        and name not in METADATA_FILES.values()
    )


def validate_document_id(document_id: str) -> str:
    """Return the id unchanged if it is safe to use as a file stem.

    Raises:
        ValueError: If the id is empty, hidden, names a metadata file or
            contains characters outside [A-Za-z0-9_.-]
    """
    if not document_id or document_id.startswith("."):
        raise ValueError(f"Invalid document id: {document_id!r}")
    if any(c not in _ALLOWED_ID_CHARS for c in document_id):
        raise ValueError(f"Invalid document id: {document_id!r}")
    if f"{document_id}{DOCUMENT_SUFFIX}" in METADATA_FILES.values():
        raise ValueError(f"Document id collides with metadata file: {document_id!r}")
    return document_id


def encode_document(document: dict[str, Any]) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def decode_document(payload: bytes, key: str) -> dict[str, Any]:
    """Decode a JSON document, raising CorruptEntryError if unreadable."""
    try:
        document = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptEntryError(f"Cannot decode {key}: {e}", key=key) from e
    if not isinstance(document, dict):
        raise CorruptEntryError(f"{key} does not hold a JSON object", key=key)
    return document


def write_atomic(path: Path, payload: bytes) -> None:
    """Write bytes to path through a sibling temp file and os.replace."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class RecordStore:
    """Directory of current-state workflow documents.

    Blocking file access runs in the default executor so the event loop
    never stalls on disk I/O.

    Attributes:
        layout: Directory layout handle
        locks: Locks shared by every writer of this store

    Example:
        >>> store = RecordStore(StoreLayout.under("./data"))
        >>> await store.put("wf-1", b'{"id": "wf-1", "nodes": []}')
        >>> await store.list()
        ['wf-1']
    """

    def __init__(self, layout: StoreLayout, locks: StoreLocks | None = None) -> None:
        self.layout = layout
        self.locks = locks if locks is not None else StoreLocks()

    @property
    def data_dir(self) -> Path:
        return self.layout.data_dir

    def document_path(self, document_id: str) -> Path:
        return self.data_dir / f"{validate_document_id(document_id)}{DOCUMENT_SUFFIX}"

    async def _run(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def exists(self, document_id: str) -> bool:
        return await self._run(self.document_path(document_id).exists)

    async def get(self, document_id: str) -> bytes:
        """Read the current bytes of a document.

        Raises:
            NotFoundError: If the document does not exist
            StoreIOError: If the file cannot be read
        """
        return await self._run(self._get_sync, document_id)

    async def get_or_none(self, document_id: str) -> bytes | None:
        try:
            return await self.get(document_id)
        except NotFoundError:
            return None

    async def get_document(self, document_id: str) -> dict[str, Any]:
        payload = await self.get(document_id)
        return decode_document(payload, f"{document_id}{DOCUMENT_SUFFIX}")

    async def put(self, document_id: str, payload: bytes) -> None:
        """Replace the current bytes of a document.

        This does not snapshot the previous state; see VersionLedger.capture.
        """
        await self._run(self._put_sync, document_id, payload)
        logger.debug("Stored document", extra={"document_id": document_id, "size_bytes": len(payload)})

    async def delete(self, document_id: str) -> bool:
        """Remove a document. Returns False if it did not exist."""
        deleted = await self._run(self._delete_sync, document_id)
        if deleted:
            logger.info("Deleted document", extra={"document_id": document_id})
        return deleted

    async def list(self) -> list[str]:
        """List document ids, sorted."""
        return await self._run(self._list_sync)

    def _get_sync(self, document_id: str) -> bytes:
        path = self.document_path(document_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(
                f"Document not found: {document_id}",
                resource_type="document",
                resource_id=document_id,
            ) from None
        except OSError as e:
            raise StoreIOError(f"Cannot read {path}: {e}", path=str(path), operation="read") from e

    def _put_sync(self, document_id: str, payload: bytes) -> None:
        path = self.document_path(document_id)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(path, payload)
        except OSError as e:
            raise StoreIOError(f"Cannot write {path}: {e}", path=str(path), operation="write") from e

    def _delete_sync(self, document_id: str) -> bool:
        path = self.document_path(document_id)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreIOError(f"Cannot delete {path}: {e}", path=str(path), operation="delete") from e

    def _list_sync(self) -> list[str]:
        if not self.data_dir.exists():
            return []
        try:
            return sorted(
                p.name[: -len(DOCUMENT_SUFFIX)]
                for p in self.data_dir.iterdir()
                if p.is_file() and is_document_file(p.name)
            )
        except OSError as e:
            raise StoreIOError(
                f"Cannot list {self.data_dir}: {e}", path=str(self.data_dir), operation="list"
            ) from e
