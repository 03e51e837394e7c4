"""
Archive Builder for the Workflow Vault.

The Archive Builder packs the whole live data dir into a single
gzip-compressed tar archive:

    <archive_dir>/data_backup_<YYYYMMDD>_<HHMMSSffffff>.tar.gz

Build steps:
    1. Create a private scratch dir
    2. Copy every live entry (everything but the archive dir) into it,
       holding the tree lock so no document write lands mid-copy
    3. Pack the copy into <archive_dir>/.<name>.partial
    4. os.replace the partial file to its final name
    5. Remove the scratch dir

Invariants:
    - A failed build never leaves a file the catalog would list
    - The scratch dir is removed on every exit path
    - The archive never contains the archive dir itself
    - Archive names sort lexically in creation order

How to change safely:
    - Keep the name encoding; the catalog parses it
    - Test restore of archives built by older releases
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import shutil
import tarfile
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import StoreIOError
from ..store.record_store import RecordStore
from ..timestamps import STAMP_PATTERN, format_display, next_free_stamp, parse_stamp_match, utc_now

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "data_backup_"
ARCHIVE_SUFFIX = ".tar.gz"
PARTIAL_SUFFIX = ".partial"

_NAME_RE = re.compile(rf"^{ARCHIVE_PREFIX}{STAMP_PATTERN}{re.escape(ARCHIVE_SUFFIX)}$")


def archive_name(stamp: str) -> str:
    return f"{ARCHIVE_PREFIX}{stamp}{ARCHIVE_SUFFIX}"


def parse_archive_name(name: str) -> datetime:
    """Return the creation time encoded in an archive name.

    Raises:
        ValueError: If the name does not follow the archive encoding
    """
    match = _NAME_RE.match(name)
    if not match:
        raise ValueError(f"Not an archive name: {name!r}")
    return parse_stamp_match(match)


@dataclass(frozen=True)
class ArchiveHandle:
    """A finished archive.

    Attributes:
        name: File name inside the archive dir
        path: Absolute path of the archive
        created_at: Point in time the live tree was copied (UTC)
        size_bytes: Compressed size
        entry_count: Top-level live entries captured
        checksum: SHA-256 of the archive file
    """

    name: str
    path: Path
    created_at: datetime
    size_bytes: int
    entry_count: int
    checksum: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.name,
            "date": format_display(self.created_at),
            "size_bytes": self.size_bytes,
            "entries": self.entry_count,
            "checksum": self.checksum,
        }


class ArchiveBuilder:
    """Builds full-directory archives with copy-then-pack.

    Attributes:
        record_store: Record Store whose data dir is archived

    Example:
        >>> builder = ArchiveBuilder(store)
        >>> handle = await builder.build()
        >>> handle.name
        'data_backup_20250921_184637123456.tar.gz'
    """

    def __init__(
        self,
        record_store: RecordStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the builder.

        Args:
            record_store: RecordStore instance
            clock: Source of the archive timestamp
        """
        self.record_store = record_store
        self.layout = record_store.layout
        self.clock = clock

    async def _run(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def build(self, locked: bool = False) -> ArchiveHandle:
        """Archive the live tree.

        Args:
            locked: True when the caller already holds the tree lock

        Returns:
            Handle of the archive now visible in the archive dir

        Raises:
            StoreIOError: If the source cannot be read or the archive written
        """
        scratch = await self._run(self._make_scratch)
        try:
            if locked:
                created_at, count = await self._run(self._copy_sync, scratch)
            else:
                async with self.record_store.locks.tree:
                    created_at, count = await self._run(self._copy_sync, scratch)

            handle = await self._run(self._pack_sync, scratch, created_at, count)
        finally:
            await self._run(self._remove_scratch, scratch)

        logger.info(
            "Created archive",
            extra={
                "archive": handle.name,
                "entries": handle.entry_count,
                "size_bytes": handle.size_bytes,
            },
        )
        return handle

    def _make_scratch(self) -> Path:
        try:
            if self.layout.scratch_dir:
                self.layout.scratch_dir.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix="vault-backup-", dir=self.layout.scratch_dir))
        except OSError as e:
            raise StoreIOError(
                f"Cannot create scratch dir: {e}",
                path=str(self.layout.scratch_dir or tempfile.gettempdir()),
                operation="mkdtemp",
            ) from e

    def _copy_sync(self, scratch: Path) -> tuple[datetime, int]:
        created_at = self.clock()
        target = scratch / "data"
        target.mkdir()

        entries = self.layout.live_entries()
        for entry in entries:
            try:
                if entry.is_dir():
                    shutil.copytree(entry, target / entry.name, symlinks=True)
                else:
                    shutil.copy2(entry, target / entry.name, follow_symlinks=False)
            except OSError as e:
                raise StoreIOError(
                    f"Cannot copy {entry} for archiving: {e}", path=str(entry), operation="copy"
                ) from e

        logger.debug(
            "Copied live tree to scratch",
            extra={"scratch": str(scratch), "entries": len(entries)},
        )
        return created_at, len(entries)

    def _pack_sync(self, scratch: Path, created_at: datetime, count: int) -> ArchiveHandle:
        archive_dir = self.layout.archive_dir
        source = scratch / "data"
        partial: Path | None = None

        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            created_at, stamp = next_free_stamp(
                created_at, lambda s: (archive_dir / archive_name(s)).exists()
            )
            name = archive_name(stamp)
            final = archive_dir / name
            partial = archive_dir / f".{name}{PARTIAL_SUFFIX}"

            with tarfile.open(partial, "w:gz") as tar:
                for entry in sorted(source.iterdir()):
                    tar.add(entry, arcname=entry.name)

            checksum = _compute_checksum(partial)
            size_bytes = partial.stat().st_size
            if final.exists():
                raise FileExistsError(f"Archive already exists: {final}")
            os.replace(partial, final)
            partial = None
        except (OSError, tarfile.TarError) as e:
            raise StoreIOError(
                f"Cannot write archive in {archive_dir}: {e}",
                path=str(archive_dir),
                operation="pack",
            ) from e
        finally:
            if partial is not None and partial.exists():
                partial.unlink()

        return ArchiveHandle(
            name=name,
            path=final,
            created_at=created_at,
            size_bytes=size_bytes,
            entry_count=count,
            checksum=checksum,
        )

    def _remove_scratch(self, scratch: Path) -> None:
        try:
            shutil.rmtree(scratch)
        except OSError as e:
            logger.warning(f"Failed to remove scratch dir {scratch}: {e}")


def _compute_checksum(file_path: Path) -> str:
    """Compute SHA-256 checksum of file."""
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return f"sha256:{sha256.hexdigest()}"
