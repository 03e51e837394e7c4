"""
Restore Engine and CLI for the Workflow Vault.

Replaces the live data dir with the contents of an archive:
1. Verify: read every member header of the chosen archive
2. SafetyBackup: archive the current live tree
3. Wipe: remove every live entry (everything but the archive dir)
4. Recreate: make sure the data, archive and versions dirs exist
5. Extract: unpack the chosen archive into the data dir

Usage:
    vault-restore --list
    vault-restore data_backup_20250921_184637000000.tar.gz [--data-dir ./data]

Invariants:
    - Nothing live is touched before the safety archive exists
    - An unreadable archive fails Verify, before any archive is built
    - The tree lock is held from SafetyBackup through Extract
    - A failure after SafetyBackup raises RestoreError naming the safety
      archive; restoring that archive recovers the previous state
    - Archive members under the archive dir are never extracted

How to change safely:
    - Keep the stage order; the safety archive must come first
    - Test restore with archives written by older releases
"""

from __future__ import annotations

import argparse
import asyncio
import gzip
import logging
import shutil
import sys
import tarfile
import time
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

from ..archive import ArchiveBuilder, ArchiveCatalog
from ..config import ServerConfig, StorageConfig
from ..errors import CorruptEntryError, RestoreError, StoreIOError, VaultError
from ..store import RecordStore, StoreLayout

logger = logging.getLogger(__name__)


class RestoreStage(Enum):
    """Stages of a restore, in execution order."""

    SAFETY_BACKUP = "safety_backup"
    WIPE = "wipe"
    RECREATE = "recreate"
    EXTRACT = "extract"


@dataclass
class RestoreResult:
    """Result of a successful restore.

    Attributes:
        archive: Archive that was restored
        safety_archive: Archive holding the state that was replaced
        restored_entries: Number of archive members extracted
        duration_ms: Total restore duration
    """

    archive: str
    safety_archive: str
    restored_entries: int
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "archive": self.archive,
            "safety_backup": self.safety_archive,
            "restored_entries": self.restored_entries,
            "duration_ms": self.duration_ms,
        }


def _top_level(member_name: str) -> str:
    parts = [p for p in PurePosixPath(member_name).parts if p not in (".", "/")]
    return parts[0] if parts else ""


class RestoreEngine:
    """Replaces the live tree with an archive, safety archive first.

    Example:
        >>> engine = RestoreEngine(store, builder, catalog)
        >>> result = await engine.restore("data_backup_20250921_184637000000.tar.gz")
        >>> result.safety_archive
        'data_backup_20250922_090000000000.tar.gz'
    """

    def __init__(
        self,
        record_store: RecordStore,
        builder: ArchiveBuilder,
        catalog: ArchiveCatalog,
    ) -> None:
        self.record_store = record_store
        self.layout = record_store.layout
        self.builder = builder
        self.catalog = catalog

    async def _run(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def restore(self, name: str) -> RestoreResult:
        """Restore the live tree from an archive.

        Raises:
            NotFoundError: If the archive does not exist (nothing touched)
            CorruptEntryError: If the archive cannot be read (nothing touched)
            StoreIOError: If the safety archive cannot be built (nothing touched)
            RestoreError: If wipe, recreate or extract fails
        """
        start_time = time.time()
        archive_path = self.catalog.resolve(name)
        await self._run(self._verify_sync, name, archive_path)

        async with self.record_store.locks.tree:
            logger.info("Starting restore", extra={"archive": name})

            safety = await self.builder.build(locked=True)
            logger.info(
                "Safety archive created",
                extra={"archive": name, "safety_archive": safety.name},
            )

            stage = RestoreStage.WIPE
            try:
                await self._run(self._wipe_sync)
                stage = RestoreStage.RECREATE
                await self._run(self.layout.ensure)
                stage = RestoreStage.EXTRACT
                restored = await self._run(self._extract_sync, archive_path)
            except Exception as e:
                logger.error(
                    f"Restore failed during {stage.value}: {e}",
                    exc_info=True,
                    extra={"archive": name, "safety_archive": safety.name},
                )
                raise RestoreError(
                    f"Restore of {name} failed during {stage.value}: {e}. "
                    f"Restore {safety.name} to recover the previous state.",
                    stage=stage.value,
                    safety_archive=safety.name,
                    archive=name,
                ) from e

        result = RestoreResult(
            archive=name,
            safety_archive=safety.name,
            restored_entries=restored,
            duration_ms=int((time.time() - start_time) * 1000),
        )
        logger.info("Restore completed", extra=result.to_dict())
        return result

    def _verify_sync(self, name: str, archive_path: Path) -> int:
        """Read the whole archive once so truncation shows before the wipe."""
        try:
            with tarfile.open(archive_path, "r:gz") as tar:
                return len(tar.getmembers())
        except (tarfile.TarError, gzip.BadGzipFile, EOFError, zlib.error) as e:
            raise CorruptEntryError(f"Cannot read archive {name}: {e}", key=name) from e
        except OSError as e:
            raise StoreIOError(
                f"Cannot read archive {name}: {e}", path=str(archive_path), operation="verify"
            ) from e

    def _wipe_sync(self) -> None:
        for entry in self.layout.live_entries():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def _extract_sync(self, archive_path: Path) -> int:
        reserved = self.layout.reserved_entry
        with tarfile.open(archive_path, "r:gz") as tar:
            members = []
            for member in tar.getmembers():
                if reserved and _top_level(member.name) == reserved:
                    logger.warning(
                        f"Skipping archive member inside the archive dir: {member.name}"
                    )
                    continue
                members.append(member)
            tar.extractall(self.layout.data_dir, members=members, filter="data")
        return len(members)


def build_engine(storage: StorageConfig) -> RestoreEngine:
    layout = StoreLayout.from_config(storage)
    layout.ensure()
    store = RecordStore(layout)
    return RestoreEngine(store, ArchiveBuilder(store), ArchiveCatalog(layout))


def main() -> None:
    """CLI entry point for restore tool."""
    parser = argparse.ArgumentParser(
        description="Restore the workflow data dir from a backup archive"
    )
    parser.add_argument("archive", nargs="?", help="Archive file name to restore")
    parser.add_argument("--list", action="store_true", help="List available archives")
    parser.add_argument("--data-dir", help="Data directory (default: $DATA_DIR or ./data)")
    parser.add_argument("--archive-dir", help="Archive directory (default: <data-dir>/backups)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    storage = config.storage
    if args.data_dir or args.archive_dir:
        storage = StorageConfig(
            data_dir=args.data_dir or storage.data_dir,
            archive_dir=args.archive_dir or (None if args.data_dir else storage.archive_dir),
            versions_dir=storage.versions_dir,
            scratch_dir=storage.scratch_dir,
        )

    engine = build_engine(storage)

    if args.list:
        for descriptor in asyncio.run(engine.catalog.list()):
            info = descriptor.to_dict()
            print(f"{info['file']}  {info['date']}  {info['size_bytes']} bytes")
        sys.exit(0)

    if not args.archive:
        parser.error("archive is required unless --list is given")

    try:
        result = asyncio.run(engine.restore(args.archive))
    except RestoreError as e:
        print(f"Restore failed: {e.message}", file=sys.stderr)
        print(f"  Safety backup: {e.safety_archive}", file=sys.stderr)
        sys.exit(1)
    except VaultError as e:
        print(f"Restore failed: {e.message}", file=sys.stderr)
        sys.exit(1)

    print("Restore completed successfully")
    print(f"  Archive: {result.archive}")
    print(f"  Safety backup: {result.safety_archive}")
    print(f"  Entries restored: {result.restored_entries}")
    print(f"  Duration: {result.duration_ms}ms")
    sys.exit(0)


if __name__ == "__main__":
    main()
