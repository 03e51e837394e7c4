"""
Archive Catalog for the Workflow Vault.

Lists the archives in the archive dir and summarizes their contents
without touching the live data dir.

Summary counts:
    - teams, owners, tags: length of the JSON list in each metadata file
    - documents: top-level *.json files other than metadata files
    - nodes: sum of len(document["nodes"]) over all documents

Invariants:
    - list() orders by the time encoded in the name, newest first
    - Names not following the archive encoding are ignored
    - inspect() extracts into a scratch dir that is always removed
    - Missing or corrupt metadata counts as zero, never as an error
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import CorruptEntryError, NotFoundError, Outcome, StoreIOError, successes
from ..store.layout import StoreLayout
from ..store.record_store import METADATA_FILES, is_document_file
from ..timestamps import encode_timestamp, format_display
from .builder import parse_archive_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveDescriptor:
    """An archive listed by the catalog.

    Attributes:
        name: File name inside the archive dir
        created_at: Creation time parsed from the name (UTC)
        size_bytes: Compressed size
    """

    name: str
    created_at: datetime
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.name,
            "date": format_display(self.created_at),
            "timestamp": encode_timestamp(self.created_at),
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class ArchiveSummary:
    """Counts of the entities held by an archive."""

    team_count: int
    owner_count: int
    tag_count: int
    document_count: int
    total_node_count: int

    def to_dict(self) -> dict[str, int]:
        return {
            "teams": self.team_count,
            "owners": self.owner_count,
            "tags": self.tag_count,
            "workflows": self.document_count,
            "nodes": self.total_node_count,
        }


class ArchiveCatalog:
    """Read-only view over the archive dir.

    Example:
        >>> catalog = ArchiveCatalog(layout)
        >>> [a.name for a in await catalog.list()]
        ['data_backup_20250922_090000000000.tar.gz', 'data_backup_20250921_184637000000.tar.gz']
        >>> (await catalog.inspect("data_backup_20250922_090000000000.tar.gz")).document_count
        3
    """

    def __init__(self, layout: StoreLayout) -> None:
        self.layout = layout

    async def _run(self, func: Any, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def list(self) -> list[ArchiveDescriptor]:
        """List archives, newest first."""
        outcomes = await self._run(self._scan_sync)
        descriptors = successes(outcomes, logger)
        return sorted(descriptors, key=lambda a: (a.created_at, a.name), reverse=True)

    def resolve(self, name: str) -> Path:
        """Return the path of an archive.

        Raises:
            NotFoundError: If no archive of that name exists
        """
        try:
            parse_archive_name(name)
        except ValueError:
            raise NotFoundError(
                f"Archive not found: {name}", resource_type="archive", resource_id=name
            ) from None
        path = self.layout.archive_dir / name
        if not path.is_file():
            raise NotFoundError(
                f"Archive not found: {name}", resource_type="archive", resource_id=name
            )
        return path

    async def inspect(self, name: str) -> ArchiveSummary:
        """Summarize the contents of an archive.

        Raises:
            NotFoundError: If the archive does not exist
            CorruptEntryError: If the archive cannot be extracted
        """
        path = self.resolve(name)
        summary = await self._run(self._inspect_sync, name, path)
        logger.info("Inspected archive", extra={"archive": name, **summary.to_dict()})
        return summary

    def _scan_sync(self) -> list[Outcome[ArchiveDescriptor]]:
        archive_dir = self.layout.archive_dir
        if not archive_dir.exists():
            return []
        try:
            paths = [p for p in archive_dir.iterdir() if not p.name.startswith(".")]
        except OSError as e:
            raise StoreIOError(
                f"Cannot list {archive_dir}: {e}", path=str(archive_dir), operation="list"
            ) from e

        outcomes: list[Outcome[ArchiveDescriptor]] = []
        for path in paths:
            try:
                created_at = parse_archive_name(path.name)
            except ValueError:
                # versions dir, stray files
                continue
            try:
                size = path.stat().st_size
            except OSError as e:
                outcomes.append(
                    Outcome(
                        source=path.name,
                        error=StoreIOError(str(e), path=str(path), operation="stat"),
                    )
                )
                continue
            outcomes.append(
                Outcome(
                    source=path.name,
                    value=ArchiveDescriptor(name=path.name, created_at=created_at, size_bytes=size),
                )
            )
        return outcomes

    def _inspect_sync(self, name: str, path: Path) -> ArchiveSummary:
        try:
            if self.layout.scratch_dir:
                self.layout.scratch_dir.mkdir(parents=True, exist_ok=True)
            scratch = Path(tempfile.mkdtemp(prefix="vault-inspect-", dir=self.layout.scratch_dir))
        except OSError as e:
            raise StoreIOError(
                f"Cannot create scratch dir: {e}",
                path=str(self.layout.scratch_dir or tempfile.gettempdir()),
                operation="mkdtemp",
            ) from e

        try:
            try:
                with tarfile.open(path, "r:gz") as tar:
                    tar.extractall(scratch, filter="data")
            except (tarfile.TarError, EOFError) as e:
                raise CorruptEntryError(f"Cannot extract archive {name}: {e}", key=name) from e
            except OSError as e:
                raise StoreIOError(
                    f"Cannot extract archive {name}: {e}", path=str(path), operation="extract"
                ) from e

            documents = sorted(
                p for p in scratch.iterdir() if p.is_file() and is_document_file(p.name)
            )
            return ArchiveSummary(
                team_count=_count_list(scratch / METADATA_FILES["teams"]),
                owner_count=_count_list(scratch / METADATA_FILES["owners"]),
                tag_count=_count_list(scratch / METADATA_FILES["tags"]),
                document_count=len(documents),
                total_node_count=sum(_count_nodes(p) for p in documents),
            )
        finally:
            try:
                shutil.rmtree(scratch)
            except OSError as e:
                logger.warning(f"Failed to remove scratch dir {scratch}: {e}")


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return None


def _count_list(path: Path) -> int:
    data = _load_json(path)
    return len(data) if isinstance(data, list) else 0


def _count_nodes(path: Path) -> int:
    data = _load_json(path)
    if isinstance(data, dict) and isinstance(data.get("nodes"), list):
        return len(data["nodes"])
    return 0
