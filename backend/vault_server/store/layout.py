"""
Directory layout handle for the vault.

StoreLayout carries the three root paths every component works on:
- data_dir: live Record Store (documents + metadata files)
- archive_dir: full-directory archives
- versions_dir: Version Ledger entries

It is built once at process start and passed to every component.

Invariants:
    - The archive dir is never part of an archive, a wipe or an extract
    - When the archive dir is nested in the data dir, the whole top-level
      entry containing it is reserved
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..config import StorageConfig


@dataclass(frozen=True)
class StoreLayout:
    """Root paths of the vault.

    Attributes:
        data_dir: Directory holding current documents and metadata files
        archive_dir: Directory holding tar.gz archives
        versions_dir: Directory holding version entries
        scratch_dir: Parent for scratch dirs (None = system temp dir)
    """

    data_dir: Path
    archive_dir: Path
    versions_dir: Path
    scratch_dir: Path | None = None

    @classmethod
    def from_config(cls, config: StorageConfig) -> StoreLayout:
        return cls(
            data_dir=Path(config.data_dir).resolve(),
            archive_dir=Path(config.resolved_archive_dir).resolve(),
            versions_dir=Path(config.resolved_versions_dir).resolve(),
            scratch_dir=Path(config.scratch_dir).resolve() if config.scratch_dir else None,
        )

    @classmethod
    def under(cls, root: str | Path) -> StoreLayout:
        """Default layout rooted at ``root`` (data, data/backups, data/backups/versions)."""
        data_dir = Path(root).resolve()
        archive_dir = data_dir / "backups"
        return cls(
            data_dir=data_dir,
            archive_dir=archive_dir,
            versions_dir=archive_dir / "versions",
        )

    def ensure(self) -> None:
        """Create every root directory that is missing."""
        for directory in (self.data_dir, self.archive_dir, self.versions_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def reserved_entry(self) -> str | None:
        """Top-level data dir entry that contains the archive dir, if any."""
        try:
            relative = self.archive_dir.relative_to(self.data_dir)
        except ValueError:
            return None
        if not relative.parts:
            raise ValueError("archive_dir must not be the data_dir itself")
        return relative.parts[0]

    def live_entries(self) -> list[Path]:
        """Top-level entries of the data dir that belong to the live tree."""
        if not self.data_dir.exists():
            return []
        reserved = self.reserved_entry
        return sorted(p for p in self.data_dir.iterdir() if p.name != reserved)
