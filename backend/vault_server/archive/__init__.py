"""
Archive module for the Workflow Vault.

This module handles full-directory backups:
- ArchiveBuilder: copy-then-pack tar.gz of the live data dir
- ArchiveCatalog: newest-first listing and read-only inspection

Invariants:
    - Archives are immutable once written
    - Archives appear in the catalog only when complete
    - Archives are never pruned automatically
"""

from .builder import ARCHIVE_PREFIX, ARCHIVE_SUFFIX, ArchiveBuilder, ArchiveHandle, parse_archive_name
from .catalog import ArchiveCatalog, ArchiveDescriptor, ArchiveSummary

__all__ = [
    "ArchiveBuilder",
    "ArchiveHandle",
    "ArchiveCatalog",
    "ArchiveDescriptor",
    "ArchiveSummary",
    "ARCHIVE_PREFIX",
    "ARCHIVE_SUFFIX",
    "parse_archive_name",
]
