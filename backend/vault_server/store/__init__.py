"""
Record Store module for the Workflow Vault.

This module holds the live state of the editor:
- StoreLayout: root paths for data, archives and versions
- RecordStore: one JSON file per workflow document
- StoreLocks: per-document and tree-wide asyncio locks

Invariants:
    - Only the Restore Engine replaces the data dir wholesale
    - Document writes are atomic per file
"""

from .layout import StoreLayout
from .locks import StoreLocks
from .record_store import METADATA_FILES, RecordStore, is_document_file

__all__ = ["StoreLayout", "StoreLocks", "RecordStore", "METADATA_FILES", "is_document_file"]
