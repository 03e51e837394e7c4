"""
Version module for the Workflow Vault.

This module keeps per-document history:
- Snapshot of the previous state before every overwrite
- Newest-first listing and key-based reads
- Retention cap with pruning after every snapshot

Invariants:
    - Entries are immutable once written
    - Readers accept plain and gzip-compressed entries
"""

from .ledger import KEEP_LIMIT, VersionEntry, VersionLedger, parse_version_key

__all__ = ["VersionLedger", "VersionEntry", "KEEP_LIMIT", "parse_version_key"]
