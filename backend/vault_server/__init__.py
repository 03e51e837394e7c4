"""
Workflow Vault - durability and recovery for the workflow editor's JSON store.

This package keeps the editor's flat directory of workflow documents
recoverable:
- Version Ledger: per-document snapshots of the previous state, taken
  before every overwrite
- Archive Builder: point-in-time tar.gz archives of the whole data dir
- Archive Catalog: listing and read-only inspection of archives
- Restore Engine: safety archive, wipe, extract

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │   Editor    │────▶│  HTTP API   │────▶│  VaultServicer  │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                        ┌────────────────────┬───────┴────────────┐
                        │                    │                    │
                        ▼                    ▼                    ▼
                   ┌─────────┐         ┌──────────┐        ┌───────────┐
                   │ Record  │◀────────│ Version  │        │  Archive  │
                   │ Store   │         │ Ledger   │        │  Builder  │
                   └─────────┘         └──────────┘        └─────┬─────┘
                        ▲                                        │
                        │              ┌──────────┐        ┌─────▼─────┐
                        └──────────────│ Restore  │───────▶│  Catalog  │
                                       │ Engine   │        └───────────┘
                                       └──────────┘

Invariants:
    - The previous state of a document is snapshotted before it is replaced
    - Archives are immutable and become visible only once complete
    - Only the Restore Engine replaces the data dir wholesale
    - Restore always takes a safety archive before touching live state

How to change safely:
    - Keep the timestamp key encoding fixed-width so lexical order == time order
    - Never rename existing archive or version files
    - Test restore against archives written by older releases
"""

from ._version import __version__

__all__ = ["__version__"]
