"""
CLI tools for Workflow Vault administration.

This module provides command-line tools for:
- restore: Replace the data dir with a backup archive
- versions: Browse, restore and prune document versions

Invariants:
    - Tools work offline (no running server required)
    - Restore always takes a safety archive first
    - All operations are logged for audit
"""

from .restore import RestoreEngine, RestoreResult, RestoreStage
from .versions_cli import VersionsCLI

__all__ = ["RestoreEngine", "RestoreResult", "RestoreStage", "VersionsCLI"]
