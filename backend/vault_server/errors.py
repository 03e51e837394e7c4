"""
Error types for the Workflow Vault.

This module defines the exceptions raised by the store components:
- VaultError: Base exception
- NotFoundError: Missing document, version or archive
- StoreIOError: Filesystem read/write/move failure
- CorruptEntryError: Stored content that cannot be decoded
- RestoreError: Restore failed after the safety archive was taken

It also defines Outcome, the per-item result used by listing operations
so that one bad entry never aborts an enumeration.

Invariants:
    - All errors inherit from VaultError
    - Errors carry a stable code and details for the API layer
    - RestoreError always names the safety archive it created
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


class VaultError(Exception):
    """Base exception for all vault errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "VAULT_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "error_code": self.code, **self.details}


class NotFoundError(VaultError):
    """Resource not found.

    Raised when:
    - Document doesn't exist
    - Version key doesn't resolve to an entry
    - Archive name isn't in the archive directory
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class StoreIOError(VaultError):
    """Filesystem operation failed.

    Wraps the underlying OSError, which is kept as __cause__.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="IO_ERROR",
            details={"path": path, "operation": operation},
        )
        self.path = path
        self.operation = operation


class CorruptEntryError(VaultError):
    """Stored content could not be decoded.

    Skipped by listings, raised only when the entry is requested by key.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message, code="CORRUPT_ENTRY", details={"key": key})
        self.key = key


class RestoreError(VaultError):
    """Restore failed after live state may have been touched.

    Attributes:
        stage: Restore stage that failed (wipe, recreate, extract)
        safety_archive: Archive holding the pre-restore state; re-run
            restore against it to recover
    """

    def __init__(
        self,
        message: str,
        stage: str,
        safety_archive: str,
        archive: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="RESTORE_FAILED",
            details={
                "stage": stage,
                "safety_backup": safety_archive,
                "archive": archive,
            },
        )
        self.stage = stage
        self.safety_archive = safety_archive
        self.archive = archive


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of processing one enumerated item.

    Attributes:
        source: Name of the item (file name, key)
        value: Decoded value when successful
        error: Error when the item could not be processed
    """

    source: str
    value: Optional[T] = None
    error: Optional[VaultError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def successes(outcomes: Iterable[Outcome[T]], logger: logging.Logger) -> List[T]:
    """Keep successful values, logging every failure."""
    values: List[T] = []
    for outcome in outcomes:
        if outcome.ok:
            values.append(outcome.value)
        else:
            logger.warning(
                f"Skipping {outcome.source}: {outcome.error}",
                extra={"source": outcome.source, "error_code": outcome.error.code},
            )
    return values
