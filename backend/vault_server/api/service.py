"""
Service layer for the Workflow Vault.

VaultServicer is the single entry point the API layer talks to. It wires
the Record Store, Version Ledger, Archive Builder, Archive Catalog and
Restore Engine together and returns JSON-ready dicts.

Invariants:
    - Every document write snapshots the previous state first, under the
      document lock and the tree lock
    - Deleting a document creates no version entry
    - Listings skip entries that cannot be read or decoded
    - Errors propagate as VaultError subclasses; the HTTP layer maps them
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..archive import ArchiveBuilder, ArchiveCatalog
from ..config import ServerConfig
from ..errors import CorruptEntryError, NotFoundError, Outcome, StoreIOError, successes
from ..store import RecordStore, StoreLayout
from ..store.record_store import encode_document, validate_document_id
from ..tools.restore import RestoreEngine
from ..versions import KEEP_LIMIT, VersionEntry, VersionLedger
from .._version import __version__

logger = logging.getLogger(__name__)


class VaultServicer:
    """Operations exposed to the API layer.

    Attributes:
        record_store: Live document store
        ledger: Version Ledger
        builder: Archive Builder
        catalog: Archive Catalog
        restorer: Restore Engine
    """

    def __init__(
        self,
        record_store: RecordStore,
        ledger: VersionLedger,
        builder: ArchiveBuilder,
        catalog: ArchiveCatalog,
        restorer: RestoreEngine,
    ) -> None:
        self.record_store = record_store
        self.ledger = ledger
        self.builder = builder
        self.catalog = catalog
        self.restorer = restorer

    @classmethod
    def from_layout(
        cls,
        layout: StoreLayout,
        keep_limit: int = KEEP_LIMIT,
        compression: str = "none",
    ) -> VaultServicer:
        """Build every component over one layout."""
        layout.ensure()
        store = RecordStore(layout)
        builder = ArchiveBuilder(store)
        catalog = ArchiveCatalog(layout)
        return cls(
            record_store=store,
            ledger=VersionLedger(store, keep_limit=keep_limit, compression=compression),
            builder=builder,
            catalog=catalog,
            restorer=RestoreEngine(store, builder, catalog),
        )

    @classmethod
    def from_config(cls, config: ServerConfig) -> VaultServicer:
        return cls.from_layout(
            StoreLayout.from_config(config.storage),
            keep_limit=config.versions.keep_limit,
            compression=config.versions.compression,
        )

    # Documents

    async def save_document(
        self,
        document: Dict[str, Any],
        document_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace a document, snapshotting its previous state first.

        Args:
            document: Full document body
            document_id: Id from the request path; defaults to document["id"]

        Returns:
            Dict with the stored document, whether it was created, and the
            key of the version entry taken (None on create)

        Raises:
            ValueError: If the id is missing/invalid or nodes/edges are not lists
        """
        document_id = validate_document_id(str(document_id or document.get("id") or ""))
        for field_name in ("nodes", "edges"):
            if not isinstance(document.get(field_name, []), list):
                raise ValueError(f"'{field_name}' must be a list")
        document = {**document, "id": document_id}

        async with self.record_store.locks.writing(document_id):
            entry = await self.ledger.capture(document_id)
            await self.record_store.put(document_id, encode_document(document))

        logger.info(
            "Saved document",
            extra={
                "document_id": document_id,
                "new_document": entry is None,
                "version": entry.key if entry else None,
            },
        )
        return {
            "document": document,
            "created": entry is None,
            "version": entry.key if entry else None,
        }

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        return await self.record_store.get_document(validate_document_id(document_id))

    async def delete_document(self, document_id: str) -> bool:
        document_id = validate_document_id(document_id)
        async with self.record_store.locks.writing(document_id):
            return await self.record_store.delete(document_id)

    async def list_documents(self) -> List[Dict[str, Any]]:
        """Summaries of every readable document."""
        outcomes: List[Outcome[Dict[str, Any]]] = []
        for document_id in await self.record_store.list():
            try:
                document = await self.record_store.get_document(document_id)
            except (CorruptEntryError, NotFoundError, StoreIOError) as e:
                outcomes.append(Outcome(source=document_id, error=e))
                continue
            nodes = document.get("nodes")
            outcomes.append(
                Outcome(
                    source=document_id,
                    value={
                        "id": document_id,
                        "name": document.get("name", document_id),
                        "nodes": len(nodes) if isinstance(nodes, list) else 0,
                        "tags": document.get("tags", []),
                        "teamId": document.get("teamId"),
                        "ownerId": document.get("ownerId"),
                    },
                )
            )
        return successes(outcomes, logger)

    # Archives

    async def create_backup(self) -> Dict[str, Any]:
        handle = await self.builder.build()
        return {"success": True, "message": "Backup created", **handle.to_dict()}

    async def list_backups(self) -> List[Dict[str, Any]]:
        return [descriptor.to_dict() for descriptor in await self.catalog.list()]

    async def backup_info(self, name: str) -> Dict[str, Any]:
        summary = await self.catalog.inspect(name)
        return summary.to_dict()

    async def restore_backup(self, name: str) -> Dict[str, Any]:
        result = await self.restorer.restore(name)
        return {"success": True, **result.to_dict()}

    # Versions

    async def list_versions(self, document_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """List versions with their display name, newest first.

        Without a document id the listing spans every document and is
        capped at the retention limit.
        """
        if document_id:
            entries = await self.ledger.list(validate_document_id(document_id))
        else:
            entries = await self.ledger.list_all(limit=self.ledger.keep_limit)

        outcomes = [await self._describe(entry) for entry in entries]
        described = successes(outcomes, logger)
        for index, info in enumerate(described):
            info["version"] = index + 1
        return described

    async def _describe(self, entry: VersionEntry) -> Outcome[Dict[str, Any]]:
        try:
            document = await self.ledger.read(entry.key)
        except (CorruptEntryError, NotFoundError, StoreIOError) as e:
            return Outcome(source=entry.key, error=e)
        info = entry.to_dict()
        info["name"] = document.get("name") or entry.document_id
        return Outcome(source=entry.key, value=info)

    async def get_version(self, key: str) -> Dict[str, Any]:
        return await self.ledger.read(key)

    async def restore_version(self, key: str) -> Dict[str, Any]:
        owner = self.ledger.entry_for(key).document_id
        async with self.record_store.locks.writing(owner):
            entry = await self.ledger.restore_to_live(key)
        return {
            "success": True,
            "message": "Workflow version restored",
            "id": entry.document_id,
            "file": entry.key,
        }

    async def health(self) -> Dict[str, Any]:
        layout = self.record_store.layout
        dirs = {
            "data_dir": layout.data_dir,
            "archive_dir": layout.archive_dir,
            "versions_dir": layout.versions_dir,
        }
        missing = [name for name, path in dirs.items() if not path.is_dir()]
        return {"healthy": not missing, "missing": missing, "version": __version__}
