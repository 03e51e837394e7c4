"""
Unit tests for the service layer.

Tests cover:
- Snapshot-before-write on save
- Listings skipping entries that cannot be read
"""

import tempfile

import pytest

from backend.vault_server.api import VaultServicer
from backend.vault_server.errors import StoreIOError
from backend.vault_server.store import StoreLayout


class TestVaultServicer:
    """Tests for VaultServicer."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def servicer(self, data_dir):
        return VaultServicer.from_layout(StoreLayout.under(data_dir))

    async def save(self, servicer, document_id, name):
        return await servicer.save_document({"id": document_id, "name": name, "nodes": []})

    @pytest.mark.asyncio
    async def test_save_snapshots_previous_state(self, servicer):
        first = await self.save(servicer, "wf-1", "one")
        second = await self.save(servicer, "wf-1", "two")

        assert first["created"] is True
        assert first["version"] is None
        assert second["created"] is False
        assert (await servicer.get_version(second["version"]))["name"] == "one"

    @pytest.mark.asyncio
    async def test_list_versions_skips_unreadable_entry(self, servicer):
        """An entry that cannot be read is skipped, the rest are listed."""
        for name in ("one", "two", "three"):
            await self.save(servicer, "wf-1", name)
        (servicer.ledger.versions_dir / "wf-1_20200101_000000000000.json").mkdir()

        versions = await servicer.list_versions("wf-1")

        assert [v["name"] for v in versions] == ["two", "one"]
        assert [v["version"] for v in versions] == [1, 2]
        assert len(await servicer.list_versions()) == 2

    @pytest.mark.asyncio
    async def test_list_documents_skips_unreadable_document(self, servicer, monkeypatch):
        await self.save(servicer, "wf-1", "one")
        await self.save(servicer, "wf-2", "two")
        read_document = servicer.record_store.get_document

        async def flaky_get_document(document_id):
            if document_id == "wf-1":
                raise StoreIOError("read failed", path=document_id, operation="read")
            return await read_document(document_id)

        monkeypatch.setattr(servicer.record_store, "get_document", flaky_get_document)

        assert [d["id"] for d in await servicer.list_documents()] == ["wf-2"]

    @pytest.mark.asyncio
    async def test_document_locks_released(self, servicer):
        await self.save(servicer, "wf-1", "one")
        await self.save(servicer, "wf-2", "two")
        await servicer.delete_document("wf-1")

        assert len(servicer.record_store.locks) == 0
