"""
Integration tests for the Restore Engine.

Tests cover:
- End-to-end restore with safety archive
- Version ledger surviving a restore
- Failures before and after the safety archive
- Truncated archives rejected before anything is touched
- Archive members under the archive dir being skipped
- Document writes waiting for a running restore
"""

import asyncio
import io
import json
import tarfile
import tempfile
from pathlib import Path

import pytest

from backend.vault_server.api import VaultServicer
from backend.vault_server.errors import (
    CorruptEntryError,
    NotFoundError,
    RestoreError,
    StoreIOError,
)
from backend.vault_server.store import StoreLayout


def tree_of(root: Path, skip: str | None = "backups") -> dict:
    """Map of relative path -> bytes for every file under root."""
    files = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if skip and relative.parts[0] == skip:
            continue
        if path.is_file():
            files[relative.as_posix()] = path.read_bytes()
    return files


def extract_tree(archive: Path) -> dict:
    with tempfile.TemporaryDirectory() as tmpdir:
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(tmpdir, filter="data")
        return tree_of(Path(tmpdir), skip=None)


class TestRestoreEngine:
    """Integration tests for restore through VaultServicer."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    @pytest.fixture
    def servicer(self, data_dir):
        return VaultServicer.from_layout(StoreLayout.under(data_dir))

    async def seed(self, servicer, data_dir, label, documents):
        for document_id, nodes in documents.items():
            await servicer.save_document(
                {"id": document_id, "name": f"{label} {document_id}", "nodes": nodes, "edges": []}
            )
        (data_dir / "teams.json").write_text(json.dumps([{"id": f"team-{label}"}]))

    @pytest.mark.asyncio
    async def test_restore_end_to_end(self, servicer, data_dir):
        """Restoring B over A leaves B live and A in the safety archive."""
        await self.seed(servicer, data_dir, "B", {"wf-1": [1, 2], "wf-2": []})
        archive_b = await servicer.builder.build()
        tree_b = tree_of(data_dir)

        await servicer.delete_document("wf-2")
        await self.seed(servicer, data_dir, "A", {"wf-1": [1], "wf-3": [1, 2, 3]})
        (data_dir / "assets").mkdir()
        (data_dir / "assets" / "icon.svg").write_text("<svg/>")
        tree_a = tree_of(data_dir)
        assert tree_a != tree_b

        result = await servicer.restorer.restore(archive_b.name)

        assert tree_of(data_dir) == tree_b
        assert result.archive == archive_b.name
        assert result.safety_archive != archive_b.name
        assert extract_tree(data_dir / "backups" / result.safety_archive) == tree_a

    @pytest.mark.asyncio
    async def test_restore_keeps_versions_and_archives(self, servicer, data_dir):
        """The archive dir and its versions survive a restore."""
        await self.seed(servicer, data_dir, "one", {"wf-1": []})
        archive = await servicer.builder.build()
        await self.seed(servicer, data_dir, "two", {"wf-1": [1]})
        versions_before = [e.key for e in await servicer.ledger.list("wf-1")]
        assert versions_before

        result = await servicer.restorer.restore(archive.name)

        assert [e.key for e in await servicer.ledger.list("wf-1")] == versions_before
        names = {d.name for d in await servicer.catalog.list()}
        assert names == {archive.name, result.safety_archive}

    @pytest.mark.asyncio
    async def test_missing_archive_touches_nothing(self, servicer, data_dir):
        """A missing archive fails before the safety archive is built."""
        await self.seed(servicer, data_dir, "A", {"wf-1": []})
        before = tree_of(data_dir)

        with pytest.raises(NotFoundError):
            await servicer.restorer.restore("data_backup_20200101_000000000000.tar.gz")

        assert tree_of(data_dir) == before
        assert await servicer.catalog.list() == []

    @pytest.mark.asyncio
    async def test_truncated_archive_touches_nothing(self, servicer, data_dir):
        """A truncated archive fails before the safety archive is built."""
        await self.seed(servicer, data_dir, "A", {"wf-1": [1, 2], "wf-2": []})
        archive = await servicer.builder.build()
        payload = (data_dir / "backups" / archive.name).read_bytes()
        truncated = "data_backup_20200101_000000000000.tar.gz"
        (data_dir / "backups" / truncated).write_bytes(payload[: len(payload) // 2])
        before = tree_of(data_dir)

        with pytest.raises(CorruptEntryError):
            await servicer.restorer.restore(truncated)

        assert tree_of(data_dir) == before
        names = {d.name for d in await servicer.catalog.list()}
        assert names == {archive.name, truncated}

    @pytest.mark.asyncio
    async def test_safety_backup_failure_touches_nothing(self, servicer, data_dir, monkeypatch):
        """If the safety archive fails, live state is untouched."""
        await self.seed(servicer, data_dir, "A", {"wf-1": []})
        archive = await servicer.builder.build()
        before = tree_of(data_dir)

        async def broken_build(locked=False):
            raise StoreIOError("disk full", path=str(data_dir), operation="pack")

        monkeypatch.setattr(servicer.builder, "build", broken_build)

        with pytest.raises(StoreIOError):
            await servicer.restorer.restore(archive.name)
        assert tree_of(data_dir) == before

    @pytest.mark.asyncio
    async def test_extract_failure_names_safety_archive(self, servicer, data_dir, monkeypatch):
        """A failed extract raises RestoreError, and the safety archive recovers."""
        await self.seed(servicer, data_dir, "B", {"wf-1": []})
        archive_b = await servicer.builder.build()
        await self.seed(servicer, data_dir, "A", {"wf-1": [1, 2], "wf-9": []})
        tree_a = tree_of(data_dir)

        def broken_extract(archive_path):
            raise OSError("truncated archive")

        monkeypatch.setattr(servicer.restorer, "_extract_sync", broken_extract)

        with pytest.raises(RestoreError) as exc_info:
            await servicer.restorer.restore(archive_b.name)

        error = exc_info.value
        assert error.stage == "extract"
        assert error.to_dict()["safety_backup"] == error.safety_archive
        assert (data_dir / "backups" / error.safety_archive).is_file()

        monkeypatch.undo()
        await servicer.restorer.restore(error.safety_archive)
        assert tree_of(data_dir) == tree_a

    @pytest.mark.asyncio
    async def test_members_under_archive_dir_skipped(self, servicer, data_dir):
        """Archive members inside the archive dir are never extracted."""
        name = "data_backup_20250101_000000000000.tar.gz"
        with tarfile.open(data_dir / "backups" / name, "w:gz") as tar:
            for member_name, content in (
                ("wf-1.json", b'{"id": "wf-1"}'),
                ("backups/data_backup_20990101_000000000000.tar.gz", b"junk"),
            ):
                info = tarfile.TarInfo(member_name)
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))

        result = await servicer.restorer.restore(name)

        assert result.restored_entries == 1
        assert (data_dir / "wf-1.json").is_file()
        assert not (data_dir / "backups" / "data_backup_20990101_000000000000.tar.gz").exists()

    @pytest.mark.asyncio
    async def test_document_write_waits_for_restore(self, servicer, data_dir):
        """A save issued during a restore lands after it."""
        await self.seed(servicer, data_dir, "B", {"wf-1": []})
        archive_b = await servicer.builder.build()

        restore_task = asyncio.create_task(servicer.restorer.restore(archive_b.name))
        await asyncio.sleep(0)
        saved = await servicer.save_document({"id": "wf-late", "nodes": [], "edges": []})
        await restore_task

        assert saved["created"] is True
        assert (data_dir / "wf-late.json").is_file()
