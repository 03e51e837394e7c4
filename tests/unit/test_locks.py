"""
Unit tests for store locks.

Tests cover:
- Serialization of writers of one document
- Removal of document locks once released
"""

import asyncio

import pytest

from backend.vault_server.store import StoreLocks


class TestStoreLocks:
    """Tests for StoreLocks."""

    @pytest.mark.asyncio
    async def test_writers_of_one_document_serialize(self):
        locks = StoreLocks()
        events = []

        async def writer(label):
            async with locks.writing("wf-1"):
                events.append(f"{label} start")
                await asyncio.sleep(0)
                events.append(f"{label} end")

        await asyncio.gather(writer("a"), writer("b"))

        assert events == ["a start", "a end", "b start", "b end"]

    @pytest.mark.asyncio
    async def test_lock_kept_while_awaited(self):
        locks = StoreLocks()
        entered = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.writing("wf-1"):
                entered.set()
                await release.wait()

        async def waiter():
            async with locks.writing("wf-1"):
                pass

        holding = asyncio.create_task(holder())
        await entered.wait()
        waiting = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        assert len(locks) == 1

        release.set()
        await asyncio.gather(holding, waiting)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_locks_removed_after_release(self):
        locks = StoreLocks()
        for document_id in ("wf-1", "wf-2", "wf-3"):
            async with locks.writing(document_id):
                assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_removed_when_writer_fails(self):
        locks = StoreLocks()

        with pytest.raises(RuntimeError):
            async with locks.writing("wf-1"):
                raise RuntimeError("write failed")

        assert len(locks) == 0
        assert not locks.tree.locked()
