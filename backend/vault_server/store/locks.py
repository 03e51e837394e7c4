"""
In-process locks for the Record Store.

Two kinds of lock:
- per-document: serializes read current -> snapshot -> write new for one id
- tree: taken by every document write, by the Archive Builder's copy step
  and by the whole of a restore, so archives see a point-in-time tree

Lock order is always document lock first, then tree lock.

Invariants:
    - A document lock exists only while some writer holds or awaits it
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class StoreLocks:
    """Per-document locks plus one tree-wide lock."""

    def __init__(self) -> None:
        self.tree = asyncio.Lock()
        self._documents: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        """Number of document locks currently held or awaited."""
        return len(self._documents)

    @asynccontextmanager
    async def writing(self, document_id: str) -> AsyncIterator[None]:
        """Hold both locks needed to replace one document."""
        lock = self._documents.setdefault(document_id, asyncio.Lock())
        self._users[document_id] = self._users.get(document_id, 0) + 1
        try:
            async with lock:
                async with self.tree:
                    yield
        finally:
            self._users[document_id] -= 1
            if not self._users[document_id]:
                del self._users[document_id]
                del self._documents[document_id]
