"""De-duplicated execution history.

The in-memory list is authoritative for the session. Every mutation is
mirrored to the store by a background write; a failed write is logged and
never rolls back or blocks the in-memory change.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from swapbridge.history.models import ExecutionRecord, now_ms
from swapbridge.history.store import HistoryStore

logger = logging.getLogger(__name__)


class HistoryRecorder:
    """In-memory history with best-effort persistence."""

    def __init__(self, store: Optional[HistoryStore] = None):
        self.store = store
        self._records: list[ExecutionRecord] = []
        self._write_lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @property
    def records(self) -> list[ExecutionRecord]:
        """Snapshot, newest first."""
        return list(self._records)

    def _index_of(self, hash: Optional[str] = None, id: Optional[str] = None) -> Optional[int]:
        if hash:
            for i, record in enumerate(self._records):
                if record.hash == hash:
                    return i
        if id:
            for i, record in enumerate(self._records):
                if record.id == id:
                    return i
        return None

    def get(self, key: str) -> Optional[ExecutionRecord]:
        """Look up by hash, then by id."""
        index = self._index_of(hash=key, id=key)
        return self._records[index] if index is not None else None

    def record(self, incoming: ExecutionRecord) -> ExecutionRecord:
        """Insert or merge a record (match by hash, then by id)."""
        index = self._index_of(hash=incoming.hash, id=incoming.id)
        if index is None:
            self._records.insert(0, incoming)
            result = incoming
            logger.debug(f"History insert {incoming.kind.value} {incoming.id} ({incoming.status.value})")
        else:
            result = self._records[index].merged(incoming)
            self._records[index] = result
            logger.debug(f"History merge {result.id} ({result.status.value})")

        self._persist(result)
        return result

    def update(self, key: str, **changes) -> Optional[ExecutionRecord]:
        """Apply field changes to the record matching ``key`` (hash or id)."""
        index = self._index_of(hash=key, id=key)
        if index is None:
            logger.warning(f"History update for unknown record {key}")
            return None

        changes.setdefault("last_update_ms", now_ms())
        result = replace(self._records[index], **changes)
        self._records[index] = result
        self._persist(result)
        return result

    def clear(self) -> None:
        """Delete all history (explicit user action)."""
        self._records.clear()
        if self.store is not None:
            self._spawn(self._clear_store())

    async def load(self) -> list[ExecutionRecord]:
        """Replace the in-memory view with the persisted rows."""
        if self.store is None:
            return self.records
        try:
            self._records = await self.store.list()
        except Exception as e:
            logger.error(f"Failed to load execution history: {e}")
        return self.records

    async def flush(self) -> None:
        """Wait for all pending writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _persist(self, record: ExecutionRecord) -> None:
        if self.store is not None:
            self._spawn(self._write(record))

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, history change not persisted")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, record: ExecutionRecord) -> None:
        async with self._write_lock:
            try:
                await self.store.upsert(record)
            except Exception as e:
                logger.error(f"Failed to persist history record {record.id}: {e}")

    async def _clear_store(self) -> None:
        async with self._write_lock:
            try:
                await self.store.clear()
            except Exception as e:
                logger.error(f"Failed to clear persisted history: {e}")
