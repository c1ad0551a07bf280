"""Persistence store for execution history."""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from swapbridge.history.models import ExecutionRecord, ExecutionRow


class HistoryStore(ABC):
    """Opaque async row store over execution records."""

    @abstractmethod
    async def list(self, limit: Optional[int] = None) -> list[ExecutionRecord]:
        """Records, newest first."""
        pass

    @abstractmethod
    async def upsert(self, record: ExecutionRecord) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class SqlHistoryStore(HistoryStore):
    """HistoryStore backed by the ``execution_history`` table.

    Each call opens its own session from ``session_factory`` and commits.
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None):
        if session_factory is None:
            from swapbridge.history.database import get_session_factory
            session_factory = get_session_factory()
        self.session_factory = session_factory

    async def list(self, limit: Optional[int] = None) -> list[ExecutionRecord]:
        stmt = select(ExecutionRow).order_by(ExecutionRow.timestamp_ms.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return [row.to_record() for row in result.scalars().all()]

    async def _find_row(self, session: AsyncSession, record: ExecutionRecord) -> Optional[ExecutionRow]:
        """Match by hash first, then by id."""
        if record.hash:
            stmt = select(ExecutionRow).where(ExecutionRow.hash == record.hash).limit(1)
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if row is not None:
                return row
        return await session.get(ExecutionRow, record.id)

    async def upsert(self, record: ExecutionRecord) -> None:
        async with self.session_factory() as session:
            row = await self._find_row(session, record)
            if row is None:
                row = ExecutionRow(id=record.id)
                session.add(row)
            row.apply(record)
            await session.commit()

    async def clear(self) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(ExecutionRow))
            await session.commit()
