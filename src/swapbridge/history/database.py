"""Engine and session wiring for the execution history database."""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from swapbridge.config import get_settings
from swapbridge.history.models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def normalize_url(url: str) -> str:
    """Force the aiosqlite driver for plain sqlite URLs."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    In-memory sqlite shares one connection so every session sees the same
    tables. File-backed sqlite gets its parent directory created.
    """
    url = normalize_url(url)
    if url.startswith("sqlite+aiosqlite://"):
        path = url.split(":///", 1)[-1]
        if not path or path == ":memory:":
            return create_async_engine(
                "sqlite+aiosqlite:///:memory:",
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=echo)


def get_engine() -> AsyncEngine:
    """Process-wide engine built from settings."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(
            settings.database_url,
            echo=settings.debug and not settings.is_production,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create the ``execution_history`` table if missing."""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Execution history schema ready")


async def open_history_store():
    """Initialise the configured database and return a store over it."""
    from swapbridge.history.store import SqlHistoryStore

    await init_db()
    return SqlHistoryStore(get_session_factory())


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
