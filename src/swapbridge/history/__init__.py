"""Execution history: records, persistence and the de-duplicating recorder."""

from swapbridge.history.database import close_db, init_db, open_history_store
from swapbridge.history.models import (
    ExecutionKind,
    ExecutionRecord,
    ExecutionRow,
    ExecutionStatus,
)
from swapbridge.history.recorder import HistoryRecorder
from swapbridge.history.store import HistoryStore, SqlHistoryStore

__all__ = [
    # Models
    "ExecutionRecord",
    "ExecutionRow",
    # Enums
    "ExecutionKind",
    "ExecutionStatus",
    # Persistence
    "HistoryStore",
    "SqlHistoryStore",
    "HistoryRecorder",
    "close_db",
    "open_history_store",
    "init_db",
]
