"""Execution history records and their SQLAlchemy table."""

import time
import uuid
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def now_ms() -> int:
    return int(time.time() * 1000)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ExecutionKind(str, Enum):
    """Kind of recorded operation."""

    SWAP = "swap"
    BRIDGE = "bridge"
    SEND = "send"
    RECEIVE = "receive"


class ExecutionStatus(str, Enum):
    """Status of a recorded operation."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExecutionRecord:
    """One attempted or completed operation.

    Identity for de-duplication is ``hash`` when present, else ``id``.
    """

    kind: ExecutionKind
    status: ExecutionStatus
    description: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp_ms: int = field(default_factory=now_ms)
    hash: Optional[str] = None
    from_chain: Optional[str] = None
    to_chain: Optional[str] = None
    from_chain_id: Optional[int] = None
    to_chain_id: Optional[int] = None
    amount: Optional[str] = None
    token: Optional[str] = None
    last_update_ms: Optional[int] = None

    def merged(self, incoming: "ExecutionRecord") -> "ExecutionRecord":
        """Copy with every non-empty field of ``incoming`` applied; keeps this id."""
        changes = {
            f.name: getattr(incoming, f.name)
            for f in fields(self)
            if f.name != "id" and getattr(incoming, f.name) is not None
        }
        return replace(self, **changes)


class ExecutionRow(Base):
    """Persisted execution record."""

    __tablename__ = "execution_history"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[ExecutionKind] = mapped_column(String(20), nullable=False)
    status: Mapped[ExecutionStatus] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    from_chain: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    to_chain: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    from_chain_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    to_chain_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    amount: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    token: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    last_update_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_execution_history_timestamp", "timestamp_ms"),
    )

    def apply(self, record: ExecutionRecord) -> None:
        """Copy record fields onto the row (except the primary key)."""
        self.kind = record.kind.value
        self.status = record.status.value
        self.description = record.description
        self.timestamp_ms = record.timestamp_ms
        self.hash = record.hash
        self.from_chain = record.from_chain
        self.to_chain = record.to_chain
        self.from_chain_id = record.from_chain_id
        self.to_chain_id = record.to_chain_id
        self.amount = record.amount
        self.token = record.token
        self.last_update_ms = record.last_update_ms

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.id,
            kind=ExecutionKind(self.kind),
            status=ExecutionStatus(self.status),
            description=self.description,
            timestamp_ms=self.timestamp_ms,
            hash=self.hash,
            from_chain=self.from_chain,
            to_chain=self.to_chain,
            from_chain_id=self.from_chain_id,
            to_chain_id=self.to_chain_id,
            amount=self.amount,
            token=self.token,
            last_update_ms=self.last_update_ms,
        )

    def __repr__(self) -> str:
        return f"<ExecutionRow(id={self.id}, kind={self.kind}, status={self.status}, hash={self.hash})>"
