"""Sync ledger database model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from simbridge.common.db import Base, JSONPayload


class SyncLogEntry(Base):
    """Latest delivery attempt of one confirmation code to one target service.

    A SUCCESS row is never overwritten; see `SyncLedger.upsert_log`.
    """

    __tablename__ = "sync_logs"
    __table_args__ = (
        UniqueConstraint("confirmation_code", "target_service", name="uq_sync_logs_code_target"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    confirmation_code: Mapped[str] = mapped_column(String, index=True)
    reference_number: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    target_service: Mapped[str] = mapped_column(String)
    request_payload: Mapped[dict] = mapped_column(JSONPayload)
    response_payload: Mapped[dict | None] = mapped_column(JSONPayload, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
