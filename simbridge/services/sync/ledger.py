"""Sync ledger: at-most-one successful delivery per (confirmation code, target).

Every external call is preceded by `is_already_synced` and followed by
`upsert_log`. Once a row is SUCCESS it is sticky: later writes for the same key
are ignored by the database itself, so concurrent workers cannot demote it.
"""

from sqlalchemy import func, select

from simbridge.common.db import insert_for
from simbridge.common.logging import logger
from simbridge.common.metrics import sync_attempts_total
from simbridge.common.state_machine import SYNC_FAILED, SYNC_SUCCESS
from simbridge.services.sync.models import SyncLogEntry
from simbridge.services.sync.schemas import SyncLogWrite


class SyncLedger:
    """Owns the `sync_logs` table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def is_already_synced(self, confirmation_code: str, target_service: str) -> bool:
        with self.session_factory() as db:
            status = db.execute(
                select(SyncLogEntry.status).where(
                    SyncLogEntry.confirmation_code == confirmation_code,
                    SyncLogEntry.target_service == target_service,
                )
            ).scalar_one_or_none()
        return status == SYNC_SUCCESS

    def upsert_log(self, entry: SyncLogWrite) -> bool:
        """Record an attempt in one statement; returns False when the row is already SUCCESS."""

        with self.session_factory() as db:
            stmt = insert_for(db, SyncLogEntry).values(
                confirmation_code=entry.confirmation_code,
                target_service=entry.target_service,
                reference_number=entry.reference_number,
                request_payload=entry.request_payload,
                response_payload=entry.response_payload,
                status=entry.status,
                error_message=entry.error_message,
                attempt_count=1,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["confirmation_code", "target_service"],
                set_={
                    "reference_number": func.coalesce(stmt.excluded.reference_number, SyncLogEntry.reference_number),
                    "request_payload": stmt.excluded.request_payload,
                    "response_payload": stmt.excluded.response_payload,
                    "status": stmt.excluded.status,
                    "error_message": stmt.excluded.error_message,
                    "attempt_count": SyncLogEntry.attempt_count + 1,
                    "updated_at": func.now(),
                },
                where=SyncLogEntry.status != SYNC_SUCCESS,
            )
            result = db.execute(stmt)
            db.commit()

        written = result.rowcount > 0
        if written:
            sync_attempts_total.labels(target_service=entry.target_service, status=entry.status).inc()
        else:
            logger.info(
                "sync log write ignored, already SUCCESS code=%s target=%s",
                entry.confirmation_code,
                entry.target_service,
            )
        return written

    def get_failed_logs(self, target_service: str | None = None, limit: int = 50) -> list[SyncLogEntry]:
        """FAILED rows, oldest attempt first."""

        with self.session_factory() as db:
            stmt = select(SyncLogEntry).where(SyncLogEntry.status == SYNC_FAILED)
            if target_service is not None:
                stmt = stmt.where(SyncLogEntry.target_service == target_service)
            stmt = stmt.order_by(SyncLogEntry.updated_at, SyncLogEntry.created_at).limit(limit)
            return list(db.execute(stmt).scalars())

    def find_latest_attempt(self, confirmation_code: str, target_service: str) -> SyncLogEntry | None:
        with self.session_factory() as db:
            return db.execute(
                select(SyncLogEntry).where(
                    SyncLogEntry.confirmation_code == confirmation_code,
                    SyncLogEntry.target_service == target_service,
                )
            ).scalar_one_or_none()
