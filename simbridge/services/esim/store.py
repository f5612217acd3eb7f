"""eSIM record store.

Every status change is one conditional UPDATE guarded by the states allowed to
precede it, and reports whether it applied. `mark_as_finalizing` is the lock
that keeps two finalize attempts off the same record.
"""

from datetime import datetime

from sqlalchemy import func, select, update

from simbridge.common.db import insert_for
from simbridge.common.logging import logger
from simbridge.common.state_machine import (
    ESIM_COMPLETED,
    ESIM_DONE,
    ESIM_FAILED,
    ESIM_LOCKABLE,
    ESIM_PENDING,
    ESIM_PENDING_CONFIRMATION,
    ESIM_PROCESS,
    ESIM_READY,
    ESIM_TRANSITIONS,
    predecessors,
)
from simbridge.services.esim.models import EsimDetail
from simbridge.services.orders.models import OrderItem
from simbridge.services.sync.schemas import ProvisioningMaterial


class EsimStore:
    """Owns the `esim_details` table."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def insert_provisioning(self, order_item_id: str, material: ProvisioningMaterial) -> EsimDetail:
        """Store provisioning material once, as PENDING; an existing ICCID or order item wins."""

        apn = material.apn
        with self.session_factory() as db:
            stmt = insert_for(db, EsimDetail).values(
                order_item_id=order_item_id,
                product_name=material.product_name,
                valid_from=material.valid_from,
                valid_until=material.valid_until,
                qr_code=material.qr_code,
                iccid=material.iccid,
                smdp_address=material.smdp_address,
                activation_code=material.activation_code,
                combined_activation=material.combined_activation,
                apn_name=apn.name if apn else None,
                apn_username=apn.username if apn else None,
                apn_password=apn.password if apn else None,
                status=ESIM_PENDING,
            )
            result = db.execute(stmt.on_conflict_do_nothing())
            db.commit()
            esim = db.execute(
                select(EsimDetail).where(EsimDetail.order_item_id == order_item_id)
            ).scalar_one_or_none()
            if esim is None:
                esim = db.execute(select(EsimDetail).where(EsimDetail.iccid == material.iccid)).scalar_one()
        if result.rowcount == 0:
            logger.info("esim provisioning already stored order_item_id=%s iccid=%s", order_item_id, esim.iccid)
        return esim

    def _transition(
        self, esim_id: str, new_status: str, allowed_from: tuple[str, ...], *conditions, **values
    ) -> bool:
        with self.session_factory() as db:
            result = db.execute(
                update(EsimDetail)
                .where(EsimDetail.id == esim_id, EsimDetail.status.in_(allowed_from), *conditions)
                .values(status=new_status, updated_at=func.now(), **values)
            )
            db.commit()
        applied = result.rowcount == 1
        if not applied:
            logger.info("esim transition not applied esim_id=%s to=%s", esim_id, new_status)
        return applied

    def mark_process(self, esim_id: str) -> bool:
        return self._transition(esim_id, ESIM_PROCESS, predecessors(ESIM_PROCESS, ESIM_TRANSITIONS))

    def mark_as_finalizing(self, esim_id: str) -> bool:
        """Take the finalize lock: exactly one concurrent caller gets True."""

        return self._transition(esim_id, ESIM_PROCESS, ESIM_LOCKABLE)

    def mark_ready(self, esim_id: str) -> bool:
        return self._transition(esim_id, ESIM_READY, predecessors(ESIM_READY, ESIM_TRANSITIONS))

    def mark_completed(self, esim_id: str) -> bool:
        """Move a freshly stored record from PENDING to COMPLETED.

        Records that were already provisioned are left alone, so a late
        duplicate delivery cannot release a finalize lock.
        """

        return self._transition(
            esim_id,
            ESIM_COMPLETED,
            predecessors(ESIM_COMPLETED, ESIM_TRANSITIONS),
            EsimDetail.provisioned_at.is_(None),
            provisioned_at=func.now(),
        )

    def mark_pending_confirmation(self, esim_id: str) -> bool:
        return self._transition(
            esim_id, ESIM_PENDING_CONFIRMATION, predecessors(ESIM_PENDING_CONFIRMATION, ESIM_TRANSITIONS)
        )

    def mark_as_done(self, esim_id: str) -> bool:
        return self._transition(
            esim_id, ESIM_DONE, predecessors(ESIM_DONE, ESIM_TRANSITIONS), activated_at=func.now()
        )

    def mark_failed(self, esim_id: str) -> bool:
        return self._transition(esim_id, ESIM_FAILED, predecessors(ESIM_FAILED, ESIM_TRANSITIONS))

    def update_pdf_info(
        self,
        esim_id: str,
        pdf_file_path: str,
        upload_url: str | None = None,
        uploaded_at: datetime | None = None,
    ) -> None:
        values = {"pdf_file_path": pdf_file_path, "updated_at": func.now()}
        if upload_url is not None:
            values["upload_url"] = upload_url
        if uploaded_at is not None:
            values["pdf_uploaded_at"] = uploaded_at
        with self.session_factory() as db:
            db.execute(update(EsimDetail).where(EsimDetail.id == esim_id).values(**values))
            db.commit()

    def find_by_id(self, esim_id: str) -> EsimDetail | None:
        with self.session_factory() as db:
            return db.get(EsimDetail, esim_id)

    def find_by_order_item_id(self, order_item_id: str) -> EsimDetail | None:
        with self.session_factory() as db:
            return db.execute(
                select(EsimDetail).where(EsimDetail.order_item_id == order_item_id)
            ).scalar_one_or_none()

    def find_by_confirmation_code(self, confirmation_code: str) -> EsimDetail | None:
        with self.session_factory() as db:
            return db.execute(
                select(EsimDetail)
                .join(OrderItem, OrderItem.id == EsimDetail.order_item_id)
                .where(OrderItem.confirmation_code == confirmation_code)
            ).scalar_one_or_none()

    def _find_by_status(self, statuses: tuple[str, ...], limit: int | None = None) -> list[EsimDetail]:
        with self.session_factory() as db:
            stmt = select(EsimDetail).where(EsimDetail.status.in_(statuses)).order_by(EsimDetail.updated_at)
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(db.execute(stmt).scalars())

    def find_pending_upload(self, limit: int = 50) -> list[EsimDetail]:
        """Provisioned records that have not entered the finalize pipeline yet."""

        return self._find_by_status((ESIM_READY, ESIM_COMPLETED), limit)

    def find_done(self) -> list[EsimDetail]:
        return self._find_by_status((ESIM_DONE,))

    def find_completed_but_not_done(self, limit: int = 50) -> list[EsimDetail]:
        """Records a finalize retry pass may pick up, including earlier failures."""

        return self._find_by_status(ESIM_LOCKABLE, limit)
