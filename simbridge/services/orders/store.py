"""Order store.

Persists parsed orders and their line items. All writes for one email happen
in a single session and commit together, so an order is only visible once all
of its valid items are stored.
"""

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import joinedload

from simbridge.common.db import insert_for
from simbridge.common.errors import OrderItemNotFound
from simbridge.common.logging import logger
from simbridge.common.metrics import order_items_skipped_total, orders_upserted_total
from simbridge.common.state_machine import (
    ORDER_COMPLETED,
    ORDER_FAILED,
    ORDER_RECEIVED,
    is_terminal_order_status,
    validate_transition,
)
from simbridge.services.orders.models import Order, OrderItem
from simbridge.services.orders.schemas import SaveOrderResult, SkippedItem
from simbridge.services.parser.schemas import ParsedItem, ParsedOrder
from simbridge.services.sync.models import SyncLogEntry


ORDER_MUTABLE_FIELDS = (
    "purchase_date",
    "reseller_name",
    "customer_name",
    "customer_email",
    "alternative_email",
    "mobile_number",
    "payment_status",
    "remarks",
)

ITEM_MUTABLE_FIELDS = (
    "product_name",
    "product_variant",
    "sku",
    "visit_date",
    "quantity",
    "unit_price",
)


def item_skip_reason(item: ParsedItem) -> str | None:
    """Return why an item cannot be stored, or None when it is valid."""

    if not item.confirmation_code:
        return "missing_confirmation_code"
    if not item.sku:
        return "missing_sku"
    if item.quantity < 1:
        return "invalid_quantity"
    return None


class OrderStore:
    """Owns the `orders` and `order_items` tables."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def save_parsed_order(self, parsed: ParsedOrder) -> SaveOrderResult:
        """Upsert the order and every valid item in one transaction."""

        item_ids: list[str] = []
        saved_codes: list[str] = []
        skipped: list[SkippedItem] = []
        with self.session_factory() as db:
            try:
                order_id = self.upsert_order(db, parsed)
                for item in parsed.items:
                    reason = item_skip_reason(item)
                    if reason:
                        logger.warning(
                            "order item skipped reference=%s code=%s reason=%s",
                            parsed.reference_number,
                            item.confirmation_code,
                            reason,
                        )
                        order_items_skipped_total.labels(reason=reason).inc()
                        skipped.append(SkippedItem(confirmation_code=item.confirmation_code, reason=reason))
                        continue
                    item_ids.append(self.upsert_order_item(db, order_id, item))
                    saved_codes.append(item.confirmation_code)

                has_items = db.execute(
                    select(exists().where(OrderItem.order_id == order_id))
                ).scalar()
                status = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one()
                if not has_items and not is_terminal_order_status(status):
                    # Nothing left to fulfill for this reference.
                    self._set_status(db, order_id, ORDER_FAILED)
                    status = ORDER_FAILED
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("order batch rolled back reference=%s", parsed.reference_number)
                raise

        orders_upserted_total.inc()
        logger.info(
            "order saved reference=%s items=%s skipped=%s status=%s",
            parsed.reference_number,
            len(item_ids),
            len(skipped),
            status,
        )
        return SaveOrderResult(
            order_id=order_id,
            reference_number=parsed.reference_number,
            status=status,
            item_ids=item_ids,
            saved_codes=saved_codes,
            skipped=skipped,
        )

    def upsert_order(self, db, parsed: ParsedOrder) -> str:
        """Insert or overwrite mutable fields by reference number; status is never reset."""

        values = {field: getattr(parsed, field) for field in ORDER_MUTABLE_FIELDS}
        stmt = insert_for(db, Order).values(
            reference_number=parsed.reference_number,
            status=ORDER_RECEIVED,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["reference_number"],
            set_={**values, "updated_at": func.now()},
        )
        db.execute(stmt)
        return db.execute(
            select(Order.id).where(Order.reference_number == parsed.reference_number)
        ).scalar_one()

    def upsert_order_item(self, db, order_id: str, item: ParsedItem) -> str | None:
        """Insert or overwrite an item by confirmation code; `order_id` is never reassigned."""

        if item_skip_reason(item):
            return None
        values = {field: getattr(item, field) for field in ITEM_MUTABLE_FIELDS}
        stmt = insert_for(db, OrderItem).values(
            order_id=order_id,
            confirmation_code=item.confirmation_code,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["confirmation_code"],
            set_={**values, "updated_at": func.now()},
        )
        db.execute(stmt)
        return db.execute(
            select(OrderItem.id).where(OrderItem.confirmation_code == item.confirmation_code)
        ).scalar_one()

    def _set_status(self, db, order_id: str, new_status: str, from_status: str | None = None) -> bool:
        """Compare-and-swap the order status inside an open session."""

        current = db.execute(select(Order.status).where(Order.id == order_id)).scalar_one_or_none()
        if current is None:
            return False
        if from_status is not None and current != from_status:
            return False
        if current == new_status:
            return False
        validate_transition(current, new_status)
        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(status=new_status, updated_at=func.now())
        )
        return result.rowcount == 1

    def update_order_status(self, order_id: str, status: str, from_status: str | None = None) -> bool:
        """Apply a validated status transition.

        Same-state writes are a no-op returning False. With `from_status` the
        write only happens when the order is currently in that state. Raises
        `InvalidTransition` for transitions the state machine forbids.
        """

        with self.session_factory() as db:
            applied = self._set_status(db, order_id, status, from_status)
            db.commit()
        if applied:
            logger.info("order status updated order_id=%s status=%s", order_id, status)
        return applied

    def get_order_by_reference(self, reference_number: str) -> Order | None:
        with self.session_factory() as db:
            return db.execute(
                select(Order).where(Order.reference_number == reference_number)
            ).scalar_one_or_none()

    def find_item_by_confirmation_code(self, confirmation_code: str) -> OrderItem | None:
        with self.session_factory() as db:
            return db.execute(
                select(OrderItem)
                .options(joinedload(OrderItem.order))
                .where(OrderItem.confirmation_code == confirmation_code)
            ).scalar_one_or_none()

    def find_item_by_id(self, item_id: str) -> OrderItem | None:
        with self.session_factory() as db:
            return db.execute(
                select(OrderItem).options(joinedload(OrderItem.order)).where(OrderItem.id == item_id)
            ).scalar_one_or_none()

    def list_items(self, order_id: str) -> list[OrderItem]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.created_at)
                ).scalars()
            )

    def mark_item_completed(self, item_id: str) -> bool:
        """Stamp `completed_at` once; completes the order when every item is done."""

        with self.session_factory() as db:
            item = db.get(OrderItem, item_id)
            if item is None:
                raise OrderItemNotFound(item_id)
            result = db.execute(
                update(OrderItem)
                .where(OrderItem.id == item_id, OrderItem.completed_at.is_(None))
                .values(completed_at=func.now(), updated_at=func.now())
            )
            applied = result.rowcount == 1
            remaining = db.execute(
                select(func.count())
                .select_from(OrderItem)
                .where(OrderItem.order_id == item.order_id, OrderItem.completed_at.is_(None))
            ).scalar_one()
            status = db.execute(select(Order.status).where(Order.id == item.order_id)).scalar_one()
            if remaining == 0 and not is_terminal_order_status(status):
                self._set_status(db, item.order_id, ORDER_COMPLETED)
            db.commit()
        if applied:
            logger.info("order item completed item_id=%s code=%s", item_id, item.confirmation_code)
        return applied

    def find_items_never_synced(self, target_service: str, limit: int = 50) -> list[OrderItem]:
        """Items with no ledger row at all for `target_service`, oldest first."""

        with self.session_factory() as db:
            synced = exists().where(
                SyncLogEntry.confirmation_code == OrderItem.confirmation_code,
                SyncLogEntry.target_service == target_service,
            )
            return list(
                db.execute(
                    select(OrderItem)
                    .join(Order, Order.id == OrderItem.order_id)
                    .options(joinedload(OrderItem.order))
                    .where(~synced, Order.status != ORDER_FAILED)
                    .order_by(OrderItem.created_at)
                    .limit(limit)
                ).scalars()
            )
