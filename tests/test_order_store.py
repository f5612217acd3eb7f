"""Order store upsert, skip and status tests on SQLite."""

import pytest

from simbridge.common.errors import InvalidTransition, OrderItemNotFound
from simbridge.common.state_machine import FULFILLMENT_TARGET, SYNC_FAILED
from simbridge.services.parser.schemas import ParsedItem
from simbridge.services.sync.schemas import SyncLogWrite


def test_reingesting_same_email_is_idempotent(components, parsed_order):
    """Saving the same order twice reuses its rows."""

    first = components.orders.save_parsed_order(parsed_order(codes=("GTMSRLOW", "GTMSRLOX")))
    second = components.orders.save_parsed_order(
        parsed_order(codes=("GTMSRLOW", "GTMSRLOX"), customer_name="Jane T.")
    )

    assert second.order_id == first.order_id
    assert second.item_ids == first.item_ids
    order = components.orders.get_order_by_reference("ZRPQG8VEGT")
    assert order.customer_name == "Jane T."
    assert len(components.orders.list_items(first.order_id)) == 2


def test_reingest_does_not_reset_status(components, parsed_order):
    """Re-ingest leaves an advanced order status alone."""

    saved = components.orders.save_parsed_order(parsed_order())
    components.orders.update_order_status(saved.order_id, "PROCESSING")

    again = components.orders.save_parsed_order(parsed_order())

    assert again.status == "PROCESSING"


def test_invalid_item_is_skipped_and_order_kept(components, parsed_order):
    """Invalid items are skipped with a reason; valid ones are stored."""

    order = parsed_order(codes=("GTMSRLOW",))
    order.items.append(ParsedItem(confirmation_code="NOSKU001", quantity=1))
    order.items.append(ParsedItem(confirmation_code="ZEROQTY1", sku="WM-1", quantity=0))

    saved = components.orders.save_parsed_order(order)

    assert saved.saved_codes == ["GTMSRLOW"]
    assert {(s.confirmation_code, s.reason) for s in saved.skipped} == {
        ("NOSKU001", "missing_sku"),
        ("ZEROQTY1", "invalid_quantity"),
    }
    assert saved.status == "RECEIVED"
    assert components.orders.find_item_by_confirmation_code("NOSKU001") is None


def test_order_without_valid_items_is_failed(components, parsed_order):
    """An order with nothing to fulfill is marked FAILED."""

    order = parsed_order(codes=())
    order.items.append(ParsedItem(confirmation_code="NOSKU001"))

    saved = components.orders.save_parsed_order(order)

    assert saved.item_ids == []
    assert saved.status == "FAILED"
    assert components.orders.get_order_by_reference("ZRPQG8VEGT").status == "FAILED"


def test_batch_rolls_back_when_an_item_write_fails(components, parsed_order, monkeypatch):
    """An item write error rolls back the whole order."""

    def boom(db, order_id, item):
        raise RuntimeError("disk full")

    monkeypatch.setattr(components.orders, "upsert_order_item", boom)

    with pytest.raises(RuntimeError):
        components.orders.save_parsed_order(parsed_order())

    assert components.orders.get_order_by_reference("ZRPQG8VEGT") is None


def test_status_update_is_compare_and_swap(components, stored_order):
    """A from_status guard makes the update conditional."""

    saved = stored_order()
    orders = components.orders

    assert orders.update_order_status(saved.order_id, "PROCESSING", from_status="COMPLETED") is False
    assert orders.update_order_status(saved.order_id, "PROCESSING", from_status="RECEIVED") is True
    # Same state again is a no-op.
    assert orders.update_order_status(saved.order_id, "PROCESSING") is False
    assert orders.get_order_by_reference("ZRPQG8VEGT").status == "PROCESSING"


def test_backwards_status_update_raises(components, stored_order):
    """Moving an order backwards raises InvalidTransition."""

    saved = stored_order()
    components.orders.update_order_status(saved.order_id, "PROCESSING")

    with pytest.raises(InvalidTransition):
        components.orders.update_order_status(saved.order_id, "RECEIVED")


def test_unknown_order_status_update_returns_false(components):
    """Updating a missing order is a no-op."""

    assert components.orders.update_order_status("missing", "PROCESSING") is False


def test_order_completes_when_last_item_completes(components, stored_order):
    """The order completes with its last item."""

    saved = stored_order(codes=("GTMSRLOW", "GTMSRLOX"))
    first_id, second_id = saved.item_ids

    assert components.orders.mark_item_completed(first_id) is True
    assert components.orders.get_order_by_reference("ZRPQG8VEGT").status == "RECEIVED"

    assert components.orders.mark_item_completed(second_id) is True
    assert components.orders.get_order_by_reference("ZRPQG8VEGT").status == "COMPLETED"


def test_item_completion_is_stamped_once(components, stored_order):
    """Completing an item twice keeps the first timestamp."""

    item_id = stored_order().item_ids[0]

    assert components.orders.mark_item_completed(item_id) is True
    stamped = components.orders.find_item_by_id(item_id).completed_at
    assert components.orders.mark_item_completed(item_id) is False
    assert components.orders.find_item_by_id(item_id).completed_at == stamped


def test_completing_unknown_item_raises(components):
    """Completing a missing item raises."""

    with pytest.raises(OrderItemNotFound):
        components.orders.mark_item_completed("missing")


def test_find_items_never_synced(components, stored_order):
    """Items without any ledger row are returned for delivery."""

    stored_order(codes=("GTMSRLOW", "GTMSRLOX"))
    components.ledger.upsert_log(
        SyncLogWrite(confirmation_code="GTMSRLOW", target_service=FULFILLMENT_TARGET, status=SYNC_FAILED)
    )

    never = components.orders.find_items_never_synced(FULFILLMENT_TARGET)

    assert [item.confirmation_code for item in never] == ["GTMSRLOX"]
    assert never[0].order.reference_number == "ZRPQG8VEGT"


def test_items_of_failed_orders_are_not_retried(components, stored_order):
    """Items of FAILED orders are left out of the scan."""

    saved = stored_order()
    components.orders.update_order_status(saved.order_id, "FAILED")

    assert components.orders.find_items_never_synced(FULFILLMENT_TARGET) == []
