"""Fulfillment sync: deliver each order item to the fulfillment API exactly once.

The ledger check before the call and the ledger write after it make repeated
invocations (worker, retry script, admin endpoint) harmless. The confirmation
code doubles as the remote idempotency key, covering a crash between the call
and the ledger write.
"""

from typing import Any

from simbridge.common.errors import OrderItemNotFound
from simbridge.common.logging import confirmation_code_ctx, logger, reference_number_ctx
from simbridge.common.metrics import duplicate_sync_skipped_total
from simbridge.common.state_machine import (
    FULFILLMENT_TARGET,
    ORDER_PROCESSING,
    ORDER_RECEIVED,
    SYNC_FAILED,
    SYNC_SUCCESS,
)
from simbridge.services.esim.models import EsimDetail
from simbridge.services.esim.store import EsimStore
from simbridge.services.orders.models import OrderItem
from simbridge.services.orders.store import OrderStore
from simbridge.services.sync.client import FulfillmentClient
from simbridge.services.sync.ledger import SyncLedger
from simbridge.services.sync.schemas import BatchSendResult, SyncLogWrite


def build_order_payload(item: OrderItem) -> dict[str, Any]:
    """Canonical `POST /orders` body from an item joined with its order."""

    order = item.order
    return {
        "confirmationCode": item.confirmation_code,
        "referenceNumber": order.reference_number,
        "purchaseDate": order.purchase_date.isoformat() if order.purchase_date else None,
        "customer": {
            "name": order.customer_name,
            "email": order.customer_email,
            "alternativeEmail": order.alternative_email,
            "mobileNumber": order.mobile_number,
        },
        "product": {
            "name": item.product_name,
            "variant": item.product_variant,
            "sku": item.sku,
            "visitDate": item.visit_date.isoformat() if item.visit_date else None,
            "quantity": item.quantity,
            "unitPrice": float(item.unit_price) if item.unit_price is not None else None,
        },
        "paymentStatus": order.payment_status,
        "remarks": order.remarks,
    }


class FulfillmentSyncService:
    """Sends order items to the fulfillment API and stores the provisioning result."""

    def __init__(
        self,
        orders: OrderStore,
        ledger: SyncLedger,
        esims: EsimStore,
        client: FulfillmentClient,
        target_service: str = FULFILLMENT_TARGET,
    ) -> None:
        self.orders = orders
        self.ledger = ledger
        self.esims = esims
        self.client = client
        self.target_service = target_service

    def send_item(self, confirmation_code: str) -> EsimDetail | None:
        """Deliver one item; returns None when it was already delivered.

        Raises `OrderItemNotFound` for unknown codes. Any delivery or storage
        failure is written to the ledger as FAILED and re-raised.
        """

        confirmation_code_ctx.set(confirmation_code)
        item = self.orders.find_item_by_confirmation_code(confirmation_code)
        if item is None:
            raise OrderItemNotFound(confirmation_code)
        reference_number = item.order.reference_number
        reference_number_ctx.set(reference_number)

        if self.ledger.is_already_synced(confirmation_code, self.target_service):
            logger.info("duplicate delivery skipped code=%s target=%s", confirmation_code, self.target_service)
            duplicate_sync_skipped_total.labels(target_service=self.target_service).inc()
            return None

        payload = build_order_payload(item)
        response = None
        try:
            response = self.client.create_order(payload, idempotency_key=confirmation_code)
            esim = self.esims.insert_provisioning(item.id, response.material)
            if not self.esims.mark_completed(esim.id):
                logger.info("esim already provisioned code=%s status=%s", confirmation_code, esim.status)
            self.ledger.upsert_log(
                SyncLogWrite(
                    confirmation_code=confirmation_code,
                    reference_number=reference_number,
                    target_service=self.target_service,
                    status=SYNC_SUCCESS,
                    request_payload=payload,
                    response_payload=response.body,
                )
            )
        except Exception as exc:
            self.ledger.upsert_log(
                SyncLogWrite(
                    confirmation_code=confirmation_code,
                    reference_number=reference_number,
                    target_service=self.target_service,
                    status=SYNC_FAILED,
                    request_payload=payload,
                    response_payload=response.body if response is not None else getattr(exc, "response_body", None),
                    error_message=str(exc),
                )
            )
            logger.error("fulfillment delivery failed code=%s error=%s", confirmation_code, exc)
            raise

        self.orders.update_order_status(item.order_id, ORDER_PROCESSING, from_status=ORDER_RECEIVED)
        logger.info("fulfillment delivered code=%s iccid=%s", confirmation_code, esim.iccid)
        return esim

    def send_multiple(self, confirmation_codes: list[str]) -> BatchSendResult:
        """Sequential delivery; one failure neither stops nor undoes the others."""

        result = BatchSendResult()
        for code in confirmation_codes:
            try:
                esim = self.send_item(code)
            except Exception as exc:
                logger.warning("batch delivery failed code=%s error=%s", code, exc)
                result.failed[code] = str(exc)
                continue
            if esim is None:
                result.skipped.append(code)
            else:
                result.succeeded.append(code)
        return result
