"""Fulfillment API clients.

The concrete client is chosen once at startup from `Settings.fulfillment_provider`
(see `simbridge.bootstrap`); callers only see `create_order`.
"""

import hashlib
from collections import deque
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ValidationError

from simbridge.common.errors import FulfillmentError
from simbridge.common.http import build_http_client, response_body
from simbridge.common.metrics import external_call_seconds
from simbridge.common.tracing import get_tracer
from simbridge.services.sync.schemas import ApnCredentials, ProvisioningMaterial


tracer = get_tracer(__name__)


class FulfillmentResponse(BaseModel):
    material: ProvisioningMaterial
    body: dict[str, Any]


class FulfillmentClient(Protocol):
    def create_order(self, payload: dict[str, Any], idempotency_key: str) -> FulfillmentResponse: ...

    def close(self) -> None: ...


def parse_fulfillment_body(body: dict[str, Any], status_code: int | None = None) -> FulfillmentResponse:
    """Validate a `{success, data}` body; `success: false` is a delivery failure."""

    if not body.get("success") or not isinstance(body.get("data"), dict):
        message = body.get("message") or "fulfillment API reported failure"
        raise FulfillmentError(str(message), status_code=status_code, response_body=body)
    try:
        material = ProvisioningMaterial.model_validate(body["data"])
    except ValidationError as exc:
        raise FulfillmentError(
            f"malformed provisioning data: {exc.error_count()} error(s)",
            status_code=status_code,
            response_body=body,
        ) from exc
    return FulfillmentResponse(material=material, body=body)


class HttpFulfillmentClient:
    """`POST /orders` with bearer auth and an `Idempotency-Key` header."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 15.0,
        connect_timeout_seconds: float = 5.0,
        max_connections: int = 10,
        keepalive_expiry_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.http = build_http_client(
            base_url,
            api_key,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
            max_connections=max_connections,
            keepalive_expiry_seconds=keepalive_expiry_seconds,
            transport=transport,
        )

    def create_order(self, payload: dict[str, Any], idempotency_key: str) -> FulfillmentResponse:
        with tracer.start_as_current_span("fulfillment.create_order") as span:
            span.set_attribute("simbridge.confirmation_code", idempotency_key)
            with external_call_seconds.labels(dependency="fulfillment").time():
                try:
                    resp = self.http.post(
                        "/orders",
                        json=payload,
                        headers={"Idempotency-Key": idempotency_key},
                    )
                except httpx.TimeoutException as exc:
                    raise FulfillmentError(f"fulfillment API timed out: {exc}") from exc
                except httpx.HTTPError as exc:
                    raise FulfillmentError(f"fulfillment API unreachable: {exc}") from exc
            span.set_attribute("http.status_code", resp.status_code)

        body = response_body(resp)
        if not resp.is_success:
            raise FulfillmentError(
                f"fulfillment API returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                response_body=body,
            )
        return parse_fulfillment_body(body, resp.status_code)

    def close(self) -> None:
        self.http.close()


class MockFulfillmentClient:
    """Deterministic provisioning material derived from the confirmation code.

    `calls` keeps only the most recent `history` requests.
    """

    def __init__(self, history: int = 100) -> None:
        self.calls: deque[tuple[dict[str, Any], str]] = deque(maxlen=history)

    def create_order(self, payload: dict[str, Any], idempotency_key: str) -> FulfillmentResponse:
        self.calls.append((payload, idempotency_key))
        digest = hashlib.sha256(idempotency_key.encode()).hexdigest()
        iccid = "8962" + str(int(digest[:16], 16)).zfill(20)[:15]
        activation_code = digest[16:40].upper()
        smdp_address = "smdp.mock.simbridge.local"
        product = payload.get("product") or {}
        material = ProvisioningMaterial(
            iccid=iccid,
            product_name=product.get("name"),
            qr_code=f"LPA:1${smdp_address}${activation_code}",
            smdp_address=smdp_address,
            activation_code=activation_code,
            combined_activation=f"LPA:1${smdp_address}${activation_code}",
            apn=ApnCredentials(name="internet"),
        )
        body = {"success": True, "data": material.model_dump(mode="json", by_alias=True)}
        return FulfillmentResponse(material=material, body=body)

    def close(self) -> None:
        return None
