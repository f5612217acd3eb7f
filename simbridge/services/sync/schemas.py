"""Sync ledger and fulfillment contract types."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SyncLogWrite(BaseModel):
    """One attempt outcome to record in the sync ledger."""

    confirmation_code: str
    target_service: str
    status: str
    request_payload: dict[str, Any] = Field(default_factory=dict)
    response_payload: dict[str, Any] | None = None
    error_message: str | None = None
    reference_number: str | None = None


class ApnCredentials(BaseModel):
    name: str | None = None
    username: str | None = None
    password: str | None = None


class ProvisioningMaterial(BaseModel):
    """eSIM data returned by the fulfillment API (`data` of the response body)."""

    model_config = ConfigDict(populate_by_name=True)

    iccid: str
    product_name: str | None = Field(default=None, alias="productName")
    qr_code: str | None = Field(default=None, alias="qrCode")
    smdp_address: str | None = Field(default=None, alias="smdpAddress")
    activation_code: str | None = Field(default=None, alias="activationCode")
    combined_activation: str | None = Field(default=None, alias="combinedActivation")
    apn: ApnCredentials | None = None
    valid_from: datetime | None = Field(default=None, alias="validFrom")
    valid_until: datetime | None = Field(default=None, alias="validUntil")


class BatchSendResult(BaseModel):
    """Per-code results of `FulfillmentSyncService.send_multiple`."""

    succeeded: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
