"""Request/response schemas for the admin HTTP surface."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class PendingOTPResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    otp_code: str
    confirmation_code: str
    esim_detail_id: str
    otp_expires_at: datetime
    pdf_file_path: str | None = None
    upload_url: str | None = None


class ConfirmOTPRequest(BaseModel):
    confirmed_by: str = Field(min_length=1)


class ConfirmOTPResponse(BaseModel):
    confirmed: bool
    confirmation_code: str
    esim_detail_id: str


class RetryRequest(BaseModel):
    stage: Literal["fulfillment", "finalize", "all"] = "all"
    limit: int = Field(default=20, gt=0, le=500)


class RegeneratePdfResponse(BaseModel):
    confirmation_code: str
    pdf_file_path: str
