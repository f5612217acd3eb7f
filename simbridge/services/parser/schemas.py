"""Parser input/output models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class RawEmail(BaseModel):
    """Normalized mailbox message handed to the parser."""

    sender: str = ""
    subject: str = ""
    text: str = ""
    html: str = ""


class ParsedItem(BaseModel):
    """One purchased line, keyed by its vendor confirmation code."""

    confirmation_code: str
    product_name: str | None = None
    product_variant: str | None = None
    sku: str | None = None
    visit_date: datetime | None = None
    quantity: int = 1
    unit_price: Decimal | None = None


class ParsedOrder(BaseModel):
    """Structured order extracted from one purchase-confirmation email."""

    reference_number: str
    purchase_date: datetime | None = None
    reseller_name: str | None = None
    customer_name: str = ""
    customer_email: str = ""
    alternative_email: str | None = None
    mobile_number: str | None = None
    payment_status: str | None = None
    remarks: str | None = None
    items: list[ParsedItem] = Field(default_factory=list)

    @property
    def confirmation_codes(self) -> list[str]:
        return [item.confirmation_code for item in self.items]
