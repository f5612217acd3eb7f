"""Order store result types."""

from pydantic import BaseModel, Field


class SkippedItem(BaseModel):
    confirmation_code: str | None
    reason: str


class SaveOrderResult(BaseModel):
    """Outcome of persisting one parsed email."""

    order_id: str
    reference_number: str
    status: str
    item_ids: list[str] = Field(default_factory=list)
    saved_codes: list[str] = Field(default_factory=list)
    skipped: list[SkippedItem] = Field(default_factory=list)
