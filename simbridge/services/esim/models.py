"""eSIM record database model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from simbridge.common.db import Base


class EsimDetail(Base):
    """Provisioning material and finalize progress for one order item."""

    __tablename__ = "esim_details"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_item_id: Mapped[str] = mapped_column(ForeignKey("order_items.id"), unique=True, index=True)
    product_name: Mapped[str | None] = mapped_column(String, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    iccid: Mapped[str] = mapped_column(String, unique=True, index=True)
    smdp_address: Mapped[str | None] = mapped_column(String, nullable=True)
    activation_code: Mapped[str | None] = mapped_column(String, nullable=True)
    combined_activation: Mapped[str | None] = mapped_column(Text, nullable=True)
    apn_name: Mapped[str | None] = mapped_column(String, nullable=True)
    apn_username: Mapped[str | None] = mapped_column(String, nullable=True)
    apn_password: Mapped[str | None] = mapped_column(String, nullable=True)
    pdf_file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    pdf_uploaded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    upload_url: Mapped[str | None] = mapped_column(String, nullable=True)
    provisioned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
