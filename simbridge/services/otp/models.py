"""Upload OTP database model."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from simbridge.common.db import Base


class UploadOTP(Base):
    """Human confirmation gate for one uploaded eSIM document."""

    __tablename__ = "upload_otps"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_item_id: Mapped[str] = mapped_column(ForeignKey("order_items.id"), index=True)
    esim_detail_id: Mapped[str] = mapped_column(ForeignKey("esim_details.id"), index=True)
    confirmation_code: Mapped[str] = mapped_column(String, index=True)
    otp_code: Mapped[str] = mapped_column(String, unique=True, index=True)
    otp_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    pdf_file_path: Mapped[str | None] = mapped_column(String, nullable=True)
    upload_url: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    confirmed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
