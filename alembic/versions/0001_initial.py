"""initial simbridge schema

Revision ID: 0001_simbridge
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_simbridge"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("reference_number", sa.String(), nullable=False),
        sa.Column("purchase_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reseller_name", sa.String(), nullable=True),
        sa.Column("customer_name", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=False),
        sa.Column("alternative_email", sa.String(), nullable=True),
        sa.Column("mobile_number", sa.String(), nullable=True),
        sa.Column("payment_status", sa.String(), nullable=True),
        sa.Column("remarks", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_reference_number", "orders", ["reference_number"], unique=True)
    op.create_index("ix_orders_customer_email", "orders", ["customer_email"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("confirmation_code", sa.String(), nullable=False),
        sa.Column("product_name", sa.String(), nullable=True),
        sa.Column("product_variant", sa.String(), nullable=True),
        sa.Column("sku", sa.String(), nullable=False),
        sa.Column("visit_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_confirmation_code", "order_items", ["confirmation_code"], unique=True)

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("confirmation_code", sa.String(), nullable=False),
        sa.Column("reference_number", sa.String(), nullable=True),
        sa.Column("target_service", sa.String(), nullable=False),
        sa.Column("request_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("response_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("confirmation_code", "target_service", name="uq_sync_logs_code_target"),
    )
    op.create_index("ix_sync_logs_confirmation_code", "sync_logs", ["confirmation_code"])
    op.create_index("ix_sync_logs_reference_number", "sync_logs", ["reference_number"])
    op.create_index("ix_sync_logs_status", "sync_logs", ["status"])

    op.create_table(
        "esim_details",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_item_id", sa.String(), nullable=False),
        sa.Column("product_name", sa.String(), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qr_code", sa.Text(), nullable=True),
        sa.Column("iccid", sa.String(), nullable=False),
        sa.Column("smdp_address", sa.String(), nullable=True),
        sa.Column("activation_code", sa.String(), nullable=True),
        sa.Column("combined_activation", sa.Text(), nullable=True),
        sa.Column("apn_name", sa.String(), nullable=True),
        sa.Column("apn_username", sa.String(), nullable=True),
        sa.Column("apn_password", sa.String(), nullable=True),
        sa.Column("pdf_file_path", sa.String(), nullable=True),
        sa.Column("pdf_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("upload_url", sa.String(), nullable=True),
        sa.Column("provisioned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_esim_details_order_item_id", "esim_details", ["order_item_id"], unique=True)
    op.create_index("ix_esim_details_iccid", "esim_details", ["iccid"], unique=True)
    op.create_index("ix_esim_details_status", "esim_details", ["status"])

    op.create_table(
        "upload_otps",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("order_item_id", sa.String(), nullable=False),
        sa.Column("esim_detail_id", sa.String(), nullable=False),
        sa.Column("confirmation_code", sa.String(), nullable=False),
        sa.Column("otp_code", sa.String(), nullable=False),
        sa.Column("otp_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("pdf_file_path", sa.String(), nullable=True),
        sa.Column("upload_url", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("confirmed_by", sa.String(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["order_item_id"], ["order_items.id"]),
        sa.ForeignKeyConstraint(["esim_detail_id"], ["esim_details.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_upload_otps_order_item_id", "upload_otps", ["order_item_id"])
    op.create_index("ix_upload_otps_esim_detail_id", "upload_otps", ["esim_detail_id"])
    op.create_index("ix_upload_otps_confirmation_code", "upload_otps", ["confirmation_code"])
    op.create_index("ix_upload_otps_otp_code", "upload_otps", ["otp_code"], unique=True)
    op.create_index("ix_upload_otps_status", "upload_otps", ["status"])
    op.create_index("ix_upload_otps_status_expires_at", "upload_otps", ["status", "otp_expires_at"])


def downgrade() -> None:
    op.drop_table("upload_otps")
    op.drop_table("esim_details")
    op.drop_table("sync_logs")
    op.drop_table("order_items")
    op.drop_table("orders")
