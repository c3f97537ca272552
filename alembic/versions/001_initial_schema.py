"""initial schema - quote requests, ledger, orders, chat, audit

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Status columns are plain VARCHARs holding the enum values (see
app/models/enums.py: native_enum=False).
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str) -> list[sa.Column]:
    return [sa.Column(n, sa.DateTime()) for n in names]


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("billing_email", sa.String(255)),
        *_timestamps("created_at"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255)),
        sa.Column("role", sa.String(20)),
        sa.Column("is_active", sa.Boolean()),
        *_timestamps("created_at"),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("contact_person", sa.String(255)),
        sa.Column("phone", sa.String(100)),
        *_timestamps("created_at"),
    )
    op.create_index("ix_suppliers_org", "suppliers", ["organization_id"])
    op.create_index("ix_suppliers_email", "suppliers", ["email"])

    op.create_table(
        "quote_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("quote_number", sa.String(50), nullable=False, unique=True),
        sa.Column("title", sa.String(255)),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("additional_supplier_ids", sa.JSON(), nullable=False),
        sa.Column("selected_supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("negotiation_round", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("notes", sa.Text()),
        sa.Column("response_date", sa.DateTime()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_quote_requests_org", "quote_requests", ["organization_id"])
    op.create_index("ix_quote_requests_status", "quote_requests", ["status"])

    op.create_table(
        "quote_request_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "quote_request_id", sa.Integer(),
            sa.ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("part_number", sa.String(255), nullable=False),
        sa.Column("supplier_part_number", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2)),
        sa.Column("total_price", sa.Numeric(12, 2)),
        sa.Column("availability", sa.String(30), nullable=False),
        sa.Column("estimated_delivery_days", sa.Integer()),
        sa.Column("supplier_notes", sa.Text()),
    )
    op.create_index("ix_qr_items_quote_supplier", "quote_request_items", ["quote_request_id", "supplier_id"])

    op.create_table(
        "email_threads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_thread_id", sa.String(255), unique=True),
        sa.Column("subject", sa.String(500)),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id")),
        sa.Column("quote_request_id", sa.Integer(), sa.ForeignKey("quote_requests.id", ondelete="SET NULL")),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_email_threads_quote", "email_threads", ["quote_request_id"])

    op.create_table(
        "email_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("thread_id", sa.Integer(), sa.ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("from_address", sa.String(255)),
        sa.Column("to_address", sa.String(255)),
        sa.Column("subject", sa.String(500)),
        sa.Column("body", sa.Text()),
        sa.Column("body_html", sa.Text()),
        sa.Column("external_message_id", sa.String(255)),
        sa.Column("in_reply_to", sa.Integer()),
        sa.Column("sent_at", sa.DateTime()),
        sa.Column("received_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expected_response_by", sa.DateTime()),
        sa.Column("follow_up_sent_at", sa.DateTime()),
        sa.Column("metadata", sa.JSON()),
    )
    op.create_index("ix_email_messages_thread", "email_messages", ["thread_id"])
    op.create_index("ix_email_messages_followup", "email_messages", ["direction", "expected_response_by"])

    op.create_table(
        "email_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("content_type", sa.String(255)),
        sa.Column("size", sa.Integer()),
        sa.Column("storage_path", sa.String(1000)),
        sa.Column("is_inline", sa.Boolean()),
        *_timestamps("created_at"),
    )

    op.create_table(
        "supplier_threads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "quote_request_id", sa.Integer(),
            sa.ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("email_thread_id", sa.Integer(), sa.ForeignKey("email_threads.id"), nullable=False),
        sa.Column("is_primary", sa.Boolean()),
        sa.Column("negotiation_round", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("response_date", sa.DateTime()),
        sa.Column("quoted_amount", sa.Numeric(12, 2)),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint(
            "quote_request_id", "supplier_id", "negotiation_round",
            name="uq_supplier_thread_quote_supplier_round",
        ),
        sa.UniqueConstraint("email_thread_id", name="uq_supplier_thread_email_thread"),
    )
    op.create_index("ix_supplier_threads_quote", "supplier_threads", ["quote_request_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_number", sa.String(50), nullable=False, unique=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id"), nullable=False),
        sa.Column("quote_request_id", sa.Integer(), sa.ForeignKey("quote_requests.id")),
        sa.Column("email_thread_id", sa.Integer(), sa.ForeignKey("email_threads.id")),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("fulfillment_method", sa.String(30), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax", sa.Numeric(12, 2), nullable=False),
        sa.Column("shipping", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("tracking_number", sa.String(255)),
        sa.Column("shipping_carrier", sa.String(255)),
        sa.Column("expected_delivery", sa.DateTime()),
        sa.Column("actual_delivery", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("order_date", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_orders_org", "orders", ["organization_id"])
    op.create_index("ix_orders_quote", "orders", ["quote_request_id"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("part_number", sa.String(255), nullable=False),
        sa.Column("supplier_part_number", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("availability", sa.String(30), nullable=False),
        sa.Column("tracking_number", sa.String(255)),
        sa.Column("expected_delivery", sa.DateTime()),
        sa.Column("actual_delivery", sa.DateTime()),
        sa.Column("supplier_notes", sa.Text()),
    )
    op.create_index("ix_order_items_order", "order_items", ["order_id"])

    op.create_table(
        "chat_conversations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("title", sa.String(255)),
        *_timestamps("created_at"),
    )
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "conversation_id", sa.Integer(),
            sa.ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("role", sa.String(10), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("context", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_chat_messages_conv_created", "chat_messages", ["conversation_id", "created_at"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id")),
        sa.Column("organization_id", sa.Integer(), sa.ForeignKey("organizations.id")),
        sa.Column("metadata", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_activity_entity", "activity_log", ["entity_type", "entity_id", "created_at"])

    op.create_table(
        "background_task_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(30)),
        sa.Column("entity_id", sa.Integer()),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("detail", sa.Text()),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("finished_at", sa.DateTime()),
        sa.Column("duration_seconds", sa.Float()),
    )
    op.create_index("ix_task_runs_name_time", "background_task_runs", ["name", "started_at"])


def downgrade() -> None:
    """Drop everything. ⚠️ DESTRUCTIVE — only for dev/test environments."""
    for table in (
        "background_task_runs",
        "activity_log",
        "chat_messages",
        "chat_conversations",
        "order_items",
        "orders",
        "supplier_threads",
        "email_attachments",
        "email_messages",
        "email_threads",
        "quote_request_items",
        "quote_requests",
        "suppliers",
        "users",
        "organizations",
    ):
        op.drop_table(table)
