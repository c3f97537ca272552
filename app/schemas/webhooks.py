"""
schemas/webhooks.py — Parsing service wire models

The external parsing / generation service (n8n) speaks camelCase JSON.
These models accept either camelCase or snake_case and are read back
with attribute names.

Business Rules:
- Empty strings are treated as "not present" for update fields
- An order status or item availability outside the known values is
  logged and dropped; the rest of the update still applies
- Unknown keys are ignored (the service adds fields over time)
- Inbound email attachments carry metadata only, never content

Called by: services/parsing_client.py, services/order_tracker.py,
           routers/webhooks.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.enums import ItemAvailability, OrderStatus


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _known_member(enum_cls, v, what: str):
    v = _blank_to_none(v)
    if v is None or isinstance(v, enum_cls):
        return v
    key = str(v).strip().upper().replace(" ", "_").replace("-", "_")
    member = enum_cls.__members__.get(key)
    if member is None:
        logger.warning("Ignoring unknown {} from parsing service: {!r}", what, v)
    return member


class OrderUpdates(_Wire):
    tracking_number: str | None = Field(None, alias="trackingNumber")
    shipping_carrier: str | None = Field(None, alias="shippingCarrier")
    expected_delivery: datetime | None = Field(None, alias="expectedDelivery")
    status: OrderStatus | None = None

    @field_validator("tracking_number", "shipping_carrier", "expected_delivery", mode="before")
    @classmethod
    def blank_is_absent(cls, v):
        return _blank_to_none(v)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return _known_member(OrderStatus, v, "order status")


class ItemUpdate(_Wire):
    id: int
    tracking_number: str | None = Field(None, alias="trackingNumber")
    expected_delivery: datetime | None = Field(None, alias="expectedDelivery")
    actual_delivery: datetime | None = Field(None, alias="actualDelivery")
    availability: ItemAvailability | None = None

    @field_validator("tracking_number", "expected_delivery", "actual_delivery", mode="before")
    @classmethod
    def blank_is_absent(cls, v):
        return _blank_to_none(v)

    @field_validator("availability", mode="before")
    @classmethod
    def normalize_availability(cls, v):
        return _known_member(ItemAvailability, v, "item availability")


class ParseServiceResponse(_Wire):
    success: bool = True
    message: str = ""
    order_updates: OrderUpdates | None = Field(None, alias="orderUpdates")
    item_updates: list[ItemUpdate] = Field(default_factory=list, alias="itemUpdates")
    extracted_data: dict[str, Any] | None = Field(None, alias="extractedData")
    confidence: float | None = None
    supplier_messages: list[Any] = Field(default_factory=list, alias="supplierMessages")
    suggested_actions: list[Any] = Field(default_factory=list, alias="suggestedActions")

    @field_validator("item_updates", "supplier_messages", "suggested_actions", mode="before")
    @classmethod
    def none_is_empty(cls, v):
        return v or []


class InboundAttachment(_Wire):
    filename: str
    content_type: str | None = Field(None, alias="contentType")
    size: int | None = None
    storage_path: str | None = Field(None, alias="storagePath")


class InboundEmail(_Wire):
    """Inbound email as delivered by the mail ingestion webhook."""
    external_thread_id: str = Field(alias="threadId")
    external_message_id: str | None = Field(None, alias="messageId")
    from_address: str = Field(alias="from")
    to_address: str | None = Field(None, alias="to")
    subject: str = ""
    body: str = ""
    body_html: str | None = Field(None, alias="bodyHtml")
    received_at: datetime | None = Field(None, alias="receivedAt")
    in_reply_to: int | None = Field(None, alias="inReplyTo")
    attachments: list[InboundAttachment] = Field(default_factory=list)

    # AI extraction, when the parser already ran upstream
    extracted_items: list[dict[str, Any]] = Field(default_factory=list, alias="extractedItems")
    quoted_total: float | None = Field(None, alias="quotedTotal")
    confidence: float | None = None

    @field_validator("from_address")
    @classmethod
    def sender_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Sender must not be blank")
        return v


class OutboundEmail(_Wire):
    """Mail the workflow sent on our behalf (quote requests, confirmations)."""
    external_thread_id: str = Field(alias="threadId")
    external_message_id: str | None = Field(None, alias="messageId")
    quote_request_id: int | None = Field(None, alias="quoteRequestId")
    organization_id: int = Field(alias="organizationId")
    from_address: str = Field(alias="from")
    to_address: str = Field(alias="to")
    subject: str = ""
    body: str = ""
    body_html: str | None = Field(None, alias="bodyHtml")
    sent_at: datetime | None = Field(None, alias="sentAt")
    expected_response_by: datetime | None = Field(None, alias="expectedResponseBy")

    @field_validator("to_address")
    @classmethod
    def recipient_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Recipient must not be blank")
        return v
