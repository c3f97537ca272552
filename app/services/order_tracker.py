"""
order_tracker.py — Reconcile order state from post-order supplier mail

Sends the messages received after an order was created to the parsing
service and merges the returned candidate updates into the order.

Business Rules:
- Only messages whose effective time is strictly after order.created_at
  are sent
- Message bodies are sent; attachments only as a has_attachments flag
- An order without a linked email thread cannot be synced (400)
- success=false from the service is an external failure
- Safe to repeat: the merger counts nothing for already-applied values

Called by: routers/orders.py (manual sync), services/email_ledger.py
           (automatic sync, via background.spawn)
Depends on: parsing_client, update_merger, email_ledger
"""

from datetime import datetime

from loguru import logger
from sqlalchemy.orm import Session

from ..errors import ExternalServiceError, ValidationFailed
from ..models import EmailMessage, Order, User
from . import parsing_client
from .email_ledger import effective_time
from .update_merger import MergeResult, apply_parse_response


def post_creation_messages(order: Order, messages: list[EmailMessage]) -> list[EmailMessage]:
    """Messages strictly newer than the order, oldest first."""
    created = order.created_at
    newer = [m for m in messages if effective_time(m) > created]
    return sorted(newer, key=lambda m: (effective_time(m), m.id or 0))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _money(value) -> float | None:
    return float(value) if value is not None else None


def build_sync_payload(order: Order, messages: list[EmailMessage], user: User | None = None) -> dict:
    """Request body for the post-order webhook."""
    supplier = order.supplier
    payload = {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "supplierId": order.supplier_id,
        "orderDate": _iso(order.order_date or order.created_at),
        "status": order.status.value,
        "totalAmount": _money(order.total),
        "subtotal": _money(order.subtotal),
        "tax": _money(order.tax),
        "shipping": _money(order.shipping),
        "fulfillmentMethod": order.fulfillment_method.value if order.fulfillment_method else "UNKNOWN",
        "currentTracking": {
            "trackingNumber": order.tracking_number,
            "shippingCarrier": order.shipping_carrier,
            "expectedDelivery": _iso(order.expected_delivery),
            "actualDelivery": _iso(order.actual_delivery),
        },
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "contactPerson": supplier.contact_person,
        }
        if supplier
        else None,
        "emailThread": {
            "id": order.email_thread_id,
            "messages": [
                {
                    "id": m.id,
                    "from": m.from_address,
                    "to": m.to_address,
                    "subject": m.subject,
                    "body": m.body,
                    "bodyHtml": m.body_html,
                    "sentAt": _iso(m.sent_at or m.created_at),
                    "receivedAt": _iso(m.received_at),
                    "direction": m.direction.value,
                    "hasAttachments": m.has_attachments,
                }
                for m in messages
            ],
        },
        "items": [
            {
                "id": item.id,
                "partNumber": item.part_number,
                "description": item.description,
                "quantity": item.quantity,
                "unitPrice": _money(item.unit_price),
                "totalPrice": _money(item.total_price),
                "availability": item.availability.value if item.availability else None,
                "currentTracking": {
                    "trackingNumber": item.tracking_number,
                    "expectedDelivery": _iso(item.expected_delivery),
                    "actualDelivery": _iso(item.actual_delivery),
                },
                "supplierNotes": item.supplier_notes,
            }
            for item in order.items
        ],
        "organization": {"id": order.organization.id, "name": order.organization.name}
        if order.organization
        else None,
    }
    if user:
        payload["user"] = {"id": user.id, "name": user.name or "", "email": user.email}
    return payload


async def sync_order_updates(
    db: Session,
    order: Order,
    *,
    user: User | None = None,
    source: str = "manual_sync",
    **details,
) -> MergeResult:
    """Run one reconciliation pass for an order. Returns the merge result."""
    if not order.email_thread:
        raise ValidationFailed(
            f"order {order.id} has no email thread",
            public_message="No email thread associated with this order",
        )

    messages = post_creation_messages(order, list(order.email_thread.messages))
    logger.info(
        "Order {} sync ({}): {} of {} message(s) after creation",
        order.order_number, source, len(messages), len(order.email_thread.messages),
    )
    response = await parsing_client.post_order_update(build_sync_payload(order, messages, user))
    if not response.success:
        raise ExternalServiceError(
            f"post_order webhook reported failure: {response.message}",
            public_message="Failed to sync order updates",
        )
    return apply_parse_response(
        db,
        order,
        response,
        user_id=user.id if user else None,
        source=source,
        has_order_updates=response.order_updates is not None,
        item_update_count=len(response.item_updates),
        **details,
    )


async def auto_sync_order(db: Session, order_id: int, email_message_id: int) -> None:
    """Background entry point after supplier mail lands on an ordered thread."""
    order = db.get(Order, order_id)
    if not order:
        logger.warning("Auto sync: order {} vanished", order_id)
        return
    await sync_order_updates(
        db, order, source="automatic_email_trigger", email_message_id=email_message_id
    )
