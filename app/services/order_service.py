"""
order_service.py — Order creation from an accepted quote, voiding, confirmation

Business Rules:
- Order number ORD-{year}-{4 random digits}, unique
- New orders start PROCESSING, linked to the quote request, the supplier
  and the accepted supplier's email thread (for later tracking)
- Items are copied from the accepted supplier's priced quote items only
- subtotal = sum of line totals (the quoted total_price, else
  unit_price x quantity); tax = shipping = 0
- expected_delivery per item = now + estimated_delivery_days
- Orders are never deleted; a failed conversion voids its order
  (status CANCELLED, note appended)
- The confirmation email is requested in the background; its outbound
  message expects a response within the default window

Called by: services/conversion.py
Depends on: models, parsing_client, email_ledger
"""

import random
from datetime import timedelta
from decimal import Decimal

from loguru import logger
from sqlalchemy.orm import Session

from ..models import Order, OrderItem, QuoteRequest, QuoteRequestItem, SupplierThread, User
from ..models.base import utcnow
from ..models.enums import FulfillmentMethod, ItemAvailability, OrderStatus
from . import parsing_client
from .email_ledger import record_outbound_message


def generate_order_number(db: Session, attempts: int = 20) -> str:
    year = utcnow().year
    for _ in range(attempts):
        number = f"ORD-{year}-{random.randint(0, 9999):04d}"
        if not db.query(Order.id).filter_by(order_number=number).first():
            return number
    raise RuntimeError(f"could not allocate a free order number for {year}")


def line_total(item: QuoteRequestItem) -> Decimal:
    if item.total_price is not None:
        return Decimal(item.total_price)
    return Decimal(item.unit_price or 0) * (item.quantity or 0)


def create_order_from_quote(
    db: Session,
    quote: QuoteRequest,
    supplier_thread: SupplierThread,
    items: list[QuoteRequestItem],
    user: User,
    *,
    fulfillment_method: FulfillmentMethod = FulfillmentMethod.DELIVERY,
) -> Order:
    """Create and commit the order for the accepted supplier."""
    now = utcnow()
    subtotal = sum((line_total(i) for i in items), Decimal("0"))
    order = Order(
        order_number=generate_order_number(db),
        organization_id=quote.organization_id,
        supplier_id=supplier_thread.supplier_id,
        quote_request_id=quote.id,
        email_thread_id=supplier_thread.email_thread_id,
        status=OrderStatus.PROCESSING,
        fulfillment_method=fulfillment_method,
        subtotal=subtotal,
        tax=Decimal("0"),
        shipping=Decimal("0"),
        total=subtotal,
        notes=quote.notes,
        created_by_id=user.id,
        order_date=now,
        created_at=now,
    )
    for qi in items:
        order.items.append(
            OrderItem(
                part_number=qi.supplier_part_number or qi.part_number,
                supplier_part_number=qi.supplier_part_number,
                description=qi.description,
                quantity=qi.quantity,
                unit_price=Decimal(qi.unit_price or 0),
                total_price=line_total(qi),
                availability=qi.availability or ItemAvailability.UNKNOWN,
                expected_delivery=now + timedelta(days=qi.estimated_delivery_days)
                if qi.estimated_delivery_days
                else None,
                supplier_notes=qi.supplier_notes,
            )
        )
    db.add(order)
    db.commit()
    logger.info(
        "Order {} created from quote {} ({} item(s), subtotal {})",
        order.order_number, quote.quote_number, len(items), subtotal,
    )
    return order


def void_order(db: Session, order_id: int, reason: str) -> Order | None:
    """Mark an order CANCELLED with a note. Never deletes."""
    order = db.get(Order, order_id)
    if not order:
        return None
    order.status = OrderStatus.CANCELLED
    note = f"Voided: {reason}"
    order.notes = f"{order.notes}\n{note}" if order.notes else note
    db.commit()
    logger.warning("Order {} voided: {}", order.order_number, reason)
    return order


async def send_order_confirmation(db: Session, order_id: int, user_id: int) -> None:
    """Background task: generate and record the order confirmation email."""
    order = db.get(Order, order_id)
    user = db.get(User, user_id)
    if not order or not order.email_thread:
        logger.warning("Order confirmation skipped: order {} has no thread", order_id)
        return
    supplier = order.supplier
    payload = {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "quoteRequestId": order.quote_request_id,
        "supplier": {
            "id": supplier.id,
            "name": supplier.name,
            "email": supplier.email,
            "contactPerson": supplier.contact_person,
        },
        "items": [
            {
                "partNumber": i.part_number,
                "description": i.description,
                "quantity": i.quantity,
                "unitPrice": float(i.unit_price or 0),
                "totalPrice": float(i.total_price or 0),
            }
            for i in order.items
        ],
        "subtotal": float(order.subtotal or 0),
        "total": float(order.total or 0),
        "fulfillmentMethod": order.fulfillment_method.value,
        "threadId": order.email_thread.external_thread_id,
        "user": {"id": user.id, "name": user.name, "email": user.email} if user else None,
    }
    data = await parsing_client.generate_order_confirmation_email(payload)
    content = data.get("emailContent") or {}
    if not content.get("subject"):
        logger.warning("Order confirmation for {} returned no email content", order.order_number)
        return
    record_outbound_message(
        db,
        order.email_thread,
        from_address=user.email if user else "",
        to_address=supplier.email or "",
        subject=content["subject"],
        body=content.get("body", ""),
        body_html=content.get("bodyHtml"),
        external_message_id=data.get("messageId"),
        details={"order_id": order.id, "type": "order_confirmation"},
    )
    db.commit()
    logger.info("Order confirmation recorded for {}", order.order_number)
