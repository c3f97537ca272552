"""
email_ledger.py — Per-thread message ledger (inbound / outbound mail)

Appends messages to email threads and applies the immediate consequences
of an inbound reply: the supplier thread flips to RESPONDED, priced items
are recorded against that supplier, the quote status is re-derived, and
mail on an ordered thread triggers a background order sync.

Business Rules:
- Effective time = first non-null of sent_at, received_at, created_at
- Outbound mail gets expected_response_by = sent_at + response window
  unless the caller supplies one
- Receiving always succeeds once the message is stored; the auto order
  sync runs in the background and its failure is logged and swallowed
- The auto sync only fires when the sender is the order's supplier
- Items extracted from a reply are upserted by (supplier, part number)

Called by: routers/webhooks.py, services/conversion.py, services/follow_up.py
Depends on: models, status_deriver, background, order_tracker
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFound
from ..models import (
    EmailAttachment,
    EmailMessage,
    EmailThread,
    Order,
    QuoteRequestItem,
    SupplierThread,
)
from ..models.base import utcnow
from ..models.enums import ItemAvailability, MessageDirection, OrderStatus, ThreadStatus
from ..schemas.webhooks import InboundEmail, OutboundEmail
from . import activity_service as activity
from .background import spawn
from .status_deriver import recompute_quote_status


def effective_time(message: EmailMessage) -> datetime:
    return message.sent_at or message.received_at or message.created_at


def record_outbound_message(
    db: Session,
    thread: EmailThread,
    *,
    from_address: str,
    to_address: str,
    subject: str,
    body: str,
    body_html: str | None = None,
    sent_at: datetime | None = None,
    expected_response_by: datetime | None = None,
    in_reply_to: int | None = None,
    external_message_id: str | None = None,
    details: dict | None = None,
) -> EmailMessage:
    """Append an OUTBOUND message. Caller commits."""
    sent_at = sent_at or utcnow()
    if expected_response_by is None:
        expected_response_by = sent_at + timedelta(hours=settings.default_response_window_hours)
    msg = EmailMessage(
        thread_id=thread.id,
        direction=MessageDirection.OUTBOUND,
        from_address=from_address,
        to_address=to_address,
        subject=subject,
        body=body,
        body_html=body_html,
        external_message_id=external_message_id,
        in_reply_to=in_reply_to,
        sent_at=sent_at,
        created_at=utcnow(),
        expected_response_by=expected_response_by,
        details=details,
    )
    db.add(msg)
    db.flush()
    return msg


def record_workflow_outbound(db: Session, email: OutboundEmail) -> EmailMessage:
    """Record mail the workflow sent itself, creating its thread on first sight.

    A repeated delivery (same external message id on the thread) returns
    the stored message unchanged.
    """
    thread = db.query(EmailThread).filter_by(external_thread_id=email.external_thread_id).first()
    if not thread:
        thread = EmailThread(
            external_thread_id=email.external_thread_id,
            subject=email.subject,
            organization_id=email.organization_id,
            quote_request_id=email.quote_request_id,
        )
        db.add(thread)
        db.flush()
    elif email.external_message_id:
        existing = (
            db.query(EmailMessage)
            .filter_by(thread_id=thread.id, external_message_id=email.external_message_id)
            .first()
        )
        if existing:
            return existing

    msg = record_outbound_message(
        db,
        thread,
        from_address=email.from_address,
        to_address=email.to_address,
        subject=email.subject,
        body=email.body,
        body_html=email.body_html,
        sent_at=email.sent_at,
        expected_response_by=email.expected_response_by,
        external_message_id=email.external_message_id,
    )
    db.commit()
    logger.info("Outbound message {} recorded on thread {}", msg.id, thread.id)
    return msg


# ── Inbound ───────────────────────────────────────────────────────────


def _to_decimal(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_availability(value) -> ItemAvailability | None:
    if not value:
        return None
    key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
    return ItemAvailability.__members__.get(key)


def _apply_extracted_items(db: Session, quote_id: int, supplier_id: int, items: list[dict]) -> int:
    """Upsert priced items for one supplier. Returns the number of rows touched."""
    touched = 0
    for raw in items:
        part_number = (raw.get("partNumber") or raw.get("part_number") or "").strip()
        if not part_number:
            continue
        item = (
            db.query(QuoteRequestItem)
            .filter_by(quote_request_id=quote_id, supplier_id=supplier_id, part_number=part_number)
            .first()
        )
        if not item:
            item = QuoteRequestItem(
                quote_request_id=quote_id,
                supplier_id=supplier_id,
                part_number=part_number,
                description=raw.get("description"),
                quantity=int(raw.get("quantity") or 1),
            )
            db.add(item)
        unit_price = _to_decimal(raw.get("unitPrice"))
        total_price = _to_decimal(raw.get("totalPrice"))
        if unit_price is not None:
            item.unit_price = unit_price
        if total_price is not None:
            item.total_price = total_price
        elif unit_price is not None:
            item.total_price = unit_price * (item.quantity or 1)
        availability = _to_availability(raw.get("availability"))
        if availability:
            item.availability = availability
        lead = raw.get("leadTimeDays") or raw.get("estimatedDeliveryDays")
        if lead not in (None, ""):
            try:
                item.estimated_delivery_days = int(lead)
            except (TypeError, ValueError):
                logger.warning("Ignoring lead time {!r} for part {}", lead, part_number)
        if raw.get("supplierPartNumber"):
            item.supplier_part_number = raw["supplierPartNumber"]
        if raw.get("notes"):
            item.supplier_notes = raw["notes"]
        touched += 1
    return touched


def record_inbound_message(
    db: Session, email: InboundEmail, *, organization_id: int | None = None
) -> EmailMessage:
    """Store an inbound email and apply its consequences.

    Raises NotFound when the external thread id is unknown (for the
    organization, when one is given); nothing is written in that case.
    """
    query = db.query(EmailThread).filter_by(external_thread_id=email.external_thread_id)
    if organization_id is not None:
        query = query.filter_by(organization_id=organization_id)
    thread = query.first()
    if not thread:
        raise NotFound(f"email thread {email.external_thread_id!r} not found for org {organization_id}")

    received_at = email.received_at or utcnow()
    msg = EmailMessage(
        thread_id=thread.id,
        direction=MessageDirection.INBOUND,
        from_address=email.from_address,
        to_address=email.to_address,
        subject=email.subject,
        body=email.body,
        body_html=email.body_html,
        external_message_id=email.external_message_id,
        in_reply_to=email.in_reply_to,
        received_at=received_at,
        created_at=utcnow(),
        details={"confidence": email.confidence} if email.confidence is not None else None,
    )
    db.add(msg)
    db.flush()
    for att in email.attachments:
        db.add(
            EmailAttachment(
                message_id=msg.id,
                filename=att.filename,
                content_type=att.content_type,
                size=att.size,
                storage_path=att.storage_path,
            )
        )

    supplier_thread = db.query(SupplierThread).filter_by(email_thread_id=thread.id).first()
    if supplier_thread:
        if supplier_thread.status == ThreadStatus.SENT:
            supplier_thread.status = ThreadStatus.RESPONDED
            supplier_thread.response_date = received_at
        if email.quoted_total is not None:
            supplier_thread.quoted_amount = _to_decimal(email.quoted_total)

        quote = supplier_thread.quote_request
        if email.extracted_items:
            count = _apply_extracted_items(db, quote.id, supplier_thread.supplier_id, email.extracted_items)
            activity.log_quote_activity(
                db, None, quote, activity.QUOTE_RECEIVED, "Quote response received",
                supplier_id=supplier_thread.supplier_id,
                email_message_id=msg.id,
                item_count=count,
                confidence=email.confidence,
            )
        quote.response_date = received_at
        recompute_quote_status(db, quote, commit=False)

    order = (
        db.query(Order)
        .filter(Order.email_thread_id == thread.id, Order.status != OrderStatus.CANCELLED)
        .first()
    )
    auto_sync = False
    if order:
        msg.details = {
            **(msg.details or {}),
            "order_id": order.id,
            "order_number": order.order_number,
            "is_post_conversion": True,
        }
        activity.log_order_activity(
            db, None, order, activity.ORDER_COMMUNICATION, "New communication on order",
            f"New email received for order {order.order_number}",
            email_thread_id=thread.id,
            email_message_id=msg.id,
            subject=email.subject,
        )
        supplier_email = (order.supplier.email or "").strip().lower() if order.supplier else ""
        auto_sync = bool(supplier_email) and supplier_email == email.from_address.strip().lower()

    db.commit()
    logger.info(
        "Inbound message {} stored on thread {} (supplier thread {})",
        msg.id, thread.id, supplier_thread.id if supplier_thread else None,
    )

    if auto_sync:
        from .order_tracker import auto_sync_order

        spawn(
            "order_sync_auto",
            auto_sync_order,
            order.id,
            msg.id,
            entity_type="order",
            entity_id=order.id,
        )
    return msg
