"""
follow_up.py — Overdue supplier responses and follow-up emails

Business Rules:
- An OUTBOUND message is overdue when expected_response_by is set and in
  the past, follow_up_sent_at is unset, and no INBOUND message replies
- An INBOUND message replies to M when in_reply_to == M.id, or when its
  received_at is strictly later than M.sent_at
- Across a quote request the overdue list is sorted by
  expected_response_by ascending (most overdue first)
- days overdue = floor((now - expected_response_by) / 1 day)
- Sending a follow-up records a new OUTBOUND message replying to the
  original and stamps follow_up_sent_at on the original
- A failed generation call surfaces only "Failed to send follow-up"

Called by: routers/quote_requests.py (follow-up list and send endpoints)
Depends on: models, parsing_client, email_ledger, activity_service
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy.orm import Session

from ..errors import AuthorizationDenied, ExternalServiceError, NotFound, ValidationFailed
from ..models import EmailMessage, QuoteRequest, SupplierThread, User
from ..models.base import utcnow
from ..models.enums import MessageDirection
from . import activity_service as activity
from . import parsing_client
from .email_ledger import effective_time, record_outbound_message


@dataclass(frozen=True)
class OverdueFollowUp:
    message_id: int
    thread_id: int
    supplier_id: int | None
    expected_response_by: datetime
    days_overdue: int


def days_overdue(expected_response_by: datetime, now: datetime) -> int:
    return (now - expected_response_by) // timedelta(days=1)


def is_reply_to(reply: EmailMessage, message: EmailMessage) -> bool:
    if reply.direction != MessageDirection.INBOUND:
        return False
    if reply.in_reply_to is not None and reply.in_reply_to == message.id:
        return True
    return (
        reply.received_at is not None
        and message.sent_at is not None
        and reply.received_at > message.sent_at
    )


def is_overdue(message: EmailMessage, ledger: list[EmailMessage], now: datetime) -> bool:
    if message.direction != MessageDirection.OUTBOUND:
        return False
    if message.expected_response_by is None or message.expected_response_by >= now:
        return False
    if message.follow_up_sent_at is not None:
        return False
    return not any(is_reply_to(m, message) for m in ledger)


def find_overdue(ledger: list[EmailMessage], now: datetime | None = None) -> list[EmailMessage]:
    """Overdue outbound messages of one thread, most overdue first."""
    now = now or utcnow()
    overdue = [m for m in ledger if is_overdue(m, ledger, now)]
    return sorted(overdue, key=lambda m: (m.expected_response_by, m.id or 0))


def overdue_for_quote(db: Session, quote: QuoteRequest, now: datetime | None = None) -> list[OverdueFollowUp]:
    """Full overdue set across every supplier thread of a quote request."""
    now = now or utcnow()
    result: list[OverdueFollowUp] = []
    threads = db.query(SupplierThread).filter_by(quote_request_id=quote.id).all()
    for st in threads:
        ledger = (
            db.query(EmailMessage)
            .filter(EmailMessage.thread_id == st.email_thread_id)
            .all()
        )
        for m in find_overdue(ledger, now):
            result.append(
                OverdueFollowUp(
                    message_id=m.id,
                    thread_id=st.email_thread_id,
                    supplier_id=st.supplier_id,
                    expected_response_by=m.expected_response_by,
                    days_overdue=days_overdue(m.expected_response_by, now),
                )
            )
    result.sort(key=lambda o: (o.expected_response_by, o.message_id))
    return result


# ── Sending ───────────────────────────────────────────────────────────


def _ledger_summary(ledger: list[EmailMessage], limit: int = 5) -> str:
    recent = sorted(ledger, key=effective_time)[-limit:]
    return "\n---\n".join(
        f"[{m.direction.value} {effective_time(m).isoformat()}] {m.subject or ''}\n{(m.body or '')[:500]}"
        for m in recent
    )


async def send_follow_up(
    db: Session,
    message_id: int,
    user: User,
    *,
    reason: str = "No response received by expected date",
    additional_message: str = "",
) -> EmailMessage:
    original = db.get(EmailMessage, message_id)
    if not original:
        raise NotFound(f"message {message_id} not found")
    if original.direction != MessageDirection.OUTBOUND:
        raise ValidationFailed(
            f"message {message_id} is {original.direction.value}",
            public_message="Follow-ups can only be sent for outbound messages",
        )

    st = db.query(SupplierThread).filter_by(email_thread_id=original.thread_id).first()
    if not st:
        raise NotFound(f"message {message_id} is not on a supplier thread")
    quote = st.quote_request
    if quote.organization_id != user.organization_id:
        raise AuthorizationDenied(f"user {user.id} cannot follow up on quote {quote.id}")
    supplier = st.supplier
    if not supplier.email:
        raise ValidationFailed(
            f"supplier {supplier.id} has no email",
            public_message="Supplier does not have an email address",
        )

    ledger = list(original.thread.messages)
    now = utcnow()
    payload = {
        "quoteRequestId": quote.id,
        "threadId": original.thread.external_thread_id,
        "supplier": {"id": supplier.id, "name": supplier.name, "email": supplier.email},
        "previousCommunication": {
            "lastContactDate": effective_time(original).isoformat(),
            "messagesSummary": _ledger_summary(ledger),
        },
        "followUpReason": reason,
        "workflowBranch": "no_response",
        "additionalMessage": additional_message,
        "inReplyTo": original.external_message_id or str(original.id),
        "user": {"id": user.id, "name": user.name, "email": user.email},
    }
    try:
        data = await parsing_client.generate_follow_up_email(payload)
    except ExternalServiceError as e:
        logger.error("Follow-up for message {} failed: {}", message_id, e.detail)
        raise type(e)(e.detail, public_message="Failed to send follow-up") from e

    content = data["emailContent"]
    follow_up = record_outbound_message(
        db,
        original.thread,
        from_address=user.email,
        to_address=supplier.email,
        subject=content["subject"],
        body=content["body"],
        body_html=content.get("bodyHtml"),
        sent_at=now,
        in_reply_to=original.id,
        external_message_id=data.get("messageId"),
    )
    original.follow_up_sent_at = now
    activity.log_quote_activity(
        db, user.id, quote, activity.FOLLOW_UP_SENT, "Follow-up sent",
        f"Follow-up sent to {supplier.name}",
        supplier_id=supplier.id,
        original_message_id=original.id,
        follow_up_message_id=follow_up.id,
    )
    db.commit()
    logger.info("Follow-up {} sent for message {} (quote {})", follow_up.id, original.id, quote.id)
    return follow_up
