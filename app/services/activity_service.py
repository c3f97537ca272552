"""Activity service — append-only audit trail.

Every merge and conversion step leaves an ActivityLog row. Helpers only
``db.add`` the entry; the caller commits together with the state change
it describes.

Usage:
    from app.services.activity_service import log_quote_activity, log_order_activity
"""

from sqlalchemy.orm import Session

from app.models import ActivityLog, Order, QuoteRequest

# Activity types
QUOTE_SENT = "QUOTE_SENT"
QUOTE_RECEIVED = "QUOTE_RECEIVED"
QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
QUOTE_ACCEPT_FAILED = "QUOTE_ACCEPT_FAILED"
QUOTE_REJECTED = "QUOTE_REJECTED"
QUOTE_REOPENED = "QUOTE_REOPENED"
SUPPLIER_ADDED = "SUPPLIER_ADDED"
FOLLOW_UP_SENT = "FOLLOW_UP_SENT"
ORDER_CREATED = "ORDER_CREATED"
ORDER_VOIDED = "ORDER_VOIDED"
ORDER_COMMUNICATION = "ORDER_COMMUNICATION"
ORDER_TRACKING_UPDATED = "ORDER_TRACKING_UPDATED"


def log_activity(
    db: Session,
    *,
    activity_type: str,
    title: str,
    entity_type: str,
    entity_id: int,
    description: str = "",
    user_id: int | None = None,
    organization_id: int | None = None,
    details: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        activity_type=activity_type,
        title=title,
        description=description or None,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        organization_id=organization_id,
        details=details or {},
    )
    db.add(entry)
    return entry


def log_quote_activity(
    db: Session,
    user_id: int | None,
    quote: QuoteRequest,
    activity_type: str,
    title: str,
    detail: str = "",
    **details,
) -> ActivityLog:
    """Create an ActivityLog entry for a quote request state change."""
    return log_activity(
        db,
        activity_type=activity_type,
        title=title,
        description=detail or f"Quote {quote.quote_number}: {title}",
        entity_type="quote_request",
        entity_id=quote.id,
        user_id=user_id,
        organization_id=quote.organization_id,
        details={"quote_number": quote.quote_number, **details},
    )


def log_order_activity(
    db: Session,
    user_id: int | None,
    order: Order,
    activity_type: str,
    title: str,
    detail: str = "",
    **details,
) -> ActivityLog:
    """Create an ActivityLog entry for an order change."""
    return log_activity(
        db,
        activity_type=activity_type,
        title=title,
        description=detail or f"Order {order.order_number}: {title}",
        entity_type="order",
        entity_id=order.id,
        user_id=user_id,
        organization_id=order.organization_id,
        details={"order_number": order.order_number, **details},
    )
