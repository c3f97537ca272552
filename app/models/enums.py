"""Closed status vocabularies for every aggregate.

Stored as their string values (``native_enum=False``) so the database
column stays a plain VARCHAR and migrations stay portable.
"""

import enum

from sqlalchemy import Enum as SAEnum


class QuoteStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    RECEIVED = "RECEIVED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CONVERTED_TO_ORDER = "CONVERTED_TO_ORDER"

    @property
    def is_terminal(self) -> bool:
        return self in (QuoteStatus.CONVERTED_TO_ORDER, QuoteStatus.EXPIRED)


# Statuses from which a supplier quote may be accepted
ACCEPTABLE_QUOTE_STATUSES = (QuoteStatus.RECEIVED, QuoteStatus.UNDER_REVIEW)

# Statuses from which a quote request may be reopened
REOPENABLE_QUOTE_STATUSES = (QuoteStatus.REJECTED, QuoteStatus.EXPIRED)


class ThreadStatus(str, enum.Enum):
    SENT = "SENT"
    RESPONDED = "RESPONDED"
    NO_RESPONSE = "NO_RESPONSE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    NOT_SELECTED = "NOT_SELECTED"


class OrderStatus(str, enum.Enum):
    """Order fulfillment status with an explicit total order.

    CANCELLED ranks above every other status, so once set it can never be
    overridden by a "higher" update.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def rank(self) -> int:
        return _ORDER_RANK[self]


_ORDER_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.PROCESSING: 1,
    OrderStatus.IN_TRANSIT: 2,
    OrderStatus.DELIVERED: 3,
    OrderStatus.CANCELLED: 4,
}


class MessageDirection(str, enum.Enum):
    OUTBOUND = "OUTBOUND"
    INBOUND = "INBOUND"


class MessageRole(str, enum.Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"
    SYSTEM = "SYSTEM"


class ItemAvailability(str, enum.Enum):
    IN_STOCK = "IN_STOCK"
    BACKORDERED = "BACKORDERED"
    SPECIAL_ORDER = "SPECIAL_ORDER"
    UNKNOWN = "UNKNOWN"


class FulfillmentMethod(str, enum.Enum):
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"
    SPLIT = "SPLIT"


class TaskOutcome(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SWALLOWED = "SWALLOWED"


def enum_column(enum_cls: type[enum.Enum], length: int = 30) -> SAEnum:
    """String-backed SQLAlchemy Enum type for one of the classes above."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
