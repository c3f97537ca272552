"""Order models — Order, OrderItem.

Orders are created once from an accepted quote request and afterwards
only change through the update merger or direct edits. Voided orders are
kept with status CANCELLED; nothing here deletes them.
"""

from sqlalchemy import Column, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow
from .enums import FulfillmentMethod, ItemAvailability, OrderStatus, enum_column


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), nullable=False, unique=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    quote_request_id = Column(Integer, ForeignKey("quote_requests.id"))
    email_thread_id = Column(Integer, ForeignKey("email_threads.id"))

    status = Column(enum_column(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    fulfillment_method = Column(
        enum_column(FulfillmentMethod), nullable=False, default=FulfillmentMethod.DELIVERY
    )

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    tracking_number = Column(String(255))
    shipping_carrier = Column(String(255))
    expected_delivery = Column(UTCDateTime)
    actual_delivery = Column(UTCDateTime)
    notes = Column(Text)

    created_by_id = Column(Integer, ForeignKey("users.id"))
    order_date = Column(UTCDateTime, default=utcnow)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier")
    quote_request = relationship("QuoteRequest")
    email_thread = relationship("EmailThread")
    organization = relationship("Organization")
    created_by = relationship("User")
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    __table_args__ = (
        Index("ix_orders_org", "organization_id"),
        Index("ix_orders_quote", "quote_request_id"),
    )


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    part_number = Column(String(255), nullable=False)
    supplier_part_number = Column(String(255))
    description = Column(Text)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    total_price = Column(Numeric(12, 2), nullable=False, default=0)

    availability = Column(
        enum_column(ItemAvailability), nullable=False, default=ItemAvailability.UNKNOWN
    )
    tracking_number = Column(String(255))
    expected_delivery = Column(UTCDateTime)
    actual_delivery = Column(UTCDateTime)
    supplier_notes = Column(Text)

    order = relationship("Order", back_populates="items")

    __table_args__ = (Index("ix_order_items_order", "order_id"),)
