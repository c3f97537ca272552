"""Quote request models — QuoteRequest, QuoteRequestItem, SupplierThread."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow
from .enums import ItemAvailability, QuoteStatus, ThreadStatus, enum_column


class QuoteRequest(Base):
    """One RFQ, potentially sent to several suppliers."""

    __tablename__ = "quote_requests"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    quote_number = Column(String(50), nullable=False, unique=True)
    title = Column(String(255))

    status = Column(enum_column(QuoteStatus), nullable=False, default=QuoteStatus.DRAFT)

    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    additional_supplier_ids = Column(JSON, nullable=False, default=list)
    selected_supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))
    # Bumped on reopen; status is derived from the current round's threads only
    negotiation_round = Column(Integer, nullable=False, default=1)

    notes = Column(Text)
    response_date = Column(UTCDateTime)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    supplier = relationship("Supplier", foreign_keys=[supplier_id])
    selected_supplier = relationship("Supplier", foreign_keys=[selected_supplier_id])
    created_by = relationship("User", foreign_keys=[created_by_id])
    items = relationship(
        "QuoteRequestItem",
        back_populates="quote_request",
        cascade="all, delete-orphan",
        order_by="QuoteRequestItem.id",
    )
    supplier_threads = relationship(
        "SupplierThread",
        back_populates="quote_request",
        cascade="all, delete-orphan",
        order_by="SupplierThread.id",
    )
    email_threads = relationship("EmailThread", back_populates="quote_request")

    __table_args__ = (
        Index("ix_quote_requests_org", "organization_id"),
        Index("ix_quote_requests_status", "status"),
    )

    @property
    def supplier_ids(self) -> list[int]:
        """Primary supplier first, then additional suppliers, de-duplicated."""
        ids: list[int] = []
        for sid in [self.supplier_id, *(self.additional_supplier_ids or [])]:
            if sid is not None and int(sid) not in ids:
                ids.append(int(sid))
        return ids


class QuoteRequestItem(Base):
    """A requested part, priced by the supplier tagged on the row."""

    __tablename__ = "quote_request_items"
    id = Column(Integer, primary_key=True)
    quote_request_id = Column(
        Integer, ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id", ondelete="SET NULL"))

    part_number = Column(String(255), nullable=False)
    supplier_part_number = Column(String(255))
    description = Column(Text)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2))
    total_price = Column(Numeric(12, 2))
    availability = Column(
        enum_column(ItemAvailability), nullable=False, default=ItemAvailability.UNKNOWN
    )
    estimated_delivery_days = Column(Integer)
    supplier_notes = Column(Text)

    quote_request = relationship("QuoteRequest", back_populates="items")
    supplier = relationship("Supplier")

    __table_args__ = (
        Index("ix_qr_items_quote_supplier", "quote_request_id", "supplier_id"),
    )


class SupplierThread(Base):
    """Junction of QuoteRequest x Supplier x EmailThread with its negotiation status."""

    __tablename__ = "supplier_threads"
    id = Column(Integer, primary_key=True)
    quote_request_id = Column(
        Integer, ForeignKey("quote_requests.id", ondelete="CASCADE"), nullable=False
    )
    supplier_id = Column(Integer, ForeignKey("suppliers.id"), nullable=False)
    email_thread_id = Column(Integer, ForeignKey("email_threads.id"), nullable=False)
    is_primary = Column(Boolean, default=False)
    negotiation_round = Column(Integer, nullable=False, default=1)

    status = Column(enum_column(ThreadStatus), nullable=False, default=ThreadStatus.SENT)
    response_date = Column(UTCDateTime)
    quoted_amount = Column(Numeric(12, 2))

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    quote_request = relationship("QuoteRequest", back_populates="supplier_threads")
    supplier = relationship("Supplier")
    email_thread = relationship("EmailThread")

    __table_args__ = (
        UniqueConstraint(
            "quote_request_id", "supplier_id", "negotiation_round", name="uq_supplier_thread_quote_supplier_round"
        ),
        UniqueConstraint("email_thread_id", name="uq_supplier_thread_email_thread"),
        Index("ix_supplier_threads_quote", "quote_request_id"),
    )
