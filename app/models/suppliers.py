"""Supplier model — parts vendors that receive quote requests."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String

from .base import Base, UTCDateTime, utcnow


class Supplier(Base):
    __tablename__ = "suppliers"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255))
    contact_person = Column(String(255))
    phone = Column(String(100))
    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("ix_suppliers_org", "organization_id"),
        Index("ix_suppliers_email", "email"),
    )
