"""Activity log — append-only audit trail for merges and conversions."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow


class ActivityLog(Base):
    """One audit event. Rows are inserted, never updated."""

    __tablename__ = "activity_log"
    id = Column(Integer, primary_key=True)
    activity_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)

    # Polymorphic link: entity_type is "quote_request" | "order" | "email_message"
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)

    user_id = Column(Integer, ForeignKey("users.id"))
    organization_id = Column(Integer, ForeignKey("organizations.id"))
    details = Column("metadata", JSON)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index("ix_activity_entity", "entity_type", "entity_id", "created_at"),
    )
