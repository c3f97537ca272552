"""Email ledger models — EmailThread, EmailMessage, EmailAttachment.

A thread owns its messages exclusively; ``in_reply_to`` is only a soft
back-reference to another message id and never cascades.
"""

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow
from .enums import MessageDirection, enum_column


class EmailThread(Base):
    __tablename__ = "email_threads"
    id = Column(Integer, primary_key=True)
    external_thread_id = Column(String(255), unique=True)
    subject = Column(String(500))
    organization_id = Column(Integer, ForeignKey("organizations.id"))
    quote_request_id = Column(
        Integer, ForeignKey("quote_requests.id", ondelete="SET NULL")
    )
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    quote_request = relationship("QuoteRequest", back_populates="email_threads")
    messages = relationship(
        "EmailMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="EmailMessage.id",
    )

    __table_args__ = (Index("ix_email_threads_quote", "quote_request_id"),)


class EmailMessage(Base):
    __tablename__ = "email_messages"
    id = Column(Integer, primary_key=True)
    thread_id = Column(
        Integer, ForeignKey("email_threads.id", ondelete="CASCADE"), nullable=False
    )
    direction = Column(enum_column(MessageDirection, length=10), nullable=False)
    from_address = Column(String(255))
    to_address = Column(String(255))
    subject = Column(String(500))
    body = Column(Text)
    body_html = Column(Text)
    external_message_id = Column(String(255))
    in_reply_to = Column(Integer)  # soft reference to email_messages.id

    sent_at = Column(UTCDateTime)
    received_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    # Outbound only
    expected_response_by = Column(UTCDateTime)
    follow_up_sent_at = Column(UTCDateTime)

    details = Column("metadata", JSON)  # AI extraction payload (confidence, items, ...)

    thread = relationship("EmailThread", back_populates="messages")
    attachments = relationship(
        "EmailAttachment", back_populates="message", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_email_messages_thread", "thread_id"),
        Index("ix_email_messages_followup", "direction", "expected_response_by"),
    )

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


class EmailAttachment(Base):
    """Attachment metadata. Content lives in external file storage."""

    __tablename__ = "email_attachments"
    id = Column(Integer, primary_key=True)
    message_id = Column(
        Integer, ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False
    )
    filename = Column(String(500), nullable=False)
    content_type = Column(String(255))
    size = Column(Integer)
    storage_path = Column(String(1000))
    is_inline = Column(Boolean, default=False)
    created_at = Column(UTCDateTime, default=utcnow)

    message = relationship("EmailMessage", back_populates="attachments")
