"""Assistant chat transcript — ChatConversation, ChatMessage."""

from sqlalchemy import JSON, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime, utcnow
from .enums import MessageRole, enum_column


class ChatConversation(Base):
    __tablename__ = "chat_conversations"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"))
    title = Column(String(255))
    created_at = Column(UTCDateTime, default=utcnow)

    messages = relationship(
        "ChatMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True)
    conversation_id = Column(
        Integer, ForeignKey("chat_conversations.id", ondelete="CASCADE"), nullable=False
    )
    role = Column(enum_column(MessageRole, length=10), nullable=False)
    content = Column(Text, nullable=False, default="")
    context = Column(JSON)  # searchResults, confidence, fallback flag
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    conversation = relationship("ChatConversation", back_populates="messages")

    __table_args__ = (Index("ix_chat_messages_conv_created", "conversation_id", "created_at"),)
