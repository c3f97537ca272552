"""
chat_service.py — Parts-search assistant conversations

The parts-search workflow answers a user's question either in its HTTP
response or by writing the ASSISTANT message straight into the transcript
(often more than once). The transcript is shown consolidated.

Business Rules:
- The same USER content within 5 s is a double submit: no second webhook
  call; the existing message and its answer are returned
- The webhook is called once (no retries; it is not idempotent)
- Timeout / failure / empty answer → poll the transcript for an ASSISTANT
  message from the last consolidation window, bounded attempts
- Nothing found → store an apology ASSISTANT message flagged fallback

Called by: routers/conversations.py
Depends on: parsing_client, message_consolidator
"""

import asyncio
from datetime import timedelta

from loguru import logger
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import AuthorizationDenied, ExternalServiceError, NotFound
from ..models import ChatConversation, ChatMessage, User
from ..models.base import utcnow
from ..models.enums import MessageRole
from . import parsing_client
from .message_consolidator import ConsolidatedMessage, consolidate

DOUBLE_SUBMIT_WINDOW = timedelta(seconds=5)

FALLBACK_REPLY = (
    "I'm processing your request for parts information. This is taking longer "
    "than expected. Please check back in a moment, or try rephrasing your search."
)


def get_conversation(db: Session, conversation_id: int, user: User) -> ChatConversation:
    conv = db.get(ChatConversation, conversation_id)
    if not conv:
        raise NotFound(f"conversation {conversation_id} not found", public_message="Conversation not found")
    if conv.user_id != user.id:
        raise AuthorizationDenied(f"user {user.id} does not own conversation {conversation_id}")
    return conv


def _latest_assistant(db: Session, conversation_id: int) -> ChatMessage | None:
    since = utcnow() - timedelta(seconds=settings.consolidation_window_seconds)
    return (
        db.query(ChatMessage)
        .filter(
            ChatMessage.conversation_id == conversation_id,
            ChatMessage.role == MessageRole.ASSISTANT,
            ChatMessage.created_at >= since,
        )
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .first()
    )


async def poll_for_reply(db: Session, conversation_id: int) -> ChatMessage | None:
    for attempt in range(1, settings.chat_poll_attempts + 1):
        await asyncio.sleep(settings.chat_poll_interval_seconds)
        found = _latest_assistant(db, conversation_id)
        logger.debug("Chat poll {}/{} for conversation {}: {}",
                     attempt, settings.chat_poll_attempts, conversation_id, bool(found))
        if found:
            return found
    return None


def _reply_from_response(data: dict) -> tuple[str, dict] | None:
    content = data.get("response") or data.get("message") or data.get("content")
    if not isinstance(content, str) or not content.strip():
        return None
    context = {k: data[k] for k in ("searchResults", "confidence", "suggestions") if k in data}
    return content.strip(), context


async def post_chat_message(
    db: Session, conversation: ChatConversation, content: str, user: User
) -> tuple[ChatMessage, ChatMessage]:
    """Store the user's message and obtain an assistant reply. Never raises on webhook failure."""
    now = utcnow()
    duplicate = (
        db.query(ChatMessage)
        .filter(
            ChatMessage.conversation_id == conversation.id,
            ChatMessage.role == MessageRole.USER,
            ChatMessage.content == content,
            ChatMessage.created_at >= now - DOUBLE_SUBMIT_WINDOW,
        )
        .order_by(ChatMessage.created_at.desc())
        .first()
    )
    if duplicate:
        logger.info("Ignoring double submit in conversation {}", conversation.id)
        answer = (
            db.query(ChatMessage)
            .filter(
                ChatMessage.conversation_id == conversation.id,
                ChatMessage.role == MessageRole.ASSISTANT,
                ChatMessage.created_at >= duplicate.created_at,
            )
            .order_by(ChatMessage.created_at)
            .first()
        )
        return duplicate, answer

    user_msg = ChatMessage(
        conversation_id=conversation.id, role=MessageRole.USER, content=content, created_at=now
    )
    db.add(user_msg)
    db.commit()

    reply = None
    try:
        data = await parsing_client.search_parts(
            {"query": content, "conversationId": conversation.id, "userId": user.id}
        )
        parsed = _reply_from_response(data)
        if parsed:
            text, context = parsed
            reply = ChatMessage(
                conversation_id=conversation.id,
                role=MessageRole.ASSISTANT,
                content=text,
                context=context or None,
                created_at=utcnow(),
            )
            db.add(reply)
            db.commit()
    except ExternalServiceError as e:
        logger.warning("Parts search for conversation {} failed: {}", conversation.id, e)

    if reply is None:
        reply = await poll_for_reply(db, conversation.id)

    if reply is None:
        reply = ChatMessage(
            conversation_id=conversation.id,
            role=MessageRole.ASSISTANT,
            content=FALLBACK_REPLY,
            context={
                "error": "Webhook timeout or failure",
                "fallback": True,
                "query": content,
                "timestamp": utcnow().isoformat(),
            },
            created_at=utcnow(),
        )
        db.add(reply)
        db.commit()
        logger.warning("Conversation {}: no assistant reply, stored fallback", conversation.id)
    return user_msg, reply


def list_chat_messages(db: Session, conversation: ChatConversation) -> list[ConsolidatedMessage]:
    messages = (
        db.query(ChatMessage)
        .filter_by(conversation_id=conversation.id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
        .all()
    )
    return consolidate(messages)
