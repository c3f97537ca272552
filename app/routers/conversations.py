"""
conversations.py — Parts-Search Assistant Router

Business Rules:
- Only the conversation's owner can read or post
- Transcript is returned consolidated: duplicate assistant answers appear
  once with their alternates

Called by: main.py (router mount)
Depends on: services/chat_service
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import require_user
from ..models import ChatMessage, User
from ..schemas.conversations import ChatMessageCreate
from ..services.chat_service import get_conversation, list_chat_messages, post_chat_message

router = APIRouter(tags=["conversations"])


def _message_dict(m: ChatMessage | None) -> dict | None:
    if m is None:
        return None
    return {
        "id": m.id,
        "role": m.role.value,
        "content": m.content,
        "context": m.context,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


@router.get("/api/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: int, user: User = Depends(require_user), db: Session = Depends(get_db)
):
    conv = get_conversation(db, conversation_id, user)
    return [
        {
            **_message_dict(group.primary),
            "duplicate_count": group.duplicate_count,
            "alternates": [_message_dict(a) for a in group.alternates],
        }
        for group in list_chat_messages(db, conv)
    ]


@router.post("/api/conversations/{conversation_id}/messages", status_code=201)
async def post_message(
    conversation_id: int,
    payload: ChatMessageCreate,
    user: User = Depends(require_user),
    db: Session = Depends(get_db),
):
    conv = get_conversation(db, conversation_id, user)
    user_msg, reply = await post_chat_message(db, conv, payload.content, user)
    return {"user_message": _message_dict(user_msg), "ai_response": _message_dict(reply)}
