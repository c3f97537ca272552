"""
schemas/conversations.py — Assistant chat payloads

Called by: routers/conversations.py
Depends on: pydantic
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator


class ChatMessageCreate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Message must not be blank")
        return v
