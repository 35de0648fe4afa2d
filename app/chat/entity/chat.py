# app/chat/entity/chat.py
"""
Stored shapes for conversations and messages.
Only the fields the chat core reads and writes are modelled.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.files.entity.attachment import Attachment
from app.llm.entity.message import Message


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class StoredMessage(BaseModel):
    """A message as persisted. Never mutated after it is saved."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    conversation_id: str
    role: MessageRole
    content: str
    files: Optional[List[Attachment]] = None
    model_used: Optional[str] = None
    token_count: Optional[int] = None
    processing_time_ms: Optional[int] = None
    created_at: str = Field(default_factory=_now)

    def to_message(self) -> Message:
        return Message(role=self.role.value, content=self.content, files=self.files)


class Conversation(BaseModel):
    """Conversation DTO representing a chat session."""
    conversation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str = "New Chat"
    model: Optional[str] = None
    created_at: str = Field(default_factory=_now)
    last_activity: str = Field(default_factory=_now)
    message_count: int = 0
