# app/llm/entity/message.py
"""
Vendor-agnostic conversation and reply shapes.
No vendor-specific structure crosses the provider boundary.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.files.entity.attachment import Attachment


class Message(BaseModel):
    """A single conversation turn, immutable once built."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str
    files: Optional[List[Attachment]] = None


class NormalizedResponse(BaseModel):
    """Result of a blocking call."""

    content: str
    model_used: str
    token_count: Optional[int] = None
    processing_time_ms: int = 0


class StreamChunk(BaseModel):
    """One element of a streamed reply. Exactly one terminal chunk closes a stream."""

    model_config = ConfigDict(frozen=True)

    content_delta: str = ""
    is_complete: bool = False
    model_used: str = Field(default="")
