from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.files.entity.attachment import Attachment


class AttachmentDTO(BaseModel):
    """File reference sent by the client: a public URL or inline base64 content."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=255)
    mime_type: str = Field(..., min_length=1)
    size_bytes: int = Field(..., ge=0)
    url: Optional[str] = None
    base64: Optional[str] = None

    @model_validator(mode="after")
    def _require_source(self) -> "AttachmentDTO":
        if not self.url and not self.base64:
            raise ValueError(f"Attachment '{self.name}' needs either url or base64")
        return self

    def to_attachment(self) -> Attachment:
        fields = {
            "name": self.name,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "remote_url": self.url or None,
            "inline_base64": self.base64 or None,
        }
        if self.id:
            fields["id"] = self.id
        return Attachment(**fields)


class ChatRequest(BaseModel):
    message: str
    conversation_id: Optional[str] = None
    user_id: Optional[str] = None
    preferred_provider: Optional[str] = Field(
        default=None, description="Vendor (openai, anthropic, google) or model name to try first"
    )
    files: Optional[List[AttachmentDTO]] = None

    def attachments(self) -> Optional[List[Attachment]]:
        if not self.files:
            return None
        return [f.to_attachment() for f in self.files]


class ChatResponse(BaseModel):
    conversation_id: str
    message_id: str
    content: str
    model_used: Optional[str] = None
    token_count: Optional[int] = None
    processing_time_ms: Optional[int] = None
    title: Optional[str] = None


class ConversationResponse(BaseModel):
    conversation_id: str
    user_id: str
    created_at: str
    last_activity: str
    message_count: int
    title: Optional[str] = None
    messages: Optional[List[dict]] = None
