# app/files/entity/attachment.py
"""
Attachment model and the closed set of file kinds the pipeline understands.

An attachment is classified exactly once (`classify`) and every later stage
dispatches on the resulting variant instead of re-reading MIME strings.
"""

import os
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

MIME_PDF = "application/pdf"
MIME_TEXT = "text/plain"
MIME_MARKDOWN = "text/markdown"
MIME_CSV = "text/csv"
MIME_LEGACY_EXCEL = "application/vnd.ms-excel"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

TEXT_MIME_TYPES = {MIME_TEXT, MIME_MARKDOWN, "text/html", "application/json", "text/xml"}


class Attachment(BaseModel):
    """A file attached to a message. At least one byte source must be set."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    mime_type: str
    size_bytes: int = Field(ge=0)
    remote_url: Optional[str] = None
    local_handle: Optional[Any] = Field(default=None, exclude=True, repr=False)
    inline_base64: Optional[str] = Field(default=None, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _normalise_csv_type(cls, data: Any) -> Any:
        # Windows browsers report CSV uploads as application/vnd.ms-excel
        if isinstance(data, dict):
            name = str(data.get("name", ""))
            mime = str(data.get("mime_type", "")).lower()
            if mime == MIME_LEGACY_EXCEL and name.lower().endswith(".csv"):
                return {**data, "mime_type": MIME_CSV}
        return data

    @model_validator(mode="after")
    def _require_source(self) -> "Attachment":
        if self.remote_url is None and self.local_handle is None and self.inline_base64 is None:
            raise ValueError(f"Attachment '{self.name}' has no remote_url, local_handle or inline_base64")
        return self

    @property
    def extension(self) -> str:
        return os.path.splitext(self.name)[1].lower()


@dataclass(frozen=True)
class TextFile:
    attachment: Attachment


@dataclass(frozen=True)
class WordDoc:
    attachment: Attachment


@dataclass(frozen=True)
class Pdf:
    attachment: Attachment


@dataclass(frozen=True)
class Csv:
    attachment: Attachment


@dataclass(frozen=True)
class Excel:
    attachment: Attachment


@dataclass(frozen=True)
class Image:
    attachment: Attachment


@dataclass(frozen=True)
class Unsupported:
    attachment: Attachment


FileKind = Union[TextFile, WordDoc, Pdf, Csv, Excel, Image, Unsupported]


def classify(attachment: Attachment) -> FileKind:
    """Narrow an attachment to its file kind from MIME type, then extension."""
    mime = attachment.mime_type.lower()
    ext = attachment.extension

    if mime.startswith("image/"):
        return Image(attachment)
    if mime == MIME_PDF or ext == ".pdf":
        return Pdf(attachment)
    if mime == MIME_CSV or ext == ".csv":
        return Csv(attachment)
    if mime == MIME_XLSX or ext == ".xlsx":
        return Excel(attachment)
    if mime == MIME_DOCX or ext == ".docx":
        return WordDoc(attachment)
    if mime in TEXT_MIME_TYPES or mime.startswith("text/"):
        return TextFile(attachment)
    if ext in (".txt", ".md", ".log", ".json"):
        return TextFile(attachment)
    return Unsupported(attachment)
