# app/files/service/capabilities.py
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional

from app.files.entity.attachment import (
    MIME_CSV,
    MIME_DOCX,
    MIME_MARKDOWN,
    MIME_PDF,
    MIME_TEXT,
    MIME_XLSX,
)

MB = 1024 * 1024

_COMMON_IMAGES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
_EXTRACTED_DOCUMENTS = frozenset({MIME_PDF, MIME_TEXT, MIME_MARKDOWN, MIME_CSV, MIME_DOCX, MIME_XLSX})


@dataclass(frozen=True)
class ProviderCapabilities:
    """Static per-vendor limits for attachments."""

    vendor: str
    supported_types: FrozenSet[str]
    max_file_size: int
    max_files: int
    type_limits: Dict[str, int] = field(default_factory=dict)
    native_types: FrozenSet[str] = frozenset()

    def supports(self, mime_type: str) -> bool:
        return mime_type.lower() in self.supported_types

    def size_limit_for(self, mime_type: str) -> int:
        """Exact type first, then wildcard category (e.g. image/*), then the aggregate ceiling."""
        mime = mime_type.lower()
        if mime in self.type_limits:
            return self.type_limits[mime]
        wildcard = mime.split("/", 1)[0] + "/*"
        return self.type_limits.get(wildcard, self.max_file_size)

    def ingests_natively(self, mime_type: str) -> bool:
        mime = mime_type.lower()
        return mime in self.native_types or (mime.split("/", 1)[0] + "/*") in self.native_types


PROVIDER_CAPABILITIES: Dict[str, ProviderCapabilities] = {
    "openai": ProviderCapabilities(
        vendor="openai",
        supported_types=_COMMON_IMAGES | _EXTRACTED_DOCUMENTS,
        max_file_size=20 * MB,
        max_files=10,
        type_limits={"image/*": 20 * MB, MIME_PDF: 32 * MB},
        native_types=frozenset({"image/*"}),
    ),
    "anthropic": ProviderCapabilities(
        vendor="anthropic",
        supported_types=_COMMON_IMAGES | _EXTRACTED_DOCUMENTS,
        max_file_size=32 * MB,
        max_files=20,
        type_limits={"image/*": 5 * MB, MIME_PDF: 32 * MB},
        native_types=frozenset({"image/*", MIME_PDF}),
    ),
    "google": ProviderCapabilities(
        vendor="google",
        supported_types=_COMMON_IMAGES
        | _EXTRACTED_DOCUMENTS
        | frozenset({"image/heic", "image/heif", "text/html"}),
        max_file_size=20 * MB,
        max_files=16,
        type_limits={"image/*": 20 * MB, MIME_PDF: 50 * MB},
        native_types=frozenset({"image/*", MIME_PDF}),
    ),
}


def get_capabilities(vendor: str) -> Optional[ProviderCapabilities]:
    return PROVIDER_CAPABILITIES.get(vendor)
