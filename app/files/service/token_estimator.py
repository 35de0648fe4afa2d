# app/files/service/token_estimator.py
"""
Approximate token costs used for admission control before a vendor call.

These numbers are a policy signal, not vendor billing. PDF costs model
multimodal encoding: a flat floor for small files, then roughly one token
per 10 KB above the linear threshold.
"""

import math
from dataclasses import dataclass
from typing import Optional, Union

from app.core.config import settings
from app.files.entity.attachment import Attachment

CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class PdfTokenPolicy:
    floor_tokens: int = settings.PDF_TOKEN_FLOOR
    linear_threshold_bytes: int = settings.PDF_LINEAR_THRESHOLD_BYTES
    bytes_per_token: int = settings.PDF_BYTES_PER_TOKEN
    max_bytes: int = settings.PDF_MAX_BYTES
    max_tokens: int = settings.PDF_MAX_TOKENS


@dataclass(frozen=True)
class PdfAdmission:
    can_process: bool
    estimated_tokens: int
    reason: Optional[str] = None


def estimate_text_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_pdf_tokens(size_bytes: int, policy: PdfTokenPolicy = PdfTokenPolicy()) -> int:
    if size_bytes < policy.linear_threshold_bytes:
        return policy.floor_tokens
    return math.ceil(size_bytes / policy.bytes_per_token)


def estimate_tokens(payload: Union[str, bytes], policy: PdfTokenPolicy = PdfTokenPolicy()) -> int:
    """Text is priced by characters, raw bytes as native PDF input."""
    if isinstance(payload, str):
        return estimate_text_tokens(payload)
    return estimate_pdf_tokens(len(payload), policy)


def can_admit_pdf(attachment: Attachment, policy: PdfTokenPolicy = PdfTokenPolicy()) -> PdfAdmission:
    estimated = estimate_pdf_tokens(attachment.size_bytes, policy)

    if attachment.size_bytes > policy.max_bytes:
        return PdfAdmission(
            can_process=False,
            estimated_tokens=estimated,
            reason=(
                f"PDF '{attachment.name}' is {attachment.size_bytes / (1024 * 1024):.1f}MB, "
                f"above the {policy.max_bytes // (1024 * 1024)}MB byte ceiling"
            ),
        )

    if estimated > policy.max_tokens:
        return PdfAdmission(
            can_process=False,
            estimated_tokens=estimated,
            reason=f"PDF '{attachment.name}' needs ~{estimated} tokens, above the {policy.max_tokens} token ceiling",
        )

    return PdfAdmission(can_process=True, estimated_tokens=estimated)
