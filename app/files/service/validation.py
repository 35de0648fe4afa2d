# app/files/service/validation.py
from dataclasses import dataclass, field
from typing import List, Optional

from app.core.config import settings
from app.core.logger import get_logger
from app.files.entity.attachment import Attachment
from app.files.service.capabilities import ProviderCapabilities, get_capabilities

logger = get_logger("FileValidation")


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / (1024 * 1024):.2f}MB"


@dataclass
class ValidationOutcome:
    """Partition of an attachment batch for one vendor."""

    valid: List[Attachment] = field(default_factory=list)
    invalid: List[Attachment] = field(default_factory=list)
    fallback_processable: List[Attachment] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    count_exceeded: bool = False
    oversized: List[Attachment] = field(default_factory=list)

    @property
    def size_related(self) -> bool:
        """True when every rejection is about size or count rather than type."""
        return bool(self.invalid) and (self.count_exceeded or len(self.oversized) == len(self.invalid))


class FileValidationStage:
    """Applies a vendor capability table to a batch of attachments."""

    def __init__(self, fallback_threshold_bytes: Optional[int] = None):
        self.fallback_threshold_bytes = (
            fallback_threshold_bytes
            if fallback_threshold_bytes is not None
            else settings.FALLBACK_SNIFF_MAX_BYTES
        )

    def validate(self, attachments: List[Attachment], vendor: str) -> ValidationOutcome:
        caps = get_capabilities(vendor)
        if caps is None:
            raise ValueError(f"No capability table for vendor: {vendor}")
        return self.validate_with(attachments, caps)

    def validate_with(self, attachments: List[Attachment], caps: ProviderCapabilities) -> ValidationOutcome:
        outcome = ValidationOutcome()

        if len(attachments) > caps.max_files:
            outcome.invalid = list(attachments)
            outcome.count_exceeded = True
            outcome.errors.append(
                f"Too many attachments for {caps.vendor}: {len(attachments)} (max {caps.max_files})"
            )
            logger.warning(f"{caps.vendor}: batch of {len(attachments)} attachments exceeds max {caps.max_files}")
            return outcome

        for attachment in attachments:
            if not caps.supports(attachment.mime_type):
                if attachment.size_bytes < self.fallback_threshold_bytes:
                    outcome.fallback_processable.append(attachment)
                else:
                    outcome.invalid.append(attachment)
                    outcome.errors.append(
                        f"{attachment.name}: type {attachment.mime_type} not supported by {caps.vendor} "
                        f"and too large ({format_size(attachment.size_bytes)}) for text fallback"
                    )
                continue

            limit = caps.size_limit_for(attachment.mime_type)
            if attachment.size_bytes > limit:
                outcome.invalid.append(attachment)
                outcome.oversized.append(attachment)
                outcome.errors.append(
                    f"{attachment.name}: file too large for {caps.vendor} "
                    f"({format_size(attachment.size_bytes)} attempted, {format_size(limit)} allowed)"
                )
                continue

            outcome.valid.append(attachment)

        logger.debug(
            f"{caps.vendor}: validated {len(attachments)} attachments "
            f"(valid={len(outcome.valid)} fallback={len(outcome.fallback_processable)} invalid={len(outcome.invalid)})"
        )
        return outcome
