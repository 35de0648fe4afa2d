# app/files/service/errors.py
from typing import List


class AttachmentConversionError(Exception):
    """An attachment could not be turned into bytes by any strategy."""

    def __init__(self, attachment_name: str, reasons: List[str]):
        self.attachment_name = attachment_name
        self.reasons = reasons
        super().__init__(f"Could not load attachment '{attachment_name}': {'; '.join(reasons)}")


class FileReadTimeoutError(AttachmentConversionError):
    """Reading an in-memory file object took longer than the allowed ceiling."""


class AttachmentValidationError(Exception):
    """A vendor refused one or more attachments of a batch."""

    def __init__(self, vendor: str, errors: List[str], size_related: bool):
        self.vendor = vendor
        self.errors = errors
        self.size_related = size_related
        super().__init__(f"{vendor} rejected attachments: {'; '.join(errors)}")
