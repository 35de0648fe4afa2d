"""Extractor interface shared by every vendor adapter, plus text chunking helpers."""

import re
import unicodedata
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from app.files.entity.attachment import Csv, Excel, FileKind, Pdf, TextFile, WordDoc
from app.files.service.token_estimator import CHARS_PER_TOKEN


class FormatExtractor(ABC):
    """Turns a file's bytes into ordered text segments bounded by a token budget."""

    label: str = "file"

    @abstractmethod
    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        """Return one or more segments. Implementations never raise on bad input."""


class ExtractorRegistry:
    """Maps a file kind to its extractor."""

    def __init__(self, extractors: Optional[Dict[Type, FormatExtractor]] = None) -> None:
        if extractors is None:
            from app.files.service.extractors.pdf import PdfExtractor
            from app.files.service.extractors.tabular import CsvExtractor, ExcelExtractor
            from app.files.service.extractors.text import TextExtractor
            from app.files.service.extractors.word import WordExtractor

            extractors = {
                TextFile: TextExtractor(),
                WordDoc: WordExtractor(),
                Pdf: PdfExtractor(),
                Csv: CsvExtractor(),
                Excel: ExcelExtractor(),
            }
        self._extractors = dict(extractors)

    def register(self, kind: Type, extractor: FormatExtractor) -> None:
        self._extractors[kind] = extractor

    def for_kind(self, kind: FileKind) -> Optional[FormatExtractor]:
        return self._extractors.get(type(kind))


def sanitize_file_name(file_name: str, max_length: int = 120) -> str:
    """Strip accents and control characters so the name is safe inside prompts."""
    normalized = unicodedata.normalize("NFKD", file_name)
    ascii_name = normalized.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^\w.\- ()]", "_", ascii_name).strip() or "file"
    if len(cleaned) <= max_length:
        return cleaned
    stem, dot, ext = cleaned.rpartition(".")
    if not dot or len(ext) > 10:
        return cleaned[:max_length]
    return stem[: max_length - len(ext) - 1] + "." + ext


def chunk_text(text: str, max_tokens: int) -> List[str]:
    """
    Split text into slices of at most `max_tokens` estimated tokens.

    Slices prefer to end on a newline in the back half of the window. Joining
    the result reproduces the input exactly.
    """
    max_chars = max(1, max_tokens * CHARS_PER_TOKEN)
    if len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    start = 0
    while start < len(text):
        end = min(start + max_chars, len(text))
        if end < len(text):
            newline = text.rfind("\n", start + max_chars // 2, end)
            if newline != -1:
                end = newline + 1
        chunks.append(text[start:end])
        start = end
    return chunks


def split_equal(text: str, parts: int) -> List[str]:
    """Split text into `parts` slices whose lengths differ by at most one character."""
    parts = max(1, min(parts, len(text) or 1))
    base, extra = divmod(len(text), parts)
    slices = []
    start = 0
    for i in range(parts):
        length = base + (1 if i < extra else 0)
        slices.append(text[start : start + length])
        start += length
    return slices


def with_header(file_name: str, body: str, part: Optional[int] = None, total: Optional[int] = None) -> str:
    if part is not None and total is not None and total > 1:
        return f'=== File "{file_name}" (part {part}/{total}) ===\n{body}'
    return f'=== File "{file_name}" ===\n{body}'


def placeholder(file_name: str, reason: str) -> str:
    return f'[Attachment "{file_name}": {reason}]'
