from typing import List

from app.core.logger import get_logger
from app.files.service.extractors.base import (
    FormatExtractor,
    chunk_text,
    placeholder,
    sanitize_file_name,
    with_header,
)

logger = get_logger("TextExtractor")


class TextExtractor(FormatExtractor):
    label = "text"

    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        name = sanitize_file_name(file_name)
        text = data.decode("utf-8-sig", errors="replace") if data else ""

        if not text.strip():
            logger.info(f"Text file {name} is empty")
            return [placeholder(name, "the text file is empty")]

        chunks = chunk_text(text, max_tokens_per_chunk)
        return [with_header(name, chunk, i, len(chunks)) for i, chunk in enumerate(chunks, start=1)]
