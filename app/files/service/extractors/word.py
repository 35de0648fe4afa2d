import io
import zipfile
import xml.etree.ElementTree as ET
from typing import List

from app.core.logger import get_logger
from app.files.service.extractors.base import (
    FormatExtractor,
    chunk_text,
    placeholder,
    sanitize_file_name,
    with_header,
)

logger = get_logger("WordExtractor")

_W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"


def read_docx_text(data: bytes) -> str:
    """Raw paragraph text from the OOXML document body, tables included."""
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        xml_payload = archive.read("word/document.xml")
    root = ET.fromstring(xml_payload)

    paragraphs: List[str] = []
    for paragraph in root.iter(f"{_W_NS}p"):
        parts: List[str] = []
        for node in paragraph.iter():
            if node.tag == f"{_W_NS}t" and node.text:
                parts.append(node.text)
            elif node.tag == f"{_W_NS}tab":
                parts.append("\t")
            elif node.tag in (f"{_W_NS}br", f"{_W_NS}cr"):
                parts.append("\n")
        paragraphs.append("".join(parts))
    return "\n".join(paragraphs).strip()


class WordExtractor(FormatExtractor):
    label = "word"

    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        name = sanitize_file_name(file_name)
        try:
            text = read_docx_text(data)
        except (zipfile.BadZipFile, KeyError, ET.ParseError, ValueError) as e:
            logger.warning(f"Word extraction failed for {name}: {e}")
            return [placeholder(name, f"could not read the Word document ({e})")]

        if not text:
            return [placeholder(name, "the Word document contains no text")]

        chunks = chunk_text(text, max_tokens_per_chunk)
        return [with_header(name, chunk, i, len(chunks)) for i, chunk in enumerate(chunks, start=1)]
