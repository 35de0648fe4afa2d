"""
Unit tests for plain text, Word and sniffed-text extraction plus chunking helpers.
"""

import io
import zipfile

import pytest

from app.files.entity.attachment import Csv, Excel, Image, Pdf, TextFile, Unsupported, WordDoc, classify
from app.files.service.extractors.base import (
    ExtractorRegistry,
    chunk_text,
    sanitize_file_name,
    split_equal,
)
from app.files.service.extractors.sniff import printable_ratio, sniff_text
from app.files.service.extractors.text import TextExtractor
from app.files.service.extractors.word import WordExtractor, read_docx_text
from fake_providers import attachment

_W = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"


def make_docx(paragraphs):
    body = "".join(f"<w:p><w:r><w:t>{text}</w:t></w:r></w:p>" for text in paragraphs)
    document = f'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="{_W}"><w:body>{body}</w:body></w:document>'
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr("word/document.xml", document)
    return buffer.getvalue()


@pytest.mark.unit
class TestClassify:
    """Test file kind classification."""

    @pytest.mark.parametrize(
        "name,mime,kind",
        [
            ("a.png", "image/png", Image),
            ("a.heic", "image/heic", Image),
            ("a.pdf", "application/pdf", Pdf),
            ("a.pdf", "application/octet-stream", Pdf),
            ("a.csv", "text/csv", Csv),
            ("a.csv", "application/vnd.ms-excel", Csv),
            ("a.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", Excel),
            ("a.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document", WordDoc),
            ("a.md", "text/markdown", TextFile),
            ("a.log", "application/octet-stream", TextFile),
            ("a.zip", "application/zip", Unsupported),
        ],
    )
    def test_kind(self, name, mime, kind):
        assert isinstance(classify(attachment(name, mime, b"x")), kind)

    def test_registry_has_no_extractor_for_images(self):
        registry = ExtractorRegistry()

        assert registry.for_kind(classify(attachment("a.png", "image/png", b"x"))) is None
        assert isinstance(registry.for_kind(classify(attachment("a.txt", "text/plain", b"x"))), TextExtractor)


@pytest.mark.unit
class TestChunking:
    """Test chunk_text, split_equal and file name sanitising."""

    def test_short_text_is_single_chunk(self):
        assert chunk_text("hello", 10) == ["hello"]

    def test_chunks_reassemble_exactly_and_respect_budget(self):
        text = "\n".join(f"line {i} " + "x" * (i % 17) for i in range(500))

        chunks = chunk_text(text, 50)

        assert len(chunks) > 1
        assert "".join(chunks) == text
        assert all(len(chunk) <= 200 for chunk in chunks)

    def test_chunks_prefer_newline_boundaries(self):
        text = ("a" * 150 + "\n") * 4

        chunks = chunk_text(text, 50)

        assert all(chunk.endswith("\n") for chunk in chunks)

    def test_split_equal_lengths_differ_by_at_most_one(self):
        slices = split_equal("abcdefghij", 3)

        assert slices == ["abcd", "efg", "hij"]
        assert split_equal("ab", 5) == ["a", "b"]

    def test_sanitize_strips_accents_and_control_characters(self):
        assert sanitize_file_name("relatório final.txt") == "relatorio final.txt"
        assert sanitize_file_name("a\x00b/c.txt") == "a_b_c.txt"
        assert sanitize_file_name("\x00") == "_"

    def test_sanitize_keeps_extension_when_truncating(self):
        name = sanitize_file_name("x" * 300 + ".pdf", max_length=20)

        assert len(name) == 20
        assert name.endswith(".pdf")


@pytest.mark.unit
class TestTextExtractor:
    """Test plain text extraction."""

    def test_small_file_is_one_headed_segment(self):
        segments = TextExtractor().extract("hello\nworld".encode(), "notes.txt", 8000)

        assert segments == ['=== File "notes.txt" ===\nhello\nworld']

    def test_large_file_is_numbered_parts(self):
        text = "word " * 2000

        segments = TextExtractor().extract(text.encode(), "long.txt", 500)

        assert len(segments) > 1
        assert segments[0].startswith(f'=== File "long.txt" (part 1/{len(segments)}) ===')

    def test_empty_file_gives_placeholder(self):
        assert "empty" in TextExtractor().extract(b"  \n", "blank.txt", 8000)[0]


@pytest.mark.unit
class TestWordExtractor:
    """Test .docx extraction."""

    def test_paragraphs_are_extracted(self):
        data = make_docx(["First paragraph", "Second paragraph"])

        assert read_docx_text(data) == "First paragraph\nSecond paragraph"
        segments = WordExtractor().extract(data, "memo.docx", 8000)
        assert segments == ['=== File "memo.docx" ===\nFirst paragraph\nSecond paragraph']

    def test_document_without_text(self):
        segments = WordExtractor().extract(make_docx([]), "blank.docx", 8000)

        assert "contains no text" in segments[0]

    def test_corrupt_document_gives_placeholder(self):
        segments = WordExtractor().extract(b"definitely not a zip", "broken.docx", 8000)

        assert len(segments) == 1
        assert "could not read the Word document" in segments[0]


@pytest.mark.unit
class TestSniff:
    """Test printable-text sniffing for unknown types."""

    def test_plain_ascii_is_text(self):
        assert printable_ratio(b"key: value\n") == 1.0
        assert sniff_text(b"key: value\n") == "key: value\n"

    def test_binary_is_not_text(self):
        assert sniff_text(bytes(range(256)) * 4) is None

    def test_empty_or_whitespace_is_not_text(self):
        assert sniff_text(b"") is None
        assert sniff_text(b"   \n\t") is None
