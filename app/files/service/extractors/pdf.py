# app/files/service/extractors/pdf.py
"""
PDF text extraction with invoice-aware prompting.

Pages are read with pypdf and concatenated. Brazilian electronic invoices
(DANFE) get a structured extraction prompt instead of the generic one; the
detection is a keyword heuristic and only shapes the prompt. A PDF without
any extractable text is passed on as an inline base64 reference so vendors
that read raw PDFs can still look at it.
"""

import base64
import io
import math
import re
from typing import List, Optional, Tuple

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from app.core.logger import get_logger
from app.files.entity.attachment import MIME_PDF
from app.files.service.extractors.base import FormatExtractor, sanitize_file_name, split_equal
from app.files.service.token_estimator import estimate_text_tokens

logger = get_logger("PdfExtractor")

_DANFE_NAME_PATTERN = re.compile(r"(danfe|(?<![a-z])nf-?e(?![a-z])|nota[\s_-]?fiscal)", re.IGNORECASE)
_DANFE_CONTENT_MARKERS = (
    "DANFE",
    "DOCUMENTO AUXILIAR DA NOTA FISCAL",
    "NOTA FISCAL ELETRÔNICA",
    "NOTA FISCAL ELETRONICA",
)

DANFE_INSTRUCTIONS = """The text below was extracted from a Brazilian electronic tax invoice (DANFE).
Extract its data in a structured way:
1. Emitter: company name, CNPJ, state registration, address
2. Recipient: name, CNPJ/CPF, address
3. Invoice: number, series, issue date, access key, nature of operation
4. Line items: code, description, NCM, quantity, unit, unit price, total
5. Taxes: ICMS base and value, ICMS ST, IPI, PIS, COFINS
6. Totals: products, freight, insurance, discounts, other expenses, invoice total
Report any field that cannot be found as "not informed"."""

GENERIC_INSTRUCTIONS = "Use the content extracted from this PDF to answer the user's request."


def read_pdf_pages(data: bytes) -> List[str]:
    reader = PdfReader(io.BytesIO(data))
    return [(page.extract_text() or "").strip() for page in reader.pages]


def looks_like_danfe(file_name: str, text: str) -> bool:
    if _DANFE_NAME_PATTERN.search(file_name):
        return True
    upper = text.upper()
    if any(marker in upper for marker in _DANFE_CONTENT_MARKERS):
        return True
    return "CHAVE DE ACESSO" in upper and "CNPJ" in upper


class PdfExtractor(FormatExtractor):
    label = "pdf"

    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        name = sanitize_file_name(file_name)
        try:
            pages = read_pdf_pages(data)
        except (PyPdfError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"PDF text extraction failed for {name}: {e}")
            pages = []

        page_count = len(pages)
        text = "\n\n".join(
            f"--- Page {number} ---\n{page}" for number, page in enumerate(pages, start=1) if page
        )
        if not text:
            logger.info(f"PDF {name} has no extractable text, embedding original bytes")
            return [self._inline_reference(data, name)]

        is_danfe = looks_like_danfe(file_name, text)
        if is_danfe:
            logger.info(f"PDF {name} looks like a DANFE invoice")

        prompt = self._wrap(text, name, page_count, is_danfe)
        estimated = estimate_text_tokens(prompt)
        if estimated <= max_tokens_per_chunk:
            return [prompt]

        parts = math.ceil(estimated / max_tokens_per_chunk)
        slices = split_equal(text, parts)
        logger.info(f"PDF {name} split into {len(slices)} parts (~{estimated} tokens)")
        return [
            self._wrap(piece, name, page_count, is_danfe, part=(i, len(slices)))
            for i, piece in enumerate(slices, start=1)
        ]

    @staticmethod
    def _wrap(
        text: str,
        name: str,
        page_count: int,
        is_danfe: bool,
        part: Optional[Tuple[int, int]] = None,
    ) -> str:
        header = f'=== PDF "{name}" ({page_count} pages)'
        if part is not None:
            header += f" part {part[0]}/{part[1]}"
        header += " ==="
        instructions = DANFE_INSTRUCTIONS if is_danfe else GENERIC_INSTRUCTIONS
        return f"{header}\n{instructions}\n\n{text}"

    @staticmethod
    def _inline_reference(data: bytes, name: str) -> str:
        encoded = base64.b64encode(data).decode("ascii")
        return (
            f'=== PDF "{name}" ===\n'
            "No text could be extracted from this PDF (it may be scanned or image-only). "
            "Analyze the original document below directly.\n"
            f"data:{MIME_PDF};base64,{encoded}"
        )
