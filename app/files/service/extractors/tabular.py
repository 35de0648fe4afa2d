# app/files/service/extractors/tabular.py
"""
CSV and Excel summarisation.

Vendors have no tabular modality, so a sheet is presented as derived
statistics plus its rows rendered field by field. When the whole summary
fits the budget it is a single segment; otherwise the overview is followed
by row-range segments (per sheet for Excel). Every data row lands in
exactly one row segment.
"""

import csv
import io
import math
import zipfile
from dataclasses import dataclass
from typing import Any, List, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.core.logger import get_logger
from app.files.service.extractors.base import FormatExtractor, placeholder, sanitize_file_name
from app.files.service.token_estimator import estimate_text_tokens

logger = get_logger("TabularExtractor")

SAMPLE_ROWS = 5


@dataclass
class Table:
    headers: List[str]
    rows: List[List[Any]]
    sheet: Optional[str] = None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _fmt(number: float) -> str:
    if float(number).is_integer():
        return str(int(number))
    return f"{number:.2f}"


def _cell(value: Any) -> str:
    if _is_blank(value):
        return ""
    if isinstance(value, float):
        return _fmt(value)
    return str(value).strip()


def build_table(raw_rows: List[List[Any]], sheet: Optional[str] = None) -> Table:
    rows = [list(row) for row in raw_rows if not all(_is_blank(v) for v in row)]
    if not rows:
        return Table(headers=[], rows=[], sheet=sheet)

    width = max(len(row) for row in rows)
    padded = [row + [None] * (width - len(row)) for row in rows]
    headers = [
        _cell(value) or f"column_{index}" for index, value in enumerate(padded[0], start=1)
    ]
    return Table(headers=headers, rows=padded[1:], sheet=sheet)


def render_row(headers: List[str], row: List[Any], number: int) -> str:
    fields = " | ".join(f"{header}={_cell(value)}" for header, value in zip(headers, row))
    return f"Row {number}: {fields}"


def column_statistics(table: Table) -> List[str]:
    lines = []
    for index, header in enumerate(table.headers):
        values = [row[index] for row in table.rows if not _is_blank(row[index])]
        numbers = [_to_number(v) for v in values]
        if values and all(n is not None for n in numbers):
            lines.append(
                f"- {header}: numeric (count={len(numbers)}, min={_fmt(min(numbers))}, "
                f"max={_fmt(max(numbers))}, mean={_fmt(sum(numbers) / len(numbers))})"
            )
        else:
            distinct = len({_cell(v) for v in values})
            lines.append(f"- {header}: text ({distinct} distinct values, {len(values)} filled)")
    return lines


def _overview(file_name: str, table: Table) -> List[str]:
    lines = [f'📊 Spreadsheet "{file_name}"']
    if table.sheet is not None:
        lines.append(f"Sheet: {table.sheet}")
    lines.append(f"Data rows: {len(table.rows)}")
    lines.append(f"Columns: {len(table.headers)}")
    lines.append(f"Headers: {', '.join(table.headers)}")
    lines.append("")
    lines.append("Column statistics:")
    lines.extend(column_statistics(table))
    return lines


def full_summary(file_name: str, table: Table) -> str:
    lines = _overview(file_name, table)
    lines.append("")
    lines.append(f"Rows (all {len(table.rows)}):")
    lines.extend(render_row(table.headers, row, n) for n, row in enumerate(table.rows, start=1))
    return "\n".join(lines)


def chunked_summary(file_name: str, table: Table, max_tokens: int) -> List[str]:
    """Overview segment with a sample, then row-range segments covering every row."""
    overview = _overview(file_name, table)
    overview.append("")
    overview.append(f"Sample rows (first {min(SAMPLE_ROWS, len(table.rows))}):")
    overview.extend(
        render_row(table.headers, row, n) for n, row in enumerate(table.rows[:SAMPLE_ROWS], start=1)
    )
    segments = ["\n".join(overview)]

    where = f'"{file_name}"' + (f" sheet {table.sheet}" if table.sheet is not None else "")
    rendered = [render_row(table.headers, row, n) for n, row in enumerate(table.rows, start=1)]

    start = 0
    while start < len(rendered):
        budget = max_tokens - estimate_text_tokens(f"Rows 000000-000000 of {len(rendered)} from {where}:")
        end = start
        used = 0
        while end < len(rendered):
            cost = estimate_text_tokens(rendered[end]) + 1
            if end > start and used + cost > budget:
                break
            used += cost
            end += 1
        header = f"Rows {start + 1}-{end} of {len(rendered)} from {where}:"
        segments.append("\n".join([header, *rendered[start:end]]))
        start = end
    return segments


def summarize_tables(file_name: str, tables: List[Table], max_tokens: int) -> List[str]:
    non_empty = [t for t in tables if t.headers]
    if not non_empty:
        return [placeholder(file_name, "the spreadsheet has no data")]

    summaries = [full_summary(file_name, table) for table in non_empty]
    combined = "\n\n".join(summaries)
    if estimate_text_tokens(combined) <= max_tokens:
        return [combined]

    segments: List[str] = []
    for table, summary in zip(non_empty, summaries):
        if estimate_text_tokens(summary) <= max_tokens:
            segments.append(summary)
        else:
            segments.extend(chunked_summary(file_name, table, max_tokens))
    logger.info(f"Spreadsheet {file_name} rendered as {len(segments)} segments")
    return segments


class CsvExtractor(FormatExtractor):
    label = "csv"

    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        name = sanitize_file_name(file_name)
        text = data.decode("utf-8-sig", errors="replace")
        if not text.strip():
            return [placeholder(name, "the CSV file is empty")]

        try:
            dialect = csv.Sniffer().sniff(text[:4096], delimiters=",;\t|")
        except csv.Error:
            dialect = csv.excel
        try:
            rows = list(csv.reader(io.StringIO(text), dialect))
        except csv.Error as e:
            logger.warning(f"CSV parsing failed for {name}: {e}")
            return [placeholder(name, f"could not parse the CSV file ({e})")]

        return summarize_tables(name, [build_table(rows)], max_tokens_per_chunk)


class ExcelExtractor(FormatExtractor):
    label = "excel"

    def extract(self, data: bytes, file_name: str, max_tokens_per_chunk: int) -> List[str]:
        name = sanitize_file_name(file_name)
        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
            logger.warning(f"Excel parsing failed for {name}: {e}")
            return [placeholder(name, f"could not read the spreadsheet ({e})")]

        try:
            tables = [
                build_table([list(row) for row in sheet.iter_rows(values_only=True)], sheet=sheet.title)
                for sheet in workbook.worksheets
            ]
        finally:
            workbook.close()
        return summarize_tables(name, tables, max_tokens_per_chunk)
