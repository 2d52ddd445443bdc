"""
Document extraction service - turns uploaded files into raw rows or raw text.

Spreadsheets become a list of {header: cell} dicts (header row consumed),
PDFs become their full text with one line break per page.
"""

import asyncio
import csv
import io
import logging
from typing import Any, Dict, List

import fitz  # PyMuPDF
from openpyxl import load_workbook

from ..config.settings import settings
from ..exceptions import ParseError
from ..utils import file_extension

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_csv(file_bytes: bytes, filename: str = "upload.csv") -> List[Row]:
    """Parse CSV bytes into header-keyed rows, skipping empty lines."""
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        try:
            text = file_bytes.decode("cp949")  # Excel's default export on Korean Windows
        except UnicodeDecodeError as e:
            raise ParseError(filename, f"unsupported text encoding ({e})")

    try:
        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames:
            raise ParseError(filename, "no header row")
        rows = []
        for raw in reader:
            row = {
                str(key).strip(): value
                for key, value in raw.items()
                if key is not None
            }
            if all(_is_blank(v) for v in row.values()):
                continue
            rows.append(row)
        return rows
    except csv.Error as e:
        raise ParseError(filename, f"malformed CSV ({e})")


def parse_xlsx(file_bytes: bytes, filename: str = "upload.xlsx") -> List[Row]:
    """Parse the first worksheet of an XLSX workbook; row 1 is the header."""
    try:
        workbook = load_workbook(io.BytesIO(file_bytes), read_only=True, data_only=True)
    except Exception as e:
        raise ParseError(filename, f"not a readable workbook ({e})")

    # read-only workbooks parse the sheet XML lazily, so reading can fail too
    try:
        worksheet = workbook.worksheets[0]
        values = list(worksheet.iter_rows(values_only=True))
    except Exception as e:
        raise ParseError(filename, f"unreadable worksheet ({e})")
    finally:
        workbook.close()

    if not values:
        raise ParseError(filename, "worksheet is empty")

    headers = ["" if h is None else str(h).strip() for h in values[0]]
    rows = []
    for raw in values[1:]:
        if raw is None or all(_is_blank(v) for v in raw):
            continue
        row = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            row[header] = raw[index] if index < len(raw) else None
        rows.append(row)
    return rows


def parse_spreadsheet(filename: str, file_bytes: bytes) -> List[Row]:
    """Dispatch on extension to the CSV or XLSX parser."""
    ext = file_extension(filename)
    if ext == "csv":
        return parse_csv(file_bytes, filename)
    if ext == "xlsx":
        return parse_xlsx(file_bytes, filename)
    raise ParseError(filename, f"unsupported spreadsheet type '{ext}'")


def extract_pdf_text(file_bytes: bytes, filename: str = "upload.pdf") -> str:
    """Extract the text of every page, one newline after each page."""
    try:
        pdf_document = fitz.open(stream=file_bytes, filetype="pdf")
    except Exception as e:
        raise ParseError(filename, f"invalid PDF ({e})")

    try:
        if pdf_document.page_count == 0:
            raise ParseError(filename, "PDF has no pages")
        pages = [page.get_text() for page in pdf_document]
    except ParseError:
        raise
    except Exception as e:
        raise ParseError(filename, f"unreadable page text ({e})")
    finally:
        pdf_document.close()

    return "".join(page_text + "\n" for page_text in pages)


class DocumentExtractionService:
    """Runs the blocking parsers in worker threads, a few at a time."""

    def __init__(self, concurrency: int = settings.PARSE_CONCURRENCY):
        self.semaphore = asyncio.Semaphore(concurrency)

    async def read_spreadsheet(self, filename: str, file_bytes: bytes) -> List[Row]:
        async with self.semaphore:
            rows = await asyncio.to_thread(parse_spreadsheet, filename, file_bytes)
        logger.info(f"Parsed {len(rows)} rows from {filename}")
        return rows

    async def read_pdf_text(self, filename: str, file_bytes: bytes) -> str:
        async with self.semaphore:
            text = await asyncio.to_thread(extract_pdf_text, file_bytes, filename)
        logger.info(f"Extracted {len(text)} characters from {filename}")
        return text
