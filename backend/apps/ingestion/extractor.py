"""
Text extraction from uploaded files.

Supports:
- PDF: flowed text across pages using PyMuPDF
- DOCX: raw paragraph and table text using python-docx
- CSV: one JSON record per row (header row gives the keys)
- .txt / .md: passed through, normalized to UTF-8

Dispatch is by declared MIME type, with the filename extension as a
fallback when the MIME type is generic or missing.
"""
import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

import chardet

logger = logging.getLogger(__name__)

PDF_TYPE = 'application/pdf'
DOCX_TYPE = 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
CSV_TYPES = ('text/csv', 'application/csv', 'text/comma-separated-values')
TEXT_TYPES = ('text/plain', 'text/markdown', 'text/x-markdown')

# Declared types that tell us nothing about the content
GENERIC_TYPES = ('', 'application/octet-stream', 'binary/octet-stream')

# Declared for .csv files by some browsers and platforms
AMBIGUOUS_TYPES = ('application/vnd.ms-excel', 'text/x-csv', 'application/x-csv')

EXTENSION_TYPES = {
    '.pdf': PDF_TYPE,
    '.docx': DOCX_TYPE,
    '.csv': 'text/csv',
    '.txt': 'text/plain',
    '.md': 'text/markdown',
    '.markdown': 'text/markdown',
}


class ExtractionError(Exception):
    """Raised when text extraction fails."""
    pass


class UnsupportedFileType(ExtractionError):
    """Raised when the file matches none of the supported families."""
    pass


class EmptyExtraction(ExtractionError):
    """Raised when a file yields no text."""
    pass


@dataclass
class UploadedContent:
    """An uploaded file as received by the ingestion endpoint."""
    data: bytes
    content_type: str
    name: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def resolve_content_type(content_type: Optional[str], filename: str) -> str:
    """
    Decide which extractor applies to a file.

    The declared MIME type wins when it is one we handle. Generic or
    ambiguous types (browsers often send application/octet-stream, text/plain
    for .md files, or application/vnd.ms-excel for .csv files) fall back to
    the file extension.

    Args:
        content_type: Declared MIME type (may be None or carry parameters)
        filename: Original filename

    Returns:
        The MIME type to dispatch on, possibly unsupported
    """
    declared = (content_type or '').split(';')[0].strip().lower()
    ext_type = EXTENSION_TYPES.get(Path(filename or '').suffix.lower())

    if declared in GENERIC_TYPES:
        return ext_type or declared

    if declared in AMBIGUOUS_TYPES and ext_type:
        return ext_type

    # text/plain is declared for most text-like files; trust the extension
    if declared == 'text/plain' and ext_type in CSV_TYPES + TEXT_TYPES:
        return ext_type

    return declared


def decode_text(data: bytes) -> str:
    """
    Decode raw bytes to str, normalizing to UTF-8.

    Tries UTF-8 first (stripping a BOM), then falls back to chardet's guess.
    """
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError:
        guess = chardet.detect(data).get('encoding') or 'utf-8'
        logger.warning(f"UTF-8 decode failed, decoding as {guess}")
        try:
            return data.decode(guess, errors='replace')
        except LookupError:
            return data.decode('utf-8', errors='replace')


def extract_text_from_plain(data: bytes) -> str:
    """Plain text and markdown are kept as-is (markdown syntax included)."""
    return decode_text(data)


def extract_text_from_pdf(data: bytes) -> str:
    """
    Extract text from a PDF using PyMuPDF.

    Scanned, image-only PDFs yield no text; there is no OCR.
    """
    import fitz  # PyMuPDF

    try:
        text_parts = []
        with fitz.open(stream=data, filetype='pdf') as doc:
            for page in doc:
                page_text = page.get_text()
                if page_text.strip():
                    text_parts.append(page_text)
        return "\n\n".join(text_parts)
    except Exception as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")


def extract_text_from_docx(data: bytes) -> str:
    """Extract raw text from a Word document (paragraphs, then tables)."""
    from docx import Document as DocxDocument

    try:
        document = DocxDocument(io.BytesIO(data))
    except Exception as e:
        raise ExtractionError(f"Failed to read Word document: {e}")

    lines = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                lines.append("\t".join(cells))

    return "\n".join(lines)


def extract_text_from_csv(data: bytes) -> str:
    """
    Re-serialize delimited text as one JSON object per row.

    Each record is keyed by the header row, so a chunk cut from the middle
    of a table still says what every value means.
    """
    text = decode_text(data)

    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=',;\t|')
    except csv.Error:
        dialect = csv.excel

    reader = csv.DictReader(io.StringIO(text), dialect=dialect)
    records = []
    try:
        for row in reader:
            record = {
                (key or '').strip(): (value.strip() if isinstance(value, str) else value)
                for key, value in row.items()
                if key is not None
            }
            if any(v for v in record.values()):
                records.append(json.dumps(record, ensure_ascii=False))
    except csv.Error as e:
        raise ExtractionError(f"Failed to parse CSV: {e}")

    return "\n".join(records)


EXTRACTORS: Dict[str, Callable[[bytes], str]] = {
    PDF_TYPE: extract_text_from_pdf,
    DOCX_TYPE: extract_text_from_docx,
    **{t: extract_text_from_csv for t in CSV_TYPES},
    **{t: extract_text_from_plain for t in TEXT_TYPES},
}


def extract(file: UploadedContent) -> str:
    """
    Extract plain text from an uploaded file.

    Args:
        file: The uploaded bytes with declared MIME type and name

    Returns:
        Extracted text (never empty)

    Raises:
        UnsupportedFileType: If no extractor handles the file
        EmptyExtraction: If the file contains no text
        ExtractionError: If the file is corrupt
    """
    content_type = resolve_content_type(file.content_type, file.name)

    logger.info(
        f"Extracting text from {file.name} "
        f"(declared={file.content_type}, resolved={content_type}, {file.size_bytes} bytes)"
    )

    extractor = EXTRACTORS.get(content_type)
    if extractor is None:
        raise UnsupportedFileType(f"Unsupported file type {file.content_type or 'unknown'}")

    text = extractor(file.data)

    if not text or not text.strip():
        raise EmptyExtraction(f"No text content found in {file.name}")

    return text
