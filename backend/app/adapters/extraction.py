"""Text extraction adapters for uploaded documents.

PDF parsing uses PyPDF2, DOCX parsing uses python-docx. Parsing is CPU-bound
and runs in a worker thread; callers apply the timeout.
"""

import asyncio
import logging
import re
from io import BytesIO
from typing import Protocol
from zipfile import BadZipFile

from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from backend.app.errors import ExtractionError
from backend.app.models.documents import ExtractedText

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MIMES = frozenset({"text/plain", "text/markdown"})

_MARKDOWN_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$")
_MAX_SECTIONS = 50


class TextExtractor(Protocol):
    """Protocol for text extraction implementations."""

    async def extract(self, data: bytes, mime_type: str) -> ExtractedText:
        """Extract plain text and structural hints from document bytes.

        Raises:
            ExtractionError: If the format is unsupported or the bytes are unreadable
        """
        ...


def _looks_tabular(text: str) -> bool:
    """Heuristic: several consecutive lines with column separators."""
    run = 0
    for line in text.splitlines():
        if line.count("|") >= 2 or line.count("\t") >= 2:
            run += 1
            if run >= 2:
                return True
        else:
            run = 0
    return False


def extract_plain_text(data: bytes) -> ExtractedText:
    """Decode UTF-8 text; markdown headings become section hints."""
    text = data.decode("utf-8", errors="replace").lstrip("\ufeff")

    sections: list[str] = []
    for line in text.splitlines():
        match = _MARKDOWN_HEADING.match(line)
        if match:
            sections.append(match.group(1))

    return ExtractedText(
        text=text,
        has_tables=_looks_tabular(text),
        sections=sections[:_MAX_SECTIONS],
    )


def _page_has_images(page: object) -> bool:
    try:
        resources = page["/Resources"]  # type: ignore[index]
        if "/XObject" not in resources:
            return False
        xobjects = resources["/XObject"]
        return any(xobjects[name].get("/Subtype") == "/Image" for name in xobjects)
    except (KeyError, TypeError, AttributeError, PdfReadError):
        return False


def extract_pdf_text(data: bytes) -> ExtractedText:
    """Extract text page by page from a PDF."""
    try:
        reader = PdfReader(BytesIO(data))
    except (PdfReadError, ValueError) as e:
        raise ExtractionError("Invalid or corrupted PDF document.") from e

    if reader.is_encrypted:
        raise ExtractionError("Password-protected PDFs are not supported.")

    page_texts: list[str] = []
    has_images = False
    try:
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                page_texts.append(page_text)
            has_images = has_images or _page_has_images(page)
    except PdfReadError as e:
        raise ExtractionError("Invalid or corrupted PDF document.") from e

    text = "\n".join(page_texts)
    return ExtractedText(
        text=text,
        page_count=len(reader.pages),
        has_tables=_looks_tabular(text),
        has_images=has_images,
    )


def extract_docx_text(data: bytes) -> ExtractedText:
    """Extract paragraph and table text from a DOCX file."""
    try:
        doc = DocxDocument(BytesIO(data))
    except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as e:
        raise ExtractionError("Invalid or corrupted DOCX document.") from e

    lines: list[str] = []
    sections: list[str] = []
    for para in doc.paragraphs:
        # Detect headings (Heading 1, Heading 2, etc.)
        if para.style and para.style.name and para.style.name.startswith("Heading"):
            if para.text.strip():
                sections.append(para.text.strip())
        lines.append(para.text)

    for table in doc.tables:
        for row in table.rows:
            lines.append(" | ".join(cell.text.strip() for cell in row.cells))

    return ExtractedText(
        text="\n".join(lines),
        has_tables=bool(doc.tables),
        has_images=len(doc.inline_shapes) > 0,
        sections=sections[:_MAX_SECTIONS],
    )


class DocumentTextExtractor:
    """Dispatches extraction by MIME type."""

    async def extract(self, data: bytes, mime_type: str) -> ExtractedText:
        """Extract text in a worker thread."""
        if mime_type in TEXT_MIMES:
            parser = extract_plain_text
        elif mime_type == PDF_MIME:
            parser = extract_pdf_text
        elif mime_type == DOCX_MIME:
            parser = extract_docx_text
        else:
            raise ExtractionError(f"Unsupported file type: {mime_type}")

        logger.debug(f"Extracting {len(data)} bytes as {mime_type}")
        return await asyncio.to_thread(parser, data)
