"""Document-to-text conversion for uploaded PDFs and plain-text files."""

from __future__ import annotations

import io
import logging
from pathlib import Path

import pdfplumber

from orchestrator.exceptions import DocumentConversionError

logger = logging.getLogger("rejoinder.tools.document_converter")

SUPPORTED_SUFFIXES = (".pdf", ".txt")
_PDF_MAGIC = b"%PDF"


def _is_pdf(data: bytes, filename: str) -> bool:
    return Path(filename).suffix.lower() == ".pdf" or data.lstrip()[:4] == _PDF_MAGIC


def _extract_pdf_text(data: bytes, filename: str) -> str:
    """Extract text from a PDF using pdfplumber, page by page."""
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            page_count = len(pdf.pages)
            if page_count == 0:
                raise DocumentConversionError(filename, "PDF has no pages")
            logger.debug("PDF '%s' has %d pages", filename, page_count)

            pages: list[str] = []
            for page in pdf.pages:
                page_text = page.extract_text()
                if page_text:
                    pages.append(page_text)
    except DocumentConversionError:
        raise
    except Exception as exc:
        error_msg = str(exc).lower()
        if "password" in error_msg or "encrypted" in error_msg:
            reason = "PDF is password-protected or encrypted"
        else:
            reason = f"PDF could not be read ({type(exc).__name__})"
        logger.error("Failed to extract text from '%s': %s", filename, exc)
        raise DocumentConversionError(filename, reason) from exc

    return "\n".join(pages)


def convert(data: bytes, filename: str = "document.pdf") -> str:
    """Return the plain text of an uploaded document.

    Args:
        data: Raw file bytes.
        filename: Original file name; its suffix selects the format.

    Raises:
        DocumentConversionError: If the file is empty, unsupported,
            unreadable, or contains no extractable text.
    """
    if not data:
        raise DocumentConversionError(filename, "file is empty")

    if _is_pdf(data, filename):
        text = _extract_pdf_text(data, filename)
    elif Path(filename).suffix.lower() == ".txt":
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise DocumentConversionError(filename, "text file is not valid UTF-8") from exc
    else:
        supported = ", ".join(SUPPORTED_SUFFIXES)
        raise DocumentConversionError(filename, f"unsupported format (supported: {supported})")

    text = text.strip()
    if not text:
        raise DocumentConversionError(filename, "no extractable text found")

    logger.info("Converted '%s' to %d characters of text", filename, len(text))
    return text
