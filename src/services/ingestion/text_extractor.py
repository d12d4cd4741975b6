"""Page-addressed text extraction from PDF bytes.

Reads PDF documents using PyMuPDF (fitz), extracts text page-by-page, and
tags each page with the chapter it belongs to.  A chapter heading found in
the first lines of a page starts a new chapter; pages without a heading
inherit the chapter of the page before them.

Scanned PDFs with an embedded OCR text layer work the same way; scanned
PDFs without one yield no text and are rejected.
"""

from __future__ import annotations

import re

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from src.models.book import PageText
from src.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

# How many non-empty lines at the top of a page are checked for a heading.
_HEADING_SCAN_LINES = 5

_CHAPTER_WORD = re.compile(r"^chapter\s+([0-9]+|[ivxlcdm]+|[a-z]+)\b", re.IGNORECASE)
_NUMBERED_HEADING = re.compile(r"^(\d{1,3})\.\s+[A-Z]")

_ROMAN_VALUES = {"i": 1, "v": 5, "x": 10, "l": 50, "c": 100, "d": 500, "m": 1000}

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
    "twenty": 20,
}


def roman_to_int(value: str) -> int | None:
    """Convert a Roman numeral (case-insensitive) to an int, or None if malformed."""
    value = value.lower()
    if not value or any(ch not in _ROMAN_VALUES for ch in value):
        return None
    total = 0
    for current, following in zip(value, value[1:] + " ", strict=True):
        amount = _ROMAN_VALUES[current]
        if following != " " and _ROMAN_VALUES[following] > amount:
            total -= amount
        else:
            total += amount
    return total if total > 0 else None


def detect_chapter_number(page_text: str) -> int | None:
    """Return the chapter number announced at the top of *page_text*, if any."""
    lines = [ln.strip() for ln in page_text.splitlines() if ln.strip()]
    for line in lines[:_HEADING_SCAN_LINES]:
        match = _CHAPTER_WORD.match(line)
        if match:
            token = match.group(1).lower()
            if token.isdigit():
                return int(token)
            number = _NUMBER_WORDS.get(token) or roman_to_int(token)
            if number is not None:
                return number
            continue
        match = _NUMBERED_HEADING.match(line)
        if match:
            return int(match.group(1))
    return None


class TextExtractor:
    """Converts raw PDF bytes into an ordered list of :class:`PageText`.

    Blocking (PyMuPDF is synchronous); async callers should run
    :meth:`extract` in a worker thread.
    """

    def extract(self, document: bytes) -> list[PageText]:
        """Extract per-page text.

        Raises
        ------
        ValidationError
            If the bytes are not a readable PDF or no page has text.
        """
        if not document:
            raise ValidationError(message="Document is empty")
        try:
            doc = fitz.open(stream=document, filetype="pdf")
        except Exception as exc:
            logger.error("pdf_open_failed", size=len(document), error=str(exc))
            raise ValidationError(message=f"Unreadable PDF document: {exc}") from exc

        pages: list[PageText] = []
        chapter: int | None = None
        try:
            for page_index in range(len(doc)):
                text = doc[page_index].get_text("text").strip()
                if not text:
                    continue
                detected = detect_chapter_number(text)
                if detected is not None:
                    chapter = detected
                pages.append(
                    PageText(page_number=page_index + 1, text=text, chapter_number=chapter)
                )
            page_count = len(doc)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", page_count=page_count)
            raise ValidationError(message="Document has no extractable text")

        logger.info(
            "pdf_text_extracted",
            page_count=page_count,
            text_pages=len(pages),
            chapters=len({p.chapter_number for p in pages if p.chapter_number is not None}),
        )
        return pages
