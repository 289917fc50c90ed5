"""Text extraction for uploaded files (PDF and text-like formats)."""

import asyncio
import os
import re

import fitz  # PyMuPDF

from shared.exceptions.errors import EmptyExtractionError, UnsupportedFormatError
from shared.helper.HelperConfig import HelperConfig

TEXT_EXTENSIONS = {
    ".txt", ".md", ".markdown", ".csv", ".json", ".xml", ".html",
    ".htm", ".rtf", ".log", ".yml", ".yaml",
}

_HORIZONTAL_WS = re.compile(r"[^\S\n]+")
_MANY_NEWLINES = re.compile(r"\n{3,}")


def normalize_extracted_text(raw: str) -> str:
    """NULs become spaces, line endings become LF, runs of horizontal
    whitespace collapse to one space and blank-line runs to a single blank line."""
    text = raw.replace("\0", " ").replace("\r\n", "\n").replace("\r", "\n")
    text = _HORIZONTAL_WS.sub(" ", text)
    text = _MANY_NEWLINES.sub("\n\n", text)
    return text.strip()


def _extension(display_name: str) -> str:
    return os.path.splitext(display_name or "")[1].lower()


def is_pdf(display_name: str, mime_type: str | None) -> bool:
    return (mime_type or "").lower() == "application/pdf" or _extension(display_name) == ".pdf"


def is_text_like(display_name: str, mime_type: str | None) -> bool:
    if (mime_type or "").lower().startswith("text/"):
        return True
    return _extension(display_name) in TEXT_EXTENSIONS


def _read_pdf(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as pdf:
        return "\n\n".join(page.get_text("text") for page in pdf)


class TextExtractor:
    """Turns blob bytes into normalized plain text."""

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()

    async def extract_text(self, data: bytes, display_name: str, mime_type: str | None = None) -> str:
        """Extract and normalize the text of one file.

        Args:
            data (bytes): Raw file content.
            display_name (str): Original file name; its extension decides the format when the mime type does not.
            mime_type (str | None): Optional mime type hint.

        Returns:
            str: Normalized, non-empty text.

        Raises:
            UnsupportedFormatError: If the file is neither PDF nor text-like, or the PDF cannot be opened.
            EmptyExtractionError: If no text remains after normalization.
        """
        if is_pdf(display_name, mime_type):
            try:
                raw = await asyncio.to_thread(_read_pdf, data)
            except (RuntimeError, ValueError) as exc:
                self.logging.warning("Could not parse PDF '%s': %s", display_name, exc)
                raise UnsupportedFormatError(display_name, mime_type) from exc
        elif is_text_like(display_name, mime_type):
            raw = data.decode("utf-8", errors="replace")
        else:
            raise UnsupportedFormatError(display_name, mime_type)

        text = normalize_extracted_text(raw)
        if not text:
            raise EmptyExtractionError(display_name)
        self.logging.debug("Extracted %d characters from '%s'.", len(text), display_name)
        return text
