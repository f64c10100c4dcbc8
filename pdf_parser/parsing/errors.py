from __future__ import annotations

from typing import Any, Optional


class PDFParserError(RuntimeError):
    """Base class for parsing subsystem failures."""


class FileAccessError(PDFParserError):
    """
    Raised synchronously by ``PDFParser.load`` when the file metadata can't be read.
    """

    def __init__(self, path: str, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"Cannot access PDF file {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ParseError(PDFParserError):
    """The parsing engine reported a failure."""

    def __init__(self, message: str, detail: Any = None):
        self.detail = detail
        super().__init__(message)


class ParserDestroyedError(PDFParserError):
    """The parser was used after ``destroy()``."""
