"""Document sniffing helpers shared by the fetch strategies."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union
from urllib.parse import urlsplit

EPUB_MIMETYPE = b"application/epub+zip"
ZIP_MAGIC = b"PK\x03\x04"


class DocumentFormat(Enum):
    """Document formats the viewers can render."""

    PDF = "pdf"
    EPUB = "epub"
    HTML = "html"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @classmethod
    def from_wire(cls, value: Union[str, "DocumentFormat", None]) -> "DocumentFormat":
        """Return the enum member when ``value`` matches a known code."""

        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.UNKNOWN


_MIME_TYPES = {
    DocumentFormat.PDF: "application/pdf",
    DocumentFormat.EPUB: "application/epub+zip",
    DocumentFormat.HTML: "text/html",
    DocumentFormat.UNKNOWN: "application/octet-stream",
}


def format_from_content_type(content_type: Optional[str]) -> DocumentFormat:
    """Map a Content-Type header onto a DocumentFormat."""

    ctype = (content_type or "").split(";")[0].strip().lower()
    if "pdf" in ctype:
        return DocumentFormat.PDF
    if "epub" in ctype:
        return DocumentFormat.EPUB
    if "html" in ctype:
        return DocumentFormat.HTML
    return DocumentFormat.UNKNOWN


def format_from_url(url: str) -> DocumentFormat:
    """Guess a DocumentFormat from the URL path suffix."""

    path = urlsplit(url).path.lower()
    if path.endswith(".pdf"):
        return DocumentFormat.PDF
    if path.endswith(".epub"):
        return DocumentFormat.EPUB
    if path.endswith((".html", ".htm")):
        return DocumentFormat.HTML
    return DocumentFormat.UNKNOWN


def sniff_document(head_bytes: bytes, content_type: Optional[str] = None, url: str = "") -> DocumentFormat:
    """Classify a payload as PDF, EPUB, HTML or UNKNOWN.

    Byte signatures win over headers; headers win over the URL suffix.
    """

    stripped = head_bytes.lstrip() if head_bytes else b""
    prefix = stripped[:64].lower()

    if prefix.startswith(b"<!doctype html") or prefix.startswith(b"<html"):
        return DocumentFormat.HTML
    if prefix.startswith(b"<head") or prefix.startswith(b"<body"):
        return DocumentFormat.HTML

    if stripped.startswith(b"%PDF") or (head_bytes or b"")[:1024].find(b"%PDF") != -1:
        return DocumentFormat.PDF

    if head_bytes.startswith(ZIP_MAGIC):
        # The EPUB container stores an uncompressed "mimetype" entry first.
        if EPUB_MIMETYPE in head_bytes[:128]:
            return DocumentFormat.EPUB
        if format_from_content_type(content_type) is DocumentFormat.EPUB:
            return DocumentFormat.EPUB
        return DocumentFormat.UNKNOWN

    by_header = format_from_content_type(content_type)
    if by_header is not DocumentFormat.UNKNOWN:
        return by_header

    return format_from_url(url) if url else DocumentFormat.UNKNOWN


def is_compatible_content_type(content_type: Optional[str], expected: DocumentFormat) -> bool:
    """Return True when a Content-Type header does not rule out ``expected``.

    Servers commonly label documents ``application/octet-stream`` (or omit
    the header), so those are accepted and left for byte sniffing.
    """

    ctype = (content_type or "").split(";")[0].strip().lower()
    if not ctype or ctype in ("application/octet-stream", "binary/octet-stream"):
        return True
    if expected is DocumentFormat.UNKNOWN:
        return format_from_content_type(ctype) in (DocumentFormat.PDF, DocumentFormat.EPUB)
    if expected is DocumentFormat.EPUB and ctype == "application/zip":
        return True
    return format_from_content_type(ctype) is expected
