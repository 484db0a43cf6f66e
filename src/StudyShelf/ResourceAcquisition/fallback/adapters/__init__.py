# === NAVMAP v1 ===
# {
#   "module": "StudyShelf.ResourceAcquisition.fallback.adapters.__init__",
#   "purpose": "Document fetch strategies for the fallback sequencer.",
#   "sections": [
#     {
#       "id": "resourcehandle",
#       "name": "ResourceHandle",
#       "anchor": "class-resourcehandle",
#       "kind": "class"
#     },
#     {
#       "id": "raise-for-status",
#       "name": "raise_for_status",
#       "anchor": "function-raise-for-status",
#       "kind": "function"
#     },
#     {
#       "id": "check-document",
#       "name": "check_document",
#       "anchor": "function-check-document",
#       "kind": "function"
#     },
#     {
#       "id": "register-document",
#       "name": "register_document",
#       "anchor": "function-register-document",
#       "kind": "function"
#     },
#     {
#       "id": "download-document",
#       "name": "download_document",
#       "anchor": "function-download-document",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Document fetch strategies for the fallback sequencer.

This package contains one adapter per way of opening a document:
- Direct URL (HEAD check, local references passed through)
- Blob fetch (download bytes, expose a local ``blob:`` reference)
- Signed URL (backend-issued Cloudinary download URL)
- Backend proxy (backend downloads on our behalf)
- Google Docs viewer / PDF.js hosted viewer (unverified last resorts)

Each adapter is an async callable with signature:
``(policy: StrategyPolicy, context: Dict) -> ResourceHandle``.
Failures are raised as typed
:class:`~StudyShelf.ResourceAcquisition.errors.AcquisitionError` instances.

Context keys:
  url              Resource URL as stored on the book record
  client           httpx.AsyncClient
  blobs            BlobStore receiving downloaded payloads
  expected_format  DocumentFormat the caller wants (UNKNOWN accepts PDF/EPUB)
  proxy_base_url   Backend base URL
  proxy_token      Optional bearer token for backend routes
  viewer_urls      {"google_docs": ..., "pdfjs": ...}

Shared utilities:
- raise_for_status(): Map non-2xx responses onto typed errors
- check_document(): Sniff a payload and reject HTML / wrong formats
- register_document(): Validate bytes and expose them as a blob reference
- download_document(): Stream a bounded download into the blob store
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from StudyShelf.ResourceAcquisition.classifier import DocumentFormat, sniff_document
from StudyShelf.ResourceAcquisition.errors import (
    InvalidArgumentError,
    ParseError,
    UnsupportedFormatError,
    error_for_status,
)
from StudyShelf.ResourceAcquisition.http import read_bounded

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 50 * 1024 * 1024


@dataclass(frozen=True)
class ResourceHandle:
    """What a successful document strategy hands to the viewer.

    Attributes:
        url: URL the viewer should load (remote, ``blob:``, ``data:`` or hosted viewer)
        via: Strategy that produced it
        content_type: MIME type observed or declared
        format: Sniffed (or expected) DocumentFormat
        size: Payload size in bytes, when downloaded
        verified: False when success could not be observed (hosted viewers)
    """

    url: str
    via: str
    content_type: Optional[str] = None
    format: DocumentFormat = DocumentFormat.UNKNOWN
    size: Optional[int] = None
    verified: bool = True

    @property
    def is_local(self) -> bool:
        return self.url.startswith(("blob:", "data:"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "via": self.via,
            "content_type": self.content_type,
            "format": self.format.value,
            "size": self.size,
            "verified": self.verified,
        }


def require(context: Dict[str, Any], key: str) -> Any:
    """Return ``context[key]`` or raise InvalidArgumentError."""
    value = context.get(key)
    if value is None or value == "":
        raise InvalidArgumentError(f"Missing '{key}' in strategy context")
    return value


def expected_format(context: Dict[str, Any]) -> DocumentFormat:
    return DocumentFormat.from_wire(context.get("expected_format"))


def raise_for_status(response: httpx.Response, *, url: Optional[str] = None) -> None:
    """Raise the typed error for a non-2xx response.

    401/403 become AuthError, everything else HttpStatusError.
    """
    if 200 <= response.status_code < 300:
        return
    raise error_for_status(
        response.status_code,
        url=url or str(response.request.url),
        detail={"content_type": response.headers.get("Content-Type")},
    )


def check_document(
    data: bytes,
    content_type: Optional[str],
    *,
    url: str,
    expected: DocumentFormat = DocumentFormat.UNKNOWN,
) -> DocumentFormat:
    """Sniff ``data`` and make sure it is a renderable document.

    Returns:
        The sniffed DocumentFormat

    Raises:
        ParseError: Empty payload
        UnsupportedFormatError: HTML error page, unknown bytes, or a format
            other than ``expected``
    """
    if not data:
        raise ParseError("Empty document payload", url=url)

    fmt = sniff_document(data[:2048], content_type, url)
    if fmt is DocumentFormat.HTML:
        raise UnsupportedFormatError(
            "Received an HTML page instead of a document",
            url=url,
            expected=expected.value,
            actual=fmt.value,
        )
    if fmt is DocumentFormat.UNKNOWN:
        raise UnsupportedFormatError(
            "Payload is neither PDF nor EPUB",
            url=url,
            expected=expected.value,
            actual=(content_type or "unknown"),
        )
    if expected is not DocumentFormat.UNKNOWN and fmt is not expected:
        raise UnsupportedFormatError(
            f"Expected {expected.value}, received {fmt.value}",
            url=url,
            expected=expected.value,
            actual=fmt.value,
        )
    return fmt


def register_document(
    context: Dict[str, Any],
    data: bytes,
    content_type: Optional[str],
    *,
    source_url: str,
    via: str,
) -> ResourceHandle:
    """Validate downloaded bytes and expose them through the blob store."""
    max_bytes = context.get("max_bytes") or DEFAULT_MAX_BYTES
    if len(data) > max_bytes:
        raise UnsupportedFormatError(
            f"Document is {len(data)} bytes, limit is {max_bytes}",
            url=source_url,
            expected=f"<= {max_bytes} bytes",
            actual=f"{len(data)} bytes",
        )

    fmt = check_document(data, content_type, url=source_url, expected=expected_format(context))
    blobs = require(context, "blobs")
    blob_url = blobs.register(data, fmt.mime_type)
    logger.debug(f"{via}: {len(data)} bytes from {source_url} registered as {blob_url}")
    return ResourceHandle(
        url=blob_url,
        via=via,
        content_type=fmt.mime_type,
        format=fmt,
        size=len(data),
        verified=True,
    )


async def download_document(
    context: Dict[str, Any],
    request_url: str,
    *,
    source_url: str,
    via: str,
    **request_kwargs: Any,
) -> ResourceHandle:
    """Stream ``request_url`` into the blob store, stopping at ``max_bytes``.

    ``request_kwargs`` are passed to ``client.stream`` (params, headers).
    """
    client = require(context, "client")
    max_bytes = context.get("max_bytes") or DEFAULT_MAX_BYTES
    async with client.stream("GET", request_url, **request_kwargs) as response:
        raise_for_status(response, url=request_url)
        data = await read_bounded(response, max_bytes, url=source_url)
        content_type = response.headers.get("Content-Type")
    return register_document(context, data, content_type, source_url=source_url, via=via)


__all__ = [
    "DEFAULT_MAX_BYTES",
    "ResourceHandle",
    "check_document",
    "download_document",
    "expected_format",
    "raise_for_status",
    "register_document",
    "require",
]
