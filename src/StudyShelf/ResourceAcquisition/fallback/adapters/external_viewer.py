"""Hosted viewer adapters: the last, unverified resorts.

A hosted viewer renders inside a third-party frame, so success cannot be
observed; the handles these adapters return carry ``verified=False``.
"""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import quote

from StudyShelf.ResourceAcquisition.classifier import DocumentFormat
from StudyShelf.ResourceAcquisition.errors import StrategySkipped
from StudyShelf.ResourceAcquisition.fallback.adapters import (
    ResourceHandle,
    expected_format,
    require,
)
from StudyShelf.ResourceAcquisition.fallback.types import StrategyPolicy

GOOGLE_DOCS_VIEWER = "https://docs.google.com/viewer"
PDFJS_VIEWER = "https://mozilla.github.io/pdf.js/web/viewer.html"


def google_viewer_url(url: str, base: str = GOOGLE_DOCS_VIEWER) -> str:
    return f"{base}?url={quote(url, safe='')}&embedded=true"


def pdfjs_viewer_url(url: str, base: str = PDFJS_VIEWER) -> str:
    return f"{base}?file={quote(url, safe='')}"


def _require_remote(url: str) -> None:
    if url.startswith(("blob:", "data:")):
        raise StrategySkipped("Hosted viewers cannot read local references", url=url[:64])


async def adapter_google_viewer(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """Embed the document through the Google Docs viewer."""
    url = require(context, "url")
    _require_remote(url)
    base = (context.get("viewer_urls") or {}).get("google_docs") or GOOGLE_DOCS_VIEWER
    return ResourceHandle(
        url=google_viewer_url(url, base),
        via=policy.name,
        content_type="text/html",
        format=expected_format(context),
        verified=False,
    )


async def adapter_pdfjs_viewer(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """Embed the document through Mozilla's hosted PDF.js viewer (PDF only)."""
    url = require(context, "url")
    _require_remote(url)
    if expected_format(context) is DocumentFormat.EPUB:
        raise StrategySkipped("PDF.js cannot render EPUB", url=url)
    base = (context.get("viewer_urls") or {}).get("pdfjs") or PDFJS_VIEWER
    return ResourceHandle(
        url=pdfjs_viewer_url(url, base),
        via=policy.name,
        content_type="text/html",
        format=DocumentFormat.PDF,
        verified=False,
    )


__all__ = [
    "adapter_google_viewer",
    "adapter_pdfjs_viewer",
    "google_viewer_url",
    "pdfjs_viewer_url",
]
