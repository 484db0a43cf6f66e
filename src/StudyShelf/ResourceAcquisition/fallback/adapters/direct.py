"""Direct adapter: open the stored URL as-is after a reachability check."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from StudyShelf.ResourceAcquisition.blobs import decode_data_url
from StudyShelf.ResourceAcquisition.classifier import (
    DocumentFormat,
    format_from_content_type,
    is_compatible_content_type,
    sniff_document,
)
from StudyShelf.ResourceAcquisition.errors import ParseError, UnsupportedFormatError
from StudyShelf.ResourceAcquisition.fallback.adapters import (
    ResourceHandle,
    expected_format,
    raise_for_status,
    require,
)
from StudyShelf.ResourceAcquisition.fallback.types import StrategyPolicy

logger = logging.getLogger(__name__)

SNIFF_BYTES = 2048


async def verify_document_url(
    client: httpx.AsyncClient,
    url: str,
    expected: DocumentFormat,
    *,
    via: str = "direct",
) -> ResourceHandle:
    """HEAD a URL (GET when HEAD is not allowed) and check the MIME type.

    Raises:
        AuthError / HttpStatusError: Non-2xx status
        UnsupportedFormatError: Content type incompatible with ``expected``
    """
    response = await client.head(url)
    if response.status_code == 405:
        logger.debug(f"HEAD not allowed for {url}; checking with GET")
        async with client.stream("GET", url) as streamed:
            raise_for_status(streamed, url=url)
            head = b""
            async for chunk in streamed.aiter_bytes():
                head += chunk
                if len(head) >= SNIFF_BYTES:
                    break
            content_type = streamed.headers.get("Content-Type")
            length = streamed.headers.get("Content-Length")
        fmt = sniff_document(head, content_type, url)
        if fmt is DocumentFormat.HTML or (
            expected is not DocumentFormat.UNKNOWN and fmt not in (expected, DocumentFormat.UNKNOWN)
        ):
            raise UnsupportedFormatError(
                f"GET fallback returned {fmt.value}",
                url=url,
                expected=expected.value,
                actual=fmt.value,
            )
    else:
        raise_for_status(response, url=url)
        content_type = response.headers.get("Content-Type")
        length = response.headers.get("Content-Length")
        if not is_compatible_content_type(content_type, expected):
            raise UnsupportedFormatError(
                f"Unexpected Content-Type {content_type!r}",
                url=url,
                expected=expected.value,
                actual=content_type,
            )
        fmt = format_from_content_type(content_type)

    if fmt is DocumentFormat.UNKNOWN:
        fmt = expected
    return ResourceHandle(
        url=url,
        via=via,
        content_type=content_type,
        format=fmt,
        size=int(length) if length and length.isdigit() else None,
        verified=True,
    )


async def adapter_direct(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """Use the URL unchanged.

    ``data:`` and ``blob:`` URLs are already local and pass through without
    a network call. Remote URLs must answer a HEAD request with 2xx and a
    compatible MIME type.

    Args:
        policy: StrategyPolicy (timeout enforced by the sequencer)
        context: Dict with url, client, expected_format

    Returns:
        ResourceHandle pointing at the original URL
    """
    url = require(context, "url")
    expected = expected_format(context)

    if url.startswith("data:"):
        try:
            mime_type, payload = decode_data_url(url)
        except ValueError as e:
            raise ParseError(str(e), url=url[:64]) from e
        fmt = format_from_content_type(mime_type)
        return ResourceHandle(
            url=url,
            via=policy.name,
            content_type=mime_type,
            format=fmt if fmt is not DocumentFormat.UNKNOWN else expected,
            size=len(payload),
        )

    if url.startswith("blob:"):
        blobs = context.get("blobs")
        blob = blobs.get(url) if blobs is not None else None
        return ResourceHandle(
            url=url,
            via=policy.name,
            content_type=blob.content_type if blob else None,
            format=format_from_content_type(blob.content_type) if blob else expected,
            size=blob.size if blob else None,
        )

    client = require(context, "client")
    return await verify_document_url(client, url, expected, via=policy.name)


__all__ = ["adapter_direct", "verify_document_url"]
