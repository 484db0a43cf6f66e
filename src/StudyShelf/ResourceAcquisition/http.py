"""Shared ``httpx.AsyncClient`` factory for strategies and chat backends,
plus size-bounded readers for streamed document downloads."""

from __future__ import annotations

import logging
import ssl
import time
from typing import AsyncIterator, Dict, List, MutableMapping, Optional, Union

import certifi
import httpx

from StudyShelf.config.models import HttpClientConfig
from StudyShelf.ResourceAcquisition.errors import UnsupportedFormatError

LOGGER = logging.getLogger(__name__)


def _build_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    return context


async def _request_hook(request: httpx.Request) -> None:
    meta: MutableMapping[str, object] = request.extensions.setdefault("studyshelf_meta", {})  # type: ignore[assignment]
    meta["start_time"] = time.perf_counter()


async def _response_hook(response: httpx.Response) -> None:
    meta: MutableMapping[str, object] = response.request.extensions.setdefault(  # type: ignore[assignment]
        "studyshelf_meta", {}
    )
    start_time = meta.get("start_time")
    elapsed_ms = None
    if isinstance(start_time, (int, float)):
        elapsed_ms = int((time.perf_counter() - start_time) * 1000)
    LOGGER.debug(
        "httpx-response",
        extra={
            "method": response.request.method,
            "url": str(response.request.url),
            "status": response.status_code,
            "elapsed_ms": elapsed_ms,
        },
    )


def build_async_client(
    config: Optional[HttpClientConfig] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient honouring the HTTP section of the configuration.

    ``transport`` replaces the network transport (tests pass an
    ``httpx.MockTransport``).
    """
    config = config or HttpClientConfig()
    headers: Dict[str, str] = {"User-Agent": config.user_agent}
    headers.update(config.headers)

    verify: Union[ssl.SSLContext, bool] = _build_ssl_context() if config.verify_tls else False
    timeout = httpx.Timeout(config.timeout_read_s, connect=config.timeout_connect_s)

    return httpx.AsyncClient(
        headers=headers,
        timeout=timeout,
        verify=verify,
        follow_redirects=config.follow_redirects,
        transport=transport,
        event_hooks={"request": [_request_hook], "response": [_response_hook]},
    )


def _too_large(size: int, max_bytes: int, url: Optional[str]) -> UnsupportedFormatError:
    return UnsupportedFormatError(
        f"Document exceeds {max_bytes} bytes",
        url=url,
        expected=f"<= {max_bytes} bytes",
        actual=f"{size} bytes",
    )


def check_declared_length(response: httpx.Response, max_bytes: int, *, url: Optional[str] = None) -> None:
    """Refuse a response whose ``Content-Length`` already exceeds ``max_bytes``."""
    declared = response.headers.get("Content-Length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise _too_large(int(declared), max_bytes, url)


async def iter_bounded(
    response: httpx.Response, max_bytes: int, *, url: Optional[str] = None
) -> AsyncIterator[bytes]:
    """Yield the body of a streamed response, stopping once it passes ``max_bytes``.

    Raises:
        UnsupportedFormatError: Declared or received size above ``max_bytes``
    """
    check_declared_length(response, max_bytes, url=url)
    total = 0
    async for chunk in response.aiter_bytes():
        total += len(chunk)
        if total > max_bytes:
            raise _too_large(total, max_bytes, url)
        yield chunk


async def read_bounded(response: httpx.Response, max_bytes: int, *, url: Optional[str] = None) -> bytes:
    """Read a streamed response body of at most ``max_bytes``."""
    chunks: List[bytes] = []
    async for chunk in iter_bounded(response, max_bytes, url=url):
        chunks.append(chunk)
    return b"".join(chunks)


__all__ = ["build_async_client", "check_declared_length", "iter_bounded", "read_bounded"]
