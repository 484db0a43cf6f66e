"""
Pytest Configuration

Shared fixtures for the StudyShelf suite: sample document payloads, a
configuration with the chat key disabled, and a helper that builds an
``httpx.AsyncClient`` over a ``MockTransport`` routing table.
"""

from __future__ import annotations

from typing import AsyncIterator, Callable, Dict, List, Tuple

import httpx
import pytest

from StudyShelf.config import StudyShelfConfig

PDF_BYTES = b"%PDF-1.7\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n"
EPUB_BYTES = b"PK\x03\x04" + b"\x00" * 26 + b"mimetypeapplication/epub+zip" + b"\x00" * 64
HTML_BYTES = b"<!DOCTYPE html><html><body>Not found</body></html>"

Route = Tuple[str, str]
Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def pdf_bytes() -> bytes:
    return PDF_BYTES


@pytest.fixture
def epub_bytes() -> bytes:
    return EPUB_BYTES


@pytest.fixture
def config() -> StudyShelfConfig:
    """Default configuration without a Gemini key from the environment."""
    cfg = StudyShelfConfig()
    cfg.chat.api_key = None
    return cfg


class Router:
    """Routes ``(METHOD, url-without-query)`` to handlers and records calls."""

    def __init__(self, routes: Dict[Route, Handler]) -> None:
        self.routes = routes
        self.calls: list = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, str(request.url).split("?")[0])
        self.calls.append((request.method, str(request.url)))
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, text="no route")
        return handler(request)

    def called(self, method: str, prefix: str) -> int:
        return sum(1 for m, url in self.calls if m == method and url.startswith(prefix))


@pytest.fixture
def streaming_handler() -> Callable[..., Tuple[Handler, List[int]]]:
    """Return a factory for handlers streaming a large body without Content-Length.

    The second element of the returned pair lists the size of every filler
    chunk the client actually pulled.
    """

    def _factory(chunks: int = 1000, size: int = 64 * 1024) -> Tuple[Handler, List[int]]:
        pulled: List[int] = []

        async def body() -> AsyncIterator[bytes]:
            yield PDF_BYTES
            for _ in range(chunks):
                pulled.append(size)
                yield b"0" * size

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body(), headers={"Content-Type": "application/pdf"})

        return handler, pulled

    return _factory


@pytest.fixture
def make_client() -> Callable[[Dict[Route, Handler]], Tuple[httpx.AsyncClient, Router]]:
    """Return a factory building a mocked AsyncClient from a routing table."""

    def _factory(routes: Dict[Route, Handler]) -> Tuple[httpx.AsyncClient, Router]:
        router = Router(routes)
        return httpx.AsyncClient(transport=httpx.MockTransport(router)), router

    return _factory
