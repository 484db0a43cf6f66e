"""
StudyShelf HTTP service

Backend routes the fallback strategies and the study tools depend on:

  GET  /health
  GET  /api/pdf/signed-url?url=   Canonical Cloudinary download URL
  GET  /api/pdf/fetch-pdf?url=    Stream the document bytes from an allowed host
                                  (400 on a refused URL, 502 on upstream failure)
  POST /api/chat                  JSON or multipart (optional image) → {response, userId}
  POST /chatbot-file              Multipart PDF → flashcard list

``/api/pdf/*`` require ``Authorization: Bearer <proxy.token>`` when a token
is configured. The fetch route only proxies ``proxy.allowed_hosts`` and never
internal addresses; redirects are followed hop by hop under the same check.
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Sequence, Tuple
from urllib.parse import urljoin

import httpx
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from StudyShelf.config.models import StudyShelfConfig
from StudyShelf.ResourceAcquisition.cloudinary import cloudinary_download_url, is_cloudinary_raw_url
from StudyShelf.ResourceAcquisition.errors import (
    AcquisitionError,
    ErrorKind,
    HttpStatusError,
    InvalidArgumentError,
    classify_exception,
    error_for_status,
)
from StudyShelf.ResourceAcquisition.http import build_async_client, check_declared_length, iter_bounded
from StudyShelf.ResourceAcquisition.urls import check_upstream_url
from StudyShelf.StudyChat.backend import GeminiBackend, GenerativeBackend
from StudyShelf.StudyChat.flashcards import FlashcardGenerator
from StudyShelf.StudyChat.history import ConversationStore, build_conversation_store
from StudyShelf.StudyChat.service import ChatService

LOGGER = logging.getLogger(__name__)

_CLIENT_ERROR_KINDS = (ErrorKind.INVALID_ARGUMENT, ErrorKind.UNSUPPORTED_FORMAT)


def _require_token(request: Request) -> None:
    token = request.app.state.config.proxy.token
    if not token:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, supplied = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(supplied.strip(), token):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


async def _open_upstream(
    client: httpx.AsyncClient,
    url: str,
    allowed_hosts: Sequence[str],
    max_redirects: int,
) -> httpx.Response:
    """Open a streamed GET, re-checking every redirect target.

    The caller owns the returned response and must close it.
    """
    hops = 0
    while True:
        request = client.build_request("GET", url)
        response = await client.send(request, stream=True, follow_redirects=False)
        if response.is_redirect and "Location" in response.headers:
            await response.aclose()
            if hops >= max_redirects:
                raise HttpStatusError(
                    f"Too many redirects from {url}", status=response.status_code, url=url
                )
            hops += 1
            url = check_upstream_url(urljoin(url, response.headers["Location"]), allowed_hosts)
            continue
        if not response.is_success:
            await response.aclose()
            raise error_for_status(response.status_code, url=url)
        return response


async def _relay(response: httpx.Response, max_bytes: int, url: str) -> AsyncIterator[bytes]:
    try:
        async for chunk in iter_bounded(response, max_bytes, url=url):
            yield chunk
    except AcquisitionError as error:
        LOGGER.warning(f"Proxy stream aborted for {url}: {error}")
        raise
    finally:
        await response.aclose()


def create_app(
    config: Optional[StudyShelfConfig] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    backend: Optional[GenerativeBackend] = None,
    store: Optional[ConversationStore] = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Effective configuration (defaults when omitted)
        http_client: Outbound client for proxying and the Gemini backend
        backend: Generative backend (GeminiBackend over ``http_client`` by default)
        store: Conversation store (selected by ``config.storage`` by default)
    """
    config = config or StudyShelfConfig()
    client = http_client or build_async_client(config.http)
    backend = backend or GeminiBackend(config.chat, client)
    store = store or build_conversation_store(config.storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        LOGGER.info(f"StudyShelf service starting (config {config.config_hash()[:12]})")
        yield
        if http_client is None:
            await client.aclose()

    app = FastAPI(title="StudyShelf API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.service.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.config = config
    app.state.http_client = client
    app.state.chat = ChatService(config, backend, store)
    app.state.flashcards = FlashcardGenerator(backend, config.chat)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok", "message": "StudyShelf API is running"}

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @app.get("/api/pdf/signed-url", dependencies=[Depends(_require_token)])
    async def signed_url(url: Optional[str] = Query(default=None)) -> Any:
        if not url:
            return JSONResponse({"success": False, "message": "URL parameter is required"}, status_code=400)
        if not is_cloudinary_raw_url(url):
            return JSONResponse({"success": False, "message": "Invalid Cloudinary URL format"}, status_code=400)
        return {"success": True, "signedUrl": cloudinary_download_url(url)}

    @app.get("/api/pdf/fetch-pdf", dependencies=[Depends(_require_token)])
    async def fetch_pdf(url: Optional[str] = Query(default=None)) -> Any:
        if not url:
            return JSONResponse({"success": False, "message": "URL parameter is required"}, status_code=400)
        try:
            check_upstream_url(url, config.proxy.allowed_hosts)
        except InvalidArgumentError as error:
            LOGGER.warning(f"Refused proxy fetch: {error}")
            return JSONResponse({"success": False, "message": str(error)}, status_code=400)

        upstream = cloudinary_download_url(url) if is_cloudinary_raw_url(url) else url
        try:
            response = await _open_upstream(
                client, upstream, config.proxy.allowed_hosts, config.proxy.max_redirects
            )
        except (httpx.HTTPError, OSError, AcquisitionError) as exc:
            error = classify_exception(exc, url=upstream)
            LOGGER.warning(f"Proxy fetch failed for {upstream}: {error.kind.value} ({error})")
            return JSONResponse(
                {"success": False, "message": "Failed to fetch PDF", "error": error.reason},
                status_code=502,
            )

        try:
            check_declared_length(response, config.proxy.max_bytes, url=upstream)
        except AcquisitionError:
            await response.aclose()
            return JSONResponse(
                {"success": False, "message": "Document exceeds the proxy size limit"},
                status_code=502,
            )
        return StreamingResponse(
            _relay(response, config.proxy.max_bytes, upstream),
            media_type="application/pdf",
            headers={"Content-Disposition": "inline"},
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    @app.post("/api/chat")
    async def chat(request: Request) -> Any:
        image: Optional[Tuple[str, bytes]] = None
        content_type = request.headers.get("content-type", "")
        if content_type.startswith("multipart/form-data"):
            form = await request.form()
            message = form.get("message")
            user_id = form.get("userId")
            upload = form.get("file")
            if upload is not None and hasattr(upload, "read"):
                image = (upload.content_type or "", await upload.read())
        else:
            try:
                body = await request.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("message")
            user_id = body.get("userId")

        if not isinstance(message, str) or not message.strip():
            return JSONResponse({"error": "Message is required"}, status_code=400)

        try:
            reply = await request.app.state.chat.reply(
                message, user_id if isinstance(user_id, str) else None, image
            )
        except AcquisitionError as error:
            if error.kind in _CLIENT_ERROR_KINDS:
                return JSONResponse({"error": str(error)}, status_code=400)
            LOGGER.error(f"Chat failed: {error.kind.value}: {error}")
            return JSONResponse(
                {"error": "Failed to get response", "details": str(error)}, status_code=500
            )
        return reply.to_dict()

    # ------------------------------------------------------------------
    # Flashcards
    # ------------------------------------------------------------------

    @app.post("/chatbot-file")
    async def chatbot_file(file: Optional[UploadFile] = File(default=None)) -> Any:
        if file is None:
            return JSONResponse({"message": "No file uploaded"}, status_code=400)
        data = await file.read()
        if not data:
            return JSONResponse({"message": "No file uploaded"}, status_code=400)
        try:
            cards = await app.state.flashcards.generate(data, file.content_type)
        except AcquisitionError as error:
            return _flashcard_error_response(error)
        return [card.model_dump(mode="json", by_alias=True, exclude_none=True) for card in cards]

    return app


def _flashcard_error_response(error: AcquisitionError) -> JSONResponse:
    if error.kind is ErrorKind.UNSUPPORTED_FORMAT:
        return JSONResponse({"message": str(error)}, status_code=400)
    if isinstance(error, InvalidArgumentError):
        return JSONResponse(
            {
                "message": (
                    "The PDF file could not be processed by the AI. It may be too large, "
                    "corrupted, or contain unsupported content."
                ),
                "error": str(error),
            },
            status_code=400,
        )
    if error.kind is ErrorKind.AUTH:
        return JSONResponse(
            {
                "message": "API key error: Permission denied. Please check your Gemini API key.",
                "error": str(error),
            },
            status_code=403,
        )
    LOGGER.error(f"Flashcard generation failed: {error.kind.value}: {error}")
    return JSONResponse({"message": "Failed to generate flashcards", "error": str(error)}, status_code=500)


__all__ = ["create_app"]
