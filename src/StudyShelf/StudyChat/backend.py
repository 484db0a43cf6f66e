"""Generative backends for StudyChat.

:class:`GeminiBackend` talks to the Gemini ``generateContent`` REST
endpoint through httpx. API error payloads are turned into the shared error
taxonomy here, at the boundary where the response is parsed, so callers
never match on message text:

=====================  ===============================
Gemini status          Raised as
=====================  ===============================
INVALID_ARGUMENT       InvalidArgumentError
PERMISSION_DENIED      AuthError
UNAUTHENTICATED        AuthError
RESOURCE_EXHAUSTED     HttpStatusError (429, retryable)
anything else          error_for_status(http code)
=====================  ===============================
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import httpx

from StudyShelf.config.models import ChatConfig
from StudyShelf.ResourceAcquisition.errors import (
    AcquisitionError,
    AuthError,
    HttpStatusError,
    InvalidArgumentError,
    ParseError,
    error_for_status,
)

LOGGER = logging.getLogger(__name__)

Content = Dict[str, Any]


@runtime_checkable
class GenerativeBackend(Protocol):
    """Anything that turns Gemini-shaped contents into reply text."""

    async def generate(self, contents: Sequence[Content]) -> str: ...


def error_from_payload(status_code: int, payload: Any, *, url: Optional[str] = None) -> AcquisitionError:
    """Map a Gemini error body (``{"error": {code, message, status}}``) to a typed error."""
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return error_for_status(status_code, url=url)

    status = str(error.get("status") or "").upper()
    message = str(error.get("message") or f"Gemini API error {status_code}")
    detail = {"api_status": status} if status else {}

    if status == "INVALID_ARGUMENT":
        return InvalidArgumentError(message, url=url, status=status_code, detail=detail)
    if status in ("PERMISSION_DENIED", "UNAUTHENTICATED"):
        return AuthError(message, url=url, status=status_code, detail=detail)
    if status == "RESOURCE_EXHAUSTED":
        return HttpStatusError(message, status=429, url=url, detail=detail)
    return error_for_status(status_code, url=url, detail=detail)


def extract_text(payload: Any) -> str:
    """Concatenate the text parts of the first candidate.

    Raises:
        ParseError: No candidate or no text (e.g. blocked by safety filters)
    """
    if not isinstance(payload, dict):
        raise ParseError("Gemini response is not a JSON object")
    candidates = payload.get("candidates") or []
    if not candidates:
        feedback = payload.get("promptFeedback") or {}
        raise ParseError(
            "Gemini returned no candidates",
            detail={"block_reason": feedback.get("blockReason")},
        )
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    if not text.strip():
        raise ParseError(
            "Gemini candidate has no text",
            detail={"finish_reason": candidates[0].get("finishReason")},
        )
    return text


class GeminiBackend:
    """Gemini REST client.

    Args:
        config: Chat section of the configuration (model, key, API base)
        client: Shared httpx.AsyncClient
    """

    def __init__(self, config: ChatConfig, client: httpx.AsyncClient) -> None:
        self.config = config
        self.client = client

    @property
    def endpoint(self) -> str:
        return f"{self.config.api_base.rstrip('/')}/models/{self.config.model}:generateContent"

    async def generate(self, contents: Sequence[Content]) -> str:
        if not self.config.api_key:
            raise AuthError("GEMINI_API_KEY is not configured", url=self.endpoint)

        body: Dict[str, List[Content]] = {"contents": list(contents)}
        response = await self.client.post(
            self.endpoint,
            params={"key": self.config.api_key},
            json=body,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            error = error_from_payload(response.status_code, payload, url=self.endpoint)
            LOGGER.info(f"Gemini call failed: {error.kind.value} ({response.status_code})")
            raise error
        if payload is None:
            raise ParseError("Gemini response is not JSON", url=self.endpoint)

        return extract_text(payload)


__all__ = ["Content", "GeminiBackend", "GenerativeBackend", "error_from_payload", "extract_text"]
