"""Flashcard generation from an uploaded PDF.

The model is asked for a bare JSON array of ``{question, answer}`` objects.
Replies are parsed with a small fallback chain of its own: the whole reply
as JSON first, then the first ``[...]`` block embedded in prose or code
fences. Anything else is a ParseError.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from StudyShelf.config.models import ChatConfig
from StudyShelf.ResourceAcquisition.classifier import DocumentFormat, sniff_document
from StudyShelf.ResourceAcquisition.errors import InvalidArgumentError, ParseError, UnsupportedFormatError
from StudyShelf.schemas import Flashcard

from .backend import GenerativeBackend

LOGGER = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "Create flashcards from this PDF document. Format your response as a JSON array of "
    "objects, where each object has 'question' and 'answer' fields. Generate at least "
    "{count} flashcards that cover the main concepts in the document. Only return the "
    "JSON array, nothing else."
)

_ARRAY_PATTERN = re.compile(r"\[[\s\S]*\]")
_CARD_FIELDS = ("question", "answer", "tags", "difficulty")


def _parse_whole(text: str) -> Any:
    return json.loads(text)


def _parse_embedded(text: str) -> Any:
    match = _ARRAY_PATTERN.search(text)
    if match is None:
        raise ValueError("no JSON array in reply")
    return json.loads(match.group(0))


REPLY_PARSERS: Sequence[Tuple[str, Callable[[str], Any]]] = (
    ("whole_json", _parse_whole),
    ("embedded_array", _parse_embedded),
)


def parse_flashcards(text: str) -> List[Flashcard]:
    """Parse a model reply into validated flashcards.

    Raises:
        ParseError: No parser produced a JSON array of usable cards
    """
    data: Any = None
    for name, parser in REPLY_PARSERS:
        try:
            data = parser(text)
        except ValueError as e:
            LOGGER.debug(f"Flashcard parser '{name}' failed: {e}")
            continue
        LOGGER.debug(f"Flashcard reply parsed with '{name}'")
        break
    else:
        raise ParseError(
            "Failed to parse flashcards from AI response",
            detail={"preview": text[:200]},
        )

    if not isinstance(data, list):
        raise ParseError(f"AI did not return an array of flashcards (got {type(data).__name__})")

    cards: List[Flashcard] = []
    for index, item in enumerate(data):
        if not isinstance(item, dict):
            LOGGER.debug(f"Skipping flashcard #{index}: not an object")
            continue
        try:
            cards.append(Flashcard.model_validate({k: item[k] for k in _CARD_FIELDS if k in item}))
        except ValidationError as e:
            LOGGER.debug(f"Skipping flashcard #{index}: {e.error_count()} validation error(s)")
    if not cards:
        raise ParseError("AI response contained no usable flashcards")
    return cards


class FlashcardGenerator:
    """Turns a PDF into flashcards through a generative backend."""

    def __init__(self, backend: GenerativeBackend, config: Optional[ChatConfig] = None) -> None:
        self.backend = backend
        self.config = config or ChatConfig()

    def validate_pdf(self, data: bytes, mime_type: Optional[str]) -> None:
        if not data:
            raise InvalidArgumentError("No file uploaded")
        if mime_type != "application/pdf" or sniff_document(data[:2048], mime_type) is not DocumentFormat.PDF:
            raise UnsupportedFormatError(
                "Only PDF files are supported", expected="application/pdf", actual=mime_type
            )
        if len(data) > self.config.max_upload_bytes:
            raise UnsupportedFormatError(
                f"File exceeds {self.config.max_upload_bytes} bytes",
                expected=f"<= {self.config.max_upload_bytes} bytes",
                actual=f"{len(data)} bytes",
            )

    async def generate(self, data: bytes, mime_type: Optional[str] = "application/pdf") -> List[Flashcard]:
        """Generate flashcards for one PDF.

        Raises:
            InvalidArgumentError / UnsupportedFormatError: Bad upload
            AcquisitionError: Backend failure or unparseable reply
        """
        self.validate_pdf(data, mime_type)
        contents = [
            {
                "role": "user",
                "parts": [
                    {"text": PROMPT_TEMPLATE.format(count=self.config.min_flashcards)},
                    {
                        "inlineData": {
                            "mimeType": "application/pdf",
                            "data": base64.b64encode(data).decode("ascii"),
                        }
                    },
                ],
            }
        ]
        reply = await self.backend.generate(contents)
        cards = parse_flashcards(reply)
        if len(cards) < self.config.min_flashcards:
            LOGGER.warning(f"Model returned {len(cards)} flashcards, asked for {self.config.min_flashcards}")
        LOGGER.info(f"Generated {len(cards)} flashcards")
        return cards


__all__ = ["FlashcardGenerator", "PROMPT_TEMPLATE", "parse_flashcards"]
