# === NAVMAP v1 ===
# {
#   "module": "StudyShelf.ResourceAcquisition.errors",
#   "purpose": "Typed error taxonomy for resource acquisition strategies.",
#   "sections": [
#     {
#       "id": "errorkind",
#       "name": "ErrorKind",
#       "anchor": "class-errorkind",
#       "kind": "class"
#     },
#     {
#       "id": "acquisitionerror",
#       "name": "AcquisitionError",
#       "anchor": "class-acquisitionerror",
#       "kind": "class"
#     },
#     {
#       "id": "classify-exception",
#       "name": "classify_exception",
#       "anchor": "function-classify-exception",
#       "kind": "function"
#     },
#     {
#       "id": "error-for-status",
#       "name": "error_for_status",
#       "anchor": "function-error-for-status",
#       "kind": "function"
#     },
#     {
#       "id": "get-actionable-error-message",
#       "name": "get_actionable_error_message",
#       "anchor": "function-get-actionable-error-message",
#       "kind": "function"
#     },
#     {
#       "id": "log-attempt-failure",
#       "name": "log_attempt_failure",
#       "anchor": "function-log-attempt-failure",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Typed error taxonomy for resource acquisition strategies.

Responsibilities
----------------
- Define the :class:`ErrorKind` vocabulary carried through every fallback
  chain so the sequencer can tell a transient network failure from an auth
  rejection without inspecting message text.
- Provide :class:`AcquisitionError` and its subclasses, raised by strategy
  adapters at the boundary where a response is parsed.
- Translate arbitrary exceptions (httpx transport errors, timeouts, bugs in
  adapters) into the taxonomy via :func:`classify_exception`.
- Turn terminal errors into user-facing copy via
  :func:`get_actionable_error_message` and emit structured failure logs via
  :func:`log_attempt_failure`.

Design Notes
------------
- Only ``NetworkError``, ``StrategyTimeoutError`` and throttling/5xx
  ``HttpStatusError`` instances are ``retryable``.
- ``StrategySkipped`` is not a failure: it marks a strategy that does not
  apply to the current input (e.g. a hosted viewer asked to open a local
  ``blob:`` reference).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

__all__ = (
    "ErrorKind",
    "AcquisitionError",
    "NetworkError",
    "HttpStatusError",
    "ParseError",
    "UnsupportedFormatError",
    "AuthError",
    "InvalidArgumentError",
    "StrategyTimeoutError",
    "StrategySkipped",
    "UnexpectedStrategyError",
    "RETRYABLE_STATUSES",
    "classify_exception",
    "error_for_status",
    "get_actionable_error_message",
    "log_attempt_failure",
)

LOGGER = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class ErrorKind(str, Enum):
    """Machine-readable failure categories shared by every strategy."""

    NETWORK = "network"
    HTTP_STATUS = "http_status"
    PARSE = "parse"
    UNSUPPORTED_FORMAT = "unsupported_format"
    AUTH = "auth"
    INVALID_ARGUMENT = "invalid_argument"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"
    UNEXPECTED = "unexpected"

    @classmethod
    def from_wire(cls, value: Any) -> "ErrorKind":
        """Return the member matching ``value`` (enum, name or value)."""

        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ValueError(f"Unknown error kind: {value!r}")


class AcquisitionError(Exception):
    """Base class for every failure raised by a strategy."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status: Optional[int] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.detail = detail or {}

    @property
    def reason(self) -> str:
        """Short reason code used in attempt records and telemetry."""
        if self.status is not None:
            return f"{self.kind.value}_{self.status}"
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "url": self.url,
            "status": self.status,
            "retryable": self.retryable,
            "detail": dict(self.detail),
        }


class NetworkError(AcquisitionError):
    """Transport-level failure: DNS, connection reset, TLS, protocol errors."""

    kind = ErrorKind.NETWORK
    retryable = True


class HttpStatusError(AcquisitionError):
    """Non-2xx response that is not an auth rejection."""

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, message: str, *, status: int, **kwargs: Any) -> None:
        super().__init__(message, status=status, **kwargs)
        self.retryable = status in RETRYABLE_STATUSES


class ParseError(AcquisitionError):
    """Payload arrived but could not be interpreted (corrupt document, bad JSON)."""

    kind = ErrorKind.PARSE


class UnsupportedFormatError(AcquisitionError):
    """Payload MIME type or signature does not match the expected format."""

    kind = ErrorKind.UNSUPPORTED_FORMAT

    def __init__(
        self,
        message: str,
        *,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.expected = expected
        self.actual = actual
        self.detail.setdefault("expected", expected)
        self.detail.setdefault("actual", actual)


class AuthError(AcquisitionError):
    """Request rejected for missing or invalid credentials (401/403)."""

    kind = ErrorKind.AUTH


class InvalidArgumentError(AcquisitionError):
    """Upstream API rejected the request payload itself."""

    kind = ErrorKind.INVALID_ARGUMENT


class StrategyTimeoutError(AcquisitionError):
    """Strategy did not finish within its time allowance."""

    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(self, message: str, *, timeout_ms: Optional[int] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.timeout_ms = timeout_ms
        if timeout_ms is not None:
            self.detail.setdefault("timeout_ms", timeout_ms)


class StrategySkipped(AcquisitionError):
    """Strategy does not apply to this input; the sequencer moves on."""

    kind = ErrorKind.SKIPPED


class UnexpectedStrategyError(AcquisitionError):
    """Wraps an exception that is not part of the taxonomy."""

    kind = ErrorKind.UNEXPECTED


def error_for_status(
    status: int,
    *,
    url: Optional[str] = None,
    detail: Optional[Dict[str, Any]] = None,
) -> AcquisitionError:
    """Return the typed error for a non-2xx HTTP status."""

    if status in (401, 403):
        return AuthError(f"HTTP {status} from {url or 'upstream'}", url=url, status=status, detail=detail)
    return HttpStatusError(f"HTTP {status} from {url or 'upstream'}", status=status, url=url, detail=detail)


def classify_exception(exc: BaseException, *, url: Optional[str] = None) -> AcquisitionError:
    """Map any exception raised inside a strategy onto the taxonomy."""

    if isinstance(exc, AcquisitionError):
        if url and exc.url is None:
            exc.url = url
        return exc

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return StrategyTimeoutError(f"Timed out: {exc}", url=url)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return error_for_status(status, url=url or str(exc.request.url))

    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return NetworkError(f"Network failure: {exc}", url=url, detail={"type": type(exc).__name__})

    if isinstance(exc, (ValueError, UnicodeDecodeError)):
        return ParseError(f"Could not parse response: {exc}", url=url)

    return UnexpectedStrategyError(
        f"{type(exc).__name__}: {exc}", url=url, detail={"type": type(exc).__name__}
    )


_USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "We could not reach the server. Check your connection and try again.",
    ErrorKind.HTTP_STATUS: "The server could not provide this resource right now. Please try again later.",
    ErrorKind.PARSE: "The file appears to be damaged or incomplete.",
    ErrorKind.UNSUPPORTED_FORMAT: "This file type cannot be displayed here.",
    ErrorKind.AUTH: "Your session does not allow access to this resource. Please sign in again.",
    ErrorKind.INVALID_ARGUMENT: "The request could not be processed. It may be too large or contain unsupported content.",
    ErrorKind.TIMEOUT: "The request took too long. Please try again.",
    ErrorKind.SKIPPED: "No available method could open this resource.",
    ErrorKind.UNEXPECTED: "Something went wrong while loading this resource. Please try again.",
}


def get_actionable_error_message(error: Optional[AcquisitionError]) -> str:
    """Return the user-facing message shown once every strategy has failed."""

    if error is None:
        return _USER_MESSAGES[ErrorKind.UNEXPECTED]
    return _USER_MESSAGES.get(error.kind, _USER_MESSAGES[ErrorKind.UNEXPECTED])


def log_attempt_failure(
    logger: logging.Logger,
    *,
    strategy: str,
    index: int,
    error: AcquisitionError,
    elapsed_ms: int,
) -> None:
    """Emit the structured log record for a failed or skipped attempt."""

    level = logging.DEBUG if error.kind is ErrorKind.SKIPPED else logging.INFO
    logger.log(
        level,
        f"Strategy '{strategy}' (#{index}) {error.kind.value}: {error}",
        extra={
            "strategy": strategy,
            "attempt_index": index,
            "error_kind": error.kind.value,
            "status": error.status,
            "elapsed_ms": elapsed_ms,
        },
    )
