"""In-process blob registry standing in for browser object URLs.

Fetch strategies that download bytes register them here and hand the caller
a ``blob:`` reference; the presentation layer reads the bytes back by URL
and revokes the reference when the document is closed.
"""

from __future__ import annotations

import base64
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import unquote_to_bytes

LOGGER = logging.getLogger(__name__)

BLOB_SCHEME = "blob:"


@dataclass(frozen=True)
class Blob:
    """Bytes plus their declared MIME type."""

    data: bytes
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class BlobStore:
    """Registry of ``blob:`` references to in-memory payloads."""

    def __init__(self, namespace: str = "studyshelf") -> None:
        self.namespace = namespace
        self._blobs: Dict[str, Blob] = {}
        self._lock = threading.Lock()

    def register(self, data: bytes, content_type: str) -> str:
        """Store ``data`` and return its ``blob:`` URL."""
        url = f"{BLOB_SCHEME}{self.namespace}/{uuid.uuid4()}"
        with self._lock:
            self._blobs[url] = Blob(data=data, content_type=content_type)
        LOGGER.debug(f"Registered {len(data)} bytes ({content_type}) as {url}")
        return url

    def get(self, url: str) -> Optional[Blob]:
        with self._lock:
            return self._blobs.get(url)

    def revoke(self, url: str) -> bool:
        """Release one reference. Returns False if it was unknown."""
        with self._lock:
            removed = self._blobs.pop(url, None)
        if removed is not None:
            LOGGER.debug(f"Revoked {url}")
        return removed is not None

    def revoke_all(self) -> int:
        with self._lock:
            count = len(self._blobs)
            self._blobs.clear()
        return count

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)


def is_local_reference(url: str) -> bool:
    """True for ``blob:`` and ``data:`` URLs, which need no network fetch."""
    return url.startswith((BLOB_SCHEME, "data:"))


def decode_data_url(url: str) -> Tuple[str, bytes]:
    """Decode a ``data:`` URL into ``(mime_type, payload)``.

    Raises:
        ValueError: If ``url`` is not a well-formed data URL
    """
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Not a data URL")
    header, _, payload = url[len("data:") :].partition(",")
    params = header.split(";")
    mime_type = params[0] or "text/plain"
    if "base64" in params[1:]:
        try:
            return mime_type, base64.b64decode(payload, validate=True)
        except (ValueError, base64.binascii.Error) as e:
            raise ValueError(f"Invalid base64 payload in data URL: {e}") from e
    return mime_type, unquote_to_bytes(payload)
