"""Blob adapter: download the bytes and hand the viewer a local reference."""

from __future__ import annotations

from typing import Any, Dict

from StudyShelf.ResourceAcquisition.errors import StrategySkipped
from StudyShelf.ResourceAcquisition.fallback.adapters import (
    ResourceHandle,
    download_document,
    require,
)
from StudyShelf.ResourceAcquisition.fallback.types import StrategyPolicy


async def adapter_blob_fetch(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """GET the raw bytes, validate them and register a ``blob:`` URL.

    Works around viewers that cannot stream cross-origin URLs, at the cost
    of holding the whole document in memory. The download stops as soon
    as it passes ``max_bytes``.

    Args:
        policy: StrategyPolicy (timeout enforced by the sequencer)
        context: Dict with url, client, blobs, expected_format, max_bytes

    Returns:
        ResourceHandle pointing at a ``blob:`` reference
    """
    url = require(context, "url")
    if url.startswith(("blob:", "data:")):
        raise StrategySkipped("Resource is already local", url=url[:64])

    return await download_document(context, url, source_url=url, via=policy.name)


__all__ = ["adapter_blob_fetch"]
