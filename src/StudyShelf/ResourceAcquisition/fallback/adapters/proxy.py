"""Proxy adapter: let the backend download the document on our behalf."""

from __future__ import annotations

from typing import Any, Dict

from StudyShelf.ResourceAcquisition.errors import StrategySkipped
from StudyShelf.ResourceAcquisition.fallback.adapters import (
    ResourceHandle,
    download_document,
    require,
)
from StudyShelf.ResourceAcquisition.fallback.adapters.signed_url import auth_headers
from StudyShelf.ResourceAcquisition.fallback.types import StrategyPolicy

DEFAULT_FETCH_PATH = "/api/pdf/fetch-pdf"


async def adapter_proxy(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """Fetch through ``GET <backend>/api/pdf/fetch-pdf?url=...``.

    The backend sidesteps CORS and storage-provider quirks. A 401/403 means
    the session token was rejected and surfaces as AuthError.

    Args:
        policy: StrategyPolicy (timeout enforced by the sequencer)
        context: Dict with url, client, blobs, proxy_base_url, proxy_token

    Returns:
        ResourceHandle pointing at a ``blob:`` reference
    """
    url = require(context, "url")
    if url.startswith(("blob:", "data:")):
        raise StrategySkipped("Resource is already local", url=url[:64])

    base_url = require(context, "proxy_base_url").rstrip("/")
    path = context.get("proxy_fetch_path") or DEFAULT_FETCH_PATH
    endpoint = f"{base_url}{path}"

    return await download_document(
        context,
        endpoint,
        source_url=url,
        via=policy.name,
        params={"url": url},
        headers=auth_headers(context),
    )


__all__ = ["adapter_proxy"]
