"""Signed URL adapter: ask the backend for a canonical Cloudinary download URL."""

from __future__ import annotations

import logging
from typing import Any, Dict

from StudyShelf.ResourceAcquisition.cloudinary import is_cloudinary_raw_url
from StudyShelf.ResourceAcquisition.errors import ParseError, StrategySkipped
from StudyShelf.ResourceAcquisition.fallback.adapters import (
    ResourceHandle,
    expected_format,
    raise_for_status,
    require,
)
from StudyShelf.ResourceAcquisition.fallback.adapters.direct import verify_document_url
from StudyShelf.ResourceAcquisition.fallback.types import StrategyPolicy

logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_PATH = "/api/pdf/signed-url"


def auth_headers(context: Dict[str, Any]) -> Dict[str, str]:
    token = context.get("proxy_token")
    return {"Authorization": f"Bearer {token}"} if token else {}


async def adapter_signed_url(
    policy: StrategyPolicy,
    context: Dict[str, Any],
) -> ResourceHandle:
    """Exchange a Cloudinary raw URL for a download URL and verify it.

    Only Cloudinary ``raw`` uploads are eligible; anything else is skipped.

    Args:
        policy: StrategyPolicy (timeout enforced by the sequencer)
        context: Dict with url, client, proxy_base_url, proxy_token

    Returns:
        ResourceHandle pointing at the signed download URL
    """
    url = require(context, "url")
    if not is_cloudinary_raw_url(url):
        raise StrategySkipped("Not a Cloudinary raw asset", url=url[:256])

    client = require(context, "client")
    base_url = require(context, "proxy_base_url").rstrip("/")
    path = context.get("proxy_signed_url_path") or DEFAULT_SIGNED_URL_PATH
    endpoint = f"{base_url}{path}"

    response = await client.get(endpoint, params={"url": url}, headers=auth_headers(context))
    raise_for_status(response, url=endpoint)

    try:
        payload = response.json()
    except ValueError as e:
        raise ParseError(f"Signed URL response is not JSON: {e}", url=endpoint) from e
    if not isinstance(payload, dict):
        payload = {}
    signed = payload.get("signedUrl")
    if not payload.get("success") or not signed:
        raise ParseError("Signed URL response missing 'signedUrl'", url=endpoint, detail={"payload": payload})

    logger.debug(f"Signed URL for {url}: {signed}")
    return await verify_document_url(client, signed, expected_format(context), via=policy.name)


__all__ = ["adapter_signed_url", "auth_headers"]
