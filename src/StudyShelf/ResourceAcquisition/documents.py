"""Document resolution: the configured fallback chain for opening books.

Wires the strategy adapters into a :class:`FallbackSequencer` using the
``fallback.documents`` plan and owns the shared resources the adapters need
(HTTP client, blob store).

Example:
    ```python
    resolver = DocumentResolver(load_config())
    outcome = await resolver.resolve(book.url, format="pdf")
    if outcome.is_resolved:
        viewer.load(outcome.resource.url)
    await resolver.aclose()
    ```
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from StudyShelf.config.models import StudyShelfConfig
from StudyShelf.ResourceAcquisition.blobs import BlobStore
from StudyShelf.ResourceAcquisition.classifier import DocumentFormat, format_from_url
from StudyShelf.ResourceAcquisition.fallback import (
    CancellationToken,
    CommitSlot,
    FallbackSequencer,
    SequenceOutcome,
    SequencePlan,
    Strategy,
)
from StudyShelf.ResourceAcquisition.fallback.adapters import ResourceHandle
from StudyShelf.ResourceAcquisition.fallback.adapters.blob_fetch import adapter_blob_fetch
from StudyShelf.ResourceAcquisition.fallback.adapters.direct import adapter_direct
from StudyShelf.ResourceAcquisition.fallback.adapters.external_viewer import (
    adapter_google_viewer,
    adapter_pdfjs_viewer,
)
from StudyShelf.ResourceAcquisition.fallback.adapters.proxy import adapter_proxy
from StudyShelf.ResourceAcquisition.fallback.adapters.signed_url import adapter_signed_url
from StudyShelf.ResourceAcquisition.fallback.loader import build_sequence_plan
from StudyShelf.ResourceAcquisition.http import build_async_client

logger = logging.getLogger(__name__)

DOCUMENT_ADAPTERS: Dict[str, Callable[..., Any]] = {
    "direct": adapter_direct,
    "blob": adapter_blob_fetch,
    "signed_url": adapter_signed_url,
    "proxy": adapter_proxy,
    "google_viewer": adapter_google_viewer,
    "pdfjs_viewer": adapter_pdfjs_viewer,
}


def build_document_strategies(
    plan: SequencePlan,
    adapters: Optional[Dict[str, Callable[..., Any]]] = None,
) -> List[Strategy[ResourceHandle]]:
    """Return one Strategy per plan entry, in plan order.

    Raises:
        ValueError: If the plan names a strategy without an adapter
    """
    adapters = adapters or DOCUMENT_ADAPTERS
    strategies: List[Strategy[ResourceHandle]] = []
    for name in plan.strategy_order:
        adapter = adapters.get(name)
        if adapter is None:
            raise ValueError(f"No adapter registered for strategy '{name}'")
        strategies.append(Strategy(name=name, run=adapter, policy=plan.get_policy(name)))
    return strategies


class DocumentResolver:
    """Opens documents through the configured fallback chain.

    Attributes:
        config: Effective StudyShelfConfig
        plan: SequencePlan built from ``config.fallback.documents``
        blobs: BlobStore holding downloaded payloads
        client: Shared httpx.AsyncClient
    """

    def __init__(
        self,
        config: Optional[StudyShelfConfig] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        blobs: Optional[BlobStore] = None,
        telemetry: Optional[Any] = None,
        profile: Optional[str] = None,
    ) -> None:
        self.config = config or StudyShelfConfig()
        self.plan = build_sequence_plan(self.config.fallback.documents, profile=profile)
        self.blobs = blobs or BlobStore()
        self._owns_client = client is None
        self.client = client or build_async_client(self.config.http)
        self.telemetry = telemetry
        self.strategies = build_document_strategies(self.plan)

    def build_context(self, url: str, expected: DocumentFormat) -> Dict[str, Any]:
        proxy = self.config.proxy
        return {
            "url": url,
            "client": self.client,
            "blobs": self.blobs,
            "expected_format": expected,
            "proxy_base_url": proxy.base_url,
            "proxy_token": proxy.token,
            "proxy_fetch_path": proxy.fetch_path,
            "proxy_signed_url_path": proxy.signed_url_path,
            "max_bytes": proxy.max_bytes,
            "viewer_urls": {
                "google_docs": self.config.viewers.google_docs_url,
                "pdfjs": self.config.viewers.pdfjs_url,
            },
        }

    async def resolve(
        self,
        url: str,
        *,
        format: Union[str, DocumentFormat, None] = None,
        cancel_token: Optional[CancellationToken] = None,
        commit: Optional[CommitSlot[ResourceHandle]] = None,
    ) -> SequenceOutcome:
        """Run the document chain for ``url``.

        Args:
            url: Stored resource URL (http(s), ``blob:`` or ``data:``)
            format: Expected format; guessed from the URL suffix when omitted
            cancel_token: Fires when the user navigates away
            commit: Slot receiving the single resolved handle

        Returns:
            Resolved[ResourceHandle], Exhausted or Cancelled
        """
        if not url:
            raise ValueError("url is required")
        expected = DocumentFormat.from_wire(format) if format else format_from_url(url)
        if expected is DocumentFormat.HTML:
            expected = DocumentFormat.UNKNOWN

        sequencer: FallbackSequencer[ResourceHandle] = FallbackSequencer(
            self.strategies,
            plan=self.plan,
            telemetry=self.telemetry,
            logger=logger,
            label=expected.value if expected is not DocumentFormat.UNKNOWN else "document",
            discard=self.release,
        )
        return await sequencer.run(
            self.build_context(url, expected), cancel_token=cancel_token, commit=commit
        )

    def release(self, handle: ResourceHandle) -> None:
        """Revoke the blob behind ``handle`` once the viewer is closed."""
        if handle.url.startswith("blob:"):
            self.blobs.revoke(handle.url)

    async def aclose(self) -> None:
        revoked = self.blobs.revoke_all()
        if revoked:
            logger.debug(f"Revoked {revoked} blob reference(s)")
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "DocumentResolver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


__all__ = ["DOCUMENT_ADAPTERS", "DocumentResolver", "build_document_strategies"]
