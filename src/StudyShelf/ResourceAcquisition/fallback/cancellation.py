"""Cancellation token threaded through a fallback sequence.

A viewer that is closed (or a request whose client went away) calls
:meth:`CancellationToken.cancel`; the sequencer checks the token before each
strategy and aborts the strategy that is currently in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

LOGGER = logging.getLogger(__name__)


class CancellationToken:
    """One-shot cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._event: Optional[asyncio.Event] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Mark the token cancelled. Later calls keep the first reason."""
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        LOGGER.debug(f"Cancellation requested: {reason}")
        if self._event is not None:
            self._event.set()

    async def wait(self) -> None:
        """Return once the token is cancelled."""
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()

    def __repr__(self) -> str:
        state = f"cancelled:{self._reason}" if self._cancelled else "active"
        return f"<CancellationToken {state}>"
