"""At-most-once commit of a resolved resource to observable state."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class CommitSlot(Generic[T]):
    """Holds the single committed resource of one or more fallback sequences.

    The first :meth:`offer` wins; later offers are refused and logged. The
    optional ``on_commit`` callback (e.g. a viewer's state setter) runs
    exactly once.
    """

    def __init__(self, on_commit: Optional[Callable[[T], None]] = None) -> None:
        self._on_commit = on_commit
        self._lock = threading.Lock()
        self._committed = False
        self._value: Optional[T] = None
        self._source: Optional[str] = None
        self.updates = 0

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def value(self) -> Optional[T]:
        return self._value

    @property
    def source(self) -> Optional[str]:
        return self._source

    def offer(self, value: T, source: str) -> bool:
        """Commit ``value`` unless something was committed already."""
        with self._lock:
            if self._committed:
                LOGGER.debug(f"Commit from '{source}' refused; already committed by '{self._source}'")
                return False
            self._committed = True
            self._value = value
            self._source = source
            self.updates += 1

        if self._on_commit is not None:
            self._on_commit(value)
        return True
