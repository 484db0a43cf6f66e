"""Client-side store for viewer preferences and the cart mirror.

One explicit object, passed to whoever needs it, replaces ad-hoc local
storage writes. Concurrency semantics are deliberately simple:

- ``sync_cart`` overwrites the local mirror with the server copy (last
  writer wins, no version check).
- ``merge_on_login`` unions a guest cart with the server cart by book id;
  when both hold the same book the server item wins.

Persistence is a single JSON file written atomically (temp file +
``os.replace``).
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from StudyShelf.schemas import Cart, CartItem, utcnow

LOGGER = logging.getLogger(__name__)

DARK_MODE_KEY = "pdfViewerDarkMode"
CART_KEY = "cart"


class ClientStore:
    """Dark-mode preference plus a local mirror of the user's cart."""

    def __init__(self, path: Optional[Union[str, Path]] = None, *, user_id: str = "guest") -> None:
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._dark_mode = False
        self._cart = Cart(user_id=user_id)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    @property
    def dark_mode(self) -> bool:
        return self._dark_mode

    def set_dark_mode(self, enabled: bool) -> bool:
        with self._lock:
            self._dark_mode = bool(enabled)
        self._autosave()
        return self._dark_mode

    def toggle_dark_mode(self) -> bool:
        """Flip the viewer dark-mode flag and return the new value."""
        with self._lock:
            self._dark_mode = not self._dark_mode
            value = self._dark_mode
        self._autosave()
        return value

    # ------------------------------------------------------------------
    # Cart mirror
    # ------------------------------------------------------------------

    @property
    def cart(self) -> Cart:
        with self._lock:
            return self._cart.model_copy(deep=True)

    def add_to_cart(self, item: CartItem) -> Cart:
        """Add ``item`` or bump the quantity of the matching book."""
        with self._lock:
            existing = self._cart.find(item.book_id)
            if existing is not None:
                existing.quantity += item.quantity
            else:
                self._cart.items.append(item.model_copy())
            self._cart.touch()
            snapshot = self._cart.model_copy(deep=True)
        self._autosave()
        return snapshot

    def remove_from_cart(self, book_id: str) -> bool:
        with self._lock:
            before = len(self._cart.items)
            self._cart.items = [i for i in self._cart.items if i.book_id != book_id]
            removed = len(self._cart.items) != before
            if removed:
                self._cart.touch()
        if removed:
            self._autosave()
        return removed

    def sync_cart(self, server_cart: Cart) -> Cart:
        """Overwrite the local mirror with the server response."""
        with self._lock:
            self._cart = server_cart.model_copy(deep=True)
            snapshot = self._cart.model_copy(deep=True)
        LOGGER.debug(f"Cart mirror replaced by server copy ({len(snapshot.items)} items)")
        self._autosave()
        return snapshot

    def merge_on_login(self, server_cart: Cart) -> Cart:
        """Fold the guest cart into the server cart after sign-in.

        Server items keep their position and values; guest items for books
        the server does not know are appended in their local order. The
        merged cart becomes the local mirror and is returned so the caller
        can push it to the server.
        """
        with self._lock:
            merged_items: List[CartItem] = [i.model_copy() for i in server_cart.items]
            known = {i.book_id for i in merged_items}
            added = 0
            for item in self._cart.items:
                if item.book_id not in known:
                    merged_items.append(item.model_copy())
                    known.add(item.book_id)
                    added += 1
            self._cart = Cart(user_id=server_cart.user_id, items=merged_items, updated_at=utcnow())
            snapshot = self._cart.model_copy(deep=True)
        LOGGER.info(
            f"Merged guest cart into server cart for {server_cart.user_id}: "
            f"{len(server_cart.items)} server + {added} guest item(s)"
        )
        self._autosave()
        return snapshot

    def clear_cart(self) -> None:
        with self._lock:
            self._cart = Cart(user_id=self._cart.user_id)
        self._autosave()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                DARK_MODE_KEY: self._dark_mode,
                CART_KEY: self._cart.model_dump(mode="json", by_alias=True),
            }

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the store to ``path`` (or the configured path) atomically."""
        target = Path(path) if path else self.path
        if target is None:
            raise ValueError("No path configured for ClientStore.save()")
        target.parent.mkdir(parents=True, exist_ok=True)

        payload = json.dumps(self.to_dict(), indent=2, sort_keys=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".part-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return target

    @classmethod
    def load(cls, path: Union[str, Path], *, user_id: str = "guest") -> "ClientStore":
        """Load a store from disk; a missing file yields an empty store.

        Raises:
            ValueError: If the file exists but is not a valid store
        """
        store = cls(path, user_id=user_id)
        target = Path(path)
        if not target.exists():
            return store
        try:
            data = json.loads(target.read_text(encoding="utf-8"))
            store._dark_mode = bool(data.get(DARK_MODE_KEY, False))
            if data.get(CART_KEY) is not None:
                store._cart = Cart.model_validate(data[CART_KEY])
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise ValueError(f"Invalid client store file {target}: {e}") from e
        return store

    def _autosave(self) -> None:
        if self.path is not None:
            self.save()


__all__ = ["CART_KEY", "DARK_MODE_KEY", "ClientStore"]
