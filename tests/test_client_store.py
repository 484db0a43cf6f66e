"""
Client Store Tests

Dark-mode preference, the cart mirror and its two concurrency rules
(overwrite on sync, union on login), plus JSON persistence.
"""

import json

import pytest

from StudyShelf.ResourceAcquisition.client_store import CART_KEY, DARK_MODE_KEY, ClientStore
from StudyShelf.schemas import Cart, CartItem


def _item(book_id: str, quantity: int = 1, price: float = 10.0) -> CartItem:
    return CartItem(book_id=book_id, title=f"Book {book_id}", author="A", price=price, quantity=quantity)


class TestPreferences:
    """Test the dark-mode flag."""

    def test_toggle(self):
        """Test toggling and setting the flag."""
        store = ClientStore()
        assert store.toggle_dark_mode() is True
        assert store.toggle_dark_mode() is False
        assert store.set_dark_mode(True) is True
        assert store.dark_mode


class TestCartMirror:
    """Test local cart operations."""

    def test_add_bumps_quantity(self):
        """Test that adding the same book twice increases its quantity."""
        store = ClientStore()
        store.add_to_cart(_item("b1"))
        cart = store.add_to_cart(_item("b1", quantity=2))
        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_remove(self):
        """Test removing a book."""
        store = ClientStore()
        store.add_to_cart(_item("b1"))
        assert store.remove_from_cart("b1")
        assert not store.remove_from_cart("b1")
        assert store.cart.items == []

    def test_cart_is_a_copy(self):
        """Test that callers cannot mutate the mirror through the property."""
        store = ClientStore()
        store.add_to_cart(_item("b1"))
        store.cart.items.clear()
        assert len(store.cart.items) == 1

    def test_sync_overwrites(self):
        """Test that the server copy replaces the local mirror."""
        store = ClientStore(user_id="u1")
        store.add_to_cart(_item("local"))
        server = Cart(user_id="u1", items=[_item("server")])

        cart = store.sync_cart(server)

        assert [i.book_id for i in cart.items] == ["server"]

    def test_merge_on_login(self):
        """Test the union by book id where the server item wins."""
        store = ClientStore()
        store.add_to_cart(_item("shared", quantity=5, price=1.0))
        store.add_to_cart(_item("guest-only"))
        server = Cart(user_id="u1", items=[_item("shared", quantity=1, price=9.0), _item("server-only")])

        merged = store.merge_on_login(server)

        assert [i.book_id for i in merged.items] == ["shared", "server-only", "guest-only"]
        assert merged.items[0].quantity == 1
        assert merged.items[0].price == 9.0
        assert merged.user_id == "u1"
        assert store.cart.user_id == "u1"

    def test_clear(self):
        """Test emptying the cart."""
        store = ClientStore(user_id="u1")
        store.add_to_cart(_item("b1"))
        store.clear_cart()
        assert store.cart.items == []
        assert store.cart.user_id == "u1"


class TestPersistence:
    """Test save/load."""

    def test_autosave_and_load(self, tmp_path):
        """Test that changes persist through the configured path."""
        path = tmp_path / "client" / "store.json"
        store = ClientStore(path)
        store.toggle_dark_mode()
        store.add_to_cart(_item("b1", quantity=2))

        data = json.loads(path.read_text())
        assert data[DARK_MODE_KEY] is True
        assert data[CART_KEY]["items"][0]["bookId"] == "b1"

        loaded = ClientStore.load(path)
        assert loaded.dark_mode
        assert loaded.cart.items[0].quantity == 2

    def test_missing_file(self, tmp_path):
        """Test that loading a missing file yields an empty store."""
        store = ClientStore.load(tmp_path / "absent.json")
        assert not store.dark_mode
        assert store.cart.items == []

    def test_invalid_file(self, tmp_path):
        """Test that a corrupt file raises ValueError."""
        path = tmp_path / "store.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid client store"):
            ClientStore.load(path)

    def test_save_without_path(self):
        """Test that saving needs a path."""
        with pytest.raises(ValueError, match="No path"):
            ClientStore().save()
