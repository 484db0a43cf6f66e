"""HTTP service exposing the document proxy, chat and flashcard routes."""

from .app import create_app

__all__ = ["create_app"]
