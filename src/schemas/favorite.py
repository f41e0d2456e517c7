"""Favorite payloads."""
from datetime import datetime

from schemas.base import ApiModel
from schemas.book import Book


class Favorite(ApiModel):
    """A book on the user's favorites list."""

    id: str
    user_id: str
    book_id: str
    created_at: datetime | None = None
    book: Book | None = None


class FavoriteStatus(ApiModel):
    """Body of `GET /users/favorites/{book_id}/status`."""

    is_favorite: bool = False
