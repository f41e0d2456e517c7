"""Book payloads."""
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from schemas.base import ApiModel


class Book(ApiModel):
    """
    A catalog book with its review-derived aggregates.

    `average_rating` and `review_count` are computed server-side from the book's
    reviews, which is why they go stale whenever a review changes.
    """

    id: str
    title: str
    author: str = ""
    description: str = ""
    cover_image_url: str = ""
    genres: list[str] = []
    published_year: int | None = None
    average_rating: float | None = None
    review_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("average_rating", mode="before")
    @classmethod
    def coerce_rating(cls, v: Any) -> float | None:
        """Accept numbers, numeric strings, or null; anything unparseable becomes None."""
        if v is None or v == "":
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @field_validator("review_count", mode="before")
    @classmethod
    def coerce_count(cls, v: Any) -> int:
        """Treat a missing count as zero."""
        return v or 0


class BookFilters(ApiModel):
    """Optional filters for the paginated book list."""

    query: str | None = None
    genres: list[str] = []
    min_rating: float | None = Field(default=None, ge=0, le=5)
    published_year: int | None = None

    def to_params(self) -> list[tuple[str, str]]:
        """Query parameters in the form `GET /books` expects."""
        params: list[tuple[str, str]] = []
        if self.query is not None:
            params.append(("search", self.query))
        params.extend(("genres", genre) for genre in self.genres)
        if self.min_rating:
            params.append(("minRating", str(self.min_rating)))
        if self.published_year:
            params.append(("publishedYear", str(self.published_year)))
        return params

    def cache_key_part(self) -> tuple:
        """Hashable representation used inside query keys."""
        return (self.query, tuple(self.genres), self.min_rating, self.published_year)


class BookPage(ApiModel):
    """One page of the book list."""

    books: list[Book]
    total_count: int = 0
    current_page: int = 1
    total_pages: int = 1

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1

    @model_validator(mode="before")
    @classmethod
    def unwrap_pagination(cls, data: Any) -> Any:
        """Accept the backend's `{data: [...], pagination: {...}}` list payload."""
        if data is None:
            return {"books": []}
        if not isinstance(data, dict) or "books" in data:
            return data
        pagination = data.get("pagination") or {}
        return {
            "books": data.get("data") or [],
            "total_count": pagination.get("total") or 0,
            "current_page": pagination.get("page") or 1,
            "total_pages": pagination.get("totalPages") or 1,
        }


class PopularBooks(ApiModel):
    """Body of `GET /popular-books`."""

    books: list[Book] = []
    message: str = ""

    @field_validator("books", mode="before")
    @classmethod
    def coerce_books(cls, v: Any) -> Any:
        """Treat a missing list as empty."""
        return v or []
