"""Review payloads."""
from datetime import datetime

from pydantic import Field, field_validator

from schemas.base import ApiModel
from schemas.book import Book
from schemas.user import UserRecord

MIN_CONTENT_LENGTH = 10
MAX_CONTENT_LENGTH = 1000


def _check_content(v: str) -> str:
    content = v.strip()
    if len(content) < MIN_CONTENT_LENGTH:
        raise ValueError(f"Review must be at least {MIN_CONTENT_LENGTH} characters long")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(f"Review must be less than {MAX_CONTENT_LENGTH} characters")
    return content


class Review(ApiModel):
    """A review owned by the user who wrote it."""

    id: str
    book_id: str
    user_id: str
    rating: int = Field(ge=1, le=5)
    content: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    user: UserRecord | None = None
    book: Book | None = None


class ReviewCreate(ApiModel):
    """Body of `POST /reviews`."""

    book_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    content: str

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str) -> str:
        """Trim and length-check review text."""
        return _check_content(v)


class ReviewUpdate(ApiModel):
    """Body of `PATCH /reviews/{id}`. Omitted fields are left unchanged."""

    rating: int | None = Field(default=None, ge=1, le=5)
    content: str | None = None

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str | None) -> str | None:
        """Trim and length-check review text (if provided)."""
        if v is None:
            return None
        return _check_content(v)
