"""Recommendation payloads."""
from schemas.base import ApiModel
from schemas.book import Book


class Recommendation(ApiModel):
    """A recommended book with the model's reasoning."""

    book: Book
    reason: str = ""
    confidence: float = 0.0


class RecommendationSet(ApiModel):
    """Body of `GET /recommendations`."""

    recommendations: list[Recommendation] = []
    message: str = "Recommendations loaded successfully"
