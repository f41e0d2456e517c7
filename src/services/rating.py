"""Display helpers for book ratings."""
import math
from typing import Literal

Star = Literal["full", "half", "empty"]
RatingInput = float | int | str | None


def _to_number(rating: RatingInput) -> float | None:
    if rating is None or isinstance(rating, bool):
        return None
    try:
        value = float(rating)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def rating_value(rating: RatingInput) -> str:
    """Rating with one decimal; "0.0" when missing or unparseable."""
    value = _to_number(rating)
    return "0.0" if value is None else f"{value:.1f}"


def has_rating(rating: RatingInput) -> bool:
    value = _to_number(rating)
    return value is not None and value > 0


def review_count(count: int | None) -> int:
    return count or 0


def rating_display_text(
    rating: RatingInput,
    count: int | None,
    *,
    show_value: bool = True,
    show_count: bool = True,
    fallback_text: str = "No ratings yet",
) -> str:
    """
    Text such as "4.2 (10 reviews)".

    Books without any rating show `fallback_text` instead.
    """
    if not has_rating(rating):
        return fallback_text
    text = rating_value(rating) if show_value else ""
    if show_count and count is not None:
        noun = "review" if count == 1 else "reviews"
        text += f" ({count} {noun})" if show_value else f"{count} {noun}"
    return text


def star_rating(rating: RatingInput, max_stars: int = 5) -> list[Star]:
    """Full, half and empty stars for `rating`; any fractional part shows as a half star."""
    if not has_rating(rating):
        return ["empty"] * max_stars
    value = _to_number(rating)
    full = math.floor(value)
    has_half = value % 1 != 0
    stars: list[Star] = []
    for i in range(max_stars):
        if i < full:
            stars.append("full")
        elif i == full and has_half:
            stars.append("half")
        else:
            stars.append("empty")
    return stars
