"""
Query keys and the views that depend on review data.

Any view that embeds review-derived fields (a book's average rating or review count,
or the reviews themselves) must be registered in `REVIEW_DEPENDENTS`, or it will show
stale aggregates after a review is created, edited or deleted.
"""
from collections.abc import Callable
from dataclasses import dataclass

from services.query_cache import QueryKey

RECOMMENDATIONS: QueryKey = ("recommendations",)
FAVORITES: QueryKey = ("favorites",)
BOOKS: QueryKey = ("books",)
POPULAR_BOOKS: QueryKey = ("popular-books",)
PROFILE: QueryKey = ("profile",)

BOOK = "book"
BOOK_REVIEWS = "reviews-of-book"
USER_REVIEWS = "reviews-of-user"


def book_key(book_id: str) -> QueryKey:
    return (BOOK, book_id)


def book_reviews_key(book_id: str) -> QueryKey:
    return (BOOK_REVIEWS, book_id)


def user_reviews_key(user_id: str) -> QueryKey:
    return (USER_REVIEWS, user_id)


def profile_key() -> QueryKey:
    return (*PROFILE, "summary")


def profile_details_key() -> QueryKey:
    return (*PROFILE, "details")


def books_page_key(page: int, limit: int, filters: tuple = ()) -> QueryKey:
    return (*BOOKS, page, limit, filters)


@dataclass(frozen=True)
class ReviewTarget:
    """The book and author a review mutation touched."""

    book_id: str
    user_id: str


KeyBuilder = Callable[[ReviewTarget], QueryKey]


@dataclass(frozen=True)
class DependentViews:
    """
    Cache entries to refresh after a review mutation.

    `awaited` keys are refetched concurrently and the mutation does not complete
    until they settle. `background` key prefixes are invalidated as a family, and
    their visible members refetch without being awaited.
    """

    awaited: tuple[KeyBuilder, ...]
    background: tuple[KeyBuilder, ...]

    def awaited_keys(self, target: ReviewTarget) -> list[QueryKey]:
        return [build(target) for build in self.awaited]

    def background_prefixes(self, target: ReviewTarget) -> list[QueryKey]:
        return [build(target) for build in self.background]

    def register(
        self,
        *,
        awaited: tuple[KeyBuilder, ...] = (),
        background: tuple[KeyBuilder, ...] = (),
    ) -> "DependentViews":
        """Return a copy with additional dependent views."""
        return DependentViews(
            awaited=self.awaited + awaited,
            background=self.background + background,
        )


REVIEW_DEPENDENTS = DependentViews(
    awaited=(
        lambda t: book_reviews_key(t.book_id),
        lambda t: book_key(t.book_id),
    ),
    background=(
        lambda t: BOOKS,
        lambda t: POPULAR_BOOKS,
        # These embed Book records carrying the same aggregate fields
        lambda t: user_reviews_key(t.user_id),
        lambda t: FAVORITES,
        # Review and favorite counts, plus embedded reviews
        lambda t: PROFILE,
    ),
)
