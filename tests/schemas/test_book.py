"""Tests for book payload normalization."""
from schemas.book import Book, BookFilters, BookPage
from tests.conftest import book_json


class TestBook:
    """Aggregate fields arrive in several shapes."""

    def test__average_rating__numeric_string_parsed(self) -> None:
        """The backend sends decimals as strings."""
        assert Book.model_validate(book_json(averageRating="4.25")).average_rating == 4.25

    def test__average_rating__null_and_garbage_become_none(self) -> None:
        """Missing or unparseable ratings are None."""
        assert Book.model_validate(book_json(averageRating=None)).average_rating is None
        assert Book.model_validate(book_json(averageRating="n/a")).average_rating is None

    def test__review_count__null_is_zero(self) -> None:
        """A missing review count is zero."""
        assert Book.model_validate(book_json(reviewCount=None)).review_count == 0


class TestBookPage:
    """The paginated list payload is normalized."""

    def test__book_page__unwraps_pagination(self) -> None:
        """`{data, pagination}` becomes a BookPage."""
        page = BookPage.model_validate({
            "data": [book_json("book-1"), book_json("book-2")],
            "pagination": {"total": 45, "page": 2, "totalPages": 3},
        })

        assert [b.id for b in page.books] == ["book-1", "book-2"]
        assert page.total_count == 45
        assert page.has_next_page
        assert page.has_previous_page

    def test__book_page__last_page(self) -> None:
        """No next page on the last page."""
        page = BookPage.model_validate({
            "data": [],
            "pagination": {"total": 0, "page": 1, "totalPages": 1},
        })

        assert not page.has_next_page
        assert not page.has_previous_page

    def test__book_page__none_is_empty(self) -> None:
        """A null payload is an empty page."""
        assert BookPage.model_validate(None).books == []


class TestBookFilters:
    """Filters map onto query parameters."""

    def test__to_params__uses_backend_names(self) -> None:
        """Each filter uses the backend's parameter name."""
        filters = BookFilters(
            query="dune", genres=["Fantasy", "Classic"], min_rating=4, published_year=1965,
        )

        assert filters.to_params() == [
            ("search", "dune"),
            ("genres", "Fantasy"),
            ("genres", "Classic"),
            ("minRating", "4.0"),
            ("publishedYear", "1965"),
        ]

    def test__to_params__empty_filters(self) -> None:
        """No filters, no parameters."""
        assert BookFilters().to_params() == []

    def test__cache_key_part__is_hashable(self) -> None:
        """Filters can be part of a query key."""
        part = BookFilters(genres=["Fantasy"]).cache_key_part()

        assert hash(part) == hash((None, ("Fantasy",), None, None))
