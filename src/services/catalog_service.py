"""Cached read queries for books and reviews."""
from schemas.book import Book, BookFilters, BookPage, PopularBooks
from schemas.review import Review
from services.query_cache import Fetcher, QueryCache, QueryKey
from services.query_keys import (
    BOOK,
    BOOK_REVIEWS,
    BOOKS,
    POPULAR_BOOKS,
    USER_REVIEWS,
    book_key,
    book_reviews_key,
    books_page_key,
    user_reviews_key,
)
from shared.api_client import ApiClient, parse_model
from shared.api_errors import ApiError, ErrorKind


class CatalogService:
    """
    Book detail, book list, popular books and review list queries.

    Registers a default fetcher per key kind with the cache, so any of these keys can
    be refetched from its key alone (which is what dependent-view refreshes do).
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        stale_time: float = 300,
        popular_stale_time: float = 600,
    ) -> None:
        self._api = api
        self._cache = cache
        self._stale_time = stale_time
        self._popular_stale_time = popular_stale_time
        cache.register_fetcher(BOOK, lambda key: self._book_fetcher(key[1]))
        cache.register_fetcher(BOOK_REVIEWS, lambda key: self._book_reviews_fetcher(key[1]))
        cache.register_fetcher(USER_REVIEWS, lambda key: self._user_reviews_fetcher(key[1]))
        cache.register_fetcher(BOOKS[0], self._page_fetcher_for_key)
        cache.register_fetcher(POPULAR_BOOKS[0], lambda key: self._fetch_popular_books)

    async def get_book(self, book_id: str, *, force: bool = False) -> Book:
        """Book detail, including its average rating and review count."""
        return await self._cache.fetch(
            book_key(book_id),
            stale_time=self._stale_time,
            force=force,
        )

    async def list_books(
        self,
        page: int = 1,
        limit: int = 20,
        filters: BookFilters | None = None,
        *,
        force: bool = False,
    ) -> BookPage:
        """One page of the book list."""
        filters = filters or BookFilters()
        key = books_page_key(page, limit, filters.cache_key_part())
        return await self._cache.fetch(
            key,
            self._page_fetcher(page, limit, filters),
            stale_time=self._stale_time,
            force=force,
        )

    async def get_popular_books(self, *, force: bool = False) -> PopularBooks:
        """The most reviewed and best rated books, with the server's caption."""
        return await self._cache.fetch(
            POPULAR_BOOKS,
            self._fetch_popular_books,
            stale_time=self._popular_stale_time,
            force=force,
        )

    async def get_book_reviews(self, book_id: str, *, force: bool = False) -> list[Review]:
        """Reviews of one book, newest first as the server orders them."""
        return await self._cache.fetch(
            book_reviews_key(book_id),
            stale_time=self._stale_time,
            force=force,
        )

    async def get_user_reviews(self, user_id: str, *, force: bool = False) -> list[Review]:
        """Reviews written by one user."""
        return await self._cache.fetch(
            user_reviews_key(user_id),
            stale_time=self._stale_time,
            force=force,
        )

    async def get_review(self, review_id: str, user_id: str | None = None) -> Review:
        """
        A single review, used to check ownership before a mutation.

        Served from any cached review list when present; otherwise fetched (uncached)
        from `GET /reviews/{id}`. When that answers 404 and `user_id` is given, the
        user's own review list is searched too, so an author can still edit a review
        on a backend without the single-review route.

        Raises:
            ApiError: NOT_FOUND when neither lookup has the review.
        """
        review = self._cached_review(review_id)
        if review is not None:
            return review
        try:
            data = await self._api.get(f"/reviews/{review_id}", entity_type="review")
        except ApiError as e:
            if e.kind != ErrorKind.NOT_FOUND or user_id is None:
                raise
            for review in await self.get_user_reviews(user_id):
                if review.id == review_id:
                    return review
            raise
        return parse_model(Review, data)

    def _cached_review(self, review_id: str) -> Review | None:
        for prefix in ((BOOK_REVIEWS,), (USER_REVIEWS,)):
            for snapshot in self._cache.snapshots(prefix):
                for review in snapshot.data or ():
                    if review.id == review_id:
                        return review
        return None

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    def _book_fetcher(self, book_id: str) -> Fetcher:
        async def fetch_book() -> Book:
            data = await self._api.get(f"/books/{book_id}", entity_type="book")
            return parse_model(Book, data)
        return fetch_book

    def _book_reviews_fetcher(self, book_id: str) -> Fetcher:
        async def fetch_book_reviews() -> list[Review]:
            data = await self._api.get("/reviews", params={"bookId": book_id})
            return [parse_model(Review, item) for item in data or []]
        return fetch_book_reviews

    def _user_reviews_fetcher(self, user_id: str) -> Fetcher:
        async def fetch_user_reviews() -> list[Review]:
            data = await self._api.get("/reviews", params={"userId": user_id})
            return [parse_model(Review, item) for item in data or []]
        return fetch_user_reviews

    async def _fetch_popular_books(self) -> PopularBooks:
        data = await self._api.get("/popular-books")
        return parse_model(PopularBooks, data or {})

    def _page_fetcher(self, page: int, limit: int, filters: BookFilters) -> Fetcher:
        async def fetch_page() -> BookPage:
            params = [("page", str(page)), ("limit", str(limit)), *filters.to_params()]
            data = await self._api.get("/books", params=params)
            return parse_model(BookPage, data)
        return fetch_page

    def _page_fetcher_for_key(self, key: QueryKey) -> Fetcher:
        _, page, limit, (query, genres, min_rating, published_year) = key
        filters = BookFilters(
            query=query,
            genres=list(genres),
            min_rating=min_rating,
            published_year=published_year,
        )
        return self._page_fetcher(page, limit, filters)
