"""
Review mutations and the consistency of the views that depend on them.

A mutation resolves only after the affected book's review list and detail record
(whose average rating and review count change with every review) have been refetched.
The book list family is invalidated afterwards without waiting for it.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from schemas.review import Review, ReviewCreate, ReviewUpdate
from services.catalog_service import CatalogService
from services.query_cache import QueryCache, QueryKey, QueryStatus
from services.query_keys import REVIEW_DEPENDENTS, DependentViews, ReviewTarget
from services.session_manager import SessionManager
from shared.api_client import ApiClient, parse_model, validate_input
from shared.api_errors import ApiError, ErrorDescriptor, ErrorKind, classify_exception

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewMutationResult:
    """
    Outcome of a successful mutation.

    `refresh_errors` holds the dependent refreshes that failed after the mutation went
    through. The mutation itself still happened; callers should offer a reload rather
    than report the edit as failed.
    """

    review: Review | None
    book_id: str
    refresh_errors: dict[QueryKey, ErrorDescriptor] = field(default_factory=dict)

    @property
    def is_fully_refreshed(self) -> bool:
        return not self.refresh_errors


class ReviewCoordinator:
    """Create, update and delete reviews, then bring dependent views up to date."""

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        session: SessionManager,
        catalog: CatalogService,
        dependents: DependentViews = REVIEW_DEPENDENTS,
    ) -> None:
        self._api = api
        self._cache = cache
        self._session = session
        self._catalog = catalog
        self._dependents = dependents

    async def create_review(self, book_id: str, rating: int, content: str) -> ReviewMutationResult:
        """
        Post a review for `book_id`.

        Raises:
            ApiError: AUTHENTICATION_REQUIRED or VALIDATION_ERROR before any request,
                or the kind the server answered with. Nothing is invalidated then.
        """
        user_id = self._require_user()
        request = validate_input(
            ReviewCreate,
            {"book_id": book_id, "rating": rating, "content": content},
        )
        data = await self._api.post("/reviews", json=request.to_wire())
        review = parse_model(Review, data)
        logger.info("review_created", extra={"review_id": review.id, "book_id": book_id})
        return await self._sync_dependents(review, ReviewTarget(book_id, user_id))

    async def update_review(
        self,
        review_id: str,
        patch: ReviewUpdate | dict[str, Any],
    ) -> ReviewMutationResult:
        """
        Change the rating and/or content of one of the caller's reviews.

        Raises:
            ApiError: PERMISSION_DENIED (no request sent) when the review belongs to
                someone else; NOT_FOUND when it does not exist.
        """
        user_id = self._require_user()
        update = validate_input(ReviewUpdate, patch)
        existing = await self._owned_review(review_id, user_id)
        data = await self._api.patch(
            f"/reviews/{review_id}",
            json=update.to_wire(),
            entity_type="review",
        )
        review = parse_model(Review, data)
        logger.info("review_updated", extra={"review_id": review_id})
        return await self._sync_dependents(review, ReviewTarget(existing.book_id, user_id))

    async def delete_review(self, review_id: str) -> ReviewMutationResult:
        """
        Delete one of the caller's reviews.

        The result carries the review as it was before deletion.
        """
        user_id = self._require_user()
        existing = await self._owned_review(review_id, user_id)
        await self._api.delete(f"/reviews/{review_id}", entity_type="review")
        logger.info("review_deleted", extra={"review_id": review_id})
        return await self._sync_dependents(existing, ReviewTarget(existing.book_id, user_id))

    def _require_user(self) -> str:
        user = self._session.current_user
        if not self._session.is_authenticated or user is None:
            raise ApiError.of(ErrorKind.AUTHENTICATION_REQUIRED)
        return user.id

    async def _owned_review(self, review_id: str, user_id: str) -> Review:
        review = await self._catalog.get_review(review_id, user_id)
        if review.user_id != user_id:
            logger.warning(
                "review_mutation_not_owner",
                extra={"review_id": review_id, "user_id": user_id},
            )
            raise ApiError.of(
                ErrorKind.PERMISSION_DENIED,
                message="You can only modify your own reviews.",
            )
        return review

    async def _sync_dependents(
        self,
        review: Review | None,
        target: ReviewTarget,
    ) -> ReviewMutationResult:
        keys = self._dependents.awaited_keys(target)
        results = await asyncio.gather(
            *(self._refresh(key) for key in keys),
            return_exceptions=True,
        )
        refresh_errors = {}
        for key, result in zip(keys, results, strict=True):
            if isinstance(result, Exception):
                refresh_errors[key] = classify_exception(result)
                logger.warning(
                    "review_dependent_refresh_failed",
                    extra={"key": key, "kind": refresh_errors[key].kind.value},
                )

        for prefix in self._dependents.background_prefixes(target):
            self._cache.invalidate_family(prefix)

        return ReviewMutationResult(review=review, book_id=target.book_id, refresh_errors=refresh_errors)  # noqa: E501

    async def _refresh(self, key: QueryKey) -> None:
        # A concurrent mutation may have replaced this refetch with its own
        try:
            await self._cache.refetch(key)
        except Exception:
            if self._cache.snapshot(key).status == QueryStatus.ERROR and not self._cache.is_fetching(key):  # noqa: E501
                raise
        await self._cache.settle(key)
