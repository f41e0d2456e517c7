"""Fetch, retry and refresh policy for the recommendation list."""
import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime

from core.signals import Unsubscribe
from schemas.recommendation import Recommendation, RecommendationSet
from services.query_cache import QueryCache, QuerySnapshot
from services.query_keys import RECOMMENDATIONS
from services.retry import RetryPolicy
from services.session_manager import Session, SessionManager
from shared.api_client import ApiClient, parse_model
from shared.api_errors import ApiError, ErrorDescriptor, ErrorKind, describe_error

logger = logging.getLogger(__name__)

RECOMMENDATIONS_FALLBACK_MESSAGE = "An unexpected error occurred while loading recommendations."

# Recommendation-specific wording for the second tier of the error message derivation
_RECOMMENDATION_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTHENTICATION_REQUIRED: (
        "Authentication required. Please log in to get recommendations."
    ),
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.SERVICE_UNAVAILABLE: "Failed to get recommendations. Please try again later.",
}
_SERVICE_UNAVAILABLE_CODE = "SERVICE_UNAVAILABLE"


def should_retry_recommendations(error: ErrorDescriptor) -> bool:
    """
    Retry transient failures only.

    An authentication failure is never retried: another attempt with the same session
    cannot succeed.
    """
    if error.kind == ErrorKind.AUTHENTICATION_REQUIRED:
        return False
    return error.is_transient


def recommendation_error_message(error: ErrorDescriptor | None) -> str | None:
    """User-facing message for a failed recommendation fetch."""
    if error is None:
        return None
    message = _RECOMMENDATION_MESSAGES.get(error.kind, error.message)
    if error.kind == ErrorKind.SERVICE_UNAVAILABLE and error.code == _SERVICE_UNAVAILABLE_CODE:
        message = "Recommendation service temporarily unavailable. Please try again later."
    return describe_error(replace(error, message=message), RECOMMENDATIONS_FALLBACK_MESSAGE)


@dataclass(frozen=True)
class RecommendationsView:
    """What a recommendation view renders."""

    recommendations: list[Recommendation]
    message: str
    is_loading: bool
    is_fetching: bool
    is_error: bool
    error: str | None
    error_kind: ErrorKind | None
    last_updated: datetime | None


class RecommendationController:
    """
    Owns the `("recommendations",)` cache entry.

    `load`, `refresh` and `force_refresh` never raise for API failures; the outcome is
    reported through `view`. Nothing is fetched for an anonymous session.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        session: SessionManager,
        *,
        stale_time: float = 600,
        refetch_after: float = 1800,
        retry: RetryPolicy | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._session = session
        self._stale_time = stale_time
        self._refetch_after = refetch_after
        self._retry = retry or RetryPolicy(should_retry=should_retry_recommendations)
        self._user_id = session.current_user.id if session.current_user else None
        session.subscribe(self._on_session_change)

    @property
    def view(self) -> RecommendationsView:
        return self._to_view(self._cache.snapshot(RECOMMENDATIONS))

    def subscribe(self, callback: Callable[[RecommendationsView], None]) -> Unsubscribe:
        """Observe the recommendation view."""
        return self._cache.subscribe(
            RECOMMENDATIONS, lambda snapshot: callback(self._to_view(snapshot)),
        )

    async def load(self) -> RecommendationsView:
        """Serve fresh cached recommendations, or fetch them when absent or stale."""
        if not self._session.is_authenticated:
            return self.view
        return await self._fetch(force=False)

    async def refresh(self) -> RecommendationsView:
        """
        Clear the server-side recommendation cache, then fetch again.

        A failed cache clear is logged and the fetch happens anyway.
        """
        if not self._session.is_authenticated:
            return self.view
        await self._clear_server_cache()
        return await self._fetch(force=True)

    async def force_refresh(self) -> RecommendationsView:
        """Like `refresh`, but drop the local entry first so the view shows loading."""
        self._cache.remove(RECOMMENDATIONS)
        if not self._session.is_authenticated:
            return self.view
        await self._clear_server_cache()
        return await self._fetch(force=True)

    async def _fetch(self, *, force: bool) -> RecommendationsView:
        try:
            await self._cache.fetch(
                RECOMMENDATIONS,
                self._fetch_recommendations,
                stale_time=self._stale_time,
                refetch_after=self._refetch_after,
                retry=self._retry,
                force=force,
            )
        except ApiError as e:
            logger.warning(
                "recommendations_fetch_failed",
                extra={"kind": e.kind.value, "code": e.descriptor.code},
            )
        return self.view

    async def _fetch_recommendations(self) -> RecommendationSet:
        data = await self._api.get("/recommendations")
        return parse_model(RecommendationSet, data)

    async def _clear_server_cache(self) -> None:
        try:
            await self._api.delete("/recommendations/cache")
        except ApiError as e:
            logger.warning(
                "recommendations_cache_clear_failed",
                extra={"kind": e.kind.value, "code": e.descriptor.code},
            )

    def _on_session_change(self, session: Session) -> None:
        # Recommendations are per user; never show one user's list to another
        user_id = session.user.id if session.is_authenticated and session.user else None
        if user_id != self._user_id:
            self._cache.remove(RECOMMENDATIONS)
        self._user_id = user_id

    def _to_view(self, snapshot: QuerySnapshot) -> RecommendationsView:
        data: RecommendationSet | None = snapshot.data
        return RecommendationsView(
            recommendations=list(data.recommendations) if data else [],
            message=data.message if data else "",
            is_loading=snapshot.is_loading,
            is_fetching=snapshot.is_fetching,
            is_error=snapshot.is_error,
            error=recommendation_error_message(snapshot.error) if snapshot.is_error else None,
            error_kind=snapshot.error.kind if snapshot.is_error and snapshot.error else None,
            last_updated=snapshot.last_updated,
        )
