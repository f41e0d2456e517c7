"""Tests for the profile service."""
import pytest
import respx
from httpx import Response

from services.profile_service import ProfileService
from services.query_cache import QueryCache
from services.query_keys import profile_details_key, profile_key
from services.session_manager import SessionManager
from shared.api_client import ApiClient
from shared.api_errors import ApiError, ErrorKind
from tests.conftest import USER_JSON, book_json, ok, review_json

PROFILE_JSON = {**USER_JSON, "reviewCount": 2, "favoriteCount": 1}


@pytest.fixture
def profile(api: ApiClient, cache: QueryCache, signed_in: SessionManager) -> ProfileService:
    return ProfileService(api, cache, signed_in)


class TestProfile:
    """Summary and detailed profile."""

    async def test__get_profile__counts(
        self, profile: ProfileService, mock_api: respx.MockRouter,
    ) -> None:
        route = mock_api.get("/users/profile").mock(
            return_value=Response(200, json=ok(PROFILE_JSON)),
        )

        result = await profile.get_profile()
        await profile.get_profile()

        assert result.review_count == 2
        assert result.favorite_count == 1
        assert route.call_count == 1

    async def test__get_profile_details__embeds_reviews_and_favorites(
        self, profile: ProfileService, mock_api: respx.MockRouter,
    ) -> None:
        """Favorites carry their book, with its aggregates."""
        details = {
            **PROFILE_JSON,
            "reviews": [review_json("review-1")],
            "favorites": [{
                "id": "fav-1", "userId": "user-1", "bookId": "book-1", "book": book_json(),
            }],
        }
        mock_api.get("/users/profile/details").mock(return_value=Response(200, json=ok(details)))

        result = await profile.get_profile_details()

        assert [r.id for r in result.reviews] == ["review-1"]
        assert result.favorites[0].book.average_rating == 4.5

    async def test__refetch__uses_registered_fetcher(
        self, profile: ProfileService, cache: QueryCache, mock_api: respx.MockRouter,
    ) -> None:
        """Dependent refreshes can reload either key from the key alone."""
        mock_api.get("/users/profile/details").mock(
            return_value=Response(200, json=ok(PROFILE_JSON)),
        )

        result = await cache.refetch(profile_details_key())

        assert result.email == "reader@example.com"

    async def test__get_profile__requires_session(
        self, api: ApiClient, cache: QueryCache, session: SessionManager, mock_api: respx.MockRouter,  # noqa: E501
    ) -> None:
        """Anonymous callers are rejected without a request."""
        route = mock_api.get("/users/profile")
        await session.initialize()

        with pytest.raises(ApiError) as exc_info:
            await ProfileService(api, cache, session).get_profile()

        assert exc_info.value.kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert not route.called

    async def test__logout__drops_cached_profile(
        self,
        profile: ProfileService,
        signed_in: SessionManager,
        cache: QueryCache,
        mock_api: respx.MockRouter,
    ) -> None:
        mock_api.get("/users/profile").mock(return_value=Response(200, json=ok(PROFILE_JSON)))
        mock_api.post("/auth/logout").mock(return_value=Response(200, json=ok()))
        await profile.get_profile()

        await signed_in.logout()

        assert cache.snapshot(profile_key()).data is None
