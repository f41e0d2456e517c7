"""The signed-in user's profile."""
from schemas.profile import UserProfile, UserProfileDetails
from services.query_cache import Fetcher, QueryCache, QueryKey
from services.query_keys import PROFILE, profile_details_key, profile_key
from services.session_manager import Session, SessionManager
from shared.api_client import ApiClient, parse_model
from shared.api_errors import ApiError, ErrorKind


class ProfileService:
    """
    Profile summary and the detailed profile with reviews and favorites.

    Both are per-user: they require an authenticated session and are dropped from the
    cache when the session ends or another user signs in.
    """

    def __init__(
        self,
        api: ApiClient,
        cache: QueryCache,
        session: SessionManager,
        stale_time: float = 300,
    ) -> None:
        self._api = api
        self._cache = cache
        self._session = session
        self._stale_time = stale_time
        self._user_id = session.current_user.id if session.current_user else None
        cache.register_fetcher(PROFILE[0], self._fetcher_for_key)
        session.subscribe(self._on_session_change)

    async def get_profile(self, *, force: bool = False) -> UserProfile:
        """Profile with review and favorite counts."""
        self._require_session()
        return await self._cache.fetch(
            profile_key(), stale_time=self._stale_time, force=force,
        )

    async def get_profile_details(self, *, force: bool = False) -> UserProfileDetails:
        self._require_session()
        return await self._cache.fetch(
            profile_details_key(), stale_time=self._stale_time, force=force,
        )

    def _fetcher_for_key(self, key: QueryKey) -> Fetcher:
        if key == profile_details_key():
            return self._fetch_details
        return self._fetch_summary

    async def _fetch_summary(self) -> UserProfile:
        data = await self._api.get("/users/profile")
        return parse_model(UserProfile, data)

    async def _fetch_details(self) -> UserProfileDetails:
        data = await self._api.get("/users/profile/details")
        return parse_model(UserProfileDetails, data)

    def _require_session(self) -> None:
        if not self._session.is_authenticated:
            raise ApiError.of(
                ErrorKind.AUTHENTICATION_REQUIRED,
                message="Please log in to view your profile.",
            )

    def _on_session_change(self, session: Session) -> None:
        user_id = session.user.id if session.is_authenticated and session.user else None
        if user_id != self._user_id:
            for snapshot in list(self._cache.snapshots(PROFILE)):
                self._cache.remove(snapshot.key)
        self._user_id = user_id
