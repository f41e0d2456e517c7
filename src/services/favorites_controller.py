"""The signed-in user's favorite books."""
import logging
from dataclasses import dataclass

from core.signals import Signal
from schemas.favorite import Favorite, FavoriteStatus
from services.query_cache import QueryCache
from services.query_keys import FAVORITES, PROFILE, RECOMMENDATIONS
from services.session_manager import Session, SessionManager
from shared.api_client import ApiClient, parse_model
from shared.api_errors import ApiError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FavoriteChange:
    """Emitted on `FavoritesController.changes` after an add or remove."""

    book_id: str
    is_favorite: bool
    sequence: int


class FavoritesController:
    """
    Favorites list plus add/remove.

    Every operation requires an authenticated session. Add and remove refetch the
    cached list before returning, and mark recommendations outdated since the server
    derives them partly from favorites.
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
        self._sequence = 0
        self.changes: Signal[FavoriteChange | None] = Signal(None)
        cache.register_fetcher(FAVORITES[0], lambda key: self._fetch_favorites)
        session.subscribe(self._on_session_change)

    async def load(self, *, force: bool = False) -> list[Favorite]:
        """The favorites list, from cache while fresh."""
        self._require_session()
        return await self._cache.fetch(
            FAVORITES,
            self._fetch_favorites,
            stale_time=self._stale_time,
            force=force,
        )

    async def is_favorite(self, book_id: str) -> bool:
        self._require_session()
        data = await self._api.get(f"/users/favorites/{book_id}/status", entity_type="book")
        return parse_model(FavoriteStatus, data).is_favorite

    async def add(self, book_id: str) -> None:
        """Add `book_id` to the favorites."""
        self._require_session()
        await self._api.post(f"/users/favorites/{book_id}", entity_type="book")
        await self._after_change(book_id, is_favorite=True)

    async def remove(self, book_id: str) -> None:
        """Remove `book_id` from the favorites."""
        self._require_session()
        await self._api.delete(f"/users/favorites/{book_id}", entity_type="book")
        await self._after_change(book_id, is_favorite=False)

    async def _after_change(self, book_id: str, *, is_favorite: bool) -> None:
        logger.info("favorite_changed", extra={"book_id": book_id, "is_favorite": is_favorite})
        self._cache.invalidate(RECOMMENDATIONS)
        # Favorite count and list
        self._cache.invalidate_family(PROFILE)
        try:
            await self._cache.refetch(FAVORITES)
        except ApiError as e:
            # The change went through; the list shows its error state until reloaded
            logger.warning("favorites_refresh_failed", extra={"kind": e.kind.value})
        self._sequence += 1
        self.changes.set(FavoriteChange(book_id, is_favorite, self._sequence))

    async def _fetch_favorites(self) -> list[Favorite]:
        data = await self._api.get("/users/favorites")
        return [parse_model(Favorite, item) for item in data or []]

    def _require_session(self) -> None:
        if not self._session.is_authenticated:
            raise ApiError.of(
                ErrorKind.AUTHENTICATION_REQUIRED,
                message="Please log in to manage favorites.",
            )

    def _on_session_change(self, session: Session) -> None:
        if not session.is_authenticated:
            self._cache.remove(FAVORITES)
