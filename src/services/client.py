"""Composition root: builds every client component from `Settings`."""
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from core.config import Settings, get_settings
from core.redis import RedisClient
from services.catalog_service import CatalogService
from services.credential_store import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
    RedisCredentialStore,
)
from services.favorites_controller import FavoritesController
from services.profile_service import ProfileService
from services.query_cache import QueryCache
from services.recommendation_controller import (
    RecommendationController,
    should_retry_recommendations,
)
from services.retry import RetryPolicy
from services.review_coordinator import ReviewCoordinator
from services.session_manager import SessionManager
from shared.api_client import ApiClient

logger = logging.getLogger(__name__)


@dataclass
class BookshelfClient:
    """Everything an application needs, wired together."""

    settings: Settings
    api: ApiClient
    cache: QueryCache
    session: SessionManager
    catalog: CatalogService
    recommendations: RecommendationController
    reviews: ReviewCoordinator
    favorites: FavoritesController
    profile: ProfileService

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        settings: Settings | None = None,
        *,
        store: CredentialStore | None = None,
        wait_for_validation: bool = True,
    ) -> AsyncIterator["BookshelfClient"]:
        """
        Build the client, restore the stored session, and close everything on exit.

        `store` overrides the credential backend chosen by `settings`.
        """
        settings = settings or get_settings()
        http_client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
        )
        redis_client: RedisClient | None = None
        try:
            if store is None:
                store, redis_client = await _build_store(settings)
            client = cls.build(settings, http_client, store)
            await client.session.initialize(wait_for_validation=wait_for_validation)
            yield client
            await client.cache.wait_for_background()
        finally:
            if redis_client is not None:
                await redis_client.close()
            await http_client.aclose()

    @classmethod
    def build(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: CredentialStore,
    ) -> "BookshelfClient":
        """Wire components without doing any I/O."""
        api = ApiClient(http_client)
        session = SessionManager(api, store)
        api.set_token_provider(lambda: session.token)
        cache = QueryCache(stale_time=settings.query_stale_seconds)
        catalog = CatalogService(
            api,
            cache,
            stale_time=settings.query_stale_seconds,
            popular_stale_time=settings.popular_books_stale_seconds,
        )
        recommendations = RecommendationController(
            api,
            cache,
            session,
            stale_time=settings.recommendations_stale_seconds,
            refetch_after=settings.recommendations_refetch_after_seconds,
            retry=RetryPolicy(
                max_retries=settings.retry_max_retries,
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                should_retry=should_retry_recommendations,
            ),
        )
        return cls(
            settings=settings,
            api=api,
            cache=cache,
            session=session,
            catalog=catalog,
            recommendations=recommendations,
            reviews=ReviewCoordinator(api, cache, session, catalog),
            favorites=FavoritesController(
                api, cache, session, stale_time=settings.query_stale_seconds,
            ),
            profile=ProfileService(
                api, cache, session, stale_time=settings.query_stale_seconds,
            ),
        )


async def _build_store(settings: Settings) -> tuple[CredentialStore, RedisClient | None]:
    if settings.credential_backend == "memory":
        return MemoryCredentialStore(), None
    if settings.credential_backend == "redis":
        redis_client = RedisClient(
            url=settings.redis_url,
            enabled=settings.redis_enabled,
            pool_size=settings.redis_pool_size,
        )
        await redis_client.connect()
        store = RedisCredentialStore(redis_client, ttl=settings.credential_ttl_seconds)
        return store, redis_client
    logger.debug("credential_store_file path=%s", settings.credential_path)
    return FileCredentialStore(settings.credential_path), None
