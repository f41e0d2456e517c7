"""Shared fixtures for client tests."""
import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import respx
from httpx import Response

from schemas.user import UserRecord
from services.credential_store import MemoryCredentialStore
from services.query_cache import QueryCache
from services.session_manager import SessionManager
from shared.api_client import ApiClient

BASE_URL = "http://localhost:3001/api"

USER_JSON = {"id": "user-1", "email": "reader@example.com", "name": "Reader"}
OTHER_USER_JSON = {"id": "user-2", "email": "other@example.com", "name": "Other"}


def ok(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Successful response envelope."""
    body: dict[str, Any] = {"success": True, "data": data}
    if message is not None:
        body["message"] = message
    return body


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    """Error response envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


def book_json(book_id: str = "book-1", **overrides: Any) -> dict[str, Any]:
    """A book payload as the backend sends it."""
    book = {
        "id": book_id,
        "title": "The Left Hand of Darkness",
        "author": "Ursula K. Le Guin",
        "genres": ["Science Fiction"],
        "publishedYear": 1969,
        "averageRating": "4.5",
        "reviewCount": 2,
    }
    book.update(overrides)
    return book


def review_json(
    review_id: str = "review-1",
    book_id: str = "book-1",
    user_id: str = "user-1",
    **overrides: Any,
) -> dict[str, Any]:
    """A review payload as the backend sends it."""
    review = {
        "id": review_id,
        "bookId": book_id,
        "userId": user_id,
        "rating": 4,
        "content": "A thoughtful and moving novel.",
    }
    review.update(overrides)
    return review


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def mock_api() -> respx.MockRouter:
    """Context manager for mocking API responses."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.fixture
async def http_client() -> AsyncGenerator[httpx.AsyncClient]:
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def api(http_client: httpx.AsyncClient) -> ApiClient:
    return ApiClient(http_client)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def cache(clock: FakeClock, sleep: RecordingSleep) -> QueryCache:
    return QueryCache(clock=clock, sleep=sleep)


@pytest.fixture
def user() -> UserRecord:
    return UserRecord.model_validate(USER_JSON)


@pytest.fixture
def store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture
def session(api: ApiClient, store: MemoryCredentialStore) -> SessionManager:
    """Session manager whose token is attached to every API request."""
    manager = SessionManager(api, store)
    api.set_token_provider(lambda: manager.token)
    return manager


@pytest.fixture
async def signed_in(
    session: SessionManager,
    store: MemoryCredentialStore,
    user: UserRecord,
    mock_api: respx.MockRouter,
) -> SessionManager:
    """Session restored from the store and confirmed by the server."""
    await store.set("token-abc", user)
    mock_api.get("/auth/me").mock(return_value=Response(200, json=ok(USER_JSON)))
    await session.initialize()
    assert session.is_authenticated
    return session
