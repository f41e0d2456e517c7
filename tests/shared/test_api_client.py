"""Tests for the bookshelf API client."""

import httpx
import pytest
import respx
from httpx import Response

from schemas.book import Book
from schemas.review import ReviewCreate
from shared.api_client import ApiClient, parse_model, validate_input
from shared.api_errors import ApiError, ErrorKind
from tests.conftest import book_json, error_body, ok


async def test__request__request_source_header_set(
    mock_api: respx.MockRouter, api: ApiClient,
) -> None:
    """X-Request-Source identifies the client."""
    mock_api.get("/books").mock(return_value=Response(200, json=ok([])))

    await api.get("/books")

    assert mock_api.calls[0].request.headers["x-request-source"] == "bookshelf-client"


async def test__request__authorization_header_from_provider(
    mock_api: respx.MockRouter, api: ApiClient,
) -> None:
    """The token provider's value is sent as a bearer token."""
    mock_api.get("/books").mock(return_value=Response(200, json=ok([])))
    api.set_token_provider(lambda: "token-abc")

    await api.get("/books")

    assert mock_api.calls[0].request.headers["authorization"] == "Bearer token-abc"


async def test__request__empty_token_overrides_provider(
    mock_api: respx.MockRouter, api: ApiClient,
) -> None:
    """An explicit empty token sends no Authorization header."""
    mock_api.post("/auth/login").mock(return_value=Response(200, json=ok({})))
    api.set_token_provider(lambda: "token-abc")

    await api.post("/auth/login", json={"email": "a@b.co"}, token="")

    assert "authorization" not in mock_api.calls[0].request.headers


async def test__request__returns_envelope_data(
    mock_api: respx.MockRouter, api: ApiClient,
) -> None:
    """The envelope is unwrapped."""
    mock_api.get("/books/book-1").mock(return_value=Response(200, json=ok(book_json())))

    data = await api.get("/books/book-1")

    assert data["id"] == "book-1"


async def test__request__204_returns_none(
    mock_api: respx.MockRouter, api: ApiClient,
) -> None:
    """No content means no data."""
    mock_api.delete("/reviews/review-1").mock(return_value=Response(204))

    assert await api.delete("/reviews/review-1") is None


class TestRequestFailures:
    """Every failure surfaces as an ApiError."""

    async def test__request__401_raises_authentication_required(
        self, mock_api: respx.MockRouter, api: ApiClient,
    ) -> None:
        """401 is classified, not raised as an httpx error."""
        mock_api.get("/auth/me").mock(
            return_value=Response(401, json=error_body("UNAUTHORIZED", "Token expired")),
        )

        with pytest.raises(ApiError) as exc_info:
            await api.get("/auth/me")

        assert exc_info.value.kind == ErrorKind.AUTHENTICATION_REQUIRED
        assert exc_info.value.descriptor.payload_message == "Token expired"

    async def test__request__connect_error_raises_network_error(
        self, mock_api: respx.MockRouter, api: ApiClient,
    ) -> None:
        """No response at all is a network error."""
        mock_api.get("/recommendations").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ApiError) as exc_info:
            await api.get("/recommendations")

        assert exc_info.value.kind == ErrorKind.NETWORK_ERROR

    async def test__request__timeout_raises_network_error(
        self, mock_api: respx.MockRouter, api: ApiClient,
    ) -> None:
        """Timeouts carry the TIMEOUT code."""
        mock_api.get("/recommendations").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(ApiError) as exc_info:
            await api.get("/recommendations")

        assert exc_info.value.descriptor.code == "TIMEOUT"

    async def test__request__unsuccessful_envelope_raises(
        self, mock_api: respx.MockRouter, api: ApiClient,
    ) -> None:
        """`success: false` with a 200 is a service failure."""
        mock_api.get("/recommendations").mock(
            return_value=Response(200, json=error_body("ENGINE_DOWN", "Try later")),
        )

        with pytest.raises(ApiError) as exc_info:
            await api.get("/recommendations")

        assert exc_info.value.kind == ErrorKind.SERVICE_UNAVAILABLE
        assert exc_info.value.descriptor.code == "ENGINE_DOWN"

    async def test__request__non_json_body_raises_invalid_response(
        self, mock_api: respx.MockRouter, api: ApiClient,
    ) -> None:
        """An undecodable 2xx body is a service failure."""
        mock_api.get("/books").mock(return_value=Response(200, content=b"<html></html>"))

        with pytest.raises(ApiError) as exc_info:
            await api.get("/books")

        assert exc_info.value.descriptor.code == "INVALID_RESPONSE"


class TestModelHelpers:
    """parse_model and validate_input."""

    def test__parse_model__mismatch_is_service_failure(self) -> None:
        """A payload missing required fields is a backend fault."""
        with pytest.raises(ApiError) as exc_info:
            parse_model(Book, {"title": "no id"})

        assert exc_info.value.kind == ErrorKind.SERVICE_UNAVAILABLE
        assert exc_info.value.descriptor.code == "INVALID_RESPONSE"

    def test__validate_input__invalid_is_validation_error(self) -> None:
        """Bad caller input never reaches the network."""
        with pytest.raises(ApiError) as exc_info:
            validate_input(ReviewCreate, {"book_id": "book-1", "rating": 3, "content": "short"})

        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR
        assert "at least 10 characters" in exc_info.value.descriptor.message

    def test__validate_input__model_instance_passes_through(self) -> None:
        """An already validated model is returned as is."""
        review = ReviewCreate(book_id="book-1", rating=3, content="Long enough content")

        assert validate_input(ReviewCreate, review) is review
