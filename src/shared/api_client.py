"""HTTP client for the bookshelf API."""

import logging
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from schemas.envelope import ApiEnvelope
from shared.api_errors import (
    ApiError,
    ErrorKind,
    from_validation_error,
    parse_http_error,
    parse_request_error,
    unsuccessful_envelope,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]
ModelT = TypeVar("ModelT", bound=BaseModel)


def _get_headers(token: str | None) -> dict[str, str]:
    """Get common headers for API requests."""
    headers = {
        "Content-Type": "application/json",
        "X-Request-Source": "bookshelf-client",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


class ApiClient:
    """
    Thin adapter over an `httpx.AsyncClient`.

    Adds the bearer token of the current session, unwraps the `{success, data, error}`
    envelope, and turns every failure into an `ApiError` before returning. Nothing
    above this class sees an httpx exception or a status code.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._http = http_client
        self._token_provider = token_provider or (lambda: None)

    def set_token_provider(self, token_provider: TokenProvider) -> None:
        """Replace the callable that supplies the bearer token."""
        self._token_provider = token_provider

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: dict[str, Any] | None = None,
        token: str | None = None,
        entity_type: str = "",
    ) -> Any:
        """
        Send a request and return the envelope's `data`.

        Args:
            method: HTTP method
            path: Path relative to the API base URL
            params: Query parameters
            json: JSON body
            token: Explicit bearer token; defaults to the token provider's value
            entity_type: Entity name used in not-found messages

        Raises:
            ApiError: For transport failures, non-2xx responses, and unsuccessful envelopes.
        """
        bearer = token if token is not None else self._token_provider()
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers=_get_headers(bearer),
            )
        except httpx.RequestError as e:
            logger.debug("api_request_failed method=%s path=%s error=%r", method, path, e)
            raise ApiError(parse_request_error(e)) from e

        if response.is_error:
            descriptor = parse_http_error(response, entity_type=entity_type)
            logger.debug(
                "api_error_response method=%s path=%s status=%s kind=%s",
                method, path, response.status_code, descriptor.kind,
            )
            raise ApiError(descriptor)

        if response.status_code == 204 or not response.content:
            return None

        try:
            envelope = ApiEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApiError.of(
                kind=ErrorKind.SERVICE_UNAVAILABLE,
                code="INVALID_RESPONSE",
            ) from e

        if not envelope.success:
            error = envelope.error.model_dump() if envelope.error else None
            raise ApiError(unsuccessful_envelope(error, response.status_code))
        return envelope.data

    async def get(self, path: str, params: Any = None, **kwargs: Any) -> Any:
        """Make a GET request to the API."""
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Make a POST request to the API."""
        return await self.request("POST", path, json=json, **kwargs)

    async def patch(self, path: str, json: dict[str, Any], **kwargs: Any) -> Any:
        """Make a PATCH request to the API."""
        return await self.request("PATCH", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        """Make a DELETE request to the API."""
        return await self.request("DELETE", path, **kwargs)


def parse_model(model: type[ModelT], data: Any) -> ModelT:
    """
    Validate a response payload against `model`.

    A payload that does not match is a backend fault, reported as SERVICE_UNAVAILABLE.
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.warning("api_response_invalid", extra={"model": model.__name__})
        raise ApiError.of(ErrorKind.SERVICE_UNAVAILABLE, code="INVALID_RESPONSE") from e


def validate_input(model: type[ModelT], value: ModelT | dict[str, Any]) -> ModelT:
    """Validate caller input before any request is sent."""
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise from_validation_error(e) from e
