"""User and authentication payloads."""
from datetime import datetime

from pydantic import Field, field_validator

from schemas.base import ApiModel


def _check_email(v: str) -> str:
    email = v.strip()
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise ValueError("Please enter a valid email address")
    return email


class UserRecord(ApiModel):
    """
    The signed-in user as returned by `/auth/me` and the login endpoints.

    Also the shape persisted in the credential store, so the session can be shown
    before the server has confirmed the token.
    """

    id: str
    email: str
    name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LoginRequest(ApiModel):
    """Credentials for `POST /auth/login`."""

    email: str
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        """Validate email shape."""
        return _check_email(v)


class RegisterRequest(ApiModel):
    """Profile for `POST /auth/register`."""

    email: str
    password: str = Field(min_length=8)
    name: str

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        """Validate email shape."""
        return _check_email(v)

    @field_validator("name")
    @classmethod
    def check_name_not_empty(cls, v: str) -> str:
        """Validate name is not empty."""
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()


class AuthResult(ApiModel):
    """Successful login or registration."""

    user: UserRecord
    access_token: str
    refresh_token: str | None = None


class TokenRefresh(ApiModel):
    """`POST /auth/refresh` result; the user record is optional."""

    access_token: str
    refresh_token: str | None = None
    user: UserRecord | None = None
