"""Response envelope shared by every bookshelf API endpoint."""
from typing import Any

from pydantic import BaseModel


class ApiErrorBody(BaseModel):
    """The `error` object of an unsuccessful envelope."""

    message: str = ""
    code: str | None = None
    details: Any = None


class ApiEnvelope(BaseModel):
    """`{success, data?, error?}` wrapper around every response."""

    success: bool
    data: Any = None
    error: ApiErrorBody | None = None
    message: str | None = None
