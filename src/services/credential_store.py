"""Persistent holders for the session tokens and cached user record."""
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from core.redis import RedisClient
from schemas.user import UserRecord

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """
    Minimal key-value holder for the session.

    Implementations hold no logic beyond get/set/clear. Writes are last-write-wins.
    """

    async def get_token(self) -> str | None: ...

    async def get_user(self) -> UserRecord | None: ...

    async def get_refresh_token(self) -> str | None: ...

    async def set(
        self, token: str, user: UserRecord, refresh_token: str | None = None,
    ) -> None: ...

    async def clear(self) -> None: ...


class MemoryCredentialStore:
    """Process-local store, used in tests and for throwaway sessions."""

    def __init__(
        self,
        token: str | None = None,
        user: UserRecord | None = None,
        refresh_token: str | None = None,
    ) -> None:
        self._token = token
        self._user = user
        self._refresh_token = refresh_token

    async def get_token(self) -> str | None:
        return self._token

    async def get_user(self) -> UserRecord | None:
        return self._user

    async def get_refresh_token(self) -> str | None:
        return self._refresh_token

    async def set(
        self, token: str, user: UserRecord, refresh_token: str | None = None,
    ) -> None:
        self._token = token
        self._user = user
        self._refresh_token = refresh_token

    async def clear(self) -> None:
        self._token = None
        self._user = None
        self._refresh_token = None


class FileCredentialStore:
    """
    JSON file on local disk, written with owner-only permissions.

    A corrupt or unreadable file reads as an empty store rather than an error, so a
    damaged file degrades to "logged out" instead of breaking startup.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    async def get_token(self) -> str | None:
        data = await asyncio.to_thread(self._read)
        token = data.get("token")
        return token if isinstance(token, str) and token else None

    async def get_refresh_token(self) -> str | None:
        data = await asyncio.to_thread(self._read)
        token = data.get("refresh_token")
        return token if isinstance(token, str) and token else None

    async def get_user(self) -> UserRecord | None:
        data = await asyncio.to_thread(self._read)
        user = data.get("user")
        if not isinstance(user, dict):
            return None
        try:
            return UserRecord.model_validate(user)
        except ValidationError:
            logger.warning("credential_file_user_invalid", extra={"path": str(self._path)})
            return None

    async def set(
        self, token: str, user: UserRecord, refresh_token: str | None = None,
    ) -> None:
        payload = {
            "token": token,
            "refresh_token": refresh_token,
            "user": user.model_dump(mode="json", by_alias=True),
        }
        await asyncio.to_thread(self._write, payload)

    async def clear(self) -> None:
        await asyncio.to_thread(self._path.unlink, missing_ok=True)

    def _read(self) -> dict:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("credential_file_unreadable path=%s error=%s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, payload: dict) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a reader never sees a half-written file
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        # Owner-only from creation; the mode is also forced on a leftover temp file
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        tmp_path.replace(self._path)


# Key schema version - bump when the stored UserRecord shape changes so that old
# entries are ignored and expire through their TTL.
CREDENTIAL_SCHEMA_VERSION = 1


class RedisCredentialStore:
    """
    Credentials kept in Redis under a per-profile namespace.

    Falls back to an empty store when Redis is unavailable: `get_*` return None and
    writes are dropped with a warning from the Redis client.
    """

    def __init__(self, redis_client: RedisClient, profile: str = "default", ttl: int = 86400) -> None:  # noqa: E501
        self._redis = redis_client
        self._profile = profile
        self._ttl = ttl

    def _key(self, field: str) -> str:
        return f"credentials:v{CREDENTIAL_SCHEMA_VERSION}:{self._profile}:{field}"

    async def get_token(self) -> str | None:
        data = await self._redis.get(self._key("token"))
        return data.decode() if data else None

    async def get_user(self) -> UserRecord | None:
        data = await self._redis.get(self._key("user"))
        if not data:
            return None
        try:
            return UserRecord.model_validate_json(data)
        except ValidationError:
            logger.warning("credential_redis_user_invalid", extra={"profile": self._profile})
            return None

    async def get_refresh_token(self) -> str | None:
        data = await self._redis.get(self._key("refresh_token"))
        return data.decode() if data else None

    async def set(
        self, token: str, user: UserRecord, refresh_token: str | None = None,
    ) -> None:
        mapping = {
            self._key("token"): token,
            self._key("user"): user.model_dump_json(by_alias=True),
        }
        if refresh_token:
            mapping[self._key("refresh_token")] = refresh_token
        await self._redis.set_many(mapping, self._ttl)
        if not refresh_token:
            await self._redis.delete(self._key("refresh_token"))

    async def clear(self) -> None:
        await self._redis.delete(
            self._key("token"), self._key("user"), self._key("refresh_token"),
        )
