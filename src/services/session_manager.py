"""
Authentication session state machine.

States: INITIALIZING -> {AUTHENTICATED, ANONYMOUS}. The manager is the only writer of
session state; everything else reads `state` or subscribes to it.

A stored session is trusted optimistically at startup and then validated against
`GET /auth/me`. When that rejects the access token (401), the stored refresh token is
exchanged at `POST /auth/refresh`; only a rejection of the refresh token, or a 401
with no refresh token to try, ends the session. An unreachable or failing server
leaves the user signed in with the last known user record.
"""
import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from core.signals import Signal, Unsubscribe
from schemas.user import AuthResult, LoginRequest, RegisterRequest, TokenRefresh, UserRecord
from services.credential_store import CredentialStore
from shared.api_client import ApiClient, parse_model, validate_input
from shared.api_errors import ApiError

logger = logging.getLogger(__name__)


class SessionStatus(StrEnum):
    """Where the client believes the user stands."""

    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Session:
    """Immutable snapshot broadcast on every transition."""

    status: SessionStatus
    user: UserRecord | None = None
    token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return (
            self.status == SessionStatus.AUTHENTICATED
            and self.user is not None
            and bool(self.token)
        )


ANONYMOUS = Session(SessionStatus.ANONYMOUS)


class SessionManager:
    """
    Owns the session lifecycle.

    Ordering: every login, register and logout starts a new epoch. Work that began in
    an older epoch (a token validation still in flight when the user logged out) is
    discarded when it completes, so it can never bring a session back.
    """

    def __init__(self, api: ApiClient, store: CredentialStore) -> None:
        self._api = api
        self._store = store
        self.state: Signal[Session] = Signal(Session(SessionStatus.INITIALIZING))
        self._epoch = 0
        self._store_lock = asyncio.Lock()
        self._validation: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self.state.value

    @property
    def status(self) -> SessionStatus:
        return self.session.status

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def current_user(self) -> UserRecord | None:
        return self.session.user

    @property
    def token(self) -> str | None:
        """Bearer token for API requests (None when anonymous)."""
        return self.session.token

    def subscribe(self, callback: Callable[[Session], None]) -> Unsubscribe:
        """Observe session transitions."""
        return self.state.subscribe(callback)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def initialize(self, *, wait_for_validation: bool = True) -> Session:
        """
        Restore the stored session and validate it.

        With a stored token and user, the session becomes AUTHENTICATED immediately,
        before the server has been asked. With `wait_for_validation=False` the
        validation runs in the background and this returns the optimistic session.
        """
        token = await self._store.get_token()
        user = await self._store.get_user()
        refresh_token = await self._store.get_refresh_token()
        logger.info(
            "session_initialize",
            extra={"has_token": bool(token), "has_user": user is not None},
        )
        if not token or user is None:
            self._transition(ANONYMOUS)
            return self.session

        epoch = self._epoch
        self._transition(Session(SessionStatus.AUTHENTICATED, user=user, token=token))

        self._validation = asyncio.create_task(
            self._validate(token, user, refresh_token, epoch),
        )
        if wait_for_validation:
            await self._validation
        return self.session

    async def wait_for_validation(self) -> Session:
        """Wait for a background validation started by `initialize`."""
        if self._validation is not None:
            await self._validation
        return self.session

    async def _validate(
        self,
        token: str,
        stored_user: UserRecord,
        refresh_token: str | None,
        epoch: int,
    ) -> None:
        try:
            data = await self._api.get("/auth/me", token=token)
            user = parse_model(UserRecord, data)
        except ApiError as e:
            if epoch != self._epoch:
                logger.info("session_validation_superseded")
                return
            if not e.descriptor.is_session_invalid:
                # The server could not answer; that says nothing about the token
                logger.warning(
                    "session_validation_failed_keeping_session",
                    extra={"kind": e.kind.value, "code": e.descriptor.code},
                )
            elif refresh_token:
                await self._refresh(stored_user, refresh_token, epoch)
            else:
                logger.warning("session_token_rejected")
                await self._end_session(epoch)
            return

        async with self._store_lock:
            if epoch != self._epoch:
                logger.info("session_validation_superseded")
                return
            await self._store.set(token, user, refresh_token)
            self._transition(Session(SessionStatus.AUTHENTICATED, user=user, token=token))

    async def _refresh(self, stored_user: UserRecord, refresh_token: str, epoch: int) -> None:
        """Exchange the refresh token for a new access token after a 401."""
        logger.info("session_token_refresh")
        try:
            data = await self._api.post(
                "/auth/refresh", json={"refreshToken": refresh_token}, token="",
            )
            result = parse_model(TokenRefresh, data)
        except ApiError as e:
            if epoch != self._epoch:
                logger.info("session_validation_superseded")
            elif e.descriptor.is_session_invalid:
                logger.warning("session_refresh_rejected")
                await self._end_session(epoch)
            else:
                logger.warning(
                    "session_refresh_failed_keeping_session",
                    extra={"kind": e.kind.value, "code": e.descriptor.code},
                )
            return

        async with self._store_lock:
            if epoch != self._epoch:
                logger.info("session_validation_superseded")
                return
            user = result.user or stored_user
            await self._store.set(
                result.access_token, user, result.refresh_token or refresh_token,
            )
            self._transition(Session(
                SessionStatus.AUTHENTICATED,
                user=user,
                token=result.access_token,
            ))
        logger.info("session_token_refreshed", extra={"user_id": user.id})

    async def _end_session(self, epoch: int) -> None:
        async with self._store_lock:
            if epoch != self._epoch:
                return
            await self._store.clear()
            self._transition(ANONYMOUS)

    async def login(self, credentials: LoginRequest | dict[str, Any]) -> UserRecord:
        """
        Sign in with email and password.

        Raises:
            ApiError: with the kind reported by the server; the session is unchanged.
        """
        request = validate_input(LoginRequest, credentials)
        return await self._authenticate("/auth/login", request.to_wire())

    async def register(self, profile: RegisterRequest | dict[str, Any]) -> UserRecord:
        """
        Create an account and sign in with it.

        Raises:
            ApiError: with the kind reported by the server; the session is unchanged.
        """
        request = validate_input(RegisterRequest, profile)
        return await self._authenticate("/auth/register", request.to_wire())

    async def _authenticate(self, path: str, body: dict[str, Any]) -> UserRecord:
        # Explicit empty token: never send a stale bearer with credentials
        data = await self._api.post(path, json=body, token="")
        result = parse_model(AuthResult, data)
        async with self._store_lock:
            self._epoch += 1
            await self._store.set(result.access_token, result.user, result.refresh_token)
            self._transition(Session(
                SessionStatus.AUTHENTICATED,
                user=result.user,
                token=result.access_token,
            ))
        logger.info("session_authenticated", extra={"user_id": result.user.id})
        return result.user

    async def logout(self) -> None:
        """
        End the session.

        The server is notified on a best-effort basis; local credentials are cleared
        and the session becomes ANONYMOUS whether or not that call succeeds.
        """
        self._epoch += 1
        token = self.token
        try:
            if token:
                await self._api.post("/auth/logout", token=token)
        except ApiError as e:
            logger.warning(
                "session_logout_notify_failed",
                extra={"kind": e.kind.value, "code": e.descriptor.code},
            )
        finally:
            try:
                async with self._store_lock:
                    await self._store.clear()
            finally:
                self._transition(ANONYMOUS)

    async def check_authenticated(self) -> bool:
        """
        Re-confirm the session against the credential store.

        Drops to ANONYMOUS when the stored token disappeared or no longer matches,
        e.g. after another process cleared the store.
        """
        if not self.is_authenticated:
            return False
        stored = await self._store.get_token()
        if stored != self.token:
            logger.warning("session_token_missing_from_store")
            self._epoch += 1
            self._transition(ANONYMOUS)
            return False
        return True

    def _transition(self, session: Session) -> None:
        previous = self.session.status
        self.state.set(session)
        if previous != session.status:
            logger.info(
                "session_transition",
                extra={"from": previous.value, "to": session.status.value},
            )
