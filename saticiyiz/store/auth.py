"""
saticiyiz.store.auth — Sessions & Identity
===========================================

Issues and persists sessions for the forum client:

- Passwords are hashed with **bcrypt** (cost from ``bcrypt_rounds``).
- A session is an HS256 **JWT** (``sub`` = user id) plus the user's
  identity claims, stored as one JSON blob under ``auth_storage_key`` in
  client-local storage so it survives restarts.
- Listeners registered with :meth:`AuthClient.on_auth_state_change` are
  awaited in registration order on ``SIGNED_IN`` / ``SIGNED_OUT``.

Sign-up creates the ``auth_users`` row together with the member's
``profiles`` and ``user_points`` rows in one transaction.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import bcrypt
import jwt
from sqlalchemy import func, select

from saticiyiz.constants import EMAIL_PATTERN, MIN_PASSWORD_LENGTH
from saticiyiz.database.engine import get_session, run_db
from saticiyiz.database.models import AuthUser, Profile, UserPoints
from saticiyiz.engine.points import member_level
from saticiyiz.store.errors import AuthError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from saticiyiz.storage import KeyValueStorage

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"


@dataclass(slots=True)
class AuthUserInfo:
    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None


@dataclass(slots=True)
class AuthSession:
    access_token: str
    expires_at: int  # unix seconds
    user: AuthUserInfo
    token_type: str = "bearer"

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> AuthSession:
        data = json.loads(raw)
        user = AuthUserInfo(**data["user"])
        return cls(
            access_token=data["access_token"],
            expires_at=int(data["expires_at"]),
            user=user,
            token_type=data.get("token_type", "bearer"),
        )


@dataclass(slots=True)
class AuthResponse:
    user: AuthUserInfo | None
    session: AuthSession | None


AuthListener = Callable[[str, AuthSession | None], Awaitable[None]]


@dataclass(eq=False)
class AuthSubscription:
    client: AuthClient
    callback: AuthListener

    def unsubscribe(self) -> None:
        self.client._remove_listener(self)


# ---------------------------------------------------------------------------
# Username generation
# ---------------------------------------------------------------------------
def generate_username(email: str) -> str:
    """Derive a username from the local part of *email*."""
    base = re.sub(r"[^a-zA-Z0-9]", "", email.split("@")[0])[:15]
    if len(base) >= 3:
        return base
    return base + secrets.token_hex(3)


class AuthClient:
    """Auth interface: sign up / in / out, session lookup, change feed."""

    def __init__(
        self,
        engine: Engine,
        storage: KeyValueStorage,
        *,
        secret: str,
        storage_key: str = "saticiyiz-forum-auth",
        session_ttl: timedelta = timedelta(hours=1),
        bcrypt_rounds: int = 12,
    ) -> None:
        self._engine = engine
        self._storage = storage
        self._secret = secret
        self._storage_key = storage_key
        self._session_ttl = session_ttl
        self._bcrypt_rounds = bcrypt_rounds
        self._session: AuthSession | None = None
        self._loaded = False
        self._listeners: list[AuthSubscription] = []

    # -------------------------------------------------------------------
    # Identity accessors
    # -------------------------------------------------------------------
    @property
    def current_user_id(self) -> str | None:
        """User id of the cached session, without touching storage or DB."""
        session = self._session
        if session is None or session.expires_at <= int(datetime.now(UTC).timestamp()):
            return None
        return session.user.id

    async def get_session(self) -> AuthSession | None:
        """Return the stored session if its token is still valid."""
        if not self._loaded:
            self._loaded = True
            raw = self._storage.get_item(self._storage_key)
            if raw:
                try:
                    self._session = AuthSession.from_json(raw)
                except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                    logger.warning("Discarding unreadable auth session blob")
                    self._clear()
        if self._session is not None and not self._token_valid(self._session.access_token):
            logger.info("Stored session expired; clearing")
            self._clear()
        return self._session

    async def get_user(self) -> AuthUserInfo | None:
        """Validate the session against the user table and return the user."""
        session = await self.get_session()
        if session is None:
            return None
        row = await run_db(self._load_user, session.user.id)
        if row is None:
            self._clear()
            return None
        return row

    def _load_user(self, user_id: str) -> AuthUserInfo | None:
        with get_session(self._engine) as db:
            user = db.get(AuthUser, user_id)
            return self._info(user) if user is not None else None

    # -------------------------------------------------------------------
    # Sign up / in / out
    # -------------------------------------------------------------------
    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None,
    ) -> AuthResponse:
        """Register a member and sign them in.

        Raises
        ------
        AuthError
            Invalid email, weak password, taken email or taken username.
        """
        email = email.strip().lower()
        if not re.match(EMAIL_PATTERN, email):
            raise AuthError("Invalid email address format", status=400, code="validation_failed")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise AuthError(
                f"Weak password: password should be at least {MIN_PASSWORD_LENGTH} characters",
                status=422,
                code="weak_password",
            )
        info = await run_db(self._create_user, email, password, dict(metadata or {}))
        session = self._issue(info)
        await self._emit(SIGNED_IN, session)
        logger.info("Signed up %s", info.id)
        return AuthResponse(user=info, session=session)

    def _create_user(self, email: str, password: str, metadata: dict[str, Any]) -> AuthUserInfo:
        username = (metadata.get("username") or "").strip() or generate_username(email)
        metadata["username"] = username
        hashed = bcrypt.hashpw(
            password.encode("utf-8"), bcrypt.gensalt(rounds=self._bcrypt_rounds),
        ).decode("utf-8")

        with get_session(self._engine) as db:
            if db.scalar(select(AuthUser.id).where(AuthUser.email == email)) is not None:
                raise AuthError("User already registered", status=422, code="user_already_exists")
            taken = db.scalar(
                select(Profile.id).where(func.lower(Profile.username) == username.lower())
            )
            if taken is not None:
                raise AuthError(
                    'duplicate key value violates unique constraint "profiles_username_key"',
                    status=500,
                    code="23505",
                )
            user = AuthUser(email=email, password_hash=hashed, user_metadata=metadata)
            db.add(user)
            db.flush()
            db.add(Profile(id=user.id, username=username, email=email))
            db.flush()
            db.add(UserPoints(user_id=user.id, points=0, member_level=member_level(0).name))
            db.flush()
            return self._info(user)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        info = await run_db(self._check_credentials, email.strip().lower(), password)
        if info is None:
            raise AuthError("Invalid login credentials", status=400, code="invalid_credentials")
        session = self._issue(info)
        await self._emit(SIGNED_IN, session)
        logger.info("Signed in %s", info.id)
        return AuthResponse(user=info, session=session)

    def _check_credentials(self, email: str, password: str) -> AuthUserInfo | None:
        with get_session(self._engine) as db:
            user = db.scalar(select(AuthUser).where(AuthUser.email == email))
            if user is None:
                return None
            if not bcrypt.checkpw(password.encode("utf-8"), user.password_hash.encode("utf-8")):
                return None
            user.last_sign_in_at = datetime.now(UTC)
            return self._info(user)

    async def sign_out(self) -> None:
        had_session = self._session is not None
        self._clear()
        if had_session:
            logger.info("Signed out")
        await self._emit(SIGNED_OUT, None)

    # -------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------
    def on_auth_state_change(self, callback: AuthListener) -> AuthSubscription:
        sub = AuthSubscription(client=self, callback=callback)
        self._listeners.append(sub)
        return sub

    def _remove_listener(self, sub: AuthSubscription) -> None:
        if sub in self._listeners:
            self._listeners.remove(sub)

    async def _emit(self, event: str, session: AuthSession | None) -> None:
        for sub in list(self._listeners):
            try:
                await sub.callback(event, session)
            except Exception:
                logger.exception("Auth listener failed on %s", event)

    # -------------------------------------------------------------------
    # Token helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _info(user: AuthUser) -> AuthUserInfo:
        created = user.created_at
        if created is not None and created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return AuthUserInfo(
            id=user.id,
            email=user.email,
            user_metadata=dict(user.user_metadata or {}),
            created_at=created.isoformat() if created else None,
        )

    def _issue(self, info: AuthUserInfo) -> AuthSession:
        now = datetime.now(UTC)
        expires = now + self._session_ttl
        token = jwt.encode(
            {
                "sub": info.id,
                "email": info.email,
                "username": info.user_metadata.get("username"),
                "iat": now,
                "exp": expires,
            },
            self._secret,
            algorithm=JWT_ALGORITHM,
        )
        session = AuthSession(access_token=token, expires_at=int(expires.timestamp()), user=info)
        self._session = session
        self._loaded = True
        self._storage.set_item(self._storage_key, session.to_json())
        return session

    def _token_valid(self, token: str) -> bool:
        try:
            jwt.decode(token, self._secret, algorithms=[JWT_ALGORITHM])
        except jwt.PyJWTError:
            return False
        return True

    def _clear(self) -> None:
        self._session = None
        self._storage.remove_item(self._storage_key)
