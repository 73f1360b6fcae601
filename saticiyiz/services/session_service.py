"""
saticiyiz.services.session_service — Session / Identity Provider
=================================================================

Holds the current :class:`ForumUser` (or None), ``loading`` and ``error``
and tells dependents (the notification coordinator) when the signed-in
identity changes.

Resolution is two-phase:

1. A minimal user is derived from the session claims (id, username,
   email) so the client is usable immediately.
2. The user is then enriched from ``profiles`` and ``user_points``; if
   enrichment fails the session-derived user is kept and the failure is
   only logged.

``sign_up`` / ``sign_in`` / ``sign_out`` pass through to the auth
client.  Failures are mapped to Turkish messages, stored in ``error``,
toasted, and re-raised so the calling form can decide navigation.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict

from saticiyiz.constants import MEMBER_LEVELS
from saticiyiz.engine.validators import validate_login, validate_registration
from saticiyiz.store.auth import SIGNED_OUT

if TYPE_CHECKING:
    from saticiyiz.services.toast_service import ToastService
    from saticiyiz.store.auth import AuthSession, AuthSubscription, AuthUserInfo
    from saticiyiz.store.client import ForumClient

logger = logging.getLogger(__name__)

# Ordered, case-insensitive substring → message.  First match wins.
AUTH_ERROR_MESSAGES: tuple[tuple[tuple[str, ...], str], ...] = (
    (("profiles_username_key",), "Bu kullanıcı adı zaten alınmış."),
    (("duplicate key", "already registered"), "Bu email adresi zaten kullanılıyor."),
    (("invalid email",), "Geçersiz email adresi."),
    (("weak password",), "Şifre çok zayıf."),
    (("invalid login credentials",), "Email veya şifre hatalı."),
    (("email not confirmed",), "Email adresiniz henüz doğrulanmamış."),
    (("database error",), "Veritabanı hatası. Lütfen daha sonra tekrar deneyin."),
)


def map_auth_error(message: str) -> str:
    """Localize a known auth failure; unknown messages pass through."""
    lowered = message.lower()
    for needles, localized in AUTH_ERROR_MESSAGES:
        if any(n in lowered for n in needles):
            return localized
    return message


class ForumUser(BaseModel):
    """The signed-in member as the client sees them."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    username: str
    email: str = ""
    created_at: datetime | None = None
    avatar_url: str | None = None
    bio: str | None = None
    location: str | None = None
    website: str | None = None
    points: int = 0
    member_level: str = MEMBER_LEVELS[0].name
    enriched: bool = False

    @classmethod
    def from_session(cls, info: AuthUserInfo) -> ForumUser:
        username = (info.user_metadata or {}).get("username") or f"user_{info.id[:8]}"
        return cls(id=info.id, username=username, email=info.email or "", created_at=info.created_at)


UserListener = Callable[[ForumUser | None], Awaitable[None]]


class SessionProvider:
    """Current-user state derived from the auth client."""

    def __init__(self, client: ForumClient, toasts: ToastService) -> None:
        self._client = client
        self._toasts = toasts
        self.user: ForumUser | None = None
        self.loading: bool = True
        self.error: str | None = None
        self._auth_sub: AuthSubscription | None = None
        self._listeners: list[UserListener] = []
        self._notified_id: str | None = None

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def start(self) -> None:
        """Resolve the stored session and follow auth changes."""
        if self._auth_sub is None:
            self._auth_sub = self._client.auth.on_auth_state_change(self._on_auth_change)
        try:
            session = await self._client.auth.get_session()
            if session is not None:
                await self._resolve(session.user)
        except Exception:
            logger.exception("Auth initialisation failed")
            self.error = "Kimlik doğrulama başlatılamadı."
            self._toasts.show_error("Hata", self.error)
        finally:
            self.loading = False

    async def stop(self) -> None:
        if self._auth_sub is not None:
            self._auth_sub.unsubscribe()
            self._auth_sub = None

    def add_listener(self, listener: UserListener) -> None:
        """Await *listener* with the new user whenever the identity changes."""
        self._listeners.append(listener)

    async def _notify(self) -> None:
        current = self.user.id if self.user else None
        if current == self._notified_id:
            return
        self._notified_id = current
        for listener in list(self._listeners):
            try:
                await listener(self.user)
            except Exception:
                logger.exception("Session listener failed")

    async def _on_auth_change(self, event: str, session: AuthSession | None) -> None:
        try:
            if event == SIGNED_OUT or session is None:
                self.user = None
                await self._notify()
            else:
                await self._resolve(session.user)
        except Exception:
            logger.exception("Auth state update failed on %s", event)
            self.error = "Kimlik doğrulama durumu güncellenemedi."
            self._toasts.show_error("Hata", self.error)
        finally:
            self.loading = False

    # -------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------
    async def _resolve(self, info: AuthUserInfo) -> None:
        self.error = None
        self.user = ForumUser.from_session(info)
        await self._notify()
        enriched = await self._enrich(self.user)
        if enriched is not None and self.user is not None and self.user.id == enriched.id:
            self.user = enriched

    async def _enrich(self, base: ForumUser) -> ForumUser | None:
        try:
            profile = (
                await self._client.table("profiles").select("*").eq("id", base.id).single().execute()
            ).data
        except Exception as exc:
            logger.debug("Profile enrichment failed for %s: %s", base.id, exc)
            return None

        points = 0
        level = base.member_level
        try:
            row = (
                await self._client.table("user_points")
                .select("points, member_level")
                .eq("user_id", base.id)
                .maybe_single()
                .execute()
            ).data
            if row:
                points = row.get("points") or 0
                level = row.get("member_level") or level
        except Exception as exc:
            logger.debug("Points lookup failed for %s: %s", base.id, exc)

        return base.model_copy(update={
            "username": profile.get("username") or base.username,
            "email": profile.get("email") or base.email,
            "created_at": profile.get("created_at") or base.created_at,
            "avatar_url": profile.get("avatar_url"),
            "bio": profile.get("bio"),
            "location": profile.get("location"),
            "website": profile.get("website"),
            "points": points,
            "member_level": level,
            "enriched": True,
        })

    async def refresh_user(self) -> None:
        if self.user is None:
            return
        enriched = await self._enrich(self.user)
        if enriched is not None:
            self.user = enriched

    def clear_error(self) -> None:
        self.error = None

    # -------------------------------------------------------------------
    # Pass-through auth calls
    # -------------------------------------------------------------------
    async def sign_up(
        self,
        email: str,
        password: str,
        username: str,
        *,
        password_confirm: str | None = None,
    ) -> None:
        """Register and sign in.  Re-raises after recording the error."""
        self.error = None
        self.loading = True
        try:
            if password_confirm is not None:
                validate_registration(email, password, password_confirm, username)
            await self._client.auth.sign_up(email, password, {"username": username.strip()})
        except Exception as exc:
            self._auth_failed("Kayıt Hatası", exc, "Kayıt olurken bir hata oluştu.")
            raise
        finally:
            self.loading = False

    async def sign_in(self, email: str, password: str) -> None:
        self.error = None
        self.loading = True
        try:
            validate_login(email, password)
            await self._client.auth.sign_in_with_password(email, password)
        except Exception as exc:
            self._auth_failed("Giriş Hatası", exc, "Giriş yapılırken bir hata oluştu.")
            raise
        finally:
            self.loading = False

    async def sign_out(self) -> None:
        self.error = None
        self.loading = True
        try:
            await self._client.auth.sign_out()
            self.user = None
            await self._notify()
        except Exception as exc:
            self._auth_failed("Çıkış Hatası", exc, "Çıkış yapılırken bir hata oluştu.")
            raise
        finally:
            self.loading = False

    def _auth_failed(self, title: str, exc: Exception, fallback: str) -> None:
        message = map_auth_error(str(exc)) if str(exc) else fallback
        logger.warning("%s: %r", title, exc)
        self.error = message
        self._toasts.show_error(title, message)
