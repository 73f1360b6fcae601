"""
saticiyiz.services.notification_service — Notification Data Access
===================================================================

Typed access to the ``notifications`` and ``notification_preferences``
tables through a :class:`~saticiyiz.store.client.ForumClient`:

- Reads: the newest page, the unread count (server function first, a
  ``count="exact"`` head query as fallback) and the per-kind summary
  (server aggregate first, folded client-side as fallback).
- Writes: read transitions via server functions, preferences upsert,
  email bookkeeping.
- Creation: every row is created by the ``create_notification`` server
  function, which applies the **recipient's** preference flag for the
  kind (the creation-time gate).  The ``create_*_notification`` helpers
  carry the forum's Turkish titles, messages and data keys.
- Push: :meth:`NotificationService.subscribe` converts realtime insert
  events into :class:`Notification` models.

Pydantic models normalize naive timestamps to UTC so SQLite and
PostgreSQL rows compare the same way.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from saticiyiz.constants import NOTIFICATION_KINDS
from saticiyiz.database.models import NotificationKind
from saticiyiz.store.errors import INSUFFICIENT_PRIVILEGE, StoreError

if TYPE_CHECKING:
    from saticiyiz.store.client import ForumClient
    from saticiyiz.store.realtime import ChangeEvent, RealtimeSubscription

logger = logging.getLogger(__name__)

PREFERENCE_FLAGS: tuple[str, ...] = (
    "email_notifications",
    "browser_notifications",
    "desktop_notifications",
    *(f"{kind}_notifications" for kind in NOTIFICATION_KINDS),
)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------
class Notification(BaseModel):
    """One notification addressed to its owner (``user_id``)."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    user_id: str
    type: NotificationKind
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read_at: datetime | None = None
    email_sent: bool = False
    email_sent_at: datetime | None = None
    created_at: datetime

    @field_validator("read_at", "email_sent_at", "created_at")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @field_validator("data", mode="before")
    @classmethod
    def _data_or_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    def marked_read(self, when: datetime) -> Notification:
        """Copy with ``read_at`` set, keeping an existing read time."""
        if self.read_at is not None:
            return self
        return self.model_copy(update={"read_at": when})


class NotificationPreferences(BaseModel):
    """Per-user delivery toggles; a missing row means every flag is on."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    user_id: str
    email_notifications: bool = True
    browser_notifications: bool = True
    desktop_notifications: bool = True
    comment_notifications: bool = True
    like_notifications: bool = True
    mention_notifications: bool = True
    follow_notifications: bool = True
    system_notifications: bool = True

    def allows_kind(self, kind: str) -> bool:
        return bool(getattr(self, f"{kind}_notifications", True))

    @property
    def desktop_alerts_enabled(self) -> bool:
        return self.browser_notifications and self.desktop_notifications


class NotificationSummary(BaseModel):
    """Per-kind totals plus unread count and latest timestamp."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    user_id: str
    total_notifications: int = 0
    unread_count: int = 0
    comment_count: int = 0
    like_count: int = 0
    mention_count: int = 0
    follow_count: int = 0
    system_count: int = 0
    latest_notification: datetime | None = None
    unread_by_kind: dict[str, int] = Field(default_factory=dict)

    @field_validator("latest_notification")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @classmethod
    def fold(cls, user_id: str, notifications: Iterable[Notification]) -> NotificationSummary:
        """Compute the summary client-side over *notifications*."""
        counts = {kind: 0 for kind in NOTIFICATION_KINDS}
        unread_by_kind: dict[str, int] = {}
        total = unread = 0
        latest: datetime | None = None
        for n in notifications:
            kind = n.type.value
            total += 1
            counts[kind] = counts.get(kind, 0) + 1
            if n.read_at is None:
                unread += 1
                unread_by_kind[kind] = unread_by_kind.get(kind, 0) + 1
            if latest is None or n.created_at > latest:
                latest = n.created_at
        return cls(
            user_id=user_id,
            total_notifications=total,
            unread_count=unread,
            latest_notification=latest,
            unread_by_kind=unread_by_kind,
            **{f"{kind}_count": counts[kind] for kind in NOTIFICATION_KINDS},
        )

    def kind_count(self, kind: str) -> int:
        return getattr(self, f"{kind}_count", 0)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
PushCallback = Callable[[Notification], Awaitable[None]]


class NotificationService:
    """Notification reads, writes and creators bound to one client."""

    def __init__(self, client: ForumClient) -> None:
        self._client = client

    def _uid(self) -> str:
        uid = self._client.principal().uid
        if uid is None:
            raise StoreError("not authenticated", code=INSUFFICIENT_PRIVILEGE)
        return uid

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get_notifications(self, limit: int = 20, offset: int = 0) -> list[Notification]:
        """Newest-first page of the caller's notifications."""
        uid = self._uid()
        result = await (
            self._client.table("notifications")
            .select("*")
            .eq("user_id", uid)
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return [Notification.model_validate(row) for row in result.data]

    async def get_unread_count(self) -> int:
        uid = self._uid()
        try:
            return int(await self._client.rpc("get_unread_notification_count") or 0)
        except StoreError as exc:
            logger.warning("Unread count function failed (%s); counting rows", exc)
        result = await (
            self._client.table("notifications")
            .select("id", count="exact", head=True)
            .eq("user_id", uid)
            .is_("read_at", None)
            .execute()
        )
        return result.count or 0

    async def get_notification_summary(self) -> NotificationSummary:
        """Server aggregate, or a client-side fold when it is unavailable.

        Never returns None: a user without notifications gets zeros.
        """
        uid = self._uid()
        try:
            data = await self._client.rpc("get_notification_summary")
            if data:
                return NotificationSummary.model_validate(data)
        except (StoreError, ValidationError) as exc:
            logger.warning("Summary function failed (%s); folding client-side", exc)
        result = await (
            self._client.table("notifications").select("*").eq("user_id", uid).execute()
        )
        return NotificationSummary.fold(
            uid, (Notification.model_validate(row) for row in result.data),
        )

    # -------------------------------------------------------------------
    # Read-state transitions
    # -------------------------------------------------------------------
    async def mark_as_read(self, notification_id: str) -> bool:
        """True when the row went from unread to read on this call."""
        return bool(
            await self._client.rpc("mark_notification_as_read", p_notification_id=notification_id)
        )

    async def mark_all_as_read(self) -> int:
        """Number of rows that were unread and are now read."""
        return int(await self._client.rpc("mark_all_notifications_as_read") or 0)

    # -------------------------------------------------------------------
    # Preferences
    # -------------------------------------------------------------------
    async def get_preferences(self) -> NotificationPreferences:
        uid = self._uid()
        result = await (
            self._client.table("notification_preferences")
            .select("*")
            .eq("user_id", uid)
            .maybe_single()
            .execute()
        )
        if result.data is None:
            return NotificationPreferences(user_id=uid)
        return NotificationPreferences.model_validate(result.data)

    async def update_preferences(self, **flags: bool) -> NotificationPreferences:
        """Upsert the caller's preference row with *flags* changed."""
        unknown = set(flags) - set(PREFERENCE_FLAGS)
        if unknown:
            raise ValueError(f"Unknown preference flags: {sorted(unknown)}")
        uid = self._uid()
        values = {"user_id": uid, **{k: bool(v) for k, v in flags.items()}}
        result = await (
            self._client.table("notification_preferences")
            .upsert(values, on_conflict="user_id")
            .execute()
        )
        logger.info("Notification preferences updated for %s: %s", uid, sorted(flags))
        return NotificationPreferences.model_validate(result.data[0])

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------
    async def create_notification(
        self,
        user_id: str,
        kind: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> str | None:
        """Create a notification for *user_id*.

        Returns the new id, or None when the recipient's preferences
        suppress this kind.
        """
        notification_id = await self._client.rpc(
            "create_notification",
            p_user_id=user_id,
            p_type=str(kind),
            p_title=title,
            p_message=message,
            p_data=data or {},
        )
        if notification_id is None:
            logger.debug("No %s notification for %s (disabled by preferences)", kind, user_id)
        return notification_id

    async def create_comment_notification(
        self,
        topic_owner_id: str,
        commenter_username: str,
        topic_title: str,
        topic_id: str,
        comment_id: str,
        *,
        actor_id: str | None = None,
    ) -> str | None:
        if actor_id is not None and actor_id == topic_owner_id:
            return None
        return await self.create_notification(
            topic_owner_id,
            NotificationKind.COMMENT,
            "\U0001f4ac Yorum",
            f"@{commenter_username} başlığınıza yorum yazdı",
            {
                "topic_id": topic_id,
                "comment_id": comment_id,
                "commenter_username": commenter_username,
                "topic_title": topic_title,
            },
        )

    async def create_like_notification(
        self,
        content_owner_id: str,
        liker_username: str,
        content_type: str,
        content_title: str,
        content_id: str,
        *,
        actor_id: str | None = None,
        topic_id: str | None = None,
    ) -> str | None:
        if actor_id is not None and actor_id == content_owner_id:
            return None
        noun = "başlığınızı" if content_type == "topic" else "yorumunuzu"
        data: dict[str, Any] = {
            "content_type": content_type,
            "content_id": content_id,
            "liker_username": liker_username,
            "content_title": content_title,
        }
        if topic_id is not None:
            data["topic_id"] = topic_id
        return await self.create_notification(
            content_owner_id,
            NotificationKind.LIKE,
            "❤️ Beğeni",
            f"@{liker_username} {noun} beğendi",
            data,
        )

    async def create_mention_notification(
        self,
        mentioned_user_id: str,
        mentioner_username: str,
        topic_id: str,
        content: str,
        comment_id: str | None = None,
        *,
        actor_id: str | None = None,
    ) -> str | None:
        if actor_id is not None and actor_id == mentioned_user_id:
            return None
        return await self.create_notification(
            mentioned_user_id,
            NotificationKind.MENTION,
            "\U0001f464 Etiketlendiniz",
            f"@{mentioner_username} sizi etiketledi",
            {
                "topic_id": topic_id,
                "comment_id": comment_id,
                "mentioner_username": mentioner_username,
                "content": content[:100],
            },
        )

    async def create_follow_notification(
        self, followed_user_id: str, follower_username: str,
    ) -> str | None:
        return await self.create_notification(
            followed_user_id,
            NotificationKind.FOLLOW,
            "\U0001f465 Takipçi",
            f"@{follower_username} sizi takip etti",
            {"follower_username": follower_username},
        )

    async def create_system_notification(
        self, user_id: str, title: str, message: str, data: dict[str, Any] | None = None,
    ) -> str | None:
        return await self.create_notification(
            user_id, NotificationKind.SYSTEM, title, message, data or {},
        )

    # -------------------------------------------------------------------
    # Email bookkeeping
    # -------------------------------------------------------------------
    async def mark_email_as_sent(self, notification_id: str) -> bool:
        """Flip ``email_sent`` false → true; False if already sent or not visible."""
        result = await (
            self._client.table("notifications")
            .update({"email_sent": True, "email_sent_at": datetime.now(UTC)})
            .eq("id", notification_id)
            .eq("email_sent", False)
            .execute()
        )
        return bool(result.data)

    # -------------------------------------------------------------------
    # Push feed
    # -------------------------------------------------------------------
    def subscribe(self, user_id: str, callback: PushCallback) -> RealtimeSubscription:
        """Open the insert feed for *user_id*'s notifications."""

        async def _on_insert(change: ChangeEvent) -> None:
            try:
                notification = Notification.model_validate(change.new)
            except ValidationError:
                logger.warning("Dropping malformed pushed notification: %r", change.new)
                return
            await callback(notification)

        return self._client.realtime.subscribe(
            "notifications", _on_insert, event="INSERT", filter=f"user_id=eq.{user_id}",
        )
