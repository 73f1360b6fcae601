"""
saticiyiz.services.likes_service — Reactions
=============================================

Toggles the current user's reaction on one topic or comment between
*no reaction*, *like* and *dislike*:

============  ==============  ===========
existing      requested       result
============  ==============  ===========
none          like/dislike    ``added``
like          like            ``removed``
like          dislike         ``updated``
============  ==============  ===========

The toggle runs as one server-side function (``toggle_reaction``) under
the ``(target, user)`` unique constraint, so two concurrent clicks cannot
leave two rows.  A newly *added like* on someone else's content queues a
``like`` notification for the author on the best-effort queue; that
notification can fail without affecting the reaction.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from saticiyiz.database.models import ReactionKind, TargetType
from saticiyiz.store.errors import UNIQUE_VIOLATION, StoreError

if TYPE_CHECKING:
    from saticiyiz.services.notification_service import NotificationService
    from saticiyiz.services.side_effects import BestEffortQueue
    from saticiyiz.services.toast_service import ToastService
    from saticiyiz.store.client import ForumClient

logger = logging.getLogger(__name__)

ReactionAction = Literal["added", "removed", "updated"]

MSG_SIGN_IN_REQUIRED = "Giriş yapmanız gerekiyor"
MSG_LOOKUP_FAILED = "Beğeni durumu kontrol edilemedi"
MSG_REMOVE_FAILED = "Beğeni kaldırılamadı"
MSG_UPDATE_FAILED = "Beğeni güncellenemedi"
MSG_INSERT_FAILED = "Beğeni eklenemedi"
MSG_UNEXPECTED = "Beklenmeyen bir hata oluştu"

_STAGE_MESSAGES = {
    "lookup": MSG_LOOKUP_FAILED,
    "delete": MSG_REMOVE_FAILED,
    "update": MSG_UPDATE_FAILED,
    "insert": MSG_INSERT_FAILED,
}


@dataclass(frozen=True, slots=True)
class ReactionResult:
    success: bool
    action: ReactionAction | None = None
    error: str | None = None
    previous_kind: str | None = None


def reaction_error_message(exc: StoreError) -> str:
    """Kind-specific message for a failed toggle."""
    if exc.code == UNIQUE_VIOLATION:
        return MSG_INSERT_FAILED
    return _STAGE_MESSAGES.get(exc.hint or "", str(exc) or MSG_UNEXPECTED)


class LikesService:
    """Reaction toggling for the signed-in user."""

    def __init__(
        self,
        client: ForumClient,
        notifications: NotificationService,
        side_effects: BestEffortQueue,
        toasts: ToastService | None = None,
        *,
        username: Callable[[], str | None] | None = None,
    ) -> None:
        self._client = client
        self._notifications = notifications
        self._side_effects = side_effects
        self._toasts = toasts
        # Returns the reacting user's display name for notification text
        self._username = username
        self.loading = False
        self.error: str | None = None

    def clear_error(self) -> None:
        self.error = None

    async def set_reaction(self, target_id: str, target_type: str, kind: str) -> ReactionResult:
        """Toggle the caller's *kind* reaction on a topic or comment."""
        uid = self._client.principal().uid
        if uid is None:
            self.error = MSG_SIGN_IN_REQUIRED
            if self._toasts is not None:
                self._toasts.show_warning("Uyarı", MSG_SIGN_IN_REQUIRED)
            return ReactionResult(success=False, error=MSG_SIGN_IN_REQUIRED)

        target = TargetType(target_type)
        reaction = ReactionKind(kind)
        self.loading = True
        self.error = None
        try:
            outcome = await self._client.rpc(
                "toggle_reaction",
                p_target_id=target_id,
                p_target_type=target.value,
                p_kind=reaction.value,
            )
        except StoreError as exc:
            message = reaction_error_message(exc)
            logger.error(
                "Reaction on %s %s failed at %s: %s (code=%s)",
                target.value, target_id, exc.hint, exc, exc.code,
            )
            self.error = message
            return ReactionResult(success=False, error=message)
        finally:
            self.loading = False

        action: ReactionAction = outcome["action"]
        if action == "added" and reaction is ReactionKind.LIKE:
            self._queue_like_notification(uid, target, target_id, outcome)
        return ReactionResult(success=True, action=action, previous_kind=outcome.get("previous_kind"))

    async def toggle_topic_like(self, topic_id: str, kind: str = "like") -> ReactionResult:
        return await self.set_reaction(topic_id, TargetType.TOPIC, kind)

    async def toggle_comment_like(self, comment_id: str, kind: str = "like") -> ReactionResult:
        return await self.set_reaction(comment_id, TargetType.COMMENT, kind)

    def _queue_like_notification(
        self, uid: str, target: TargetType, target_id: str, outcome: dict,
    ) -> None:
        author_id = outcome.get("target_author_id")
        if not author_id or author_id == uid:
            return
        username = (self._username() if self._username else None) or "Bir kullanıcı"
        title = outcome.get("target_title") or ""
        if target is TargetType.COMMENT:
            title = title[:50]
        self._side_effects.submit(
            self._notifications.create_like_notification(
                author_id, username, target.value, title, target_id,
                actor_id=uid,
                topic_id=outcome.get("topic_id") if target is TargetType.COMMENT else None,
            ),
            label=f"like-notification:{target.value}:{target_id}",
        )

    async def get_counts(self, target_id: str, target_type: str) -> dict[str, int]:
        """``{"likes": n, "dislikes": m}`` for one target."""
        target = TargetType(target_type)
        if target is TargetType.TOPIC:
            return await self._client.rpc("get_topic_like_count", p_topic_id=target_id)
        return await self._client.rpc("get_comment_like_count", p_comment_id=target_id)

    async def get_user_reaction(self, target_id: str, target_type: str) -> str | None:
        """The caller's current reaction kind on the target, or None."""
        uid = self._client.principal().uid
        if uid is None:
            return None
        target = TargetType(target_type)
        table, column = (
            ("topic_likes", "topic_id") if target is TargetType.TOPIC else ("comment_likes", "comment_id")
        )
        row = (
            await self._client.table(table)
            .select("like_type")
            .eq(column, target_id)
            .eq("user_id", uid)
            .maybe_single()
            .execute()
        ).data
        return row["like_type"] if row else None
