"""
saticiyiz.services.content_service — Topics & Comments
=======================================================

Thin write/read paths for forum content.  Writes are validated locally
first, inserted through the store (the after-insert hooks award points and
bump category counters), and then fan out notifications on the
best-effort queue:

- a new comment notifies the topic author (never the commenter)
- an ``@username`` in a topic or comment notifies that member (never the
  author mentioning themselves)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from saticiyiz.constants import MENTION_PATTERN
from saticiyiz.engine.validators import topic_title, validate_comment, validate_topic

if TYPE_CHECKING:
    from saticiyiz.services.notification_service import NotificationService
    from saticiyiz.services.side_effects import BestEffortQueue
    from saticiyiz.store.client import ForumClient

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 10
_MENTION_RE = re.compile(MENTION_PATTERN)


def extract_mentions(text: str) -> list[str]:
    """Unique ``@username`` handles in order of first appearance."""
    seen: set[str] = set()
    out: list[str] = []
    for name in _MENTION_RE.findall(text or ""):
        key = name.lower()
        if key not in seen:
            seen.add(key)
            out.append(name)
    return out


class ContentService:
    """Topic and comment operations for the signed-in user."""

    def __init__(
        self,
        client: ForumClient,
        notifications: NotificationService,
        side_effects: BestEffortQueue,
        *,
        username: Callable[[], str | None] | None = None,
    ) -> None:
        self._client = client
        self._notifications = notifications
        self._side_effects = side_effects
        self._username = username

    def _actor_name(self) -> str:
        return (self._username() if self._username else None) or "Bir kullanıcı"

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------
    async def create_topic(
        self,
        title: str,
        content: str,
        category_id: str | None = None,
        *,
        sponsored: bool = False,
    ) -> dict[str, Any]:
        """Insert a topic and return the stored row.

        Raises FormValidationError before any store call, StoreError after.
        """
        uid = self._client.principal().uid
        validate_topic(title, content, signed_in=uid is not None)
        row = (
            await self._client.table("topics")
            .insert({
                "title": topic_title(title, sponsored=sponsored),
                "content": content.strip(),
                "user_id": uid,
                "category_id": category_id or None,
            })
            .single()
            .execute()
        ).data
        logger.info("Topic %s created by %s", row["id"], uid)

        mentions = extract_mentions(row["content"])
        if mentions:
            self._side_effects.submit(
                self._notify_mentions(uid, mentions, row["id"], row["content"], None),
                label=f"topic-mentions:{row['id']}",
            )
        return row

    async def add_comment(self, topic_id: str, content: str) -> dict[str, Any]:
        """Insert a comment on *topic_id* and return the stored row."""
        uid = self._client.principal().uid
        validate_comment(content, signed_in=uid is not None)
        row = (
            await self._client.table("comments")
            .insert({"topic_id": topic_id, "user_id": uid, "content": content.strip()})
            .single()
            .execute()
        ).data
        logger.info("Comment %s added to topic %s by %s", row["id"], topic_id, uid)
        self._side_effects.submit(
            self._notify_comment(uid, row),
            label=f"comment-notifications:{row['id']}",
        )
        return row

    # -------------------------------------------------------------------
    # Notification fan-out (best effort)
    # -------------------------------------------------------------------
    async def _notify_comment(self, actor_id: str, comment: dict[str, Any]) -> None:
        topic = (
            await self._client.table("topics")
            .select("id, user_id, title")
            .eq("id", comment["topic_id"])
            .single()
            .execute()
        ).data
        await self._notifications.create_comment_notification(
            topic["user_id"],
            self._actor_name(),
            topic["title"],
            topic["id"],
            comment["id"],
            actor_id=actor_id,
        )
        mentions = extract_mentions(comment["content"])
        if mentions:
            await self._notify_mentions(
                actor_id, mentions, topic["id"], comment["content"], comment["id"],
            )

    async def _notify_mentions(
        self,
        actor_id: str,
        usernames: list[str],
        topic_id: str,
        content: str,
        comment_id: str | None,
    ) -> None:
        profiles = (
            await self._client.table("profiles")
            .select("id, username")
            .in_("username", usernames)
            .execute()
        ).data
        actor_name = self._actor_name()
        for profile in profiles:
            if profile["id"] == actor_id:
                continue
            await self._notifications.create_mention_notification(
                profile["id"], actor_name, topic_id, content, comment_id, actor_id=actor_id,
            )

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get_topic(self, topic_id: str) -> dict[str, Any]:
        return (
            await self._client.table("topics").select("*").eq("id", topic_id).single().execute()
        ).data

    async def list_comments(self, topic_id: str) -> list[dict[str, Any]]:
        """Comments on a topic, oldest first."""
        return (
            await self._client.table("comments")
            .select("*")
            .eq("topic_id", topic_id)
            .order("created_at")
            .execute()
        ).data

    async def search_topics(
        self,
        query: str = "",
        *,
        category_id: str | None = None,
        newest_first: bool = True,
        page: int = 1,
        page_size: int = SEARCH_PAGE_SIZE,
    ) -> tuple[list[dict[str, Any]], int]:
        """Title/content search; returns ``(rows, total_matches)``."""
        q = self._client.table("topics").select("*", count="exact")
        if query.strip():
            q = q.or_ilike(["title", "content"], f"%{query.strip()}%")
        if category_id:
            q = q.eq("category_id", category_id)
        start = (page - 1) * page_size
        result = await (
            q.order("created_at", desc=newest_first)
            .range(start, start + page_size - 1)
            .execute()
        )
        return result.data, result.count or 0
