"""
saticiyiz.services.retention_service — Notification Retention
==============================================================

Notifications are otherwise never deleted, so a daily job bounds the
table two ways:

1. **Age** — *read* notifications older than ``retention_days`` (default
   90) are removed.  Unread rows are never aged out.
2. **Per-user cap** — each user keeps at most ``max_per_user`` (default
   500) newest notifications, read or unread, so the cap is a hard bound.

Deletion is batched so normal writes are not blocked behind one long
delete.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, delete, func, select

from saticiyiz.database.engine import get_session
from saticiyiz.database.models import Notification

logger = logging.getLogger(__name__)

# How many rows to delete in each batch
BATCH_SIZE = 5_000


def _delete_ids(engine: Engine, ids: list[str]) -> int:
    with get_session(engine) as session:
        result = session.execute(delete(Notification).where(Notification.id.in_(ids)))
        return result.rowcount or 0


def run_notification_retention(
    engine: Engine,
    retention_days: int = 90,
    max_per_user: int = 500,
) -> dict[str, int]:
    """Apply the age rule, then the per-user cap.

    Returns ``{"expired_deleted": N, "over_cap_deleted": M, "users_capped": K}``.
    """
    cutoff = datetime.now(UTC) - timedelta(days=retention_days)
    expired_deleted = 0
    over_cap_deleted = 0

    # --- Age out read notifications ---
    while True:
        with get_session(engine) as session:
            ids = session.scalars(
                select(Notification.id)
                .where(Notification.read_at.is_not(None), Notification.created_at < cutoff)
                .limit(BATCH_SIZE)
            ).all()
        if not ids:
            break
        removed = _delete_ids(engine, list(ids))
        expired_deleted += removed
        logger.info("Retention: deleted %d expired notifications (total so far: %d)",
                    removed, expired_deleted)

    # --- Per-user cap ---
    with get_session(engine) as session:
        over = session.scalars(
            select(Notification.user_id)
            .group_by(Notification.user_id)
            .having(func.count() > max_per_user)
        ).all()

    for user_id in over:
        while True:
            with get_session(engine) as session:
                ids = session.scalars(
                    select(Notification.id)
                    .where(Notification.user_id == user_id)
                    .order_by(Notification.created_at.desc(), Notification.id.desc())
                    .offset(max_per_user)
                    .limit(BATCH_SIZE)
                ).all()
            if not ids:
                break
            over_cap_deleted += _delete_ids(engine, list(ids))

    logger.info(
        "Notification retention complete: %d expired, %d over cap across %d users "
        "(retention_days=%d, max_per_user=%d, cutoff=%s)",
        expired_deleted, over_cap_deleted, len(over),
        retention_days, max_per_user, cutoff.isoformat(),
    )
    return {
        "expired_deleted": expired_deleted,
        "over_cap_deleted": over_cap_deleted,
        "users_capped": len(over),
    }


def get_notification_stats(engine: Engine) -> dict:
    """Table size figures for the maintenance log."""
    with get_session(engine) as session:
        total = session.scalar(select(func.count()).select_from(Notification)) or 0
        unread = session.scalar(
            select(func.count()).select_from(Notification).where(Notification.read_at.is_(None))
        ) or 0
        unsent = session.scalar(
            select(func.count()).select_from(Notification).where(Notification.email_sent.is_(False))
        ) or 0
        oldest = session.scalar(select(func.min(Notification.created_at)))

    if oldest is not None and oldest.tzinfo is None:
        oldest = oldest.replace(tzinfo=UTC)
    return {
        "total_notifications": total,
        "unread_notifications": unread,
        "unsent_emails": unsent,
        "oldest_notification": oldest.isoformat() if oldest else None,
    }
