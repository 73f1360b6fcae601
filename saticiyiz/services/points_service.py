"""
saticiyiz.services.points_service — Points Application
=======================================================

Server-side helpers that apply gamification points inside the caller's
transaction.  Invoked by the store's after-insert hooks (topics,
comments) and by the ``toggle_reaction`` function (likes received).

Each application:
  1. Fetches or creates the recipient's ``user_points`` row.
  2. Adds the signed delta (floored at 0) and bumps the matching counter.
  3. Appends a ``points_history`` row.
  4. Appends a ``member_level_history`` row if the member level changed.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from saticiyiz.database.models import (
    MemberLevelHistory,
    PointsHistory,
    PointsType,
    UserPoints,
)
from saticiyiz.engine.points import member_level, points_for

logger = logging.getLogger(__name__)

_COUNTER_FOR_TYPE: dict[str, str] = {
    PointsType.TOPIC_CREATED: "total_topics",
    PointsType.COMMENT_CREATED: "total_comments",
    PointsType.LIKE_RECEIVED: "total_likes_received",
}


def get_or_create_points(session: Session, user_id: str) -> UserPoints:
    """Fetch or insert the ``user_points`` row for *user_id*."""
    row = session.scalar(select(UserPoints).where(UserPoints.user_id == user_id))
    if row is None:
        row = UserPoints(
            user_id=user_id,
            points=0,
            member_level=member_level(0).name,
            total_topics=0,
            total_comments=0,
            total_likes_received=0,
        )
        session.add(row)
        session.flush()
    return row


def apply_points(
    session: Session,
    user_id: str,
    points_type: str,
    *,
    sign: int = 1,
    source_id: str | None = None,
    source_type: str | None = None,
) -> UserPoints:
    """Credit (``sign=1``) or revoke (``sign=-1``) points for one action."""
    row = get_or_create_points(session, user_id)
    delta = sign * points_for(points_type)

    old_level = member_level(row.points).name
    row.points = max(0, row.points + delta)
    counter = _COUNTER_FOR_TYPE[points_type]
    setattr(row, counter, max(0, getattr(row, counter) + sign))
    new_level = member_level(row.points).name
    row.member_level = new_level

    session.add(PointsHistory(
        user_id=user_id,
        points_earned=delta,
        points_type=str(points_type),
        source_id=source_id,
        source_type=source_type,
    ))

    if new_level != old_level:
        session.add(MemberLevelHistory(
            user_id=user_id,
            old_level=old_level,
            new_level=new_level,
            points_at_change=row.points,
        ))
        logger.info(
            "Member level change for %s: %s → %s (%d points)",
            user_id, old_level, new_level, row.points,
        )

    session.flush()
    return row
