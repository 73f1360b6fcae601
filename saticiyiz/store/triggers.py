"""
saticiyiz.store.triggers — After-Insert Hooks
==============================================

Server-side side effects that run inside the inserting transaction,
the way database triggers would:

- ``topics``   → author +100 points, ``total_topics`` +1, category
  ``topic_count`` +1
- ``comments`` → author +30 points, ``total_comments`` +1
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from saticiyiz.database.models import Category, PointsType
from saticiyiz.services.points_service import apply_points

AfterInsertHook = Callable[[Session, dict[str, Any]], None]


def _on_topic_created(session: Session, row: dict[str, Any]) -> None:
    apply_points(
        session, row["user_id"], PointsType.TOPIC_CREATED,
        source_id=row["id"], source_type="topic",
    )
    if row.get("category_id"):
        session.execute(
            update(Category)
            .where(Category.id == row["category_id"])
            .values(topic_count=Category.topic_count + 1)
        )


def _on_comment_created(session: Session, row: dict[str, Any]) -> None:
    apply_points(
        session, row["user_id"], PointsType.COMMENT_CREATED,
        source_id=row["id"], source_type="comment",
    )


AFTER_INSERT: dict[str, list[AfterInsertHook]] = {
    "topics": [_on_topic_created],
    "comments": [_on_comment_created],
}


def run_after_insert(session: Session, table_name: str, row: dict[str, Any]) -> None:
    for hook in AFTER_INSERT.get(table_name, ()):
        hook(session, row)
