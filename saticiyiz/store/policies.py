"""
saticiyiz.store.policies — Row-Level Security
==============================================

Each table carries a :class:`TablePolicy` describing who may read, insert
and write (update/delete) rows.  The query layer applies them the way a
PostgreSQL RLS policy would:

- a denied **read**, **update** or **delete** silently matches no rows;
- a denied **insert** raises ``StoreError(code="42501")``;
- ``OWNER`` access scopes the statement to ``owner_column = auth.uid()``.

The service role (maintenance jobs) bypasses every policy.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from saticiyiz.database.models import RoleName, UserRole


class Access(enum.IntEnum):
    PUBLIC = 0
    AUTHENTICATED = 1
    OWNER = 2
    MODERATOR = 3
    ADMIN = 4
    NONE = 5


@dataclass(frozen=True, slots=True)
class TablePolicy:
    read: Access
    insert: Access
    write: Access
    owner_column: str | None = None
    # Moderators may update/delete rows they don't own
    staff_override: bool = False


@dataclass(frozen=True, slots=True)
class Principal:
    """Who is executing a statement."""

    uid: str | None = None
    service_role: bool = False


POLICIES: dict[str, TablePolicy] = {
    "auth_users": TablePolicy(Access.NONE, Access.NONE, Access.NONE),
    "profiles": TablePolicy(Access.PUBLIC, Access.OWNER, Access.OWNER, "id"),
    "user_points": TablePolicy(Access.PUBLIC, Access.NONE, Access.NONE, "user_id"),
    "points_history": TablePolicy(Access.PUBLIC, Access.NONE, Access.NONE, "user_id"),
    "member_level_history": TablePolicy(Access.PUBLIC, Access.NONE, Access.NONE, "user_id"),
    "categories": TablePolicy(Access.PUBLIC, Access.ADMIN, Access.ADMIN),
    "topics": TablePolicy(Access.PUBLIC, Access.OWNER, Access.OWNER, "user_id", True),
    "comments": TablePolicy(Access.PUBLIC, Access.OWNER, Access.OWNER, "user_id", True),
    "topic_likes": TablePolicy(Access.PUBLIC, Access.OWNER, Access.OWNER, "user_id"),
    "comment_likes": TablePolicy(Access.PUBLIC, Access.OWNER, Access.OWNER, "user_id"),
    # Inserts go through the create_notification function only
    "notifications": TablePolicy(Access.OWNER, Access.NONE, Access.OWNER, "user_id"),
    "notification_preferences": TablePolicy(
        Access.OWNER, Access.OWNER, Access.OWNER, "user_id",
    ),
    "user_roles": TablePolicy(Access.MODERATOR, Access.ADMIN, Access.ADMIN),
    "admin_actions": TablePolicy(Access.MODERATOR, Access.NONE, Access.NONE),
    "system_settings": TablePolicy(Access.MODERATOR, Access.ADMIN, Access.ADMIN),
    "user_reports": TablePolicy(
        Access.MODERATOR, Access.OWNER, Access.MODERATOR, "reporter_id",
    ),
    "moderation_actions": TablePolicy(Access.MODERATOR, Access.MODERATOR, Access.MODERATOR),
}


# ---------------------------------------------------------------------------
# Role checks
# ---------------------------------------------------------------------------
def has_role(session: Session, uid: str | None, *roles: str) -> bool:
    """True if *uid* holds an active, unexpired grant for any of *roles*."""
    if uid is None:
        return False
    now = datetime.now(UTC)
    found = session.scalar(
        select(UserRole.id)
        .where(
            UserRole.user_id == uid,
            UserRole.role.in_(roles),
            UserRole.is_active.is_(True),
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > now),
        )
        .limit(1)
    )
    return found is not None


def is_moderator(session: Session, uid: str | None) -> bool:
    return has_role(session, uid, RoleName.ADMIN.value, RoleName.MODERATOR.value)


def is_admin(session: Session, uid: str | None) -> bool:
    return has_role(session, uid, RoleName.ADMIN.value)


def allows(session: Session, principal: Principal, access: Access) -> bool:
    """Role-level check only; OWNER scoping is applied by the caller."""
    if principal.service_role:
        return True
    if access is Access.PUBLIC:
        return True
    if access is Access.NONE:
        return False
    if principal.uid is None:
        return False
    if access in (Access.AUTHENTICATED, Access.OWNER):
        return True
    if access is Access.MODERATOR:
        return is_moderator(session, principal.uid)
    return is_admin(session, principal.uid)
