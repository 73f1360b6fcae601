"""
saticiyiz.store.rpc — Server-Side Functions
============================================

Named functions evaluated next to the data, each called with keyword
parameters and returning a scalar or rows::

    count = await client.rpc("get_unread_notification_count")
    ok = await client.rpc("mark_notification_as_read", p_notification_id=nid)

Every function runs in a single transaction with the caller's identity
(``RpcContext.uid``).  Functions register themselves with the
:func:`rpc` decorator; unknown names raise ``StoreError(code="PGRST202")``.

Notable semantics:

- ``create_notification`` applies the **recipient's** preference flag for
  the notification kind and returns ``None`` when suppressed.
- ``mark_notification_as_read`` only transitions ``read_at`` from NULL,
  so repeated calls converge on the first read time.
- ``toggle_reaction`` performs the lookup-then-branch reaction toggle
  under a row lock and the (target, user) unique constraint, retrying
  once when a concurrent insert wins the race.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from saticiyiz.database.engine import get_session
from saticiyiz.database.models import (
    AdminAction,
    AuthUser,
    Comment,
    CommentLike,
    Notification,
    NotificationKind,
    NotificationPreferences,
    PointsType,
    Profile,
    ReactionKind,
    ReportStatus,
    TargetType,
    Topic,
    TopicLike,
    UserReport,
)
from saticiyiz.services.points_service import apply_points
from saticiyiz.store.errors import (
    INSUFFICIENT_PRIVILEGE,
    INVALID_TEXT_REPRESENTATION,
    SINGLE_ROW_MISMATCH,
    UNKNOWN_FUNCTION,
    StoreError,
)
from saticiyiz.store.policies import Principal
from saticiyiz.store.policies import is_admin as _is_admin
from saticiyiz.store.policies import is_moderator as _is_moderator
from saticiyiz.store.query import integrity_to_store_error, row_to_dict

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from saticiyiz.store.realtime import RealtimeHub

logger = logging.getLogger(__name__)


@dataclass
class RpcContext:
    """Execution context handed to every server-side function."""

    session: Session
    uid: str | None
    service_role: bool = False
    # (table, row) pairs to publish once the transaction commits
    inserted: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def require_user(self) -> str:
        if self.uid is None:
            raise StoreError("not authenticated", code=INSUFFICIENT_PRIVILEGE)
        return self.uid

    def require_moderator(self) -> str:
        uid = self.require_user()
        if not self.service_role and not _is_moderator(self.session, uid):
            raise StoreError("permission denied: moderator role required", code=INSUFFICIENT_PRIVILEGE)
        return uid


RpcFunction = Callable[..., Any]


@dataclass(frozen=True, slots=True)
class _Registered:
    func: RpcFunction
    # Extra attempts after a unique violation (fresh transaction each time)
    conflict_retries: int = 0


_REGISTRY: dict[str, _Registered] = {}


def rpc(name: str, *, conflict_retries: int = 0) -> Callable[[RpcFunction], RpcFunction]:
    """Register a server-side function under *name*."""
    def decorator(func_: RpcFunction) -> RpcFunction:
        _REGISTRY[name] = _Registered(func_, conflict_retries)
        return func_
    return decorator


def registered_functions() -> list[str]:
    return sorted(_REGISTRY)


def call_rpc(
    engine: Engine,
    hub: RealtimeHub | None,
    principal: Principal,
    name: str,
    params: dict[str, Any],
) -> Any:
    """Run function *name* synchronously in one transaction."""
    entry = _REGISTRY.get(name)
    if entry is None:
        raise StoreError(
            f"Could not find the function public.{name} in the schema cache",
            code=UNKNOWN_FUNCTION,
        )
    accepted = set(inspect.signature(entry.func).parameters) - {"ctx"}
    unknown = set(params) - accepted
    if unknown:
        raise StoreError(
            f"Could not find the function public.{name}({', '.join(sorted(params))})",
            code=UNKNOWN_FUNCTION,
            hint=f"Accepted parameters: {', '.join(sorted(accepted)) or 'none'}",
        )

    attempt = 0
    while True:
        try:
            return _run_in_transaction(engine, hub, principal, entry.func, params)
        except IntegrityError as exc:
            if attempt >= entry.conflict_retries:
                raise integrity_to_store_error(exc) from exc
            attempt += 1
            logger.info("%s lost a concurrent insert race; retrying (%d)", name, attempt)


def _run_in_transaction(
    engine: Engine,
    hub: RealtimeHub | None,
    principal: Principal,
    func_: RpcFunction,
    params: dict[str, Any],
) -> Any:
    with get_session(engine) as session:
        ctx = RpcContext(session=session, uid=principal.uid, service_role=principal.service_role)
        result = func_(ctx, **params)
        session.flush()
        if hub is not None:
            for table, row in ctx.inserted:
                hub.notify_before_commit(session, table, row)

    if hub is not None:
        for table, row in ctx.inserted:
            hub.publish_local(table, row)
    return result


def _orm_to_dict(obj: Any) -> dict[str, Any]:
    return row_to_dict({col.name: getattr(obj, col.key) for col in obj.__table__.columns})


# ---------------------------------------------------------------------------
# Roles & audit
# ---------------------------------------------------------------------------
@rpc("is_admin")
def is_admin(ctx: RpcContext) -> bool:
    return _is_admin(ctx.session, ctx.uid)


@rpc("is_moderator")
def is_moderator(ctx: RpcContext) -> bool:
    return _is_moderator(ctx.session, ctx.uid)


@rpc("log_admin_action")
def log_admin_action(
    ctx: RpcContext,
    action_type: str,
    target_type: str | None = None,
    target_id: str | None = None,
    details: dict | None = None,
) -> str:
    """Append an ``admin_actions`` row for the calling moderator."""
    admin_id = ctx.require_moderator()
    row = AdminAction(
        admin_id=admin_id,
        action_type=action_type,
        target_type=target_type,
        target_id=target_id,
        details=details,
    )
    ctx.session.add(row)
    ctx.session.flush()
    return row.id


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@rpc("mark_notification_as_read")
def mark_notification_as_read(ctx: RpcContext, p_notification_id: str) -> bool:
    """Set ``read_at`` on one unread notification owned by the caller.

    Returns True only when a row actually transitioned.
    """
    uid = ctx.require_user()
    result = ctx.session.execute(
        update(Notification)
        .where(
            Notification.id == p_notification_id,
            Notification.user_id == uid,
            Notification.read_at.is_(None),
        )
        .values(read_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


@rpc("mark_all_notifications_as_read")
def mark_all_notifications_as_read(ctx: RpcContext) -> int:
    """Set ``read_at`` on every unread notification of the caller."""
    uid = ctx.require_user()
    result = ctx.session.execute(
        update(Notification)
        .where(Notification.user_id == uid, Notification.read_at.is_(None))
        .values(read_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


@rpc("create_notification")
def create_notification(
    ctx: RpcContext,
    p_user_id: str,
    p_type: str,
    p_title: str,
    p_message: str,
    p_data: dict | None = None,
) -> str | None:
    """Insert a notification for *p_user_id* unless their preferences forbid it.

    Missing preferences mean every flag is on.
    """
    ctx.require_user()
    try:
        kind = NotificationKind(p_type)
    except ValueError:
        raise StoreError(
            f'invalid input value for enum notification_type: "{p_type}"',
            code=INVALID_TEXT_REPRESENTATION,
        ) from None

    prefs = ctx.session.scalar(
        select(NotificationPreferences).where(NotificationPreferences.user_id == p_user_id)
    )
    if prefs is not None and not getattr(prefs, f"{kind.value}_notifications"):
        logger.info("Notification of kind %s suppressed by preferences of %s", kind, p_user_id)
        return None

    row = Notification(
        user_id=p_user_id,
        type=kind.value,
        title=p_title,
        message=p_message,
        data=p_data or {},
        email_sent=False,
    )
    ctx.session.add(row)
    ctx.session.flush()
    ctx.inserted.append(("notifications", _orm_to_dict(row)))
    return row.id


@rpc("get_unread_notification_count")
def get_unread_notification_count(ctx: RpcContext) -> int:
    uid = ctx.require_user()
    return ctx.session.scalar(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == uid, Notification.read_at.is_(None))
    ) or 0


@rpc("get_notification_summary")
def get_notification_summary(ctx: RpcContext) -> dict[str, Any]:
    """Per-kind totals, unread counts and latest timestamp for the caller."""
    uid = ctx.require_user()
    rows = ctx.session.execute(
        select(
            Notification.type,
            func.count().label("total"),
            func.count(Notification.id).filter(Notification.read_at.is_(None)).label("unread"),
            func.max(Notification.created_at).label("latest"),
        )
        .where(Notification.user_id == uid)
        .group_by(Notification.type)
    ).all()

    summary: dict[str, Any] = {
        "user_id": uid,
        "total_notifications": 0,
        "unread_count": 0,
        "latest_notification": None,
        "unread_by_kind": {},
    }
    for kind in NotificationKind:
        summary[f"{kind.value}_count"] = 0
    for row in rows:
        summary[f"{row.type}_count"] = row.total
        summary["total_notifications"] += row.total
        summary["unread_count"] += row.unread
        if row.unread:
            summary["unread_by_kind"][row.type] = row.unread
        latest = row_to_dict({"t": row.latest})["t"]
        if latest is not None and (
            summary["latest_notification"] is None or latest > summary["latest_notification"]
        ):
            summary["latest_notification"] = latest
    return summary


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------
_REACTION_TABLES = {
    TargetType.TOPIC: (TopicLike, TopicLike.topic_id, Topic),
    TargetType.COMMENT: (CommentLike, CommentLike.comment_id, Comment),
}


def _like_counts(session: Session, model, target_col, target_id: str) -> dict[str, int]:
    rows = session.execute(
        select(model.like_type, func.count())
        .where(target_col == target_id)
        .group_by(model.like_type)
    ).all()
    counts = {"likes": 0, "dislikes": 0}
    for like_type, n in rows:
        counts["likes" if like_type == ReactionKind.LIKE else "dislikes"] = n
    return counts


@rpc("get_topic_like_count")
def get_topic_like_count(ctx: RpcContext, p_topic_id: str) -> dict[str, int]:
    return _like_counts(ctx.session, TopicLike, TopicLike.topic_id, p_topic_id)


@rpc("get_comment_like_count")
def get_comment_like_count(ctx: RpcContext, p_comment_id: str) -> dict[str, int]:
    return _like_counts(ctx.session, CommentLike, CommentLike.comment_id, p_comment_id)


def _stage_error(stage: str, exc: Exception) -> StoreError:
    if isinstance(exc, StoreError):
        exc.hint = stage
        return exc
    return StoreError(str(exc), code=getattr(exc, "code", None), hint=stage)


def _adjust_like_points(
    session: Session, author_id: str, reactor_id: str, sign: int, source_id: str, source_type: str,
) -> None:
    if author_id == reactor_id:
        return
    apply_points(
        session, author_id, PointsType.LIKE_RECEIVED,
        sign=sign, source_id=source_id, source_type=source_type,
    )


def _toggle_once(ctx: RpcContext, uid: str, target_type: TargetType, target_id: str, kind: ReactionKind) -> dict[str, Any]:
    model, target_col, content_model = _REACTION_TABLES[target_type]
    session = ctx.session

    try:
        target = session.get(content_model, target_id)
        if target is None:
            raise StoreError(
                f"{target_type.value} {target_id} not found", code=SINGLE_ROW_MISMATCH,
            )
        existing = session.scalar(
            select(model)
            .where(target_col == target_id, model.user_id == uid)
            .with_for_update()
        )
    except Exception as exc:
        raise _stage_error("lookup", exc) from exc

    author_id = target.user_id
    result: dict[str, Any] = {
        "action": None,
        "kind": kind.value,
        "previous_kind": existing.like_type if existing is not None else None,
        "target_author_id": author_id,
        "target_title": target.title if target_type is TargetType.TOPIC else target.content,
        "topic_id": target.id if target_type is TargetType.TOPIC else target.topic_id,
    }

    if existing is not None and existing.like_type == kind:
        try:
            session.execute(delete(model).where(model.id == existing.id))
            if kind is ReactionKind.LIKE:
                _adjust_like_points(session, author_id, uid, -1, target_id, target_type.value)
        except Exception as exc:
            raise _stage_error("delete", exc) from exc
        result["action"] = "removed"
        return result

    if existing is not None:
        try:
            session.execute(
                update(model).where(model.id == existing.id).values(like_type=kind.value)
            )
            sign = 1 if kind is ReactionKind.LIKE else -1
            _adjust_like_points(session, author_id, uid, sign, target_id, target_type.value)
        except Exception as exc:
            raise _stage_error("update", exc) from exc
        result["action"] = "updated"
        return result

    values = {"user_id": uid, "like_type": kind.value, target_col.key: target_id}
    try:
        row = model(**values)
        session.add(row)
        session.flush()
        if kind is ReactionKind.LIKE:
            _adjust_like_points(session, author_id, uid, 1, target_id, target_type.value)
    except IntegrityError:
        raise
    except Exception as exc:
        raise _stage_error("insert", exc) from exc
    ctx.inserted.append((model.__tablename__, _orm_to_dict(row)))
    result["action"] = "added"
    return result


@rpc("toggle_reaction", conflict_retries=1)
def toggle_reaction(
    ctx: RpcContext,
    p_target_id: str,
    p_target_type: str,
    p_kind: str,
) -> dict[str, Any]:
    """Atomic no-reaction / like / dislike toggle for the caller.

    Returns ``{"action": "added" | "removed" | "updated", ...}`` with the
    target author and title for notification side effects.  Failures carry
    the failing stage (``lookup``, ``delete``, ``update``, ``insert``) in
    ``StoreError.hint``.
    """
    uid = ctx.require_user()
    try:
        target_type = TargetType(p_target_type)
        kind = ReactionKind(p_kind)
        if target_type not in _REACTION_TABLES:
            raise ValueError(p_target_type)
    except ValueError:
        raise StoreError(
            f"invalid reaction target or kind: {p_target_type}/{p_kind}",
            code=INVALID_TEXT_REPRESENTATION,
            hint="lookup",
        ) from None
    return _toggle_once(ctx, uid, target_type, p_target_id, kind)


# ---------------------------------------------------------------------------
# Admin views
# ---------------------------------------------------------------------------
@rpc("get_admin_dashboard_stats")
def get_admin_dashboard_stats(ctx: RpcContext) -> dict[str, int]:
    ctx.require_moderator()
    session = ctx.session
    today = datetime.combine(datetime.now(UTC).date(), time.min, tzinfo=UTC)

    def _count(model, *where) -> int:
        return session.scalar(select(func.count()).select_from(model).where(*where)) or 0

    return {
        "total_users": _count(Profile),
        "total_topics": _count(Topic),
        "total_comments": _count(Comment),
        "pending_reports": _count(UserReport, UserReport.status == ReportStatus.PENDING.value),
        "topics_today": _count(Topic, Topic.created_at >= today),
        "comments_today": _count(Comment, Comment.created_at >= today),
        "new_users_today": _count(AuthUser, AuthUser.created_at >= today),
    }


@rpc("get_recent_admin_actions")
def get_recent_admin_actions(ctx: RpcContext, p_limit: int = 20) -> list[dict[str, Any]]:
    ctx.require_moderator()
    rows = ctx.session.execute(
        select(AdminAction, Profile.username, Profile.avatar_url)
        .outerjoin(Profile, Profile.id == AdminAction.admin_id)
        .order_by(AdminAction.created_at.desc())
        .limit(p_limit)
    ).all()
    out = []
    for action, username, avatar in rows:
        item = _orm_to_dict(action)
        item["admin_username"] = username
        item["admin_avatar"] = avatar
        out.append(item)
    return out


@rpc("get_pending_reports")
def get_pending_reports(ctx: RpcContext) -> list[dict[str, Any]]:
    ctx.require_moderator()
    session = ctx.session
    reports = session.scalars(
        select(UserReport)
        .where(UserReport.status == ReportStatus.PENDING.value)
        .order_by(UserReport.created_at.desc())
    ).all()
    out = []
    for report in reports:
        item = _orm_to_dict(report)
        reporter = session.get(Profile, report.reporter_id)
        reported = session.get(Profile, report.reported_user_id) if report.reported_user_id else None
        topic = session.get(Topic, report.reported_topic_id) if report.reported_topic_id else None
        comment = (
            session.get(Comment, report.reported_comment_id) if report.reported_comment_id else None
        )
        item["reporter_username"] = reporter.username if reporter else None
        item["reported_username"] = reported.username if reported else None
        item["topic_title"] = topic.title if topic else None
        item["comment_content"] = comment.content if comment else None
        out.append(item)
    return out
