"""
saticiyiz.services.notification_format — Notification Presentation
===================================================================

Pure helpers that turn notifications into what the notification page
shows: date groups, headings, kind labels, relative times and deep links.

Grouping uses calendar days in the timezone of ``now`` for the
today/yesterday split (a notification from 23:50 yesterday is
"yesterday" at 00:10 today), then:

- ``thisWeek``  — on or after the start of the day seven days ago
- ``thisMonth`` — on or after the first day of the current month
- ``older``     — everything else
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, time, timedelta
from typing import TYPE_CHECKING

from saticiyiz.constants import (
    DEFAULT_TYPE_ICON,
    DEFAULT_TYPE_LABEL,
    NOTIFICATION_GROUP_TITLES,
    NOTIFICATION_TYPE_ICONS,
    NOTIFICATION_TYPE_LABELS,
    TURKISH_MONTHS_SHORT,
)

if TYPE_CHECKING:
    from saticiyiz.services.notification_service import Notification

GROUP_KEYS: tuple[str, ...] = tuple(NOTIFICATION_GROUP_TITLES)


def _local_now(now: datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC).astimezone()
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


def group_key(created_at: datetime, now: datetime | None = None) -> str:
    """Return the group key for one timestamp."""
    now = _local_now(now)
    tz = now.tzinfo
    ts = created_at.replace(tzinfo=UTC) if created_at.tzinfo is None else created_at
    ts = ts.astimezone(tz)

    today = now.date()
    day = ts.date()
    if day == today:
        return "today"
    if day == today - timedelta(days=1):
        return "yesterday"
    if ts >= datetime.combine(today - timedelta(days=7), time.min, tzinfo=tz):
        return "thisWeek"
    if ts >= datetime.combine(today.replace(day=1), time.min, tzinfo=tz):
        return "thisMonth"
    return "older"


def group_notifications(
    notifications: Iterable[Notification], now: datetime | None = None,
) -> dict[str, list[Notification]]:
    """Bucket *notifications* into every group key, preserving order."""
    now = _local_now(now)
    groups: dict[str, list[Notification]] = {key: [] for key in GROUP_KEYS}
    for n in notifications:
        groups[group_key(n.created_at, now)].append(n)
    return groups


def non_empty_groups(
    groups: dict[str, list[Notification]],
) -> list[tuple[str, str, list[Notification]]]:
    """``(key, heading, items)`` for the groups that have items, in display order."""
    return [(key, group_title(key), groups[key]) for key in GROUP_KEYS if groups.get(key)]


def group_title(key: str) -> str:
    return NOTIFICATION_GROUP_TITLES.get(key, key)


def type_label(kind: str) -> str:
    return NOTIFICATION_TYPE_LABELS.get(str(kind), DEFAULT_TYPE_LABEL)


def type_icon(kind: str) -> str:
    return NOTIFICATION_TYPE_ICONS.get(str(kind), DEFAULT_TYPE_ICON)


def format_date(ts: datetime) -> str:
    """Short Turkish date, e.g. ``5 Oca 2026``."""
    return f"{ts.day} {TURKISH_MONTHS_SHORT[ts.month - 1]} {ts.year}"


def format_notification_time(created_at: datetime, now: datetime | None = None) -> str:
    """Relative age for recent items, a short date after 30 days."""
    now = _local_now(now)
    ts = created_at.replace(tzinfo=UTC) if created_at.tzinfo is None else created_at
    seconds = (now - ts).total_seconds()
    minutes = int(seconds // 60)
    if minutes < 1:
        return "Az önce"
    if minutes < 60:
        return f"{minutes} dk önce"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} sa önce"
    days = hours // 24
    if days < 30:
        return f"{days} gün önce"
    return format_date(ts.astimezone(now.tzinfo))


def notification_link(notification: Notification) -> str | None:
    """Deep link built from the notification's data bag, if any."""
    data = notification.data or {}
    if data.get("topic_id"):
        link = f"/topic/{data['topic_id']}"
        if data.get("comment_id"):
            link += f"#comment-{data['comment_id']}"
        return link
    if data.get("content_type") == "topic" and data.get("content_id"):
        return f"/topic/{data['content_id']}"
    if data.get("follower_username"):
        return f"/profile/{data['follower_username']}"
    if data.get("link"):
        return str(data["link"])
    return None
