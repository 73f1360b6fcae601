"""
saticiyiz.engine.points — Points & Member-Level Calculation
============================================================

Pure calculation helpers for the forum's gamification table.
No DB I/O: callers pass a point total and get a level back.
"""

from __future__ import annotations

from saticiyiz.constants import (
    MEMBER_LEVELS,
    POINTS_COMMENT_CREATED,
    POINTS_LIKE_RECEIVED,
    POINTS_TOPIC_CREATED,
    MemberLevel,
)

POINTS_BY_TYPE: dict[str, int] = {
    "topic_created": POINTS_TOPIC_CREATED,
    "comment_created": POINTS_COMMENT_CREATED,
    "like_received": POINTS_LIKE_RECEIVED,
}


def points_for(points_type: str) -> int:
    """Return the base points for *points_type* (``KeyError`` if unknown)."""
    return POINTS_BY_TYPE[points_type]


def member_level(points: int) -> MemberLevel:
    """Return the highest level whose threshold *points* has reached."""
    current = MEMBER_LEVELS[0]
    for level in MEMBER_LEVELS:
        if points >= level.min_points:
            current = level
    return current


def next_level(points: int) -> MemberLevel | None:
    """Return the next level up, or ``None`` at the top tier."""
    for level in MEMBER_LEVELS:
        if points < level.min_points:
            return level
    return None


def progress_to_next(points: int) -> float:
    """Fraction (0.0–1.0) of the way from the current level to the next.

    Returns 1.0 at the top tier.
    """
    current = member_level(points)
    upcoming = next_level(points)
    if upcoming is None:
        return 1.0
    span = upcoming.min_points - current.min_points
    return max(0.0, min(1.0, (points - current.min_points) / span))


def format_points(points: int) -> str:
    """Compact display: ``1500`` → ``"1.5K"``, ``2_300_000`` → ``"2.3M"``."""
    if points >= 1_000_000:
        return f"{points / 1_000_000:.1f}M"
    if points >= 1_000:
        return f"{points / 1_000:.1f}K"
    return str(points)
