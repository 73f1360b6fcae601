"""
saticiyiz.constants — Shared Constants & Labels
================================================

Single source of truth for the gamification table (points per action,
member-level thresholds) and the Turkish presentation strings used by
notifications and toasts.  Import from here instead of duplicating in
services.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Points awarded per action
# ---------------------------------------------------------------------------
POINTS_TOPIC_CREATED = 100
POINTS_COMMENT_CREATED = 30
POINTS_LIKE_RECEIVED = 10


# ---------------------------------------------------------------------------
# Member levels (ascending by threshold)
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class MemberLevel:
    key: str
    name: str
    icon: str
    min_points: int
    color: str


MEMBER_LEVELS: tuple[MemberLevel, ...] = (
    MemberLevel("bronze", "Bronz Üye", "\U0001f949", 0, "#CD7F32"),       # 🥉
    MemberLevel("silver", "Gümüş Üye", "\U0001f948", 1000, "#C0C0C0"),    # 🥈
    MemberLevel("gold", "Altın Üye", "\U0001f947", 2000, "#FFD700"),      # 🥇
    MemberLevel("emerald", "Zümrüt Üye", "\U0001f48e", 3000, "#50C878"),  # 💎
    MemberLevel("diamond", "Elmas Üye", "\U0001f4a0", 4000, "#B9F2FF"),   # 💠
)


# ---------------------------------------------------------------------------
# Notification presentation
# ---------------------------------------------------------------------------
NOTIFICATION_KINDS: tuple[str, ...] = ("comment", "like", "mention", "follow", "system")

NOTIFICATION_TYPE_LABELS: dict[str, str] = {
    "comment": "\U0001f4ac Yorum",     # 💬
    "like": "❤️ Beğeni",     # ❤️
    "mention": "\U0001f464 Etiketleme",  # 👤
    "follow": "\U0001f465 Takip",      # 👥
    "system": "\U0001f514 Sistem",     # 🔔
}
DEFAULT_TYPE_LABEL = "\U0001f4e2 Bildirim"  # 📢

NOTIFICATION_TYPE_ICONS: dict[str, str] = {
    "comment": "\U0001f4ac",
    "like": "❤️",
    "mention": "\U0001f464",
    "follow": "\U0001f465",
    "system": "\U0001f514",
}
DEFAULT_TYPE_ICON = "\U0001f4e2"

# Group key → heading, in display order
NOTIFICATION_GROUP_TITLES: dict[str, str] = {
    "today": "Bugün",
    "yesterday": "Dün",
    "thisWeek": "Bu Hafta",
    "thisMonth": "Bu Ay",
    "older": "Daha Eski",
}

TURKISH_MONTHS_SHORT: tuple[str, ...] = (
    "Oca", "Şub", "Mar", "Nis", "May", "Haz",
    "Tem", "Ağu", "Eyl", "Eki", "Kas", "Ara",
)


# ---------------------------------------------------------------------------
# Validation patterns
# ---------------------------------------------------------------------------
USERNAME_PATTERN = r"^[a-zA-Z0-9_]{3,20}$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
MENTION_PATTERN = r"(?<![\w@])@([a-zA-Z0-9_]{3,20})"
MIN_PASSWORD_LENGTH = 6
