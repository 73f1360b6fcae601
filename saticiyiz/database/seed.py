"""
saticiyiz.database.seed — Default Settings & Category Seeder
=============================================================

Baseline system settings and categories seeded on first startup so the
forum and the admin panel are immediately usable.

Idempotent — only inserts rows whose key (setting_key / slug) doesn't
already exist.  Admin edits are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from saticiyiz.database.models import Category, SystemSetting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogues
# ---------------------------------------------------------------------------
DEFAULT_SYSTEM_SETTINGS: dict[str, tuple[str, str, str, bool]] = {
    "site_name": ("Satıcıyız Forum", "string", "Site adı", True),
    "site_description": (
        "E-ticaret satıcıları için topluluk forumu", "string", "Site açıklaması", True,
    ),
    "max_topics_per_day": ("10", "integer", "Günlük maksimum başlık sayısı", False),
    "max_comments_per_day": ("100", "integer", "Günlük maksimum yorum sayısı", False),
    "auto_approve_topics": ("true", "boolean", "Başlıkları otomatik onayla", False),
    "auto_approve_comments": ("true", "boolean", "Yorumları otomatik onayla", False),
    "maintenance_mode": ("false", "boolean", "Bakım modu", True),
    "registration_enabled": ("true", "boolean", "Yeni kayıtlara izin ver", True),
    "guest_viewing_enabled": ("true", "boolean", "Misafirler içeriği görebilir", True),
}
"""Each entry maps ``setting_key`` → ``(value, type, description, is_public)``."""

DEFAULT_CATEGORIES: list[tuple[str, str, str, str]] = [
    ("Genel Sohbet", "genel-sohbet", "\U0001f4ac", "Satıcılar arası serbest konular"),
    ("Amazon", "amazon", "\U0001f6d2", "Amazon satıcı deneyimleri"),
    ("Trendyol", "trendyol", "\U0001f457", "Trendyol mağaza yönetimi"),
    ("Hepsiburada", "hepsiburada", "\U0001f4e6", "Hepsiburada satıcı paneli"),
    ("Kargo & Lojistik", "kargo-lojistik", "\U0001f69a", "Gönderim, iade ve depo"),
]
"""``(name, slug, icon, description)`` in display order."""


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> None:
    """Insert default system settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(SystemSetting.setting_key)).all())
        for key, (value, setting_type, desc, is_public) in DEFAULT_SYSTEM_SETTINGS.items():
            if key in existing:
                continue
            session.add(SystemSetting(
                setting_key=key,
                setting_value=value,
                setting_type=setting_type,
                description=desc,
                is_public=is_public,
            ))
            inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default system settings.", inserted)


def seed_default_categories(engine: Engine) -> None:
    """Insert default categories whose slug doesn't yet exist."""
    with Session(engine) as session:
        existing = set(session.scalars(select(Category.slug)).all())
        inserted = 0
        for order, (name, slug, icon, desc) in enumerate(DEFAULT_CATEGORIES):
            if slug in existing:
                continue
            session.add(Category(
                name=name, slug=slug, icon=icon, description=desc, sort_order=order,
            ))
            inserted += 1
        session.commit()

    if inserted:
        logger.info("Seeded %d default categories.", inserted)
