"""
saticiyiz.services.email_dispatcher — Notification Emails
==========================================================

System-initiated email bookkeeping.  Each run picks up to ``batch_size``
notifications with ``email_sent = false`` whose recipient has
``email_notifications`` on (no preference row means on), hands each to a
:class:`Mailer`, and flips ``email_sent`` / ``email_sent_at`` only after
the mailer accepted it.  ``read_at`` is never touched: a notification can
be emailed without being read and vice versa.

A failed send leaves the row unsent for the next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import Engine, or_, select, update

from saticiyiz.database.engine import get_session
from saticiyiz.database.models import Notification, NotificationPreferences, Profile

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


@dataclass(frozen=True, slots=True)
class OutgoingEmail:
    notification_id: str
    to: str
    subject: str
    body: str


class Mailer(Protocol):
    def send(self, email: OutgoingEmail) -> None:
        """Deliver *email*; raise on failure."""


class LoggingMailer:
    """Mailer that only logs, for development and tests."""

    def __init__(self) -> None:
        self.sent: list[OutgoingEmail] = []

    def send(self, email: OutgoingEmail) -> None:
        self.sent.append(email)
        logger.info("Email to %s: %s", email.to, email.subject)


def build_email(notification: Notification, to: str, site_name: str) -> OutgoingEmail:
    return OutgoingEmail(
        notification_id=notification.id,
        to=to,
        subject=f"{site_name}: {notification.title}",
        body=notification.message,
    )


def _pending(engine: Engine, batch_size: int) -> list[tuple[Notification, str]]:
    with get_session(engine) as session:
        rows = session.execute(
            select(Notification, Profile.email)
            .join(Profile, Profile.id == Notification.user_id)
            .outerjoin(
                NotificationPreferences,
                NotificationPreferences.user_id == Notification.user_id,
            )
            .where(
                Notification.email_sent.is_(False),
                or_(
                    NotificationPreferences.id.is_(None),
                    NotificationPreferences.email_notifications.is_(True),
                ),
            )
            .order_by(Notification.created_at)
            .limit(batch_size)
        ).all()
        return [(n, email) for n, email in rows]


def _mark_sent(engine: Engine, notification_id: str) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            update(Notification)
            .where(Notification.id == notification_id, Notification.email_sent.is_(False))
            .values(email_sent=True, email_sent_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


def dispatch_pending_emails(
    engine: Engine,
    mailer: Mailer,
    batch_size: int = DEFAULT_BATCH_SIZE,
    site_name: str = "Satıcıyız Forum",
) -> dict[str, int]:
    """Send one batch.  Returns ``{"sent": N, "failed": M}``."""
    sent = failed = 0
    for notification, address in _pending(engine, batch_size):
        if not address:
            continue
        try:
            mailer.send(build_email(notification, address, site_name))
        except Exception:
            failed += 1
            logger.exception("Email for notification %s failed", notification.id)
            continue
        if _mark_sent(engine, notification.id):
            sent += 1

    if sent or failed:
        logger.info("Email dispatch: %d sent, %d failed", sent, failed)
    return {"sent": sent, "failed": failed}
