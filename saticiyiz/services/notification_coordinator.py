"""
saticiyiz.services.notification_coordinator — Notification State
=================================================================

Owns, for one signed-in client, the notification list (newest first), the
unread count, the per-kind summary, cached preferences and the last error,
and keeps them consistent with the store and the live insert feed.

State machine:

    signed out ──set_user(uid)──▶ refreshing ──first refresh done──▶ live
        ▲                                                            │
        └──────────────────────── set_user(None) / stop() ◀──────────┘

While *live* the coordinator holds exactly one realtime subscription
(``user_id=eq.<uid>``) and a reconciliation task that re-reads the
unread count every ``poll_interval`` seconds.  Both depend only on the
user id and the initialized flag, never on list contents.

Refreshes carry a monotonically increasing token; a response whose token
is older than the latest issued one is discarded, so the last *issued*
refresh wins.

Read transitions are store-first: counters change only after the store
confirms that a row actually went from unread to read.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from saticiyiz.services.notification_format import group_notifications, type_label
from saticiyiz.services.notification_service import (
    Notification,
    NotificationPreferences,
    NotificationSummary,
)

if TYPE_CHECKING:
    from saticiyiz.services.alerts import DesktopNotifier
    from saticiyiz.services.notification_service import NotificationService
    from saticiyiz.services.toast_service import ToastService
    from saticiyiz.store.realtime import RealtimeSubscription

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
DEFAULT_POLL_SECONDS = 120.0

ChangeListener = Callable[[], None]


class RefreshError(Exception):
    """A fatal sub-call of :meth:`NotificationCoordinator.refresh` failed."""


def _message(exc: BaseException, fallback: str) -> str:
    return str(exc) or fallback


class NotificationCoordinator:
    """Single source of truth for the current user's notifications."""

    def __init__(
        self,
        service: NotificationService,
        toasts: ToastService,
        alerts: DesktopNotifier,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        poll_interval: float = DEFAULT_POLL_SECONDS,
    ) -> None:
        self._service = service
        self._toasts = toasts
        self._alerts = alerts
        self._page_size = page_size
        self._poll_interval = poll_interval

        # Observable state
        self.notifications: list[Notification] = []
        self.unread_count: int = 0
        self.summary: NotificationSummary | None = None
        self.preferences: NotificationPreferences | None = None
        self.loading: bool = False
        self.error: str | None = None
        self.initialized: bool = False

        self._user_id: str | None = None
        self._request_seq = 0
        self._visible = True
        self._subscription: RealtimeSubscription | None = None
        self._poll_task: asyncio.Task | None = None
        # Cancelled reconciliation tasks not yet awaited
        self._retired_tasks: list[asyncio.Task] = []
        self._listeners: list[ChangeListener] = []

    # -------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------
    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_live(self) -> bool:
        return self._subscription is not None

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        """Call *listener* after every state change; returns a remover."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return _remove

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Notification state listener failed")

    def grouped(self, now: datetime | None = None) -> dict[str, list[Notification]]:
        return group_notifications(self.notifications, now)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def set_user(self, user_id: str | None) -> None:
        """Switch identity: tear down the old user's state, load the new one."""
        if user_id == self._user_id:
            return
        self._teardown_live()
        self._user_id = user_id
        # Invalidate in-flight refreshes issued for the previous identity.
        self._request_seq += 1
        self.notifications = []
        self.unread_count = 0
        self.summary = None
        self.preferences = None
        self.error = None
        self.loading = False
        self.initialized = False
        self._changed()
        if user_id is not None:
            await self.refresh()

    async def start(self, user_id: str | None) -> None:
        await self.set_user(user_id)

    async def stop(self) -> None:
        """Tear down the subscription and the reconciliation task."""
        self._teardown_live()
        retired, self._retired_tasks = self._retired_tasks, []
        if retired:
            await asyncio.gather(*retired, return_exceptions=True)

    def _ensure_live(self) -> None:
        if self._user_id is None or not self.initialized:
            return
        if self._subscription is None:
            self._subscription = self._service.subscribe(self._user_id, self._on_push)
            logger.info("Notification feed opened for %s", self._user_id)
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    def _teardown_live(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
            logger.info("Notification feed closed for %s", self._user_id)
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._retired_tasks = [t for t in self._retired_tasks if not t.done()]
            self._retired_tasks.append(self._poll_task)
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            await self.reconcile_unread()

    # -------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------
    async def refresh(self) -> None:
        """Reload list, unread count, summary and preferences.

        List and count failures are fatal (``error`` set, prior list kept);
        summary and preference failures only log.
        """
        user_id = self._user_id
        if user_id is None:
            return
        self._request_seq += 1
        token = self._request_seq
        self.loading = True
        self.error = None
        self._changed()

        try:
            items, count, summary, prefs = await self._load()
        except RefreshError as exc:
            if token != self._request_seq:
                logger.debug("Discarding stale failed refresh %d", token)
                return
            self.error = str(exc)
            logger.error("Notification refresh failed: %s", exc)
        else:
            if token != self._request_seq:
                logger.debug("Discarding stale refresh %d", token)
                return
            self.notifications = items
            self.unread_count = count
            self.summary = summary
            self.preferences = prefs
        finally:
            if token == self._request_seq:
                self.loading = False

        self.initialized = True
        self._ensure_live()
        self._changed()

    async def _load(
        self,
    ) -> tuple[list[Notification], int, NotificationSummary | None, NotificationPreferences]:
        try:
            items = await self._service.get_notifications(self._page_size)
        except Exception as exc:
            raise RefreshError(f"Bildirimler alınamadı: {_message(exc, 'bilinmeyen hata')}") from exc
        try:
            count = await self._service.get_unread_count()
        except Exception as exc:
            raise RefreshError(
                f"Okunmamış sayısı alınamadı: {_message(exc, 'bilinmeyen hata')}"
            ) from exc

        summary: NotificationSummary | None
        try:
            summary = await self._service.get_notification_summary()
        except Exception:
            logger.warning("Notification summary unavailable", exc_info=True)
            summary = None

        try:
            prefs = await self._service.get_preferences()
        except Exception:
            logger.warning("Notification preferences unavailable; using defaults", exc_info=True)
            prefs = self.preferences or NotificationPreferences(user_id=self._user_id or "")
        return items, count, summary, prefs

    def clear_error(self) -> None:
        self.error = None
        self._changed()

    async def retry(self) -> None:
        self.clear_error()
        await self.refresh()

    async def reconcile_unread(self) -> None:
        """Re-read only the unread count, to heal from missed pushes."""
        if self._user_id is None:
            return
        user_id = self._user_id
        try:
            count = await self._service.get_unread_count()
        except Exception:
            logger.warning("Unread count reconciliation failed", exc_info=True)
            return
        if user_id != self._user_id:
            return
        if count != self.unread_count:
            logger.info("Unread count drifted %d → %d", self.unread_count, count)
            self.unread_count = count
            self._changed()

    async def on_visibility_change(self, visible: bool) -> None:
        """Refresh when the client comes back from hidden to visible."""
        was_visible = self._visible
        self._visible = visible
        if visible and not was_visible and self._user_id is not None and self.initialized:
            await self.refresh()

    # -------------------------------------------------------------------
    # Read transitions
    # -------------------------------------------------------------------
    async def mark_as_read(self, notification_id: str) -> bool:
        """Persist one read transition, then apply it locally.

        Returns False (and sets ``error``) when the store call fails.
        """
        try:
            changed = await self._service.mark_as_read(notification_id)
        except Exception as exc:
            self._fail(exc, "Bildirim işaretlenirken hata oluştu")
            return False

        now = datetime.now(UTC)
        kind: str | None = None
        stale_local = False
        for i, n in enumerate(self.notifications):
            if n.id == notification_id:
                kind = n.type.value
                stale_local = n.read_at is None
                self.notifications[i] = n.marked_read(now)
                break

        if changed:
            self._decrement_unread(kind)
        elif stale_local:
            # Already read elsewhere; the local counters may be off.
            await self.reconcile_unread()
        self._changed()
        return True

    def _decrement_unread(self, kind: str | None) -> None:
        self.unread_count = max(0, self.unread_count - 1)
        if self.summary is None:
            return
        by_kind = dict(self.summary.unread_by_kind)
        if kind is not None:
            by_kind[kind] = max(0, by_kind.get(kind, 0) - 1)
        self.summary = self.summary.model_copy(update={
            "unread_count": max(0, self.summary.unread_count - 1),
            "unread_by_kind": by_kind,
        })

    async def mark_all_as_read(self) -> int | None:
        """Persist the bulk transition; returns rows changed, None on failure."""
        try:
            count = await self._service.mark_all_as_read()
        except Exception as exc:
            self._fail(exc, "Bildirimler işaretlenirken hata oluştu")
            return None

        now = datetime.now(UTC)
        self.notifications = [n.marked_read(now) for n in self.notifications]
        self.unread_count = 0
        if self.summary is not None:
            self.summary = self.summary.model_copy(update={
                "unread_count": 0,
                "unread_by_kind": {k: 0 for k in self.summary.unread_by_kind},
            })
        if count > 0:
            self._toasts.show_success("Başarılı", f"{count} bildirim okundu olarak işaretlendi")
        self._changed()
        return count

    def _fail(self, exc: Exception, fallback: str) -> None:
        message = _message(exc, fallback)
        logger.error("%s: %s", fallback, exc)
        self.error = message
        self._toasts.show_error("Hata", message)
        self._changed()

    # -------------------------------------------------------------------
    # Preferences & permission
    # -------------------------------------------------------------------
    async def update_preferences(self, **flags: bool) -> bool:
        try:
            self.preferences = await self._service.update_preferences(**flags)
        except Exception as exc:
            self._fail(exc, "Bildirim tercihleri güncellenemedi")
            return False
        self._toasts.show_success("Başarılı", "Bildirim tercihleri güncellendi")
        self._changed()
        return True

    async def request_notification_permission(self) -> bool:
        try:
            granted = await self._alerts.request_permission()
        except Exception:
            logger.exception("Desktop alert permission request failed")
            self._toasts.show_error("Hata", "Bildirim izni alınamadı")
            return False
        if granted:
            self._toasts.show_success("Bildirimler", "Tarayıcı bildirimleri etkinleştirildi")
        else:
            self._toasts.show_warning("Bildirimler", "Tarayıcı bildirimleri reddedildi")
        return granted

    # -------------------------------------------------------------------
    # Push path
    # -------------------------------------------------------------------
    async def _on_push(self, notification: Notification) -> None:
        if notification.user_id != self._user_id:
            return
        self.notifications.insert(0, notification)
        if notification.read_at is None:
            self.unread_count += 1
        if self.summary is not None:
            self.summary = self._bump_summary(self.summary, notification)
        self._deliver(notification)
        self._changed()

    @staticmethod
    def _bump_summary(summary: NotificationSummary, n: Notification) -> NotificationSummary:
        kind = n.type.value
        update: dict[str, Any] = {
            "total_notifications": summary.total_notifications + 1,
            f"{kind}_count": summary.kind_count(kind) + 1,
        }
        if summary.latest_notification is None or n.created_at > summary.latest_notification:
            update["latest_notification"] = n.created_at
        if n.read_at is None:
            by_kind = dict(summary.unread_by_kind)
            by_kind[kind] = by_kind.get(kind, 0) + 1
            update["unread_count"] = summary.unread_count + 1
            update["unread_by_kind"] = by_kind
        return summary.model_copy(update=update)

    def _deliver(self, n: Notification) -> None:
        """Delivery-time gate: toast and desktop alert per cached preferences."""
        prefs = self.preferences or NotificationPreferences(user_id=n.user_id)
        kind = n.type.value
        if not prefs.allows_kind(kind):
            logger.debug("Alert for %s notification %s muted by preferences", kind, n.id)
            return
        self._toasts.show_info(type_label(kind), n.message)
        if prefs.desktop_alerts_enabled:
            self._alerts.show(n.title, n.message, tag=n.id, data=dict(n.data))


