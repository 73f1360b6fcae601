"""
tests/test_notification_coordinator.py — Notification State Machine Tests
==========================================================================

Drives :class:`NotificationCoordinator` against an in-memory fake service
for refresh ordering, read transitions, push handling and the
delivery-time gate, then against the real store for the end-to-end path.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from saticiyiz.services.alerts import PERMISSION_GRANTED, DesktopNotifier
from saticiyiz.services.notification_coordinator import NotificationCoordinator
from saticiyiz.services.notification_service import (
    Notification,
    NotificationPreferences,
    NotificationService,
    NotificationSummary,
)
from saticiyiz.services.toast_service import ToastService
from saticiyiz.store.errors import StoreError


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


NOW = datetime(2026, 3, 20, 15, 0, tzinfo=UTC)


def _n(nid: str, *, kind: str = "comment", read: bool = False, user: str = "u1",
       minutes_ago: int = 0) -> Notification:
    return Notification(
        id=nid,
        user_id=user,
        type=kind,
        title=f"Başlık {nid}",
        message=f"Mesaj {nid}",
        data={"topic_id": "t1"},
        read_at=NOW if read else None,
        created_at=NOW - timedelta(minutes=minutes_ago),
    )


# ---------------------------------------------------------------------------
# Fake service
# ---------------------------------------------------------------------------
class FakeNotificationService:
    """Scriptable stand-in for NotificationService."""

    def __init__(self, items: list[Notification] | None = None) -> None:
        self.items = list(items or [])
        self.prefs: NotificationPreferences | None = None
        self.list_calls = 0
        self.pages: dict[int, list[Notification]] = {}
        self.gates: dict[int, asyncio.Event] = {}
        self.list_error: Exception | None = None
        self.count_error: Exception | None = None
        self.summary_error: Exception | None = None
        self.mark_error: Exception | None = None
        self.unread_override: int | None = None
        self.read_ids: set[str] = set()
        self.subscriptions: list[MagicMock] = []
        self.push = None

    async def get_notifications(self, limit: int = 20, offset: int = 0):
        self.list_calls += 1
        call = self.list_calls
        gate = self.gates.get(call)
        if gate is not None:
            await gate.wait()
        if self.list_error is not None:
            raise self.list_error
        return list(self.pages.get(call, self.items))[:limit]

    async def get_unread_count(self) -> int:
        if self.count_error is not None:
            raise self.count_error
        if self.unread_override is not None:
            return self.unread_override
        return sum(1 for n in self.items if n.read_at is None and n.id not in self.read_ids)

    async def get_notification_summary(self) -> NotificationSummary:
        if self.summary_error is not None:
            raise self.summary_error
        return NotificationSummary.fold("u1", self.items)

    async def get_preferences(self) -> NotificationPreferences:
        return self.prefs or NotificationPreferences(user_id="u1")

    async def update_preferences(self, **flags: bool) -> NotificationPreferences:
        self.prefs = (self.prefs or NotificationPreferences(user_id="u1")).model_copy(update=flags)
        return self.prefs

    async def mark_as_read(self, notification_id: str) -> bool:
        if self.mark_error is not None:
            raise self.mark_error
        target = next((n for n in self.items if n.id == notification_id), None)
        if target is None or target.read_at is not None or notification_id in self.read_ids:
            return False
        self.read_ids.add(notification_id)
        return True

    async def mark_all_as_read(self) -> int:
        if self.mark_error is not None:
            raise self.mark_error
        unread = [n.id for n in self.items if n.read_at is None and n.id not in self.read_ids]
        self.read_ids.update(unread)
        return len(unread)

    def subscribe(self, user_id: str, callback):
        handle = MagicMock()
        handle.user_id = user_id
        self.subscriptions.append(handle)
        self.push = callback
        return handle


def _coordinator(service, *, permission: str = PERMISSION_GRANTED):
    toasts = ToastService()
    alerts = DesktopNotifier(permission=permission)
    coord = NotificationCoordinator(service, toasts, alerts, page_size=20, poll_interval=3600)
    return coord, toasts, alerts


# ===========================================================================
# Refresh
# ===========================================================================
class TestRefresh:

    def test_refresh_loads_list_count_summary(self):
        async def _inner():
            svc = FakeNotificationService([_n("a"), _n("b", read=True), _n("c", kind="like")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            try:
                assert [n.id for n in coord.notifications] == ["a", "b", "c"]
                assert coord.unread_count == 2
                assert coord.summary.total_notifications == 3
                assert coord.summary.unread_by_kind == {"comment": 1, "like": 1}
                assert coord.loading is False
                assert coord.error is None
                assert coord.initialized is True
            finally:
                await coord.stop()
        run_async(_inner())

    def test_unread_count_matches_fetched_page(self):
        async def _inner():
            items = [_n(str(i), read=i % 3 == 0) for i in range(9)]
            svc = FakeNotificationService(items)
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            try:
                assert coord.unread_count == sum(1 for n in coord.notifications if n.read_at is None)
            finally:
                await coord.stop()
        run_async(_inner())

    def test_list_failure_keeps_prior_list_and_clears_loading(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.list_error = StoreError("permission denied", code="42501")
            await coord.refresh()
            try:
                assert [n.id for n in coord.notifications] == ["a"]
                assert coord.loading is False
                assert coord.error.startswith("Bildirimler alınamadı")
            finally:
                await coord.stop()
        run_async(_inner())

    def test_count_failure_is_fatal(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            svc.count_error = StoreError("timeout")
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            try:
                assert coord.notifications == []
                assert coord.error == "Okunmamış sayısı alınamadı: timeout"
                assert coord.loading is False
            finally:
                await coord.stop()
        run_async(_inner())

    def test_summary_failure_is_not_fatal(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            svc.summary_error = StoreError("function missing", code="PGRST202")
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            try:
                assert coord.error is None
                assert coord.summary is None
                assert coord.unread_count == 1
            finally:
                await coord.stop()
        run_async(_inner())

    def test_last_issued_refresh_wins(self):
        async def _inner():
            svc = FakeNotificationService([_n("initial")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")  # list call 1

            svc.pages = {2: [_n("stale")], 3: [_n("fresh")]}
            gate = asyncio.Event()
            svc.gates[2] = gate
            slow = asyncio.get_running_loop().create_task(coord.refresh())
            await asyncio.sleep(0)
            await coord.refresh()
            assert [n.id for n in coord.notifications] == ["fresh"]

            gate.set()
            await slow
            try:
                assert [n.id for n in coord.notifications] == ["fresh"]
                assert coord.loading is False
            finally:
                await coord.stop()
        run_async(_inner())

    def test_retry_clears_error_and_refreshes(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            svc.list_error = StoreError("down")
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            assert coord.error is not None

            svc.list_error = None
            await coord.retry()
            try:
                assert coord.error is None
                assert [n.id for n in coord.notifications] == ["a"]
            finally:
                await coord.stop()
        run_async(_inner())

    def test_visibility_regain_refreshes(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            calls = svc.list_calls
            await coord.on_visibility_change(False)
            assert svc.list_calls == calls
            await coord.on_visibility_change(True)
            try:
                assert svc.list_calls == calls + 1
            finally:
                await coord.stop()
        run_async(_inner())

    def test_reconcile_heals_drifted_count(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.unread_override = 4
            await coord.reconcile_unread()
            try:
                assert coord.unread_count == 4
            finally:
                await coord.stop()
        run_async(_inner())

    def test_reconcile_failure_keeps_count(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.count_error = StoreError("down")
            await coord.reconcile_unread()
            try:
                assert coord.unread_count == 1
                assert coord.error is None
            finally:
                await coord.stop()
        run_async(_inner())


# ===========================================================================
# Read transitions
# ===========================================================================
class TestMarkAsRead:

    def test_mark_as_read_updates_after_store_confirms(self):
        async def _inner():
            svc = FakeNotificationService([_n("a"), _n("b", kind="like")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            assert await coord.mark_as_read("b") is True
            try:
                b = next(n for n in coord.notifications if n.id == "b")
                assert b.read_at is not None
                assert coord.unread_count == 1
                assert coord.summary.unread_by_kind["like"] == 0
                assert coord.summary.unread_count == 1
            finally:
                await coord.stop()
        run_async(_inner())

    def test_second_mark_as_read_keeps_first_read_time(self):
        async def _inner():
            svc = FakeNotificationService([_n("a"), _n("b")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            await coord.mark_as_read("a")
            first = coord.notifications[0].read_at
            await asyncio.sleep(0.01)
            await coord.mark_as_read("a")
            try:
                assert coord.notifications[0].read_at == first
                assert coord.unread_count == 1
            finally:
                await coord.stop()
        run_async(_inner())

    def test_failed_mark_leaves_state_untouched(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, toasts, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.mark_error = StoreError("network down")
            assert await coord.mark_as_read("a") is False
            try:
                assert coord.notifications[0].read_at is None
                assert coord.unread_count == 1
                assert coord.error == "network down"
                assert toasts.of_kind("error")[-1].title == "Hata"
            finally:
                await coord.stop()
        run_async(_inner())

    def test_count_never_negative(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            coord.unread_count = 0  # drifted low
            await coord.mark_as_read("a")
            await coord.mark_all_as_read()
            try:
                assert coord.unread_count == 0
            finally:
                await coord.stop()
        run_async(_inner())

    def test_read_elsewhere_reconciles(self):
        async def _inner():
            svc = FakeNotificationService([_n("a"), _n("b")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.read_ids.add("a")  # another tab read it
            assert await coord.mark_as_read("a") is True
            try:
                assert coord.notifications[0].read_at is not None
                assert coord.unread_count == 1
            finally:
                await coord.stop()
        run_async(_inner())


class TestMarkAllAsRead:

    def test_mark_all_returns_changed_count(self):
        async def _inner():
            svc = FakeNotificationService([_n("a"), _n("b", read=True), _n("c")])
            coord, toasts, _ = _coordinator(svc)
            await coord.set_user("u1")
            count = await coord.mark_all_as_read()
            try:
                assert count == 2
                assert all(n.read_at is not None for n in coord.notifications)
                assert coord.unread_count == 0
                assert coord.summary.unread_count == 0
                assert toasts.of_kind("success")[-1].message == "2 bildirim okundu olarak işaretlendi"
            finally:
                await coord.stop()
        run_async(_inner())

    def test_existing_read_time_preserved(self):
        async def _inner():
            svc = FakeNotificationService([_n("a", read=True), _n("b")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            await coord.mark_all_as_read()
            try:
                assert coord.notifications[0].read_at == NOW
            finally:
                await coord.stop()
        run_async(_inner())

    def test_zero_is_not_an_error(self):
        async def _inner():
            svc = FakeNotificationService([_n("a", read=True)])
            coord, toasts, _ = _coordinator(svc)
            await coord.set_user("u1")
            count = await coord.mark_all_as_read()
            try:
                assert count == 0
                assert coord.error is None
                assert toasts.of_kind("success") == []
            finally:
                await coord.stop()
        run_async(_inner())

    def test_failure_returns_none(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            svc.mark_error = StoreError("")
            try:
                assert await coord.mark_all_as_read() is None
                assert coord.unread_count == 1
                assert coord.error == "Bildirimler işaretlenirken hata oluştu"
            finally:
                await coord.stop()
        run_async(_inner())


# ===========================================================================
# Live feed
# ===========================================================================
class TestLiveFeed:

    def test_single_subscription_after_first_refresh(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            assert coord.is_live is False
            await coord.set_user("u1")
            await coord.refresh()
            await coord.mark_all_as_read()
            try:
                assert len(svc.subscriptions) == 1
                assert svc.subscriptions[0].user_id == "u1"
                assert coord.is_live is True
            finally:
                await coord.stop()
        run_async(_inner())

    def test_sign_out_tears_down_and_clears(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord, _, _ = _coordinator(svc)
            await coord.set_user("u1")
            await coord.set_user(None)
            assert svc.subscriptions[0].unsubscribe.call_count == 1
            assert coord.is_live is False
            assert coord.notifications == []
            assert coord.unread_count == 0
            assert coord.initialized is False
            await coord.stop()
        run_async(_inner())

    def test_periodic_reconciliation_heals_count(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord = NotificationCoordinator(
                svc, ToastService(), DesktopNotifier(), poll_interval=0.01,
            )
            await coord.set_user("u1")
            assert coord.unread_count == 1
            svc.unread_override = 7
            await asyncio.sleep(0.05)
            assert coord.unread_count == 7

            await coord.stop()
            svc.unread_override = 2
            await asyncio.sleep(0.05)
            assert coord.unread_count == 7
        run_async(_inner())

    def test_reconciliation_follows_user_switch(self):
        async def _inner():
            svc = FakeNotificationService([_n("a")])
            coord = NotificationCoordinator(
                svc, ToastService(), DesktopNotifier(), poll_interval=0.01,
            )
            await coord.set_user("u1")
            await coord.set_user("u2")
            assert coord.user_id == "u2"
            svc.unread_override = 7
            await asyncio.sleep(0.05)
            try:
                assert coord.unread_count == 7
            finally:
                await coord.stop()
        run_async(_inner())

    def test_push_prepends_and_counts(self):
        async def _inner():
            svc = FakeNotificationService([_n("a", minutes_ago=5)])
            coord, toasts, alerts = _coordinator(svc)
            await coord.set_user("u1")
            await svc.push(_n("new", kind="like"))
            try:
                assert [n.id for n in coord.notifications] == ["new", "a"]
                assert coord.unread_count == 2
                assert coord.summary.like_count == 1
                assert coord.summary.unread_by_kind["like"] == 1
                assert toasts.of_kind("info")[-1].message == "Mesaj new"
                assert alerts.alerts[-1].tag == "new"
            finally:
                await coord.stop()
        run_async(_inner())

    def test_push_for_other_user_ignored(self):
        async def _inner():
            svc = FakeNotificationService([])
            coord, toasts, _ = _coordinator(svc)
            await coord.set_user("u1")
            await svc.push(_n("x", user="u2"))
            try:
                assert coord.notifications == []
                assert toasts.toasts == []
            finally:
                await coord.stop()
        run_async(_inner())

    def test_listener_sees_changes(self):
        async def _inner():
            svc = FakeNotificationService([])
            coord, _, _ = _coordinator(svc)
            seen = []
            remove = coord.add_listener(lambda: seen.append(coord.unread_count))
            await coord.set_user("u1")
            await svc.push(_n("x"))
            remove()
            await svc.push(_n("y"))
            try:
                assert seen[-1] == 1
            finally:
                await coord.stop()
        run_async(_inner())


# ===========================================================================
# Delivery-time gate
# ===========================================================================
class TestDeliveryGate:

    @pytest.mark.parametrize(
        "flags, expect_toast, expect_alert",
        [
            ({}, True, True),
            ({"like_notifications": False}, False, False),
            ({"browser_notifications": False}, True, False),
            ({"desktop_notifications": False}, True, False),
            ({"comment_notifications": False}, True, True),
        ],
    )
    def test_pushed_like_gated_by_cached_preferences(self, flags, expect_toast, expect_alert):
        async def _inner():
            svc = FakeNotificationService([])
            svc.prefs = NotificationPreferences(user_id="u1", **flags)
            coord, toasts, alerts = _coordinator(svc)
            await coord.set_user("u1")
            await svc.push(_n("l1", kind="like"))
            try:
                # The row is always kept; only the alerting is gated
                assert coord.notifications[0].id == "l1"
                assert bool(toasts.of_kind("info")) is expect_toast
                assert bool(alerts.alerts) is expect_alert
            finally:
                await coord.stop()
        run_async(_inner())

    def test_no_desktop_alert_without_permission(self):
        async def _inner():
            svc = FakeNotificationService([])
            coord, toasts, alerts = _coordinator(svc, permission="default")
            await coord.set_user("u1")
            await svc.push(_n("l1", kind="like"))
            try:
                assert toasts.of_kind("info")
                assert alerts.alerts == []
            finally:
                await coord.stop()
        run_async(_inner())

    def test_update_preferences_refreshes_cache(self):
        async def _inner():
            svc = FakeNotificationService([])
            coord, toasts, alerts = _coordinator(svc)
            await coord.set_user("u1")
            assert await coord.update_preferences(like_notifications=False) is True
            await svc.push(_n("l1", kind="like"))
            try:
                assert coord.preferences.like_notifications is False
                assert toasts.of_kind("info") == []
            finally:
                await coord.stop()
        run_async(_inner())


class TestPermissionRequest:

    def test_granted_prompt(self):
        async def _inner():
            async def _yes():
                return True
            toasts = ToastService()
            alerts = DesktopNotifier(_yes)
            coord = NotificationCoordinator(FakeNotificationService(), toasts, alerts)
            assert await coord.request_notification_permission() is True
            assert alerts.permission == PERMISSION_GRANTED
            assert toasts.toasts[-1].message == "Tarayıcı bildirimleri etkinleştirildi"
        run_async(_inner())

    def test_denied_prompt(self):
        async def _inner():
            async def _no():
                return False
            toasts = ToastService()
            coord = NotificationCoordinator(FakeNotificationService(), toasts, DesktopNotifier(_no))
            assert await coord.request_notification_permission() is False
            assert toasts.toasts[-1].kind == "warning"
        run_async(_inner())


# ===========================================================================
# Against the real store
# ===========================================================================
class TestCoordinatorWithStore:

    def test_pushed_insert_reaches_coordinator(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            await forum.notification(uid, kind="system", message="Hoş geldiniz")
            coord, toasts, _ = _coordinator(NotificationService(client))
            await coord.set_user(uid)
            assert coord.unread_count == 1

            await forum.notification(uid, kind="system", message="Yeni duyuru")
            await forum.hub.wait_idle()
            try:
                assert coord.notifications[0].message == "Yeni duyuru"
                assert coord.unread_count == 2
                assert toasts.of_kind("info")[-1].message == "Yeni duyuru"
            finally:
                await coord.stop()
        run_async(_inner())

    def test_other_users_inserts_filtered_server_side(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            _, other = await forum.member("mehmet")
            coord, _, _ = _coordinator(NotificationService(client))
            await coord.set_user(uid)
            await forum.notification(other, message="Başkasına")
            await forum.hub.wait_idle()
            try:
                assert coord.notifications == []
                assert coord.unread_count == 0
            finally:
                await coord.stop()
        run_async(_inner())

    def test_store_rejection_surfaces_error(self, forum):
        async def _inner():
            client = forum.client()  # never signed in
            coord, _, _ = _coordinator(NotificationService(client))
            await coord.set_user("ghost")
            try:
                assert coord.loading is False
                assert coord.error.startswith("Bildirimler alınamadı")
                assert coord.notifications == []
            finally:
                await coord.stop()
        run_async(_inner())

    def test_mark_flow_against_store(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            first = await forum.notification(uid, kind="comment")
            await forum.notification(uid, kind="like")
            await forum.notification(uid, kind="like", read_at=datetime.now(UTC))
            coord, _, _ = _coordinator(NotificationService(client))
            await coord.set_user(uid)
            assert coord.unread_count == 2

            await coord.mark_as_read(first["id"])
            assert coord.unread_count == 1
            assert await coord.mark_all_as_read() == 1
            await coord.refresh()
            try:
                assert coord.unread_count == 0
                assert all(n.read_at is not None for n in coord.notifications)
            finally:
                await coord.stop()
        run_async(_inner())
