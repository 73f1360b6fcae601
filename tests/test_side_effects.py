"""
tests/test_side_effects.py — Best-Effort Queue, Toasts & Desktop Alerts
========================================================================
"""

from __future__ import annotations

import asyncio

import pytest

from saticiyiz.services.alerts import (
    PERMISSION_DENIED,
    PERMISSION_GRANTED,
    DesktopNotifier,
)
from saticiyiz.services.side_effects import BestEffortQueue
from saticiyiz.services.toast_service import ToastService


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


# ===========================================================================
# BestEffortQueue
# ===========================================================================
class TestBestEffortQueue:

    def test_failures_are_counted_not_raised(self):
        async def _inner():
            queue = BestEffortQueue()

            async def _ok():
                return 1

            async def _boom():
                raise RuntimeError("notification insert failed")

            queue.submit(_ok(), label="ok")
            queue.submit(_boom(), label="boom")
            await queue.drain()
            assert queue.completed == 1
            assert queue.failures == 1
            assert queue.pending == 0
        run_async(_inner())

    def test_drain_waits_for_jobs_submitted_by_jobs(self):
        async def _inner():
            queue = BestEffortQueue()
            done = []

            async def _child():
                await asyncio.sleep(0.01)
                done.append("child")

            async def _parent():
                queue.submit(_child(), label="child")
                done.append("parent")

            queue.submit(_parent(), label="parent")
            await queue.drain()
            assert done == ["parent", "child"]
        run_async(_inner())

    def test_closed_queue_drops_jobs(self):
        async def _inner():
            queue = BestEffortQueue()
            await queue.close()

            async def _job():
                raise AssertionError("must not run")

            assert queue.submit(_job(), label="late") is None
            assert queue.failures == 0
        run_async(_inner())

    def test_close_cancels_stragglers(self):
        async def _inner():
            queue = BestEffortQueue()

            async def _slow():
                await asyncio.sleep(10)

            task = queue.submit(_slow(), label="slow")
            await queue.close(timeout=0.01)
            assert task.cancelled()
            assert queue.pending == 0
        run_async(_inner())


# ===========================================================================
# ToastService
# ===========================================================================
class TestToasts:

    def test_kinds_and_sinks(self):
        toasts = ToastService()
        seen = []
        toasts.add_sink(seen.append)
        toasts.show_success("Başarılı", "Kaydedildi")
        toasts.show_error("Hata")
        assert [t.kind for t in toasts.toasts] == ["success", "error"]
        assert seen[0].text == "Başarılı: Kaydedildi"
        assert seen[1].text == "Hata"
        assert toasts.of_kind("error")[0].to_dict()["kind"] == "error"

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            ToastService().show("fatal", "x")

    def test_bounded_history(self):
        toasts = ToastService(capacity=3)
        for i in range(5):
            toasts.show_info(str(i))
        assert [t.title for t in toasts.toasts] == ["2", "3", "4"]
        toasts.clear()
        assert toasts.toasts == []

    def test_failing_sink_does_not_stop_others(self):
        toasts = ToastService()
        seen = []

        def _bad(toast):
            raise RuntimeError("ui gone")

        toasts.add_sink(_bad)
        toasts.add_sink(seen.append)
        toasts.show_warning("Uyarı")
        assert len(seen) == 1


# ===========================================================================
# DesktopNotifier
# ===========================================================================
class TestDesktopNotifier:

    def test_nothing_shown_before_grant(self):
        alerts = DesktopNotifier()
        assert alerts.show("Başlık", "Gövde") is None
        assert alerts.alerts == []

    def test_prompt_grant_is_remembered(self):
        async def _inner():
            asked = []

            async def _prompt():
                asked.append(1)
                return True

            alerts = DesktopNotifier(_prompt)
            assert await alerts.request_permission() is True
            assert await alerts.request_permission() is True
            assert asked == [1]
            assert alerts.permission == PERMISSION_GRANTED
            alert = alerts.show("Başlık", "Gövde", tag="n1", data={"topic_id": "t1"})
            assert alert.tag == "n1"
            assert alerts.alerts == [alert]
        run_async(_inner())

    def test_denied_is_final(self):
        async def _inner():
            async def _prompt():
                raise AssertionError("must not ask again")

            alerts = DesktopNotifier(_prompt, permission=PERMISSION_DENIED)
            assert await alerts.request_permission() is False
        run_async(_inner())

    def test_no_prompt_means_denied(self):
        async def _inner():
            alerts = DesktopNotifier()
            assert await alerts.request_permission() is False
            assert alerts.permission == PERMISSION_DENIED
        run_async(_inner())

    def test_unsupported_host(self):
        async def _inner():
            alerts = DesktopNotifier(supported=False, permission=PERMISSION_GRANTED)
            assert await alerts.request_permission() is False
            assert alerts.show("x", "y") is None
        run_async(_inner())

    def test_invalid_permission_state(self):
        with pytest.raises(ValueError):
            DesktopNotifier(permission="maybe")

    def test_alerts_request_chime_unless_silenced(self):
        alerts = DesktopNotifier(permission=PERMISSION_GRANTED)
        assert alerts.show("Başlık", "Gövde").sound is True
        assert alerts.show("Başlık", "Gövde", sound=False).sound is False

    def test_sinks_receive_alerts(self):
        alerts = DesktopNotifier(permission=PERMISSION_GRANTED)
        seen = []
        alerts.add_sink(seen.append)
        alerts.show("Başlık", "Gövde")
        assert seen[0].body == "Gövde"
