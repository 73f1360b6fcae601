"""
tests/test_app.py — Client Composition Tests
=============================================

End-to-end wiring of :class:`ForumApp`: signing in opens the live
notification feed and re-checks admin roles, signing out tears both
down, and a file-backed session survives an app restart.
"""

from __future__ import annotations

import asyncio
import os
from unittest.mock import patch

from saticiyiz.app import ForumApp
from saticiyiz.config import ForumConfig
from saticiyiz.storage import FileStorage, MemoryStorage
from saticiyiz.store.realtime import RealtimeHub

APP_CONFIG = ForumConfig(bcrypt_rounds=4, unread_poll_seconds=3600)


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _app(forum, storage=None, config: ForumConfig = APP_CONFIG) -> ForumApp:
    return ForumApp(
        config,
        forum.engine,
        forum.hub,
        storage if storage is not None else MemoryStorage(),
        os.environ["JWT_SECRET"],
    )


class TestSignInWiring:

    def test_sign_in_opens_feed_and_sign_out_closes_it(self, forum):
        async def _inner():
            _, uid = await forum.member("ayse")
            app = _app(forum)
            await app.start()
            assert app.session.user is None
            assert app.notifications.is_live is False

            await app.session.sign_in("ayse@example.com", "hunter22")
            assert app.session.user.username == "ayse"
            assert app.notifications.initialized is True
            assert app.notifications.is_live is True
            assert app.admin.is_admin is False

            await forum.notification(uid, title="Yeni duyuru", message="Kargo kampanyası")
            await forum.hub.wait_idle()
            assert app.notifications.unread_count == 1
            assert app.notifications.notifications[0].title == "Yeni duyuru"
            assert app.toasts.of_kind("info")[-1].message == "Kargo kampanyası"

            await app.session.sign_out()
            assert app.notifications.is_live is False
            assert app.notifications.notifications == []
            assert app.notifications.unread_count == 0
            await app.stop()
        run_async(_inner())

    def test_admin_role_is_checked_on_sign_in(self, forum):
        async def _inner():
            _, uid = await forum.member("yonetici")
            forum.grant(uid, "admin")
            app = _app(forum)
            await app.start()
            await app.session.sign_in("yonetici@example.com", "hunter22")
            assert app.admin.is_admin is True
            assert app.admin.is_moderator is True

            await app.session.sign_out()
            assert app.admin.is_admin is False
            await app.stop()
        run_async(_inner())

    def test_likes_use_signed_in_username(self, forum):
        async def _inner():
            author_client, author = await forum.member("ayse")
            await forum.member("mehmet")
            topic = (
                await author_client.table("topics")
                .insert({"title": "Test", "content": "İçerik", "user_id": author})
                .single().execute()
            ).data

            app = _app(forum)
            await app.start()
            await app.session.sign_in("mehmet@example.com", "hunter22")
            result = await app.likes.toggle_topic_like(topic["id"])
            await app.side_effects.drain()
            assert result.success is True

            inbox = (
                await forum.service.table("notifications").select("*").eq("user_id", author).execute()
            ).data
            assert "mehmet" in inbox[0]["message"]
            await app.stop()
        run_async(_inner())


class TestPersistence:

    def test_session_survives_restart(self, forum, tmp_path):
        async def _inner():
            await forum.member("ayse")
            config = ForumConfig(
                bcrypt_rounds=4, unread_poll_seconds=3600, storage_path=str(tmp_path / "client.json"),
            )
            first = ForumApp.from_config(config, forum.engine, secret=os.environ["JWT_SECRET"], hub=forum.hub)
            assert isinstance(first.storage, FileStorage)
            await first.start()
            await first.session.sign_in("ayse@example.com", "hunter22")
            first.drafts.save_now("yarım kalan başlık")
            await first.stop()

            second = ForumApp.from_config(config, forum.engine, secret=os.environ["JWT_SECRET"], hub=forum.hub)
            await second.start()
            assert second.session.user.username == "ayse"
            assert second.notifications.is_live is True
            assert second.drafts.load() == "yarım kalan başlık"
            await second.stop()
        run_async(_inner())


class TestListenerOwnership:

    def test_own_hub_runs_listener(self, forum):
        async def _inner():
            with (
                patch.object(RealtimeHub, "start_listener", return_value=False) as start,
                patch.object(RealtimeHub, "stop_listener") as stop,
            ):
                app = ForumApp.from_config(APP_CONFIG, forum.engine, secret=os.environ["JWT_SECRET"])
                assert app.hub is not forum.hub
                start.assert_called_once_with()
                await app.start()
                await app.stop()
                stop.assert_called_once_with()
        run_async(_inner())

    def test_shared_hub_is_left_alone(self, forum):
        async def _inner():
            with (
                patch.object(RealtimeHub, "start_listener") as start,
                patch.object(RealtimeHub, "stop_listener") as stop,
            ):
                app = ForumApp.from_config(
                    APP_CONFIG, forum.engine, secret=os.environ["JWT_SECRET"], hub=forum.hub,
                )
                await app.start()
                await app.stop()
            start.assert_not_called()
            stop.assert_not_called()
        run_async(_inner())
