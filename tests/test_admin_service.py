"""
tests/test_admin_service.py — Admin Panel Tests
================================================

Role gating, panel loaders, audited mutations and member reports against
the real store.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from saticiyiz.services.admin_service import AdminService
from saticiyiz.services.toast_service import ToastService


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


async def _staff(forum, username: str, role: str) -> tuple[AdminService, ToastService, str]:
    client, uid = await forum.member(username)
    forum.grant(uid, role)
    toasts = ToastService()
    admin = AdminService(client, toasts)
    await admin.check_permissions()
    return admin, toasts, uid


async def _audit(forum, action_type: str) -> list[dict]:
    return (
        await forum.service.table("admin_actions")
        .select("*").eq("action_type", action_type).execute()
    ).data


# ===========================================================================
# Permissions
# ===========================================================================
class TestPermissions:

    def test_signed_out(self, forum):
        async def _inner():
            admin = AdminService(forum.client(), ToastService())
            assert admin.loading is True
            assert await admin.check_permissions() == (False, False)
            assert admin.loading is False
        run_async(_inner())

    def test_plain_member(self, forum):
        async def _inner():
            client, _ = await forum.member("ayse")
            admin = AdminService(client, ToastService())
            assert await admin.check_permissions() == (False, False)
            assert admin.is_staff is False
        run_async(_inner())

    @pytest.mark.parametrize("role, expected", [("admin", (True, True)), ("moderator", (False, True))])
    def test_roles(self, forum, role, expected):
        async def _inner():
            admin, _, _ = await _staff(forum, "yetkili", role)
            assert (admin.is_admin, admin.is_moderator) == expected
        run_async(_inner())

    def test_role_check_failure_denies(self):
        async def _inner():
            client = MagicMock()
            client.principal.return_value.uid = "u1"
            client.rpc = AsyncMock(side_effect=RuntimeError("network"))
            admin = AdminService(client, ToastService())
            assert await admin.check_permissions() == (False, False)
            assert admin.loading is False
        run_async(_inner())

    def test_non_staff_gets_nothing(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            admin = AdminService(client, ToastService())
            await admin.check_permissions()
            assert await admin.load_dashboard_stats() is None
            assert await admin.load_pending_reports() == []
            assert await admin.search_users("a") == []
            assert await admin.update_system_setting("maintenance_mode", "true") is False
            assert await admin.assign_user_role(uid, "admin") is False
            assert await admin.create_moderation_action("user", uid, "warn") is False
        run_async(_inner())


# ===========================================================================
# Loaders
# ===========================================================================
class TestLoaders:

    def test_moderator_panel(self, forum):
        async def _inner():
            admin, _, _ = await _staff(forum, "moderator1", "moderator")
            author_client, author = await forum.member("ayse")
            await author_client.table("topics").insert(
                {"title": "Kargo", "content": "Soru", "user_id": author},
            ).execute()

            await admin.load_all()
            stats = admin.dashboard_stats
            assert stats["total_users"] == 2
            assert stats["total_topics"] == 1
            assert stats["topics_today"] == 1
            assert stats["pending_reports"] == 0
            assert admin.top_users[0]["username"] == "ayse"
            assert admin.top_users[0]["user_points"]["points"] == 100
            assert len(admin.top_categories) == 5
            # Admin-only panels stay empty for moderators
            assert admin.system_settings == []
            assert admin.user_roles == []
        run_async(_inner())

    def test_admin_sees_settings_and_roles(self, forum):
        async def _inner():
            admin, _, uid = await _staff(forum, "yonetici", "admin")
            await admin.load_all()
            keys = [s["setting_key"] for s in admin.system_settings]
            assert keys == sorted(keys)
            assert "maintenance_mode" in keys
            assert admin.user_roles[0]["user_id"] == uid
            assert admin.user_roles[0]["profile"]["username"] == "yonetici"
        run_async(_inner())

    def test_loader_failure_toasts_and_defaults(self, forum):
        async def _inner():
            admin, toasts, _ = await _staff(forum, "yonetici", "admin")
            admin._client.rpc = AsyncMock(side_effect=RuntimeError("boom"))
            assert await admin.load_pending_reports() == []
            assert toasts.of_kind("error")[-1].message == "Bekleyen raporlar yüklenemedi."
        run_async(_inner())

    def test_search_users_with_roles(self, forum):
        async def _inner():
            admin, _, _ = await _staff(forum, "yonetici", "admin")
            _, target = await forum.member("trendyolcu")
            forum.grant(target, "moderator")
            results = await admin.search_users("TRENDYOL")
            assert [u["username"] for u in results] == ["trendyolcu"]
            assert results[0]["user_roles"] == [{"role": "moderator", "is_active": True}]
        run_async(_inner())


# ===========================================================================
# Mutations
# ===========================================================================
class TestMutations:

    def test_update_setting_is_audited(self, forum):
        async def _inner():
            admin, toasts, uid = await _staff(forum, "yonetici", "admin")
            assert await admin.update_system_setting("maintenance_mode", "true") is True
            setting = next(s for s in admin.system_settings if s["setting_key"] == "maintenance_mode")
            assert setting["setting_value"] == "true"
            assert setting["updated_by"] == uid

            audit = await _audit(forum, "update_system_setting")
            assert len(audit) == 1
            assert audit[0]["admin_id"] == uid
            assert audit[0]["target_id"] == "maintenance_mode"
            assert audit[0]["details"] == {"setting_key": "maintenance_mode", "new_value": "true"}
            assert toasts.of_kind("success")[-1].message == "Sistem ayarı güncellendi."
        run_async(_inner())

    def test_unknown_setting_fails_without_audit(self, forum):
        async def _inner():
            admin, toasts, _ = await _staff(forum, "yonetici", "admin")
            assert await admin.update_system_setting("no_such_key", "1") is False
            assert toasts.of_kind("error")[-1].message == "Sistem ayarı güncellenemedi."
            assert await _audit(forum, "update_system_setting") == []
        run_async(_inner())

    def test_assign_and_remove_role(self, forum):
        async def _inner():
            admin, _, _ = await _staff(forum, "yonetici", "admin")
            member_client, member = await forum.member("ayse")

            assert await admin.assign_user_role(member, "moderator") is True
            assert await admin.assign_user_role(member, "moderator") is True
            roles = [r for r in admin.user_roles if r["user_id"] == member]
            assert len(roles) == 1

            promoted = AdminService(member_client, ToastService())
            assert await promoted.check_permissions() == (False, True)

            assert await admin.remove_user_role(member, "moderator") is True
            assert await promoted.check_permissions() == (False, False)
            assert len(await _audit(forum, "assign_user_role")) == 2
            assert len(await _audit(forum, "remove_user_role")) == 1
        run_async(_inner())

    def test_unknown_role_rejected(self, forum):
        async def _inner():
            admin, _, _ = await _staff(forum, "yonetici", "admin")
            with pytest.raises(ValueError):
                await admin.assign_user_role("u1", "superuser")
        run_async(_inner())

    def test_moderation_action(self, forum):
        async def _inner():
            admin, _, uid = await _staff(forum, "moderator1", "moderator")
            _, target = await forum.member("spamci")
            assert await admin.create_moderation_action(
                "user", target, "suspend", reason="spam", duration_hours=24,
            ) is True
            rows = (
                await forum.service.table("moderation_actions").select("*").execute()
            ).data
            assert rows[0]["moderator_id"] == uid
            assert rows[0]["expires_at"] is not None
            assert admin.recent_actions[0]["action_type"] == "create_moderation_action"
            assert admin.recent_actions[0]["admin_username"] == "moderator1"
        run_async(_inner())


# ===========================================================================
# Reports
# ===========================================================================
class TestReports:

    def test_report_lifecycle(self, forum):
        async def _inner():
            reporter_client, _ = await forum.member("ayse")
            author_client, author = await forum.member("spamci")
            topic = (
                await author_client.table("topics")
                .insert({"title": "Ucuz takipçi", "content": "...", "user_id": author})
                .single().execute()
            ).data
            member_panel = AdminService(reporter_client, ToastService())
            report_id = await member_panel.report("spam", "Reklam", topic_id=topic["id"])
            assert report_id is not None

            admin, _, _ = await _staff(forum, "moderator1", "moderator")
            pending = await admin.load_pending_reports()
            assert pending[0]["id"] == report_id
            assert pending[0]["reporter_username"] == "ayse"
            assert pending[0]["topic_title"] == "Ucuz takipçi"

            assert await admin.update_report_status(report_id, "resolved", "Silindi") is True
            assert admin.pending_reports == []
            audit = await _audit(forum, "update_report_status")
            assert audit[0]["details"] == {"status": "resolved", "admin_notes": "Silindi"}
        run_async(_inner())

    def test_cannot_reopen_report(self, forum):
        async def _inner():
            admin, _, _ = await _staff(forum, "moderator1", "moderator")
            with pytest.raises(ValueError):
                await admin.update_report_status("r1", "pending")
        run_async(_inner())

    def test_signed_out_report(self, forum):
        async def _inner():
            toasts = ToastService()
            panel = AdminService(forum.client(), toasts)
            assert await panel.report("spam", "x", user_id="u1") is None
            assert toasts.of_kind("warning")[-1].message == "Giriş yapmanız gerekiyor"
        run_async(_inner())

    def test_report_needs_target(self, forum):
        async def _inner():
            client, _ = await forum.member("ayse")
            with pytest.raises(ValueError):
                await AdminService(client, ToastService()).report("other", "neden")
        run_async(_inner())

    def test_members_cannot_read_reports(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            await AdminService(client, ToastService()).report("harassment", "Hakaret", user_id=uid)
            rows = (await client.table("user_reports").select("*").execute()).data
            assert rows == []
        run_async(_inner())
