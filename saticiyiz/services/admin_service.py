"""
saticiyiz.services.admin_service — Admin & Moderation Panel
============================================================

Read/write operations behind the admin panel, gated by the server-side
role functions (``is_admin`` / ``is_moderator``):

- **Moderators** (and admins) see dashboard stats, recent admin actions,
  pending reports, top users and categories, can search users, resolve
  reports and create moderation actions.
- **Admins** additionally manage system settings and user roles.

Every mutation follows the same pattern:
  1. Check the cached role flags (``check_permissions`` fills them)
  2. Apply the change through the store (row-level security re-checks)
  3. Append an ``admin_actions`` audit row via ``log_admin_action``
  4. Toast the outcome; failures return False / empty values

Audit logging is best effort: a failed ``log_admin_action`` is logged
and does not undo the mutation.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from saticiyiz.database.models import (
    ModerationActionType,
    ReportStatus,
    ReportType,
    RoleName,
    TargetType,
)

if TYPE_CHECKING:
    from saticiyiz.services.toast_service import ToastService
    from saticiyiz.store.client import ForumClient

logger = logging.getLogger(__name__)

USER_SEARCH_LIMIT = 20


class AdminService:
    """Role-gated admin panel state and actions for the signed-in user."""

    def __init__(self, client: ForumClient, toasts: ToastService) -> None:
        self._client = client
        self._toasts = toasts
        self.is_admin = False
        self.is_moderator = False
        self.loading = True

        self.dashboard_stats: dict[str, int] | None = None
        self.recent_actions: list[dict[str, Any]] = []
        self.pending_reports: list[dict[str, Any]] = []
        self.system_settings: list[dict[str, Any]] = []
        self.user_roles: list[dict[str, Any]] = []
        self.top_users: list[dict[str, Any]] = []
        self.top_categories: list[dict[str, Any]] = []

    @property
    def is_staff(self) -> bool:
        return self.is_admin or self.is_moderator

    # -------------------------------------------------------------------
    # Permissions & audit
    # -------------------------------------------------------------------
    async def check_permissions(self) -> tuple[bool, bool]:
        """Refresh ``(is_admin, is_moderator)``; both False when signed out or on error."""
        try:
            if self._client.principal().uid is None:
                self.is_admin = self.is_moderator = False
                return False, False
            admin, moderator = await asyncio.gather(
                self._client.rpc("is_admin"), self._client.rpc("is_moderator"),
            )
            self.is_admin, self.is_moderator = bool(admin), bool(moderator)
        except Exception:
            logger.exception("Role check failed")
            self.is_admin = self.is_moderator = False
        finally:
            self.loading = False
        return self.is_admin, self.is_moderator

    async def log_admin_action(
        self,
        action_type: str,
        target_type: str | None = None,
        target_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> str | None:
        try:
            return await self._client.rpc(
                "log_admin_action",
                action_type=action_type,
                target_type=target_type,
                target_id=target_id,
                details=details,
            )
        except Exception:
            logger.exception("Failed to audit %s on %s %s", action_type, target_type, target_id)
            return None

    # -------------------------------------------------------------------
    # Loaders
    # -------------------------------------------------------------------
    async def _load(self, label: str, error_message: str, coro, default):
        try:
            return await coro
        except Exception:
            logger.exception("Admin loader %s failed", label)
            self._toasts.show_error("Hata", error_message)
            return default

    async def load_dashboard_stats(self) -> dict[str, int] | None:
        if not self.is_staff:
            return None
        self.dashboard_stats = await self._load(
            "dashboard_stats", "Dashboard istatistikleri yüklenemedi.",
            self._client.rpc("get_admin_dashboard_stats"), None,
        )
        return self.dashboard_stats

    async def load_recent_actions(self, limit: int = 20) -> list[dict[str, Any]]:
        if not self.is_staff:
            return []
        self.recent_actions = await self._load(
            "recent_actions", "Son aktiviteler yüklenemedi.",
            self._client.rpc("get_recent_admin_actions", p_limit=limit), [],
        )
        return self.recent_actions

    async def load_pending_reports(self) -> list[dict[str, Any]]:
        if not self.is_staff:
            return []
        self.pending_reports = await self._load(
            "pending_reports", "Bekleyen raporlar yüklenemedi.",
            self._client.rpc("get_pending_reports"), [],
        )
        return self.pending_reports

    async def load_system_settings(self) -> list[dict[str, Any]]:
        if not self.is_admin:
            return []
        self.system_settings = await self._load(
            "system_settings", "Sistem ayarları yüklenemedi.",
            self._fetch_settings(), [],
        )
        return self.system_settings

    async def _fetch_settings(self) -> list[dict[str, Any]]:
        return (
            await self._client.table("system_settings").select("*").order("setting_key").execute()
        ).data

    async def load_user_roles(self) -> list[dict[str, Any]]:
        if not self.is_admin:
            return []
        self.user_roles = await self._load(
            "user_roles", "Kullanıcı rolleri yüklenemedi.", self._fetch_roles(), [],
        )
        return self.user_roles

    async def _fetch_roles(self) -> list[dict[str, Any]]:
        roles = (
            await self._client.table("user_roles")
            .select("*")
            .order("created_at", desc=True)
            .execute()
        ).data
        profiles = await self._profiles_by_id({r["user_id"] for r in roles})
        for role in roles:
            p = profiles.get(role["user_id"])
            role["profile"] = (
                {"username": p["username"], "email": p["email"], "avatar_url": p["avatar_url"]}
                if p else None
            )
        return roles

    async def _profiles_by_id(self, ids: set[str]) -> dict[str, dict[str, Any]]:
        if not ids:
            return {}
        rows = (
            await self._client.table("profiles").select("*").in_("id", sorted(ids)).execute()
        ).data
        return {row["id"]: row for row in rows}

    async def load_top_users(self, limit: int = 10) -> list[dict[str, Any]]:
        if not self.is_staff:
            return []
        self.top_users = await self._load(
            "top_users", "En iyi kullanıcılar yüklenemedi.", self._fetch_top_users(limit), [],
        )
        return self.top_users

    async def _fetch_top_users(self, limit: int) -> list[dict[str, Any]]:
        points = (
            await self._client.table("user_points")
            .select("user_id, points, total_topics, total_comments, member_level")
            .order("points", desc=True)
            .limit(limit)
            .execute()
        ).data
        profiles = await self._profiles_by_id({p["user_id"] for p in points})
        out = []
        for row in points:
            profile = profiles.get(row["user_id"])
            if profile is None:
                continue
            out.append({**profile, "user_points": {k: v for k, v in row.items() if k != "user_id"}})
        return out

    async def load_top_categories(self, limit: int = 10) -> list[dict[str, Any]]:
        if not self.is_staff:
            return []
        self.top_categories = await self._load(
            "top_categories", "En iyi kategoriler yüklenemedi.",
            self._fetch_top_categories(limit), [],
        )
        return self.top_categories

    async def _fetch_top_categories(self, limit: int) -> list[dict[str, Any]]:
        return (
            await self._client.table("categories")
            .select("*")
            .order("topic_count", desc=True)
            .limit(limit)
            .execute()
        ).data

    async def load_all(self) -> None:
        if not self.is_staff:
            return
        await asyncio.gather(
            self.load_dashboard_stats(),
            self.load_recent_actions(),
            self.load_pending_reports(),
            self.load_top_users(),
            self.load_top_categories(),
        )
        if self.is_admin:
            await asyncio.gather(self.load_system_settings(), self.load_user_roles())

    async def search_users(self, query: str) -> list[dict[str, Any]]:
        """Username/email substring search with each match's active roles."""
        if not self.is_staff:
            return []
        try:
            users = (
                await self._client.table("profiles")
                .select("*")
                .or_ilike(["username", "email"], f"%{query}%")
                .limit(USER_SEARCH_LIMIT)
                .execute()
            ).data
            if users:
                roles = (
                    await self._client.table("user_roles")
                    .select("user_id, role, is_active")
                    .in_("user_id", [u["id"] for u in users])
                    .execute()
                ).data
                for user in users:
                    user["user_roles"] = [
                        {"role": r["role"], "is_active": r["is_active"]}
                        for r in roles if r["user_id"] == user["id"]
                    ]
            return users
        except Exception:
            logger.exception("User search failed for %r", query)
            self._toasts.show_error("Hata", "Kullanıcı arama hatası.")
            return []

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def _succeeded(self, message: str) -> bool:
        self._toasts.show_success("Başarılı", message)
        return True

    def _failed(self, action: str, message: str) -> bool:
        logger.exception("Admin mutation %s failed", action)
        self._toasts.show_error("Hata", message)
        return False

    async def update_system_setting(self, setting_key: str, setting_value: str) -> bool:
        if not self.is_admin:
            return False
        try:
            rows = (
                await self._client.table("system_settings")
                .update({
                    "setting_value": setting_value,
                    "updated_by": self._client.principal().uid,
                    "updated_at": datetime.now(UTC),
                })
                .eq("setting_key", setting_key)
                .execute()
            ).data
            if not rows:
                self._toasts.show_error("Hata", "Sistem ayarı güncellenemedi.")
                return False
        except Exception:
            return self._failed("update_system_setting", "Sistem ayarı güncellenirken hata oluştu.")
        await self.log_admin_action(
            "update_system_setting", "setting", setting_key,
            {"setting_key": setting_key, "new_value": setting_value},
        )
        await self.load_system_settings()
        return self._succeeded("Sistem ayarı güncellendi.")

    async def assign_user_role(
        self, user_id: str, role: str, expires_at: datetime | None = None,
    ) -> bool:
        if not self.is_admin:
            return False
        role = RoleName(role).value
        try:
            await (
                self._client.table("user_roles")
                .upsert(
                    {
                        "user_id": user_id,
                        "role": role,
                        "granted_by": self._client.principal().uid,
                        "granted_at": datetime.now(UTC),
                        "expires_at": expires_at,
                        "is_active": True,
                    },
                    on_conflict="user_id,role",
                )
                .execute()
            )
        except Exception:
            return self._failed("assign_user_role", "Rol atanırken hata oluştu.")
        await self.log_admin_action(
            "assign_user_role", "user", user_id,
            {"role": role, "expires_at": expires_at.isoformat() if expires_at else None},
        )
        await self.load_user_roles()
        return self._succeeded(f"Kullanıcıya {role} rolü atandı.")

    async def remove_user_role(self, user_id: str, role: str) -> bool:
        if not self.is_admin:
            return False
        role = RoleName(role).value
        try:
            await (
                self._client.table("user_roles")
                .delete()
                .eq("user_id", user_id)
                .eq("role", role)
                .execute()
            )
        except Exception:
            return self._failed("remove_user_role", "Rol kaldırılırken hata oluştu.")
        await self.log_admin_action("remove_user_role", "user", user_id, {"role": role})
        await self.load_user_roles()
        return self._succeeded(f"Kullanıcıdan {role} rolü kaldırıldı.")

    async def update_report_status(
        self, report_id: str, status: str, admin_notes: str | None = None,
    ) -> bool:
        if not self.is_staff:
            return False
        status = ReportStatus(status)
        if status is ReportStatus.PENDING:
            raise ValueError("A report can only be resolved or dismissed")
        try:
            rows = (
                await self._client.table("user_reports")
                .update({
                    "status": status.value,
                    "admin_notes": admin_notes,
                    "resolved_by": self._client.principal().uid,
                    "resolved_at": datetime.now(UTC),
                })
                .eq("id", report_id)
                .execute()
            ).data
            if not rows:
                self._toasts.show_error("Hata", "Rapor durumu güncellenemedi.")
                return False
        except Exception:
            return self._failed("update_report_status", "Rapor güncellenirken hata oluştu.")
        await self.log_admin_action(
            "update_report_status", "report", report_id,
            {"status": status.value, "admin_notes": admin_notes},
        )
        await self.load_pending_reports()
        return self._succeeded("Rapor durumu güncellendi.")

    async def create_moderation_action(
        self,
        target_type: str,
        target_id: str,
        action_type: str,
        reason: str | None = None,
        duration_hours: int | None = None,
    ) -> bool:
        if not self.is_staff:
            return False
        target = TargetType(target_type).value
        action = ModerationActionType(action_type).value
        expires_at = (
            datetime.now(UTC) + timedelta(hours=duration_hours) if duration_hours else None
        )
        try:
            await (
                self._client.table("moderation_actions")
                .insert({
                    "moderator_id": self._client.principal().uid,
                    "target_type": target,
                    "target_id": target_id,
                    "action_type": action,
                    "reason": reason,
                    "duration_hours": duration_hours,
                    "expires_at": expires_at,
                    "is_active": True,
                })
                .execute()
            )
        except Exception:
            return self._failed(
                "create_moderation_action", "Moderation action oluşturulurken hata oluştu.",
            )
        await self.log_admin_action(
            "create_moderation_action", target, target_id,
            {"action_type": action, "reason": reason, "duration_hours": duration_hours},
        )
        await self.load_recent_actions()
        return self._succeeded("Moderation action oluşturuldu.")

    # -------------------------------------------------------------------
    # Member-facing
    # -------------------------------------------------------------------
    async def report(
        self,
        report_type: str,
        reason: str,
        *,
        user_id: str | None = None,
        topic_id: str | None = None,
        comment_id: str | None = None,
    ) -> str | None:
        """File a report as the signed-in member; returns the report id."""
        uid = self._client.principal().uid
        if uid is None:
            self._toasts.show_warning("Uyarı", "Giriş yapmanız gerekiyor")
            return None
        if not (user_id or topic_id or comment_id):
            raise ValueError("A report needs a reported user, topic or comment")
        try:
            row = (
                await self._client.table("user_reports")
                .insert({
                    "reporter_id": uid,
                    "reported_user_id": user_id,
                    "reported_topic_id": topic_id,
                    "reported_comment_id": comment_id,
                    "report_type": ReportType(report_type).value,
                    "reason": reason,
                })
                .single()
                .execute()
            ).data
        except Exception:
            logger.exception("Report by %s failed", uid)
            self._toasts.show_error("Hata", "Rapor gönderilemedi.")
            return None
        self._toasts.show_success("Başarılı", "Raporunuz alındı.")
        return row["id"]
