"""
tests/test_validators.py — Form Checks & Content Writes
========================================================

Local form validation, plus the topic/comment write paths that must
validate before touching the store and fan out comment and mention
notifications afterwards.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from saticiyiz.engine.validators import (
    SPONSOR_SUFFIX,
    FormValidationError,
    topic_title,
    validate_comment,
    validate_login,
    validate_registration,
    validate_topic,
)
from saticiyiz.services.content_service import ContentService, extract_mentions
from saticiyiz.services.notification_service import NotificationService
from saticiyiz.services.side_effects import BestEffortQueue


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _content(client, username: str, queue: BestEffortQueue) -> ContentService:
    return ContentService(
        client, NotificationService(client), queue, username=lambda: username,
    )


async def _inbox(forum, uid: str) -> list[dict]:
    return (
        await forum.service.table("notifications").select("*").eq("user_id", uid).execute()
    ).data


# ===========================================================================
# Validators
# ===========================================================================
class TestValidators:

    @pytest.mark.parametrize("email, password", [("", "x"), ("   ", "x"), ("a@b.co", "")])
    def test_login_requires_both_fields(self, email, password):
        with pytest.raises(FormValidationError, match="Lütfen tüm alanları doldurun"):
            validate_login(email, password)

    @pytest.mark.parametrize(
        "email, password, confirm, username, message",
        [
            ("a@b.co", "secret1", "secret1", "", "Lütfen tüm alanları doldurun"),
            ("a@b.co", "secret1", "secret2", "ayse", "Şifreler eşleşmiyor"),
            ("a@b.co", "abc", "abc", "ayse", "en az 6 karakter"),
            ("not-an-email", "secret1", "secret1", "ayse", "Geçersiz email"),
            ("a@b.co", "secret1", "secret1", "ay", "Kullanıcı adı 3-20"),
            ("a@b.co", "secret1", "secret1", "ayşe", "Kullanıcı adı 3-20"),
        ],
    )
    def test_registration_rules(self, email, password, confirm, username, message):
        with pytest.raises(FormValidationError, match=message):
            validate_registration(email, password, confirm, username)

    def test_valid_registration(self):
        validate_registration("ayse@example.com", "secret1", "secret1", "ayse_42")

    def test_topic_needs_title_content_and_sign_in(self):
        with pytest.raises(FormValidationError, match="başlık ve içerik"):
            validate_topic("  ", "x", signed_in=True)
        with pytest.raises(FormValidationError, match="giriş yapmalısınız"):
            validate_topic("Başlık", "x", signed_in=False)

    def test_comment_rules(self):
        with pytest.raises(FormValidationError, match="giriş yapmalısınız"):
            validate_comment("x", signed_in=False)
        with pytest.raises(FormValidationError, match="boş olamaz"):
            validate_comment("   ", signed_in=True)
        with pytest.raises(FormValidationError, match="en fazla 5"):
            validate_comment("abcdef", signed_in=True, max_length=5)

    def test_sponsor_title(self):
        assert topic_title("  Kampanya  ", sponsored=True) == "Kampanya" + SPONSOR_SUFFIX
        assert topic_title("  Kampanya  ") == "Kampanya"

    def test_extract_mentions(self):
        text = "@ayse ve @Mehmet, bir de @ayse tekrar; mail@example.com değil, @ab kısa"
        assert extract_mentions(text) == ["ayse", "Mehmet"]
        assert extract_mentions("") == []


# ===========================================================================
# ContentService
# ===========================================================================
class TestContentWrites:

    def test_validation_runs_before_store(self):
        async def _inner():
            client = MagicMock()
            client.principal.return_value.uid = "u1"
            content = ContentService(client, MagicMock(), BestEffortQueue())
            with pytest.raises(FormValidationError):
                await content.create_topic("", "içerik")
            with pytest.raises(FormValidationError):
                await content.add_comment("t1", "   ")
            client.table.assert_not_called()
        run_async(_inner())

    def test_signed_out_cannot_post(self, forum):
        async def _inner():
            content = _content(forum.client(), "misafir", BestEffortQueue())
            with pytest.raises(FormValidationError, match="giriş yapmalısınız"):
                await content.create_topic("Başlık", "İçerik")
        run_async(_inner())

    def test_sponsored_topic_is_stored_with_marker(self, forum):
        async def _inner():
            client, uid = await forum.member("ayse")
            content = _content(client, "ayse", BestEffortQueue())
            row = await content.create_topic(" Kargo indirimi ", " Detaylar ", sponsored=True)
            assert row["title"] == "Kargo indirimi [SPONSOR]"
            assert row["content"] == "Detaylar"
            assert row["user_id"] == uid
            stored = await content.get_topic(row["id"])
            assert stored["title"] == row["title"]
        run_async(_inner())

    def test_comment_notifies_topic_author_only(self, forum):
        async def _inner():
            author_client, author = await forum.member("ayse")
            client, commenter = await forum.member("mehmet")
            queue = BestEffortQueue()
            topic = await _content(author_client, "ayse", queue).create_topic("Soru", "İçerik")

            await _content(client, "mehmet", queue).add_comment(topic["id"], "Cevap")
            await _content(author_client, "ayse", queue).add_comment(topic["id"], "Teşekkürler")
            await queue.drain()

            inbox = await _inbox(forum, author)
            assert len(inbox) == 1
            assert inbox[0]["type"] == "comment"
            assert inbox[0]["message"] == "@mehmet başlığınıza yorum yazdı"
            assert inbox[0]["data"]["topic_id"] == topic["id"]
            assert await _inbox(forum, commenter) == []
            comments = await _content(client, "mehmet", queue).list_comments(topic["id"])
            assert [c["content"] for c in comments] == ["Cevap", "Teşekkürler"]
        run_async(_inner())

    def test_mentions_notify_others_not_self(self, forum):
        async def _inner():
            client, author = await forum.member("ayse")
            _, mentioned = await forum.member("mehmet")
            queue = BestEffortQueue()
            topic = await _content(client, "ayse", queue).create_topic(
                "Duyuru", "@mehmet ve @ayse bakabilir mi? @yokboyle",
            )
            await queue.drain()

            inbox = await _inbox(forum, mentioned)
            assert [n["type"] for n in inbox] == ["mention"]
            assert inbox[0]["data"]["topic_id"] == topic["id"]
            assert inbox[0]["data"]["comment_id"] is None
            assert await _inbox(forum, author) == []
        run_async(_inner())

    def test_notification_failure_keeps_comment(self, forum):
        async def _inner():
            author_client, _ = await forum.member("ayse")
            client, _ = await forum.member("mehmet")
            queue = BestEffortQueue()
            topic = await _content(author_client, "ayse", queue).create_topic("Soru", "İçerik")

            notifications = MagicMock()
            notifications.create_comment_notification.side_effect = RuntimeError("rpc down")
            content = ContentService(client, notifications, queue, username=lambda: "mehmet")
            row = await content.add_comment(topic["id"], "Cevap")
            await queue.drain()
            assert queue.failures == 1
            assert (await content.list_comments(topic["id"]))[0]["id"] == row["id"]
        run_async(_inner())


class TestSearch:

    def test_search_filters_and_pages(self, forum):
        async def _inner():
            client, _ = await forum.member("ayse")
            queue = BestEffortQueue()
            content = _content(client, "ayse", queue)
            category = (
                await client.table("categories").select("id").eq("slug", "amazon").single().execute()
            ).data
            for i in range(3):
                await content.create_topic(f"Kargo sorusu {i}", "Detay", category["id"])
            await content.create_topic("Vergi", "kargo ile ilgisi var")
            await content.create_topic("Alakasiz", "Baska konu")

            rows, total = await content.search_topics("KARGO")
            assert total == 4
            assert rows[0]["title"] == "Vergi"

            rows, total = await content.search_topics(
                "kargo", category_id=category["id"], newest_first=False, page=2, page_size=2,
            )
            assert total == 3
            assert [r["title"] for r in rows] == ["Kargo sorusu 2"]

            _, everything = await content.search_topics()
            assert everything == 5
        run_async(_inner())
