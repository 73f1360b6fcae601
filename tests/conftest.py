"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

from saticiyiz.config import ForumConfig  # noqa: E402
from saticiyiz.database.engine import get_session, init_db  # noqa: E402
from saticiyiz.database.models import NotificationPreferences, UserRole  # noqa: E402
from saticiyiz.storage import MemoryStorage  # noqa: E402
from saticiyiz.store.client import ForumClient, create_client, create_service_client  # noqa: E402
from saticiyiz.store.realtime import RealtimeHub  # noqa: E402

# Cheap bcrypt so sign-ups don't dominate the run
TEST_CONFIG = ForumConfig(bcrypt_rounds=4)


@pytest.fixture
def db_engine(tmp_path) -> Engine:
    """A fresh SQLite file database with every forum table and the seeds.

    A file (not ``:memory:``) so each ``asyncio.to_thread`` worker gets
    its own connection to the same database.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'forum.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def hub(db_engine: Engine) -> RealtimeHub:
    """In-process realtime hub (no LISTEN thread on SQLite)."""
    return RealtimeHub(db_engine)


class ForumHarness:
    """Builds clients and members against one test database."""

    def __init__(self, engine: Engine, hub: RealtimeHub) -> None:
        self.engine = engine
        self.hub = hub

    def client(self, storage: MemoryStorage | None = None) -> ForumClient:
        return create_client(
            self.engine,
            secret=os.environ["JWT_SECRET"],
            storage=storage if storage is not None else MemoryStorage(),
            hub=self.hub,
            config=TEST_CONFIG,
        )

    @property
    def service(self) -> ForumClient:
        return create_service_client(self.engine, self.hub)

    async def member(self, username: str, password: str = "hunter22") -> tuple[ForumClient, str]:
        """Sign up *username* and return ``(signed_in_client, user_id)``."""
        client = self.client()
        response = await client.auth.sign_up(
            f"{username}@example.com", password, {"username": username},
        )
        return client, response.user.id

    def grant(self, user_id: str, role: str) -> None:
        with get_session(self.engine) as session:
            session.add(UserRole(user_id=user_id, role=role, is_active=True))

    def set_preferences(self, user_id: str, **flags: bool) -> None:
        with get_session(self.engine) as session:
            session.add(NotificationPreferences(user_id=user_id, **flags))

    async def notification(
        self,
        user_id: str,
        *,
        kind: str = "system",
        title: str = "Duyuru",
        message: str = "Forum bakımı",
        data: dict[str, Any] | None = None,
        created_at: datetime | None = None,
        read_at: datetime | None = None,
    ) -> dict[str, Any]:
        """Insert a notification row directly (service role)."""
        row = {
            "user_id": user_id,
            "type": kind,
            "title": title,
            "message": message,
            "data": data or {},
            "email_sent": False,
            "created_at": created_at or datetime.now(UTC),
            "read_at": read_at,
        }
        return (await self.service.table("notifications").insert(row).single().execute()).data


@pytest.fixture
def forum(db_engine: Engine, hub: RealtimeHub) -> ForumHarness:
    return ForumHarness(db_engine, hub)
