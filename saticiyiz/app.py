"""
saticiyiz.app — Client Composition Root
========================================

Builds every client-side service around one :class:`ForumClient` and wires
them together:

1. The :class:`SessionProvider` owns "who is signed in".
2. Each identity change is pushed to the :class:`NotificationCoordinator`
   (``set_user``) and re-checks the admin panel's permissions.
3. Likes and content writes share one :class:`BestEffortQueue` so their
   notification side effects never block or fail the user action.

Usage::

    app = ForumApp.from_config(cfg, engine, secret=secret)
    await app.start()
    await app.session.sign_in("a@b.co", "hunter22")
    ...
    await app.stop()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from saticiyiz.config import ForumConfig
from saticiyiz.database.engine import run_db
from saticiyiz.services.admin_service import AdminService
from saticiyiz.services.alerts import DesktopNotifier
from saticiyiz.services.content_service import ContentService
from saticiyiz.services.drafts import DraftAutosaver
from saticiyiz.services.likes_service import LikesService
from saticiyiz.services.notification_coordinator import NotificationCoordinator
from saticiyiz.services.notification_service import NotificationService
from saticiyiz.services.session_service import ForumUser, SessionProvider
from saticiyiz.services.side_effects import BestEffortQueue
from saticiyiz.services.toast_service import ToastService
from saticiyiz.storage import open_storage
from saticiyiz.store.client import create_client
from saticiyiz.store.realtime import RealtimeHub

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from saticiyiz.services.alerts import PermissionPrompt
    from saticiyiz.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class ForumApp:
    """All client services for one browser-like session.

    Parameters
    ----------
    config:
        Parsed :class:`ForumConfig`.
    engine:
        SQLAlchemy engine behind the store.
    hub:
        Realtime hub, shared by every app on the same engine.
    storage:
        Client-local key/value storage (auth session, drafts).
    secret:
        JWT signing secret for the auth interface.
    """

    def __init__(
        self,
        config: ForumConfig,
        engine: Engine,
        hub: RealtimeHub,
        storage: KeyValueStorage,
        secret: str,
        *,
        permission_prompt: PermissionPrompt | None = None,
    ) -> None:
        self.config = config
        self.hub = hub
        # Set when from_config built the hub and so runs its LISTEN thread
        self._owns_hub = False
        self.storage = storage
        self.client = create_client(engine, secret=secret, storage=storage, hub=hub, config=config)

        self.toasts = ToastService()
        self.alerts = DesktopNotifier(permission_prompt)
        self.side_effects = BestEffortQueue()

        self.notification_service = NotificationService(self.client)
        self.notifications = NotificationCoordinator(
            self.notification_service,
            self.toasts,
            self.alerts,
            page_size=config.notification_page_size,
            poll_interval=config.unread_poll_seconds,
        )
        self.session = SessionProvider(self.client, self.toasts)
        self.likes = LikesService(
            self.client,
            self.notification_service,
            self.side_effects,
            self.toasts,
            username=self._username,
        )
        self.content = ContentService(
            self.client,
            self.notification_service,
            self.side_effects,
            username=self._username,
        )
        self.admin = AdminService(self.client, self.toasts)
        self.drafts = DraftAutosaver(
            storage, config.draft_storage_key, config.draft_autosave_seconds,
        )

        self.session.add_listener(self._on_user_changed)

    @classmethod
    def from_config(
        cls,
        config: ForumConfig,
        engine: Engine,
        *,
        secret: str,
        hub: RealtimeHub | None = None,
    ) -> ForumApp:
        """Build an app whose storage follows ``config.storage_path``.

        Without a shared *hub* the app creates its own and, on PostgreSQL,
        starts its LISTEN thread.
        """
        app = cls(
            config,
            engine,
            hub or RealtimeHub(engine),
            open_storage(config.storage_path),
            secret,
        )
        if hub is None:
            app._owns_hub = True
            app.hub.start_listener()
        return app

    def _username(self) -> str | None:
        return self.session.user.username if self.session.user else None

    async def _on_user_changed(self, user: ForumUser | None) -> None:
        logger.info("Active user changed → %s", user.id if user else "signed out")
        await self.notifications.set_user(user.id if user else None)
        await self.admin.check_permissions()

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    async def start(self) -> None:
        """Resolve any stored session; the listener starts the feed."""
        await self.session.start()

    async def stop(self) -> None:
        """Tear down live feeds, timers and pending side effects."""
        await self.notifications.stop()
        await self.session.stop()
        await self.drafts.stop()
        await self.side_effects.close()
        if self._owns_hub:
            await run_db(self.hub.stop_listener)
        logger.info("Forum client stopped")
