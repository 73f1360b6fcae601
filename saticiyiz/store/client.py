"""
saticiyiz.store.client — ForumClient Facade
============================================

One object bundling the four collaborator interfaces the services consume:

- ``client.table(name)``  → :class:`TableQuery` (query interface)
- ``await client.rpc(name, **params)`` → server-side functions
- ``client.auth``         → :class:`AuthClient`
- ``client.realtime``     → :class:`RealtimeHub`

Usage::

    client = create_client(engine, storage=MemoryStorage(), secret=secret)
    await client.auth.sign_in_with_password("a@b.co", "hunter22")
    rows = (await client.table("topics").select("*").limit(5).execute()).data
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from saticiyiz.database.engine import run_db
from saticiyiz.storage import MemoryStorage
from saticiyiz.store.auth import AuthClient
from saticiyiz.store.policies import Principal
from saticiyiz.store.query import TableQuery
from saticiyiz.store.realtime import RealtimeHub
from saticiyiz.store.rpc import call_rpc

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from saticiyiz.config import ForumConfig
    from saticiyiz.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class ForumClient:
    """Store + auth + realtime handle for one client identity."""

    def __init__(
        self,
        engine: Engine,
        hub: RealtimeHub,
        auth: AuthClient | None = None,
        *,
        service_role: bool = False,
    ) -> None:
        self.engine = engine
        self.realtime = hub
        self._auth = auth
        self._service_role = service_role

    @property
    def auth(self) -> AuthClient:
        if self._auth is None:
            raise RuntimeError("This client has no auth interface (service role)")
        return self._auth

    def principal(self) -> Principal:
        if self._service_role:
            return Principal(uid=None, service_role=True)
        return Principal(uid=self._auth.current_user_id if self._auth else None)

    def table(self, name: str) -> TableQuery:
        return TableQuery(self.engine, name, self.principal, self.realtime)

    async def rpc(self, name: str, **params: Any) -> Any:
        return await run_db(call_rpc, self.engine, self.realtime, self.principal(), name, params)


def create_client(
    engine: Engine,
    *,
    secret: str,
    storage: KeyValueStorage | None = None,
    hub: RealtimeHub | None = None,
    config: ForumConfig | None = None,
) -> ForumClient:
    """Build a user-facing :class:`ForumClient`.

    *hub* should be shared by every client on the same engine so realtime
    events reach all of them.
    """
    from saticiyiz.config import ForumConfig

    cfg = config or ForumConfig()
    auth = AuthClient(
        engine,
        storage if storage is not None else MemoryStorage(),
        secret=secret,
        storage_key=cfg.auth_storage_key,
        session_ttl=timedelta(minutes=cfg.session_ttl_minutes),
        bcrypt_rounds=cfg.bcrypt_rounds,
    )
    return ForumClient(engine, hub or RealtimeHub(engine), auth)


def create_service_client(engine: Engine, hub: RealtimeHub | None = None) -> ForumClient:
    """Client that bypasses row-level security, for maintenance jobs only."""
    return ForumClient(engine, hub or RealtimeHub(engine), None, service_role=True)
