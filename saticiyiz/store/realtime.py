"""
saticiyiz.store.realtime — Insert-Event Subscriptions
======================================================

Delivers row-insert events to subscribers filtered server-side by a
``column=eq.value`` expression (e.g. ``user_id=eq.<uid>``).

Two transports share one dispatch path:

- **In-process** — the query layer calls :meth:`RealtimeHub.publish_local`
  after a successful commit.  Used whenever no LISTEN thread runs
  (tests, SQLite, single-process deployments).
- **PostgreSQL LISTEN/NOTIFY** — :meth:`RealtimeHub.notify_before_commit`
  issues ``pg_notify`` inside the writing transaction so the event fires
  atomically on commit, and a background listener thread in every process
  fans it out.  Reconnects with exponential backoff + jitter and gives up
  after a fixed number of attempts.

Callbacks are coroutine functions.  Each is scheduled on the event loop
that was running when it subscribed, via
:func:`asyncio.run_coroutine_threadsafe`, so publishers on worker threads
never touch loop state directly.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import random
import select as _select
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import text

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

# The PG channel carrying row-change payloads
NOTIFY_CHANNEL = "forum_changes"

# Reconnect policy for the LISTEN thread
LISTEN_BASE_BACKOFF = 1.0
LISTEN_MAX_BACKOFF = 60.0
LISTEN_MAX_ATTEMPTS = 10
LISTEN_POLL_SECONDS = 5.0

# Tables whose inserts are published.
ALLOWED_REALTIME_TABLES: frozenset[str] = frozenset({
    "notifications",
    "topics",
    "comments",
    "topic_likes",
    "comment_likes",
})


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """One pushed row change."""

    table: str
    event: str
    new: dict[str, Any]


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


def parse_filter(expression: str | None) -> tuple[str, str] | None:
    """Parse ``"column=eq.value"`` into ``(column, value)``.

    Raises ValueError for any other operator.
    """
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    op, dot, value = rest.partition(".")
    if not sep or not dot or op != "eq" or not column:
        raise ValueError(f"Unsupported realtime filter: {expression!r}")
    return column.strip(), value


def reconnect_delay(attempt: int) -> float:
    """Exponential backoff plus up to 50% jitter for reconnect *attempt* (1-based)."""
    backoff = min(LISTEN_BASE_BACKOFF * 2 ** (attempt - 1), LISTEN_MAX_BACKOFF)
    return backoff + random.uniform(0, backoff / 2)


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass(eq=False)
class RealtimeSubscription:
    """Handle returned by :meth:`RealtimeHub.subscribe`."""

    hub: RealtimeHub
    table: str
    event: str
    callback: ChangeCallback
    loop: asyncio.AbstractEventLoop
    match: tuple[str, str] | None = None
    active: bool = field(default=True)

    def matches(self, table: str, event: str, row: dict[str, Any]) -> bool:
        if not self.active or table != self.table:
            return False
        if self.event not in ("*", event):
            return False
        if self.match is None:
            return True
        column, value = self.match
        return str(row.get(column)) == value

    def unsubscribe(self) -> None:
        self.hub._remove(self)


class RealtimeHub:
    """Fan-out point for row-insert events, shared by every client on an engine.

    Usage::

        hub = RealtimeHub(engine)
        sub = hub.subscribe("notifications", on_insert, filter=f"user_id=eq.{uid}")
        ...
        sub.unsubscribe()
    """

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        self._subscriptions: list[RealtimeSubscription] = []
        self._pending: set[concurrent.futures.Future] = set()

        self._listener_thread: threading.Thread | None = None
        self._listener_healthy: bool = False
        self._listener_failed: bool = False
        self._shutdown_event = threading.Event()

    # -------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------
    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "INSERT",
        filter: str | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> RealtimeSubscription:
        """Register *callback* for *event* rows on *table*.

        Must be called from a running event loop unless *loop* is given.
        """
        if table not in ALLOWED_REALTIME_TABLES:
            raise ValueError(
                f"Realtime is not enabled for table '{table}'. "
                f"Allowed: {sorted(ALLOWED_REALTIME_TABLES)}"
            )
        sub = RealtimeSubscription(
            hub=self,
            table=table,
            event=event,
            callback=callback,
            loop=loop or asyncio.get_running_loop(),
            match=parse_filter(filter),
        )
        with self._lock:
            self._subscriptions.append(sub)
        logger.info("Realtime subscription opened on %s (%s)", table, filter or "*")
        return sub

    def _remove(self, sub: RealtimeSubscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)
                logger.info("Realtime subscription closed on %s", sub.table)
        sub.active = False

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    # -------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------
    @property
    def remote_delivery(self) -> bool:
        """True when events travel through PG NOTIFY instead of in-process."""
        return self._listener_healthy and not self._listener_failed

    def notify_before_commit(self, session: Session, table: str, row: dict[str, Any]) -> None:
        """Queue a ``pg_notify`` in the writer's transaction (fires on commit).

        No-op unless the LISTEN thread is delivering events.
        """
        if table not in ALLOWED_REALTIME_TABLES or not self.remote_delivery:
            return
        payload = json.dumps(
            {"table": table, "event": "INSERT", "new": row}, default=_json_default,
        )
        session.execute(
            text("SELECT pg_notify(:channel, :payload)"),
            {"channel": NOTIFY_CHANNEL, "payload": payload},
        )

    def publish_local(self, table: str, row: dict[str, Any], event: str = "INSERT") -> None:
        """Dispatch an already-committed row change to matching subscribers."""
        if table not in ALLOWED_REALTIME_TABLES or self.remote_delivery:
            return
        self._dispatch(ChangeEvent(table=table, event=event, new=dict(row)))

    def _dispatch(self, change: ChangeEvent) -> None:
        with self._lock:
            targets = [
                s for s in self._subscriptions if s.matches(change.table, change.event, change.new)
            ]
        for sub in targets:
            if sub.loop.is_closed():
                logger.warning(
                    "Cannot deliver %s event on %s, subscriber loop is closed",
                    change.event, change.table,
                )
                continue
            future = asyncio.run_coroutine_threadsafe(sub.callback(change), sub.loop)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._on_delivered)

    def _on_delivered(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Realtime callback failed", exc_info=exc)

    async def wait_idle(self) -> None:
        """Wait until every scheduled callback has finished."""
        while True:
            with self._lock:
                pending = list(self._pending)
            if not pending:
                return
            await asyncio.gather(
                *(asyncio.wrap_future(f) for f in pending), return_exceptions=True,
            )

    def _handle_notify(self, raw_payload: str) -> None:
        """Parse a NOTIFY payload and dispatch it."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid realtime payload (not JSON): %s", raw_payload)
            return
        table = data.get("table")
        if table not in ALLOWED_REALTIME_TABLES or not isinstance(data.get("new"), dict):
            logger.warning("Ignoring realtime payload for %r", table)
            return
        self._dispatch(ChangeEvent(table=table, event=data.get("event", "INSERT"), new=data["new"]))

    # -------------------------------------------------------------------
    # PG LISTEN thread
    # -------------------------------------------------------------------
    @property
    def listener_healthy(self) -> bool:
        return self._listener_healthy and not self._listener_failed

    @property
    def listener_failed(self) -> bool:
        return self._listener_failed

    def start_listener(self) -> bool:
        """Start the LISTEN thread; returns False on non-PostgreSQL engines.

        Until the thread has connected (and again after it gives up),
        inserts keep using in-process delivery.
        """
        if self._engine is None or self._engine.dialect.name != "postgresql":
            logger.info("Realtime listener skipped (no PostgreSQL engine); using in-process delivery")
            return False
        if self._listener_thread is not None and self._listener_thread.is_alive():
            return True
        self._shutdown_event.clear()
        self._listener_failed = False
        self._listener_thread = threading.Thread(
            target=self._run_listener, daemon=True, name="pg-realtime-listener",
        )
        self._listener_thread.start()
        logger.info("PG realtime listener thread started")
        return True

    def stop_listener(self) -> None:
        """Signal the listener thread to stop and wait for it to exit."""
        self._shutdown_event.set()
        if self._listener_thread is not None and self._listener_thread.is_alive():
            self._listener_thread.join(timeout=5)
            logger.info("PG realtime listener thread stopped")
        self._listener_thread = None

    def _run_listener(self) -> None:
        failures = 0
        while not self._shutdown_event.is_set():
            conn = None
            try:
                conn = self._connect()
                failures = 0
                self._listener_healthy = True
                self._serve(conn)
            except Exception:
                failures += 1
                if failures >= LISTEN_MAX_ATTEMPTS:
                    logger.critical(
                        "PG LISTEN failed %d times in a row; staying on in-process delivery",
                        failures,
                    )
                    self._listener_failed = True
                    return
                delay = reconnect_delay(failures)
                logger.exception(
                    "PG LISTEN connection lost (attempt %d/%d), retrying in %.1fs",
                    failures, LISTEN_MAX_ATTEMPTS, delay,
                )
                if self._shutdown_event.wait(timeout=delay):
                    return
            finally:
                self._listener_healthy = False
                if conn is not None:
                    try:
                        conn.close()
                    except Exception:
                        logger.debug("Error closing LISTEN connection", exc_info=True)

    def _connect(self):
        import psycopg2

        # render_as_string keeps the password that str(url) masks
        dsn = self._engine.url.set(drivername="postgresql").render_as_string(hide_password=False)
        conn = psycopg2.connect(dsn)
        conn.set_isolation_level(0)  # autocommit
        conn.cursor().execute(f"LISTEN {NOTIFY_CHANNEL};")
        logger.info("PG LISTEN started on channel '%s'", NOTIFY_CHANNEL)
        return conn

    def _serve(self, conn) -> None:
        while not self._shutdown_event.is_set():
            readable, _, _ = _select.select([conn], [], [], LISTEN_POLL_SECONDS)
            if readable:
                self._drain_notifies(conn)

    def _drain_notifies(self, conn) -> int:
        """Dispatch every NOTIFY the connection has buffered."""
        conn.poll()
        handled = 0
        while conn.notifies:
            notify = conn.notifies.pop(0)
            handled += 1
            try:
                self._handle_notify(notify.payload or "")
            except Exception:
                logger.exception("Error handling NOTIFY on '%s'", notify.channel)
        return handled
