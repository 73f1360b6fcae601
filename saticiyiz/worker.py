"""
saticiyiz.worker — Maintenance Worker
======================================

Entry point for ``saticiyiz-worker`` / ``python -m saticiyiz.worker``.

Wiring:
1. Load .env (``DATABASE_URL``).
2. Load forum.yaml (retention window, per-user cap, email cadence).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Run two loops until interrupted:

   - **Notification retention** — every 24 hours.
   - **Email dispatch** — every ``email_dispatch_seconds``.

Each pass runs via ``run_db()`` so the loop is never blocked, and a failed
pass is logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv
from sqlalchemy import Engine

from saticiyiz.config import ForumConfig, load_config
from saticiyiz.database.engine import create_db_engine, init_db, run_db
from saticiyiz.services.email_dispatcher import LoggingMailer, Mailer, dispatch_pending_emails
from saticiyiz.services.retention_service import get_notification_stats, run_notification_retention

logger = logging.getLogger("saticiyiz")

RETENTION_INTERVAL_SECONDS = 24 * 60 * 60


class MaintenanceWorker:
    """Periodic notification housekeeping."""

    def __init__(self, cfg: ForumConfig, engine: Engine, mailer: Mailer | None = None) -> None:
        self.cfg = cfg
        self.engine = engine
        self.mailer = mailer or LoggingMailer()
        self._tasks: list[asyncio.Task] = []

    # -------------------------------------------------------------------
    # Single passes
    # -------------------------------------------------------------------
    async def run_retention_once(self) -> dict[str, int] | None:
        try:
            result = await run_db(
                run_notification_retention,
                self.engine,
                self.cfg.notification_retention_days,
                self.cfg.notification_max_per_user,
            )
            stats = await run_db(get_notification_stats, self.engine)
        except Exception:
            logger.exception("Notification retention failed", extra={"task": "retention"})
            return None
        logger.info("Notification table after retention: %s", stats)
        return result

    async def run_email_once(self) -> dict[str, int] | None:
        try:
            return await run_db(
                dispatch_pending_emails, self.engine, self.mailer,
                site_name=self.cfg.site_name,
            )
        except Exception:
            logger.exception("Email dispatch failed", extra={"task": "email"})
            return None

    # -------------------------------------------------------------------
    # Loops
    # -------------------------------------------------------------------
    @staticmethod
    async def _every(seconds: float, job) -> None:
        while True:
            await job()
            await asyncio.sleep(seconds)

    def start(self) -> None:
        if self._tasks:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._every(RETENTION_INTERVAL_SECONDS, self.run_retention_once)),
            loop.create_task(self._every(self.cfg.email_dispatch_seconds, self.run_email_once)),
        ]
        logger.info(
            "Maintenance loops started (retention every 24h, email every %.0fs)",
            self.cfg.email_dispatch_seconds,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def run_forever(self) -> None:
        self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()


def main() -> None:
    """Bootstrap and run the maintenance worker."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config()
    except FileNotFoundError as exc:
        logger.warning("%s  Falling back to defaults.", exc)
        cfg = ForumConfig()

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    init_db(engine)

    # 4. Run (blocks until Ctrl+C).
    logger.info("Starting %s maintenance worker…", cfg.site_name)
    try:
        asyncio.run(MaintenanceWorker(cfg, engine).run_forever())
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
