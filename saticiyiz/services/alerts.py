"""
saticiyiz.services.alerts — Desktop Alerts
===========================================

OS-level alerts for newly arrived notifications.  Alerts need an explicit
permission grant, with the same three states a browser exposes:

- ``default`` — never asked
- ``granted`` — alerts are shown
- ``denied``  — alerts are dropped; asking again returns False

How the user is actually asked is host specific, so the prompt is an
injected coroutine function returning True (granted) or False (denied).
Shown alerts go to registered sinks (a desktop bridge, a test recorder).
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

PERMISSION_DEFAULT = "default"
PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"

PermissionPrompt = Callable[[], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class DesktopAlert:
    title: str
    body: str
    tag: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    # Hosts play the notification chime when set
    sound: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


AlertSink = Callable[[DesktopAlert], None]


class DesktopNotifier:
    """Permission state plus alert delivery."""

    def __init__(
        self,
        prompt: PermissionPrompt | None = None,
        *,
        supported: bool = True,
        permission: str = PERMISSION_DEFAULT,
        capacity: int = 50,
    ) -> None:
        if permission not in (PERMISSION_DEFAULT, PERMISSION_GRANTED, PERMISSION_DENIED):
            raise ValueError(f"Unknown permission state: {permission!r}")
        self._prompt = prompt
        self.supported = supported
        self._permission = permission
        self._alerts: deque[DesktopAlert] = deque(maxlen=capacity)
        self._sinks: list[AlertSink] = []

    @property
    def permission(self) -> str:
        return self._permission

    def add_sink(self, sink: AlertSink) -> None:
        self._sinks.append(sink)

    async def request_permission(self) -> bool:
        """Ask once; later calls return the remembered answer."""
        if not self.supported:
            logger.info("Desktop alerts are not supported on this host")
            return False
        if self._permission == PERMISSION_GRANTED:
            return True
        if self._permission == PERMISSION_DENIED:
            return False
        if self._prompt is None:
            self._permission = PERMISSION_DENIED
            return False
        granted = bool(await self._prompt())
        self._permission = PERMISSION_GRANTED if granted else PERMISSION_DENIED
        logger.info("Desktop alert permission %s", self._permission)
        return granted

    def show(
        self, title: str, body: str, *, tag: str | None = None,
        data: dict[str, Any] | None = None, sound: bool = True,
    ) -> DesktopAlert | None:
        """Show an alert if permitted; returns it, or None when dropped."""
        if not self.supported or self._permission != PERMISSION_GRANTED:
            return None
        alert = DesktopAlert(title=title, body=body, tag=tag, data=dict(data or {}), sound=sound)
        self._alerts.append(alert)
        for sink in list(self._sinks):
            try:
                sink(alert)
            except Exception:
                logger.exception("Desktop alert sink failed")
        return alert

    @property
    def alerts(self) -> list[DesktopAlert]:
        return list(self._alerts)
