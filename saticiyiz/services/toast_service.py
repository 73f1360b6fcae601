"""
saticiyiz.services.toast_service — In-App Toasts
=================================================

Short user-facing messages (``success`` / ``error`` / ``warning`` /
``info``), each with a title and a message.  Toasts are kept in a
bounded ring buffer so a UI can render the recent ones, and are pushed to
any registered sinks as they are shown.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

logger = logging.getLogger(__name__)

TOAST_KINDS = ("success", "error", "warning", "info")
DEFAULT_CAPACITY = 50


class Toast:
    """One shown toast."""
    __slots__ = ("kind", "title", "message", "created_at")

    def __init__(self, kind: str, title: str, message: str, created_at: datetime) -> None:
        self.kind = kind
        self.title = title
        self.message = message
        self.created_at = created_at

    @property
    def text(self) -> str:
        return f"{self.title}: {self.message}" if self.message else self.title

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"Toast({self.kind!r}, {self.text!r})"


ToastSink = Callable[[Toast], None]


class ToastService:
    """Collects toasts and forwards them to sinks."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self._toasts: deque[Toast] = deque(maxlen=capacity)
        self._lock = threading.Lock()
        self._sinks: list[ToastSink] = []

    def add_sink(self, sink: ToastSink) -> None:
        self._sinks.append(sink)

    def show(self, kind: str, title: str, message: str = "") -> Toast:
        if kind not in TOAST_KINDS:
            raise ValueError(f"Unknown toast kind: {kind!r}")
        toast = Toast(kind, title, message, datetime.now(UTC))
        with self._lock:
            self._toasts.append(toast)
        for sink in list(self._sinks):
            try:
                sink(toast)
            except Exception:
                logger.exception("Toast sink failed")
        return toast

    def show_success(self, title: str, message: str = "") -> Toast:
        return self.show("success", title, message)

    def show_error(self, title: str, message: str = "") -> Toast:
        return self.show("error", title, message)

    def show_warning(self, title: str, message: str = "") -> Toast:
        return self.show("warning", title, message)

    def show_info(self, title: str, message: str = "") -> Toast:
        return self.show("info", title, message)

    @property
    def toasts(self) -> list[Toast]:
        with self._lock:
            return list(self._toasts)

    def of_kind(self, kind: str) -> list[Toast]:
        return [t for t in self.toasts if t.kind == kind]

    def clear(self) -> None:
        with self._lock:
            self._toasts.clear()
