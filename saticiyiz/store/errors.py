"""
saticiyiz.store.errors — Store & Auth Error Types
==================================================

Every failure the store collaborator reports is a :class:`StoreError`
carrying the same structured fields a hosted PostgREST-style backend
returns (``message``, ``code``, ``hint``, ``details``), so callers can
both show a localized string and log full diagnostics.

Well-known codes:

- ``PGRST116`` — single-row request matched zero or several rows
- ``PGRST202`` — unknown server-side function
- ``42501``    — row-level security / role violation
- ``42703``    — unknown column
- ``23505``    — unique violation
- ``22P02``    — invalid enum value
"""

from __future__ import annotations

from typing import Any

SINGLE_ROW_MISMATCH = "PGRST116"
UNKNOWN_FUNCTION = "PGRST202"
INSUFFICIENT_PRIVILEGE = "42501"
UNDEFINED_COLUMN = "42703"
UNIQUE_VIOLATION = "23505"
INVALID_TEXT_REPRESENTATION = "22P02"


class StoreError(Exception):
    """Failure reported by the query, RPC or realtime interface."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        hint: str | None = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.hint = hint
        self.details = details

    def as_dict(self) -> dict[str, Any]:
        """Structured form for log lines."""
        return {
            "message": self.message,
            "code": self.code,
            "hint": self.hint,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} code={self.code} message={self.message!r}>"


class AuthError(StoreError):
    """Failure reported by the auth interface."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.status = status
