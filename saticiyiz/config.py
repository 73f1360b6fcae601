"""
saticiyiz.config — YAML Configuration Loader
=============================================

Reads ``forum.yaml`` for client and maintenance settings (storage keys,
session lifetime, polling intervals, retention).  Secrets such as
``DATABASE_URL`` and ``JWT_SECRET`` never live here; they come from the
environment (``.env`` via python-dotenv).

Usage::

    from saticiyiz.config import load_config

    cfg = load_config()               # reads ./forum.yaml by default
    print(cfg.site_name)              # "Satıcıyız Forum"
    print(cfg.unread_poll_seconds)    # 120
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

# Known weak JWT secrets that must never be used in production.
_WEAK_SECRETS = frozenset({
    "change-me",
    "changeme",
    "secret",
    "jwt-secret",
    "supersecret",
})
_MIN_SECRET_LENGTH = 32


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ForumConfig:
    """Immutable configuration loaded from ``forum.yaml``.

    Every field has a default so ``ForumConfig()`` is a usable baseline
    for tests and local development.
    """

    # Identity
    site_name: str = "Satıcıyız Forum"

    # Client-local storage
    auth_storage_key: str = "saticiyiz-forum-auth"
    draft_storage_key: str = "saticiyiz-forum-draft"
    storage_path: str | None = None  # None → in-memory storage

    # Auth
    session_ttl_minutes: int = 60
    bcrypt_rounds: int = 12

    # Notifications
    notification_page_size: int = 20
    unread_poll_seconds: float = 120.0

    # Drafts
    draft_autosave_seconds: float = 30.0

    # Maintenance worker
    notification_retention_days: int = 90
    notification_max_per_user: int = 500
    email_dispatch_seconds: float = 60.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "forum.yaml") -> ForumConfig:
    """Read *path* and return a :class:`ForumConfig` instance.

    Unknown keys are ignored; missing keys keep their defaults.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy forum.yaml.example → forum.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    known = {f.name: f for f in fields(ForumConfig)}
    values = {}
    for key, value in raw.items():
        if key not in known:
            continue
        default = known[key].default
        if isinstance(default, bool) or value is None:
            values[key] = value
        elif isinstance(default, int):
            values[key] = int(value)
        elif isinstance(default, float):
            values[key] = float(value)
        else:
            values[key] = value
    return ForumConfig(**values)


def load_jwt_secret() -> str:
    """Load and validate ``JWT_SECRET`` from the environment.

    Raises RuntimeError if the secret is missing, blank, too short
    (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret
