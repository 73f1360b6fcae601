"""
Satıcıyız — Forum Client Core
==============================
Session, notification, reaction and moderation state for the Satıcıyız
seller forum, coordinated over a hosted relational store with row-level
security, realtime insert feeds and server-side functions.

Package layout::

    saticiyiz/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Member levels, points table, Turkish labels
    ├── validators.py      # Client-side form validation
    ├── storage.py         # Client-local key/value storage
    ├── app.py             # ForumApp composition root
    ├── worker.py          # Maintenance worker (retention, email)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default categories + system settings
    ├── store/
    │   ├── query.py       # Table query builder (select/insert/update/…)
    │   ├── policies.py    # Row-level security
    │   ├── triggers.py    # After-insert hooks (points, counters)
    │   ├── rpc.py         # Named server-side functions
    │   ├── realtime.py    # Insert-event subscriptions + PG LISTEN/NOTIFY
    │   ├── auth.py        # Sessions, sign up / in / out
    │   └── client.py      # ForumClient facade
    ├── engine/
    │   └── points.py      # Points → member level math
    └── services/
        ├── notification_coordinator.py  # Notification state machine
        ├── notification_service.py      # Notification data access
        ├── notification_format.py       # Grouping, labels, time strings
        ├── session_service.py           # Current-user provider
        ├── likes_service.py             # Reaction toggling
        ├── content_service.py           # Topics + comments
        ├── admin_service.py             # Moderation panel
        ├── retention_service.py         # Notification retention cleanup
        ├── email_dispatcher.py          # Email bookkeeping
        └── …
"""

__version__ = "0.1.0"
