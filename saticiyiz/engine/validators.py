"""
saticiyiz.engine.validators — Form Checks
==========================================

Client-side checks run before any network call.  Each validator raises
:class:`FormValidationError` carrying the Turkish message shown next to
the form; nothing here is logged.
"""

from __future__ import annotations

import re

from saticiyiz.constants import EMAIL_PATTERN, MIN_PASSWORD_LENGTH, USERNAME_PATTERN

SPONSOR_SUFFIX = " [SPONSOR]"


class FormValidationError(ValueError):
    """A form input failed a local check."""


def validate_login(email: str, password: str) -> None:
    if not email.strip() or not password:
        raise FormValidationError("Lütfen tüm alanları doldurun")


def validate_registration(
    email: str, password: str, password_confirm: str, username: str,
) -> None:
    if not email.strip() or not password or not password_confirm or not username.strip():
        raise FormValidationError("Lütfen tüm alanları doldurun")
    if password != password_confirm:
        raise FormValidationError("Şifreler eşleşmiyor")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise FormValidationError(f"Şifre en az {MIN_PASSWORD_LENGTH} karakter olmalıdır")
    if not re.match(EMAIL_PATTERN, email.strip()):
        raise FormValidationError("Geçersiz email adresi.")
    if not re.match(USERNAME_PATTERN, username.strip()):
        raise FormValidationError(
            "Kullanıcı adı 3-20 karakter olmalı ve yalnızca harf, rakam ve _ içermelidir"
        )


def validate_topic(title: str, content: str, *, signed_in: bool) -> None:
    if not title.strip() or not content.strip():
        raise FormValidationError("Lütfen başlık ve içerik alanlarını doldurun")
    if not signed_in:
        raise FormValidationError("Başlık oluşturmak için giriş yapmalısınız")


def validate_comment(content: str, *, signed_in: bool, max_length: int | None = None) -> None:
    if not signed_in:
        raise FormValidationError("Yorum yapmak için giriş yapmalısınız")
    if not content.strip():
        raise FormValidationError("Yorum boş olamaz")
    if max_length is not None and len(content) > max_length:
        raise FormValidationError(f"Yorum en fazla {max_length} karakter olabilir")


def topic_title(title: str, *, sponsored: bool = False) -> str:
    """Final stored title: trimmed, with the sponsor marker when flagged."""
    final = title.strip()
    return final + SPONSOR_SUFFIX if sponsored else final
