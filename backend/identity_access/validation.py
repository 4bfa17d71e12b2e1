"""
Input validation and sanitization for identity and gamification payloads.

Why: API routes accept free-form JSON from browsers. Keep the checks pure and
framework-agnostic so routes, admin tooling and tests share one definition.
"""
from __future__ import annotations

import re

from .domain import ACCOUNT_TYPES, ALLOWED_ROLES, CLAIMABLE_ROLES

# Simplified RFC 5322 pattern; good enough to reject obvious garbage.
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_UID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_INSTITUTION_RE = re.compile(r"^[A-Za-z0-9_-]{3,50}$")
_BADGE_RE = re.compile(r"^[a-z0-9-]{3,50}$")

MAX_EMAIL_LEN = 254
MAX_DISPLAY_NAME_LEN = 100
MAX_XP_PER_AWARD = 1000


def is_valid_email(email: object) -> bool:
    if not isinstance(email, str) or not email.strip():
        return False
    return len(email) <= MAX_EMAIL_LEN and bool(_EMAIL_RE.match(email))


def sanitize_display_name(name: object) -> str:
    """Remove tags and quote characters, trim and cap at 100 chars."""
    if not isinstance(name, str):
        return ""
    cleaned = _TAG_RE.sub("", name.strip())
    cleaned = re.sub(r"[<>'\"]", "", cleaned)
    return cleaned[:MAX_DISPLAY_NAME_LEN]


def is_valid_display_name(name: object) -> bool:
    sanitized = sanitize_display_name(name)
    return 2 <= len(sanitized) <= MAX_DISPLAY_NAME_LEN


def is_valid_password(password: object) -> bool:
    """At least 8 chars with one upper, one lower and one digit."""
    if not isinstance(password, str) or len(password) < 8:
        return False
    return (
        any(c.isupper() for c in password)
        and any(c.islower() for c in password)
        and any(c.isdigit() for c in password)
    )


def is_valid_role(role: object) -> bool:
    return isinstance(role, str) and role in ALLOWED_ROLES


def is_claimable_role(role: object) -> bool:
    return isinstance(role, str) and role in CLAIMABLE_ROLES


def is_valid_account_type(value: object) -> bool:
    return isinstance(value, str) and value in ACCOUNT_TYPES


def is_valid_uid(uid: object) -> bool:
    return isinstance(uid, str) and bool(_UID_RE.match(uid))


def sanitize_text(text: object, max_length: int = 500) -> str:
    """Strip script blocks and tags, trim and truncate."""
    if not isinstance(text, str):
        return ""
    cleaned = _SCRIPT_RE.sub("", text.strip())
    cleaned = _TAG_RE.sub("", cleaned)
    return cleaned[:max_length]


def is_valid_institution_id(value: object) -> bool:
    if not isinstance(value, str) or not value.strip():
        return False
    return bool(_INSTITUTION_RE.match(value))


def is_valid_xp_amount(amount: object) -> bool:
    # bool is a subclass of int; `True` must not count as 1 XP.
    if isinstance(amount, bool) or not isinstance(amount, int):
        return False
    return 0 < amount <= MAX_XP_PER_AWARD


def is_valid_badge_id(badge_id: object) -> bool:
    if not isinstance(badge_id, str) or not badge_id.strip():
        return False
    return bool(_BADGE_RE.match(badge_id))
