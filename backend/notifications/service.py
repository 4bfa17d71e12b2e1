"""Notification sending rules.

Teachers, institutions, admins and devs can notify users; students cannot.
Titles and messages are sanitized before storage because they are rendered in
other users' dashboards.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging

from identity_access.domain import ROLE_MANAGERS
from identity_access.validation import is_valid_institution_id, is_valid_role, is_valid_uid, sanitize_text

from .repo import NOTIFICATION_TYPES, NotificationRepo

logger = logging.getLogger("prepmint.notifications")

SENDER_ROLES = frozenset({"teacher", "institution", "admin", "dev"})
MAX_RECIPIENTS = 500
MAX_TITLE_LENGTH = 200
MAX_MESSAGE_LENGTH = 2000
MAX_METADATA_KEYS = 20


@dataclass(frozen=True)
class Sender:
    sub: str
    name: str
    role: str
    institution_id: Optional[str] = None


def _clean(value: object, *, max_length: int, code: str) -> str:
    if not isinstance(value, str) or not value.strip() or len(value.strip()) > max_length:
        raise ValueError(code)
    cleaned = sanitize_text(value, max_length=max_length)
    if not cleaned:
        raise ValueError(code)
    return cleaned


def send(
    repo: NotificationRepo,
    *,
    sender: Sender,
    recipients: Sequence[str],
    type: str,
    title: object,
    message: object,
    action_url: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> List[str]:
    """Create one notification per distinct recipient; returns the new ids.

    Raises:
        PermissionError: sender role may not notify others.
        ValueError: invalid recipients, type, title, message, action url or
            metadata.
    """
    if sender.role not in SENDER_ROLES:
        raise PermissionError("forbidden")
    unique = list(dict.fromkeys(recipients or ()))
    if not unique:
        raise ValueError("no_recipients")
    if len(unique) > MAX_RECIPIENTS:
        raise ValueError("too_many_recipients")
    if any(not is_valid_uid(r) for r in unique):
        raise ValueError("invalid_recipient")
    if type not in NOTIFICATION_TYPES:
        raise ValueError("invalid_type")
    clean_title = _clean(title, max_length=MAX_TITLE_LENGTH, code="invalid_title")
    clean_message = _clean(message, max_length=MAX_MESSAGE_LENGTH, code="invalid_message")
    if action_url is not None and (not isinstance(action_url, str) or not action_url.startswith("/") or action_url.startswith("//")):
        raise ValueError("invalid_action_url")
    if metadata is not None and (not isinstance(metadata, dict) or len(metadata) > MAX_METADATA_KEYS):
        raise ValueError("invalid_metadata")

    ids = [
        repo.create(
            user_id=uid,
            type=type,
            title=clean_title,
            message=clean_message,
            sender_id=sender.sub,
            sender_name=sender.name,
            sender_role=sender.role,
            action_url=action_url,
            metadata=metadata,
        )
        for uid in unique
    ]
    logger.info("notifications_sent sender=%s count=%s type=%s", sender.sub, len(ids), type)
    return ids


def institution_recipients(
    profiles,
    *,
    sender: Sender,
    institution_id: object,
    role: Optional[str] = None,
) -> List[str]:
    """Uids of an institution's users, optionally narrowed to one role.

    Admins and devs may address any institution; other senders only their own.
    One uid beyond `MAX_RECIPIENTS` is returned so `send` rejects oversized
    audiences instead of truncating them.
    """
    if not is_valid_institution_id(institution_id):
        raise ValueError("invalid_institution_id")
    if role is not None and not is_valid_role(role):
        raise ValueError("invalid_role")
    if sender.role not in SENDER_ROLES:
        raise PermissionError("forbidden")
    if sender.role not in ROLE_MANAGERS and sender.institution_id != institution_id:
        raise PermissionError("forbidden")
    audience = profiles.list_by_institution(institution_id=institution_id, role=role, limit=MAX_RECIPIENTS + 1)
    return [p.uid for p in audience]
