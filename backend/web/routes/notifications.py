"""
Notification API routes.

Users read and manage only their own notifications. Staff roles can send
notifications to explicit recipients or to every user of a role. Clients keep
their list current by polling `/api/notifications/changes?since=<seq>` and
merging the returned changes (see `records.feed.apply_change`).
"""

from __future__ import annotations

import logging

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field

from identity_access.domain import ALLOWED_ROLES
from notifications import service as notification_service
from notifications.repo import COLLECTION, NotificationRepo
from notifications.service import MAX_RECIPIENTS, Sender

import wiring

from .common import current_profile, current_user, json_private, map_domain_error, private_error
from .security import csrf_guard

notifications_router = APIRouter(tags=["Notifications"])
logger = logging.getLogger("prepmint.web.notifications")

MAX_LIST_LIMIT = 100
MAX_BULK_IDS = 500


# --- Request models ----------------------------------------------------------

class BulkDeletePayload(BaseModel):
    ids: list[str] = Field(..., max_length=MAX_BULK_IDS)


class SendNotificationPayload(BaseModel):
    """One audience: `recipients` (uids), `institutionId` (+ optional `role`) or `role`.

    Content is validated by the service.
    """

    model_config = ConfigDict(populate_by_name=True)

    recipients: list[str] | None = None
    role: str | None = None
    type: str = "announcement"
    title: str | None = None
    message: str | None = None
    action_url: str | None = Field(default=None, alias="actionUrl")
    institution_id: str | None = Field(default=None, alias="institutionId")
    metadata: dict[str, Any] | None = None


def _repo() -> NotificationRepo:
    return NotificationRepo(wiring.get_records())


def _require_user(request: Request):
    user = current_user(request)
    if not user:
        return None, private_error("unauthenticated", status_code=401)
    return user, None


@notifications_router.get("/api/notifications")
async def list_notifications(request: Request, limit: int = 50, unread_only: bool = False, type: str | None = None):
    user, error = _require_user(request)
    if error:
        return error
    limit = max(1, min(MAX_LIST_LIMIT, int(limit)))
    try:
        items = _repo().list_for_user(user["sub"], limit=limit, unread_only=unread_only, type=type)
    except ValueError as exc:
        return map_domain_error(exc)
    return json_private({"items": [n.to_dict() for n in items], "lastSeq": wiring.get_records().feed.last_seq})


@notifications_router.get("/api/notifications/unread-count")
async def unread_count(request: Request):
    user, error = _require_user(request)
    if error:
        return error
    return json_private({"count": _repo().unread_count(user["sub"])})


@notifications_router.get("/api/notifications/changes")
async def notification_changes(request: Request, since: int = 0):
    """Realtime delta: changes to the caller's notifications after `since`.

    `reset=true` when older changes were evicted from the feed buffer; the
    client must reload the list instead of merging.
    """
    user, error = _require_user(request)
    if error:
        return error
    since = max(0, int(since or 0))
    repo = _repo()
    changes = repo.changes_since(user["sub"], since)
    reset = not repo.feed.covers(COLLECTION, since)
    last = changes[-1].seq if changes else since
    if reset:
        last = max(last, repo.feed.last_seq)
    return json_private({"changes": [c.to_dict() for c in changes], "lastSeq": last, "reset": reset})


@notifications_router.post("/api/notifications/read-all")
async def mark_all_read(request: Request):
    user, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    return json_private({"success": True, "count": _repo().mark_all_read(user["sub"])})


@notifications_router.post("/api/notifications/clear-all")
async def clear_all(request: Request):
    """Delete every notification of the caller."""
    user, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    count = _repo().clear_all(user["sub"])
    logger.info("notifications_cleared user=%s count=%s", user["sub"], count)
    return json_private({"success": True, "count": count})


@notifications_router.post("/api/notifications/bulk-delete")
async def bulk_delete(request: Request, payload: BulkDeletePayload):
    """Delete several own notifications; foreign or unknown ids are skipped."""
    user, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    return json_private({"success": True, "count": _repo().delete_many(payload.ids, user["sub"])})


@notifications_router.post("/api/notifications/send")
async def send_notifications(request: Request, payload: SendNotificationPayload):
    """Send to `recipients` (uids), an institution (optionally one role of it)
    or every user of `role`.

    Permissions:
        teacher, institution, admin, dev (role read from the profile).
    """
    user, error = _require_user(request)
    if error:
        return error
    profile = current_profile(request)
    if profile is None:
        return private_error("unauthenticated", status_code=401)
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    sender = Sender(sub=profile.uid, name=profile.display_name, role=profile.role, institution_id=profile.institution_id)
    recipients = payload.recipients
    role = payload.role
    if recipients is None and payload.institution_id is not None:
        try:
            recipients = notification_service.institution_recipients(
                wiring.get_profiles(), sender=sender, institution_id=payload.institution_id, role=role
            )
        except (PermissionError, ValueError) as exc:
            return map_domain_error(exc)
    elif recipients is None and role is not None:
        if role not in ALLOWED_ROLES:
            return private_error("bad_request", status_code=400, detail="invalid_role")
        # One more than the cap so an oversized audience is rejected, not truncated.
        audience = wiring.get_profiles().list_by_role(role=role, limit=MAX_RECIPIENTS + 1, offset=0)
        recipients = [p.uid for p in audience]
    if not isinstance(recipients, list):
        return private_error("bad_request", status_code=400, detail="recipients_required")

    try:
        ids = notification_service.send(
            _repo(),
            sender=sender,
            recipients=recipients,
            type=payload.type,
            title=payload.title,
            message=payload.message,
            action_url=payload.action_url,
            metadata=payload.metadata,
        )
    except PermissionError as exc:
        logger.warning("notification_send_denied sender=%s role=%s", profile.uid, profile.role)
        return map_domain_error(exc)
    except ValueError as exc:
        return map_domain_error(exc)
    return json_private({"success": True, "ids": ids, "count": len(ids)})


@notifications_router.post("/api/notifications/{notification_id}/read")
async def mark_read(request: Request, notification_id: str):
    user, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    try:
        item = _repo().mark_read(notification_id, user["sub"])
    except LookupError as exc:
        return map_domain_error(exc)
    return json_private(item.to_dict())


@notifications_router.delete("/api/notifications/{notification_id}")
async def delete_notification(request: Request, notification_id: str):
    user, error = _require_user(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    try:
        _repo().delete(notification_id, user["sub"])
    except LookupError as exc:
        return map_domain_error(exc)
    return json_private({"success": True})
