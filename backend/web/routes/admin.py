"""
Admin user management and the user directory.

Why:
    Admins provision accounts for schools (single and bulk), reset passwords
    and remove accounts. Teachers and institutions look up users by role to
    address notifications or awards.

Permissions:
    - `POST /api/admin/users`: admin or dev.
    - `/api/users/search`, `/api/users/list`: teacher, institution, admin, dev.
"""

from __future__ import annotations

from typing import Any, Dict
import logging
import os

from fastapi import APIRouter, Request

from identity_access.domain import ALLOWED_ROLES, DIRECTORY_ROLES, ROLE_MANAGERS
from identity_access.validation import (
    is_claimable_role,
    is_valid_account_type,
    is_valid_email,
    is_valid_institution_id,
    is_valid_password,
    is_valid_uid,
    sanitize_display_name,
)

import wiring

from .common import current_profile, current_user, json_private, private_error, read_json_object
from .role import revoke_sessions
from .security import csrf_guard

admin_router = APIRouter(tags=["Admin"])
logger = logging.getLogger("prepmint.web.admin")

MAX_BULK_USERS = 500
_FALLBACK_TEMP_PASSWORD = "TempPassword123!"


def _default_password() -> str:
    return os.getenv("DEFAULT_TEMP_PASSWORD") or _FALLBACK_TEMP_PASSWORD


def _create_user(data: Dict[str, Any]) -> str:
    """Validate one user entry and create the profile; returns the new uid.

    Raises ValueError with a short code for invalid input or a taken email.
    """
    email = data.get("email")
    if not is_valid_email(email):
        raise ValueError("invalid_email")
    display_name = sanitize_display_name(data.get("displayName"))
    if len(display_name) < 2:
        raise ValueError("invalid_display_name")
    role = data.get("role") or "student"
    if not is_claimable_role(role):
        raise ValueError("invalid_role")
    account_type = data.get("accountType") or "individual"
    if not is_valid_account_type(account_type):
        raise ValueError("invalid_account_type")
    institution_id = data.get("institutionId") or None
    if institution_id is not None and not is_valid_institution_id(institution_id):
        raise ValueError("invalid_institution_id")
    password = data.get("password") or _default_password()
    if not is_valid_password(password):
        raise ValueError("weak_password")
    profile = wiring.get_profiles().create(
        email=email,
        display_name=display_name,
        role=role,
        password=password,
        institution_id=institution_id,
        account_type=account_type,
    )
    return profile.uid


def _target_uid(data: Dict[str, Any]):
    uid = data.get("userId")
    return uid if is_valid_uid(uid) else None


@admin_router.post("/api/admin/users")
async def admin_users(request: Request):
    """Dispatch `{action, data}` for create/resetPassword/deleteAuth/bulkCreate."""
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    caller = current_profile(request)
    if caller is None or caller.role not in ROLE_MANAGERS:
        logger.warning("admin_users_denied caller=%s", getattr(caller, "uid", None))
        return private_error("forbidden", status_code=403)
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    action = body.get("action")
    data = body.get("data")
    if not isinstance(data, dict):
        data = {}
    repo = wiring.get_profiles()

    if action == "create":
        try:
            uid = _create_user(data)
        except ValueError as exc:
            code = str(exc)
            if code == "email_taken":
                return private_error("conflict", status_code=409, detail=code)
            return private_error("bad_request", status_code=400, detail=code)
        logger.info("user_created caller=%s uid=%s", caller.uid, uid)
        return json_private({"success": True, "userId": uid})

    if action == "resetPassword":
        uid = _target_uid(data)
        if uid is None:
            return private_error("bad_request", status_code=400, detail="invalid_user_id")
        if not is_valid_password(data.get("newPassword")):
            return private_error("bad_request", status_code=400, detail="weak_password")
        if not repo.set_password(uid, data["newPassword"]):
            return private_error("not_found", status_code=404)
        revoke_sessions(uid)
        logger.info("password_reset caller=%s uid=%s", caller.uid, uid)
        return json_private({"success": True})

    if action == "deleteAuth":
        uid = _target_uid(data)
        if uid is None:
            return private_error("bad_request", status_code=400, detail="invalid_user_id")
        if not repo.delete(uid):
            return private_error("not_found", status_code=404)
        revoke_sessions(uid)
        logger.info("user_deleted caller=%s uid=%s", caller.uid, uid)
        return json_private({"success": True})

    if action == "bulkCreate":
        users = data.get("users")
        if not isinstance(users, list) or not users:
            return private_error("bad_request", status_code=400, detail="users_required")
        if len(users) > MAX_BULK_USERS:
            return private_error("bad_request", status_code=400, detail="too_many_users")
        results = []
        for entry in users:
            entry = entry if isinstance(entry, dict) else {}
            try:
                uid = _create_user(entry)
            except ValueError as exc:
                results.append({"success": False, "email": entry.get("email"), "error": str(exc)})
                continue
            results.append({"success": True, "email": entry.get("email"), "uid": uid})
        created = sum(1 for r in results if r["success"])
        logger.info("bulk_created caller=%s created=%s failed=%s", caller.uid, created, len(results) - created)
        return json_private({"success": True, "results": results})

    return private_error("bad_request", status_code=400, detail="Invalid action")


def _require_directory_role(request: Request):
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None or profile.role not in DIRECTORY_ROLES:
        return private_error("forbidden", status_code=403)
    return None


def _directory_entry(profile) -> dict:
    return {"sub": profile.uid, "name": profile.display_name, "email": profile.email, "role": profile.role}


@admin_router.get("/api/users/search")
async def users_search(request: Request, q: str = "", role: str = "student", limit: int = 20):
    """Search users of a role by display name or email.

    Validation:
        - `q` min length 2
        - `role` in ALLOWED_ROLES
        - `limit` clamped to 1..50
    """
    error = _require_directory_role(request)
    if error:
        return error
    q = (q or "").strip()
    if len(q) < 2:
        return private_error("bad_request", status_code=400, detail="q_too_short")
    if role not in ALLOWED_ROLES:
        return private_error("bad_request", status_code=400, detail="invalid_role")
    limit = max(1, min(50, int(limit)))
    results = wiring.get_profiles().search_by_name(role=role, q=q, limit=limit)
    return json_private([_directory_entry(p) for p in results])


@admin_router.get("/api/users/list")
async def users_list(request: Request, role: str = "student", limit: int = 50, offset: int = 0):
    """List users by role (limit 1..200, offset >= 0)."""
    error = _require_directory_role(request)
    if error:
        return error
    if role not in ALLOWED_ROLES:
        return private_error("bad_request", status_code=400, detail="invalid_role")
    limit = max(1, min(200, int(limit)))
    offset = max(0, int(offset))
    results = wiring.get_profiles().list_by_role(role=role, limit=limit, offset=offset)
    return json_private([_directory_entry(p) for p in results])
