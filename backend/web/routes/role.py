"""
Role API routes: read the caller's role and let admins change roles and claims.

Security:
    - The role is always read from the profile repository, never from the
      session cookie.
    - Changing a role revokes every session of the target user, so the new role
      takes effect on their next sign-in instead of whenever the cookie expires.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from identity_access.domain import DEFAULT_ROLE, ROLE_MANAGERS
from identity_access.validation import is_claimable_role, is_valid_institution_id, is_valid_role, is_valid_uid

import wiring

from .common import current_profile, current_user, json_private, private_error, read_json_object
from .security import csrf_guard

role_router = APIRouter(tags=["Role"])
logger = logging.getLogger("prepmint.web.role")


def revoke_sessions(uid: str) -> int:
    """Best-effort revocation; a store failure must not undo the role change."""
    try:
        return wiring.get_sessions().delete_for_sub(uid)
    except Exception as exc:
        logger.warning("Session revocation failed: %s", exc.__class__.__name__)
        return 0


def _require_role_manager(request: Request):
    """Return (profile, error_response) ensuring caller may manage roles."""
    if not current_user(request):
        return None, private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None:
        return None, private_error("unauthenticated", status_code=401)
    if profile.role not in ROLE_MANAGERS:
        logger.warning("role_change_denied caller=%s role=%s", profile.uid, profile.role)
        return None, private_error("forbidden", status_code=403)
    return profile, None


@role_router.get("/api/role")
async def get_role(request: Request):
    """Return `{role: "guest"}` without a session, else role and identity."""
    user = current_user(request)
    if not user:
        return json_private({"role": "guest"})
    profile = current_profile(request)
    role = profile.role if profile else DEFAULT_ROLE
    email = profile.email if profile else user.get("email", "")
    return json_private({"role": role, "user": {"uid": user["sub"], "id": user["sub"], "email": email}})


@role_router.post("/api/role")
async def set_role(request: Request):
    """Change a user's role (admin/dev only).

    Behavior:
        - 401 without session, 403 for other roles
        - 400 when `uid`/`role` are missing or the role is unknown
        - 404 when the uid does not exist
        - 200 `{ok: true}`; the target's sessions are revoked
    """
    caller, error = _require_role_manager(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    uid, role = body.get("uid"), body.get("role")
    if not uid or not role:
        return private_error("bad_request", status_code=400, detail="uid_and_role_required")
    if not is_valid_uid(uid) or not is_valid_role(role):
        return private_error("bad_request", status_code=400, detail="invalid_role")
    updated = wiring.get_profiles().update_role(uid, role)
    if updated is None:
        return private_error("not_found", status_code=404)
    revoked = revoke_sessions(uid)
    logger.info("role_changed caller=%s target=%s role=%s revoked=%s", caller.uid, uid, role, revoked)
    return json_private({"ok": True})


@role_router.post("/api/auth/set-claims")
async def set_claims(request: Request):
    """Set role and institution claims for a user (admin/dev only)."""
    caller, error = _require_role_manager(request)
    if error:
        return error
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    uid, role = body.get("uid"), body.get("role")
    institution_id = body.get("institutionId")
    if not uid or not role:
        return private_error("bad_request", status_code=400, detail="uid_and_role_required")
    if not is_claimable_role(role):
        return private_error("bad_request", status_code=400, detail="invalid_role")
    if not is_valid_uid(uid):
        return private_error("bad_request", status_code=400, detail="invalid_uid")
    if institution_id is not None and not is_valid_institution_id(institution_id):
        return private_error("bad_request", status_code=400, detail="invalid_institution_id")

    repo = wiring.get_profiles()
    target = repo.get(uid)
    if target is None:
        return private_error("not_found", status_code=404)
    if not target.email:
        return private_error("bad_request", status_code=400, detail="email_not_found")
    repo.set_claims(uid, role=role, institution_id=institution_id)
    revoke_sessions(uid)
    logger.info("claims_set caller=%s target=%s role=%s", caller.uid, uid, role)
    return json_private(
        {
            "success": True,
            "message": "Custom claims set successfully",
            "claims": {"role": role, "email": target.email, "institutionId": institution_id},
        }
    )
