"""
Gamification API routes (XP and badges).

Why:
    Teachers reward students for finished work. The rules live in
    `gamification.service`; this adapter authenticates the caller, re-reads the
    caller's role from the profile and maps domain errors to the API contract.

Permissions:
    - Awarding XP/badges: teacher, admin, dev.
    - Reading badges: the user themself, teacher, institution, admin, dev.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from gamification.levels import calculate_level, level_progress, xp_for_next_level
from gamification.service import GamificationService
from identity_access.domain import DIRECTORY_ROLES

import wiring

from .common import current_profile, current_user, json_private, map_domain_error, private_error, read_json_object
from .security import csrf_guard

gamify_router = APIRouter(tags=["Gamification"])
logger = logging.getLogger("prepmint.web.gamify")


def _service() -> GamificationService:
    return GamificationService(wiring.get_profiles())


async def _authenticated_body(request: Request):
    """Return (profile, body, error_response) for award endpoints."""
    if not current_user(request):
        return None, None, private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None:
        return None, None, private_error("unauthenticated", status_code=401, detail="profile_not_found")
    csrf = csrf_guard(request)
    if csrf:
        return None, None, csrf
    body = await read_json_object(request)
    if body is None:
        return None, None, private_error("bad_request", status_code=400, detail="invalid_json")
    return profile, body, None


@gamify_router.post("/api/gamify/xp")
async def award_xp(request: Request):
    """Award XP: `{userId, amount, reason}` -> `{success, message, data}`."""
    requester, body, error = await _authenticated_body(request)
    if error:
        return error
    user_id, amount, reason = body.get("userId"), body.get("amount"), body.get("reason")
    if not user_id or amount is None or reason is None:
        return private_error("bad_request", status_code=400, detail="missing_fields")
    try:
        award = _service().award_xp(requester_role=requester.role, user_id=user_id, amount=amount, reason=reason)
    except PermissionError as exc:
        logger.warning("xp_award_denied requester=%s role=%s", requester.uid, requester.role)
        return map_domain_error(exc)
    except (ValueError, LookupError) as exc:
        return map_domain_error(exc)
    except Exception as exc:
        logger.error("xp_award_failed error=%s", exc.__class__.__name__)
        return private_error("internal_error", status_code=500)
    logger.info(
        "xp_awarded requester=%s target=%s amount=%s new_level=%s",
        requester.uid,
        award.user_id,
        award.xp_awarded,
        award.new_level,
    )
    return json_private({"success": True, "message": "XP awarded successfully", "data": award.to_dict()})


@gamify_router.post("/api/gamify/badges")
async def award_badge(request: Request):
    """Award a badge once: `{userId, badgeId}` -> `{success, message, data}`."""
    requester, body, error = await _authenticated_body(request)
    if error:
        return error
    user_id, badge_id = body.get("userId"), body.get("badgeId")
    if not user_id or not badge_id:
        return private_error("bad_request", status_code=400, detail="missing_fields")
    try:
        was_awarded = _service().award_badge(requester_role=requester.role, user_id=user_id, badge_id=badge_id)
    except PermissionError as exc:
        logger.warning("badge_award_denied requester=%s role=%s", requester.uid, requester.role)
        return map_domain_error(exc)
    except (ValueError, LookupError) as exc:
        return map_domain_error(exc)
    except Exception as exc:
        logger.error("badge_award_failed error=%s", exc.__class__.__name__)
        return private_error("internal_error", status_code=500)
    if was_awarded:
        logger.info("badge_awarded requester=%s target=%s badge=%s", requester.uid, user_id, badge_id)
    return json_private(
        {
            "success": True,
            "message": "Badge awarded successfully" if was_awarded else "Badge already awarded",
            "data": {"userId": user_id, "badgeId": badge_id, "wasAwarded": was_awarded},
        }
    )


@gamify_router.get("/api/gamify/badges/{user_id}")
async def get_badges(request: Request, user_id: str):
    """List a user's badges (self or staff roles)."""
    user = current_user(request)
    if not user:
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    role = profile.role if profile else ""
    if user["sub"] != user_id and role not in DIRECTORY_ROLES:
        return private_error("forbidden", status_code=403)
    return json_private({"userId": user_id, "badges": _service().get_badges(user_id)})


@gamify_router.get("/api/gamify/progress")
async def get_progress(request: Request):
    """Current user's XP, level and progress towards the next level."""
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None:
        return private_error("not_found", status_code=404)
    level = calculate_level(profile.xp)
    return json_private(
        {
            "xp": profile.xp,
            "level": level,
            "progress": round(level_progress(profile.xp), 2),
            "nextLevelXp": xp_for_next_level(level),
            "badges": list(profile.badges),
            "streak": profile.streak,
        }
    )
