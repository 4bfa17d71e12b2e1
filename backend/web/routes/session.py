"""
Session routes: exchange an identity token for a server-side session.

Why:
    The browser signs in with the identity provider and posts the resulting ID
    token once. We verify it here, make sure a profile exists, and hand out an
    opaque session id in an HttpOnly cookie. The role never travels in the
    cookie; it is read from the profile on every authorization decision.

Notes:
    - `/api/session`, `/api/auth/session` and `POST /api/auth/login` are
      public in the middleware so signed-out clients can log in and probe
      their state. Password login serves admin-provisioned accounts.
    - Logout always succeeds: store failures are logged and the cookie is
      expired regardless.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from components import Layout
from identity_access.domain import DEFAULT_ROLE, dashboard_path
from identity_access.tokens import TokenVerificationError, load_token_config, verify_id_token
from identity_access.validation import is_valid_email, is_valid_uid, sanitize_display_name

import wiring
from auth_utils import SESSION_COOKIE_NAME, SETTINGS, cookie_opts, is_inapp_path

from .common import current_profile, current_user, json_private, private_error, read_json_object
from .security import csrf_guard

session_router = APIRouter(tags=["Session"])  # explicit paths, no prefix
logger = logging.getLogger("prepmint.web.session")


def set_session_cookie(response: Response, value: str, *, max_age: int) -> None:
    opts = cookie_opts(SETTINGS.environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response) -> None:
    opts = cookie_opts(SETTINGS.environment)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        httponly=True,
        secure=opts["secure"],
        samesite=opts["samesite"],
        path="/",
        expires=0,
        max_age=0,
    )


def _end_session(request: Request) -> None:
    """Delete the server-side session behind the cookie (best-effort)."""
    sid = request.cookies.get(SESSION_COOKIE_NAME)
    if not sid:
        return
    try:
        wiring.get_sessions().delete(sid)
    except Exception as exc:
        logger.warning("Session delete failed during logout: %s", exc.__class__.__name__)


def _profile_for_claims(claims: dict):
    """Return the profile for the token subject, creating a student on first login."""
    repo = wiring.get_profiles()
    sub = str(claims["sub"])
    profile = repo.get(sub)
    if profile is not None:
        return profile
    email = str(claims.get("email") or "").strip().lower()
    name = sanitize_display_name(claims.get("name") or "") or (email.split("@")[0] if email else "User")
    profile = repo.create(uid=sub, email=email, display_name=name, role=DEFAULT_ROLE)
    logger.info("profile_created uid=%s role=%s", sub, profile.role)
    return profile


def _start_session(profile, body: dict) -> Response:
    """Create a server-side session for `profile` and return `body` with the cookie."""
    ttl = SETTINGS.session_ttl_seconds
    rec = wiring.get_sessions().create(
        sub=profile.uid,
        roles=[profile.role],
        name=profile.display_name,
        email=profile.email,
        ttl_seconds=ttl,
    )
    resp = json_private(body)
    set_session_cookie(resp, rec.session_id, max_age=ttl)
    logger.info("session_created uid=%s role=%s", profile.uid, profile.role)
    return resp


@session_router.post("/api/session")
async def create_session(request: Request):
    """Verify `{idToken}` and start a session.

    Behavior:
        - 400 when the body is not JSON or `idToken` is missing
        - 401 when verification fails
        - 409 when a first login collides with another account's email
        - 200 `{ok: true}` and a `__session` cookie (5 days by default)
    """
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    id_token = body.get("idToken")
    if not isinstance(id_token, str) or not id_token.strip():
        return private_error("bad_request", status_code=400, detail="missing_id_token")

    try:
        claims = verify_id_token(id_token=id_token, cfg=load_token_config())
    except TokenVerificationError as exc:
        if exc.code == "not_configured":
            logger.error("ID token verification is not configured (AUTH_JWT_SECRET unset)")
        else:
            logger.warning("ID token verification failed: %s", exc.code)
        return private_error("unauthenticated", status_code=401, detail=exc.code)
    if not is_valid_uid(claims.get("sub")):
        return private_error("unauthenticated", status_code=401, detail="invalid_sub")

    try:
        profile = _profile_for_claims(claims)
    except ValueError as exc:
        logger.warning("Profile creation failed on login: %s", exc)
        return private_error("conflict", status_code=409, detail=str(exc))

    return _start_session(profile, {"ok": True})


@session_router.post("/api/auth/login")
async def password_login(request: Request):
    """Sign in with `{email, password}` for accounts provisioned by an admin.

    Unknown emails and wrong passwords answer the same 401 so the endpoint
    does not reveal which accounts exist.
    """
    csrf = csrf_guard(request)
    if csrf:
        return csrf
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    email, password = body.get("email"), body.get("password")
    if not is_valid_email(email) or not isinstance(password, str) or not password:
        return private_error("bad_request", status_code=400, detail="email_and_password_required")
    repo = wiring.get_profiles()
    profile = repo.get_by_email(email)
    if profile is None or not repo.verify_password(profile.uid, password):
        logger.warning("password_login_failed")
        return private_error("unauthenticated", status_code=401, detail="invalid_credentials")
    return _start_session(profile, {"success": True, "uid": profile.uid, "role": profile.role})


@session_router.delete("/api/session")
async def delete_session(request: Request):
    """Logout: drop the server-side session and expire the cookie. Always 200."""
    _end_session(request)
    resp = json_private({"ok": True})
    clear_session_cookie(resp)
    return resp


@session_router.post("/api/auth/session")
async def check_session(request: Request):
    """Report the current session: `{success, uid, role}` or 401."""
    user = current_user(request)
    if not user:
        return json_private({"error": "No valid session"}, status_code=401)
    profile = current_profile(request)
    role = profile.role if profile else user.get("role", DEFAULT_ROLE)
    return json_private({"success": True, "uid": user["sub"], "role": role})


@session_router.delete("/api/auth/session")
async def sign_out(request: Request):
    _end_session(request)
    resp = json_private({"success": True})
    clear_session_cookie(resp)
    return resp


@session_router.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, next: str | None = None):
    """Minimal sign-in shell; signed-in users go straight to `next` or their dashboard."""
    safe_next = next if is_inapp_path(next) else None
    user = current_user(request)
    headers = {"Cache-Control": "private, no-store"}
    if user:
        profile = current_profile(request)
        role = profile.role if profile else user.get("role", DEFAULT_ROLE)
        return RedirectResponse(url=safe_next or dashboard_path(role), status_code=302, headers=headers)
    next_attr = Layout.escape(safe_next or "")
    content = (
        '<section class="card auth-card">'
        "<h1>Sign in to PrepMint</h1>"
        "<p>Sign in with your school account to continue.</p>"
        f'<div id="signin" data-session-endpoint="/api/session" data-password-endpoint="/api/auth/login" '
        f'data-next="{next_attr}"></div>'
        "</section>"
    )
    layout = Layout(title="Sign in", content=content, user=None, show_nav=False, current_path="/login")
    return HTMLResponse(content=layout.render(), headers=headers)


@session_router.get("/logout")
async def logout_page(request: Request):
    _end_session(request)
    resp = RedirectResponse(url="/login", status_code=302, headers={"Cache-Control": "private, no-store"})
    clear_session_cookie(resp)
    return resp
