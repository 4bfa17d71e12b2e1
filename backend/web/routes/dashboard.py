"""
Dashboard pages and role-based redirects.

Why:
    Every role lands on its own dashboard. The middleware only guarantees a
    session; this router decides which dashboard a user may see and sends
    everybody else to their own one instead of showing an error page.

Notes:
    - The role comes from the profile repository (fallback: session role).
    - `dev` shares the admin dashboard.
    - HTMX navigation receives only the main fragment (`Layout.render_fragment`).
"""

from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from components import Layout, NotificationList, XPCard
from identity_access.domain import DEFAULT_ROLE, DIRECTORY_ROLES, dashboard_path
from notifications.repo import NotificationRepo

import wiring

from .common import current_profile, current_user

dashboard_router = APIRouter(tags=["Dashboard"])

_PRIVATE = {"Cache-Control": "private, no-store"}
DASHBOARD_NOTIFICATION_LIMIT = 5

_TITLES = {
    "student": "Student Dashboard",
    "teacher": "Teacher Dashboard",
    "institution": "Institution Dashboard",
    "admin": "Admin Dashboard",
}

# Dashboards a role may open besides its own.
_EXTRA_ACCESS = {"dev": {"admin"}}


def _effective_user(request: Request) -> dict | None:
    """Session user with the role replaced by the stored profile role."""
    user = current_user(request)
    if not user:
        return None
    profile = current_profile(request)
    merged = dict(user)
    if profile is not None:
        merged["role"] = profile.role
        merged["name"] = profile.display_name or user.get("name", "")
    merged.setdefault("role", DEFAULT_ROLE)
    return merged


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302, headers=dict(_PRIVATE))


def _login_redirect(request: Request) -> RedirectResponse:
    # Normally handled by the middleware; kept for routers mounted without it.
    return _redirect(f"/login?next={quote(request.url.path, safe='/')}")


def _page(request: Request, *, title: str, content: str, user: dict) -> HTMLResponse:
    layout = Layout(title=title, content=content, user=user, current_path=request.url.path)
    body = layout.render_fragment() if request.headers.get("HX-Request") else layout.render()
    return HTMLResponse(content=body, headers=dict(_PRIVATE))


def _overview_cards(user: dict) -> str:
    profile = wiring.get_profiles().get(user["sub"])
    xp = profile.xp if profile else 0
    badges = list(profile.badges) if profile else []
    repo = NotificationRepo(wiring.get_records())
    items = [n.to_dict() for n in repo.list_for_user(user["sub"], limit=DASHBOARD_NOTIFICATION_LIMIT)]
    return XPCard(xp=xp, badges=badges).render() + NotificationList(items, unread=repo.unread_count(user["sub"])).render()


@dashboard_router.get("/")
async def index(request: Request):
    user = _effective_user(request)
    if not user:
        return _redirect("/login")
    return _redirect(dashboard_path(user["role"]))


@dashboard_router.get("/dashboard")
async def dashboard_home(request: Request):
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    return _redirect(dashboard_path(user["role"]))


@dashboard_router.get("/admin")
async def admin_home():
    return _redirect("/dashboard/admin")


@dashboard_router.get("/dashboard/analytics", response_class=HTMLResponse)
async def analytics_page(request: Request):
    """Analytics overview for staff roles; students are sent to their dashboard."""
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    if user["role"] not in DIRECTORY_ROLES:
        return _redirect(dashboard_path(user["role"]))
    evaluations = wiring.get_records().list("evaluations", page=0, page_size=1)
    content = (
        '<section class="card analytics-card">'
        "<h1>Analytics</h1>"
        f'<p class="stat"><span class="stat-value">{int(evaluations.total)}</span> evaluations</p>'
        "</section>"
    )
    return _page(request, title="Analytics", content=content, user=user)


@dashboard_router.get("/dashboard/{role}", response_class=HTMLResponse)
async def role_dashboard(request: Request, role: str):
    """Render the dashboard for `role` when the caller holds it.

    Behavior:
        - unknown dashboard -> the caller's own dashboard
        - foreign dashboard -> the caller's own dashboard (dev may open admin)
    """
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    own = user["role"]
    if role not in _TITLES or (role != own and role not in _EXTRA_ACCESS.get(own, ())):
        return _redirect(dashboard_path(own))
    title = _TITLES[role]
    content = (
        f'<header class="page-header"><h1>{Layout.escape(title)}</h1>'
        f'<p>Welcome back, {Layout.escape(user.get("name", ""))}.</p></header>'
        f'<div class="dashboard-grid">{_overview_cards(user)}</div>'
    )
    return _page(request, title=title, content=content, user=user)


@dashboard_router.get("/rewards", response_class=HTMLResponse)
async def rewards_page(request: Request):
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    profile = wiring.get_profiles().get(user["sub"])
    activity = wiring.get_profiles().list_activity(user["sub"], limit=20) if profile else []
    rows = []
    for entry in activity:
        payload = entry.payload or {}
        label = payload.get("reason") or payload.get("badgeId") or entry.type
        rows.append(f'<li class="activity">{Layout.escape(label)}</li>')
    history = f'<ul class="activity-list">{"".join(rows)}</ul>' if rows else '<p class="muted">No activity yet.</p>'
    content = (
        "<h1>Rewards</h1>"
        + XPCard(xp=profile.xp if profile else 0, badges=list(profile.badges) if profile else []).render()
        + f'<section class="card"><h2>Recent activity</h2>{history}</section>'
    )
    return _page(request, title="Rewards", content=content, user=user)


@dashboard_router.get("/profile", response_class=HTMLResponse)
async def profile_page(request: Request):
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    profile = wiring.get_profiles().get(user["sub"])
    email = profile.email if profile else user.get("email", "")
    institution = (profile.institution_id if profile else None) or "-"
    content = (
        '<section class="card profile-card"><h1>Profile</h1><dl>'
        f"<dt>Name</dt><dd>{Layout.escape(user.get('name', ''))}</dd>"
        f"<dt>Email</dt><dd>{Layout.escape(email or '-')}</dd>"
        f"<dt>Role</dt><dd>{Layout.escape(user['role'])}</dd>"
        f"<dt>Institution</dt><dd>{Layout.escape(institution)}</dd>"
        "</dl></section>"
    )
    return _page(request, title="Profile", content=content, user=user)


@dashboard_router.get("/settings", response_class=HTMLResponse)
async def settings_page(request: Request):
    user = _effective_user(request)
    if not user:
        return _login_redirect(request)
    content = (
        '<section class="card settings-card"><h1>Settings</h1>'
        '<p>Signing out ends the session on this device.</p>'
        '<a class="btn" href="/logout">Sign out</a></section>'
    )
    return _page(request, title="Settings", content=content, user=user)
