"""
Auth middleware and security headers.

Checks:
- API requests without a session get a private 401 JSON.
- Protected pages redirect to /login (HTMX gets 401 + HX-Redirect).
- Every response carries the hardened security headers.
"""
from __future__ import annotations

import pytest

import main  # type: ignore
import wiring  # type: ignore
from auth_utils import SETTINGS  # type: ignore
from utils.sessions import client, login, make_user

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_health_is_public_and_has_security_headers():
    async with client() as c:
        r = await c.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert "preload" in r.headers["Strict-Transport-Security"]
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "camera=()" in r.headers["Permissions-Policy"]
    assert "frame-ancestors 'none'" in r.headers["Content-Security-Policy"]


@pytest.mark.anyio
async def test_api_without_session_is_401_json():
    async with client() as c:
        r = await c.get("/api/notifications")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}
    assert r.headers["Cache-Control"] == "private, no-store"
    assert r.headers["Vary"] == "Origin"


@pytest.mark.anyio
async def test_public_api_endpoints_pass_without_session():
    async with client() as c:
        role = await c.get("/api/role")
        check = await c.post("/api/auth/session")
    assert role.status_code == 200 and role.json() == {"role": "guest"}
    assert check.status_code == 401 and check.json() == {"error": "No valid session"}


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/dashboard/student", "/dashboard", "/admin", "/rewards", "/settings"])
async def test_protected_pages_redirect_to_login(path):
    async with client() as c:
        r = await c.get(path)
    assert r.status_code == 302
    assert r.headers["location"] == f"/login?next={path}"
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_htmx_requests_get_hx_redirect():
    async with client() as c:
        r = await c.get("/dashboard/teacher", headers={"HX-Request": "true"})
    assert r.status_code == 401
    assert r.headers["HX-Redirect"] == "/login?next=/dashboard/teacher"


@pytest.mark.anyio
async def test_unknown_session_id_is_treated_as_signed_out():
    async with client() as c:
        c.cookies.set("__session", "not-a-session")
        r = await c.get("/api/notifications")
    assert r.status_code == 401


@pytest.mark.anyio
async def test_broken_session_store_is_treated_as_signed_out():
    class _Broken:
        def get(self, sid):
            raise RuntimeError("db down")

    wiring.set_sessions(_Broken())
    async with client() as c:
        c.cookies.set("__session", "abc")
        r = await c.get("/api/notifications")
    assert r.status_code == 401


@pytest.mark.anyio
async def test_signed_in_user_passes():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.get("/api/notifications")
    assert r.status_code == 200


def test_csp_is_stricter_in_production():
    dev = main.content_security_policy("dev")
    prod = main.content_security_policy("production")
    assert "'unsafe-inline'" in dev
    assert "'unsafe-inline'" not in prod
    assert "object-src 'none'" in prod


@pytest.mark.anyio
async def test_csp_header_follows_environment():
    SETTINGS.override_environment("prod")
    async with client() as c:
        r = await c.get("/health")
    assert "'unsafe-inline'" not in r.headers["Content-Security-Policy"]


@pytest.mark.anyio
async def test_invalid_payload_maps_to_bad_request():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.post("/api/notifications/bulk-delete", json={"ids": "nope"})
    assert r.status_code == 400
    assert r.json() == {"error": "bad_request", "detail": "invalid_input"}
