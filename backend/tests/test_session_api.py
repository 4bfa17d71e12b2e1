"""
Session exchange: ID token -> opaque server session cookie.
"""
from __future__ import annotations

import pytest

import wiring  # type: ignore
from identity_access.tokens import issue_id_token, load_token_config
from utils.sessions import client, login, make_user

pytestmark = pytest.mark.anyio("asyncio")


def _token(sub: str = "new-user", **kw) -> str:
    return issue_id_token(sub=sub, cfg=load_token_config(), **kw)


def _session_cookie(response) -> str:
    header = response.headers["set-cookie"]
    assert header.startswith("__session=")
    return header.split(";", 1)[0].split("=", 1)[1]


@pytest.mark.anyio
async def test_first_login_creates_student_profile_and_session():
    async with client() as c:
        r = await c.post("/api/session", json={"idToken": _token(email="New@Example.com", name="New User")})
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["Cache-Control"] == "private, no-store"
    cookie = r.headers["set-cookie"].lower()
    assert "httponly" in cookie and "secure" in cookie and "samesite=lax" in cookie and "path=/" in cookie

    profile = wiring.get_profiles().get("new-user")
    assert profile.role == "student" and profile.email == "new@example.com"
    rec = wiring.get_sessions().get(_session_cookie(r))
    assert rec.sub == "new-user"


@pytest.mark.anyio
async def test_existing_profile_keeps_its_role():
    make_user("teacher", uid="t-42")
    async with client() as c:
        r = await c.post("/api/session", json={"idToken": _token(sub="t-42")})
        c.cookies.set("__session", _session_cookie(r))
        role = await c.get("/api/role")
    assert role.json()["role"] == "teacher"
    assert role.json()["user"]["uid"] == "t-42"


@pytest.mark.anyio
@pytest.mark.parametrize("body", [None, {"idToken": ""}, {"other": 1}])
async def test_missing_token_is_bad_request(body):
    async with client() as c:
        if body is None:
            r = await c.post("/api/session", content=b"not json", headers={"Content-Type": "application/json"})
        else:
            r = await c.post("/api/session", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"


@pytest.mark.anyio
async def test_invalid_or_expired_token_is_unauthorized():
    async with client() as c:
        bad = await c.post("/api/session", json={"idToken": "not.a.jwt"})
        expired = await c.post("/api/session", json={"idToken": _token(ttl_seconds=-60)})
    assert bad.status_code == 401 and bad.json()["detail"] == "invalid_token"
    assert expired.status_code == 401 and expired.json()["detail"] == "expired_token"
    assert "set-cookie" not in bad.headers


@pytest.mark.anyio
async def test_unconfigured_secret_is_unauthorized(monkeypatch: pytest.MonkeyPatch):
    token = _token()
    monkeypatch.delenv("AUTH_JWT_SECRET")
    async with client() as c:
        r = await c.post("/api/session", json={"idToken": token})
    assert r.status_code == 401 and r.json()["detail"] == "not_configured"


@pytest.mark.anyio
async def test_first_login_with_taken_email_conflicts():
    make_user("student", uid="existing", email="dup@example.com")
    async with client() as c:
        r = await c.post("/api/session", json={"idToken": _token(sub="other", email="dup@example.com")})
    assert r.status_code == 409


@pytest.mark.anyio
async def test_check_session_reports_profile_role():
    profile = make_user("institution")
    async with client() as c:
        login(c, profile)
        r = await c.post("/api/auth/session")
    assert r.json() == {"success": True, "uid": profile.uid, "role": "institution"}


@pytest.mark.anyio
async def test_logout_deletes_session_and_expires_cookie():
    async with client() as c:
        sid = login(c, make_user("student"))
        r = await c.delete("/api/session")
    assert r.status_code == 200
    assert "max-age=0" in r.headers["set-cookie"].lower()
    assert wiring.get_sessions().get(sid) is None


@pytest.mark.anyio
async def test_logout_without_session_still_succeeds():
    async with client() as c:
        r = await c.delete("/api/auth/session")
    assert r.status_code == 200 and r.json() == {"success": True}


@pytest.mark.anyio
async def test_login_page_and_redirects():
    async with client() as c:
        page = await c.get("/login?next=/rewards")
        assert page.status_code == 200
        assert 'data-next="/rewards"' in page.text
        unsafe = await c.get("/login?next=//evil.example")
        assert 'data-next=""' in unsafe.text

        login(c, make_user("teacher"))
        signed_in = await c.get("/login?next=/rewards")
        default = await c.get("/login")
    assert signed_in.status_code == 302 and signed_in.headers["location"] == "/rewards"
    assert default.headers["location"] == "/dashboard/teacher"


@pytest.mark.anyio
async def test_logout_page_redirects_to_login():
    async with client() as c:
        sid = login(c, make_user("student"))
        r = await c.get("/logout")
    assert r.status_code == 302 and r.headers["location"] == "/login"
    assert wiring.get_sessions().get(sid) is None


@pytest.mark.anyio
async def test_password_login_for_provisioned_account():
    profile = wiring.get_profiles().create(
        email="teacher@school.org", display_name="Ms. Teach", role="teacher", password="Welcome2024"
    )
    async with client() as c:
        r = await c.post("/api/auth/login", json={"email": "Teacher@School.org", "password": "Welcome2024"})
        assert r.status_code == 200
        assert r.json() == {"success": True, "uid": profile.uid, "role": "teacher"}
        c.cookies.set("__session", _session_cookie(r))
        check = await c.post("/api/auth/session")
    assert check.json()["uid"] == profile.uid
    assert wiring.get_sessions().get(_session_cookie(r)).sub == profile.uid


@pytest.mark.anyio
async def test_password_login_failures_look_alike():
    wiring.get_profiles().create(email="s@school.org", display_name="Student", password="Welcome2024")
    wiring.get_profiles().create(email="nopass@school.org", display_name="No Password")
    async with client() as c:
        wrong = await c.post("/api/auth/login", json={"email": "s@school.org", "password": "Wrong2024x"})
        unknown = await c.post("/api/auth/login", json={"email": "ghost@school.org", "password": "Welcome2024"})
        unset = await c.post("/api/auth/login", json={"email": "nopass@school.org", "password": "Welcome2024"})
        malformed = await c.post("/api/auth/login", json={"email": ["s@school.org"], "password": "x"})
    for r in (wrong, unknown, unset):
        assert r.status_code == 401
        assert r.json() == {"error": "unauthenticated", "detail": "invalid_credentials"}
        assert "set-cookie" not in r.headers
    assert malformed.status_code == 400
