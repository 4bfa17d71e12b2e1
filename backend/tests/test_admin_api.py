"""
Admin user management and the user directory.
"""
from __future__ import annotations

import pytest

import wiring  # type: ignore
from utils.sessions import client, login, make_user

pytestmark = pytest.mark.anyio("asyncio")


async def _admin_post(body: dict, *, role: str = "admin"):
    async with client() as c:
        caller = wiring.get_profiles().get(f"{role}-caller") or make_user(role, uid=f"{role}-caller")
        login(c, caller)
        return await c.post("/api/admin/users", json=body)


@pytest.mark.anyio
async def test_create_user_with_default_password(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DEFAULT_TEMP_PASSWORD", "Welcome2024")
    r = await _admin_post(
        {"action": "create", "data": {"email": "new@school.org", "displayName": "New Teacher", "role": "teacher"}}
    )
    assert r.status_code == 200 and r.json()["success"] is True
    profile = wiring.get_profiles().get(r.json()["userId"])
    assert profile.role == "teacher" and profile.email == "new@school.org"
    assert wiring.get_profiles().verify_password(profile.uid, "Welcome2024")


@pytest.mark.anyio
@pytest.mark.parametrize(
    "data,detail",
    [
        ({"email": "bad", "displayName": "Name"}, "invalid_email"),
        ({"email": "a@b.org", "displayName": "N"}, "invalid_display_name"),
        ({"email": "a@b.org", "displayName": "Name", "role": "dev"}, "invalid_role"),
        ({"email": "a@b.org", "displayName": "Name", "role": ["admin"]}, "invalid_role"),
        ({"email": "a@b.org", "displayName": "Name", "accountType": {"x": 1}}, "invalid_account_type"),
        ({"email": "a@b.org", "displayName": "Name", "password": "weak"}, "weak_password"),
        ({"email": "a@b.org", "displayName": "Name", "institutionId": "!"}, "invalid_institution_id"),
    ],
)
async def test_create_user_validation(data, detail):
    r = await _admin_post({"action": "create", "data": data})
    assert r.status_code == 400
    assert r.json()["detail"] == detail


@pytest.mark.anyio
async def test_create_user_with_taken_email_conflicts():
    make_user("student", uid="s1", email="taken@school.org")
    r = await _admin_post({"action": "create", "data": {"email": "taken@school.org", "displayName": "Again"}})
    assert r.status_code == 409


@pytest.mark.anyio
async def test_only_admin_and_dev_manage_users():
    r = await _admin_post({"action": "create", "data": {}}, role="teacher")
    assert r.status_code == 403
    ok = await _admin_post({"action": "unknown"}, role="dev")
    assert ok.status_code == 400 and ok.json()["detail"] == "Invalid action"


@pytest.mark.anyio
async def test_reset_password_revokes_sessions():
    target = make_user("student", uid="s1")
    sid = wiring.get_sessions().create(sub="s1", roles=["student"], name="S", email=target.email).session_id
    weak = await _admin_post({"action": "resetPassword", "data": {"userId": "s1", "newPassword": "short"}})
    assert weak.status_code == 400
    r = await _admin_post({"action": "resetPassword", "data": {"userId": "s1", "newPassword": "NewPass123"}})
    assert r.status_code == 200
    assert wiring.get_profiles().verify_password("s1", "NewPass123")
    assert wiring.get_sessions().get(sid) is None
    missing = await _admin_post({"action": "resetPassword", "data": {"userId": "ghost", "newPassword": "NewPass123"}})
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_delete_user():
    make_user("student", uid="s1")
    r = await _admin_post({"action": "deleteAuth", "data": {"userId": "s1"}})
    assert r.status_code == 200
    assert wiring.get_profiles().get("s1") is None
    again = await _admin_post({"action": "deleteAuth", "data": {"userId": "s1"}})
    assert again.status_code == 404


@pytest.mark.anyio
async def test_bulk_create_reports_per_user_results():
    users = [
        {"email": "a@school.org", "displayName": "Alpha"},
        {"email": "not-an-email", "displayName": "Beta"},
        {"email": "a@school.org", "displayName": "Alpha Again"},
    ]
    r = await _admin_post({"action": "bulkCreate", "data": {"users": users}})
    assert r.status_code == 200
    results = r.json()["results"]
    assert [x["success"] for x in results] == [True, False, False]
    assert results[1]["error"] == "invalid_email"
    assert results[2]["error"] == "email_taken"
    empty = await _admin_post({"action": "bulkCreate", "data": {"users": []}})
    assert empty.status_code == 400


@pytest.mark.anyio
async def test_bulk_create_survives_non_string_fields():
    users = [
        {"email": "x@school.org", "displayName": "Xavier", "role": {"x": 1}},
        {"email": "y@school.org", "displayName": "Yvonne", "password": ["Secret123"]},
        {"email": "z@school.org", "displayName": "Zoe"},
        "not-an-object",
    ]
    r = await _admin_post({"action": "bulkCreate", "data": {"users": users}})
    assert r.status_code == 200
    results = r.json()["results"]
    assert [x["success"] for x in results] == [False, False, True, False]
    assert results[0]["error"] == "invalid_role"
    assert results[1]["error"] == "weak_password"
    assert wiring.get_profiles().get_by_email("z@school.org") is not None


@pytest.mark.anyio
async def test_directory_search_and_list():
    make_user("student", uid="s1", name="Anna Berg")
    make_user("student", uid="s2", name="Ben Cole")
    async with client() as c:
        login(c, make_user("teacher"))
        found = await c.get("/api/users/search", params={"q": "ann"})
        short = await c.get("/api/users/search", params={"q": "a"})
        listing = await c.get("/api/users/list", params={"role": "student", "limit": 1, "offset": 1})
        bad_role = await c.get("/api/users/list", params={"role": "root"})
        zero = await c.get("/api/users/list", params={"role": "student", "limit": 0})
    assert found.json() == [{"sub": "s1", "name": "Anna Berg", "email": "s1@example.com", "role": "student"}]
    assert short.status_code == 400
    assert [u["sub"] for u in listing.json()] == ["s2"]
    assert bad_role.status_code == 400
    assert [u["sub"] for u in zero.json()] == ["s1"]


@pytest.mark.anyio
async def test_students_cannot_use_directory():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.get("/api/users/list")
    assert r.status_code == 403
