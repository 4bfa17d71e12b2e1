"""
Role endpoints: read own role, change roles and claims as admin/dev.
"""
from __future__ import annotations

import pytest

import wiring  # type: ignore
from utils.sessions import client, login, make_user

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_get_role_reads_profile_not_session():
    profile = make_user("student")
    async with client() as c:
        login(c, profile)
        wiring.get_profiles().update_role(profile.uid, "teacher")
        r = await c.get("/api/role")
    assert r.json()["role"] == "teacher"


@pytest.mark.anyio
async def test_admin_changes_role_and_revokes_sessions():
    admin = make_user("admin")
    target = make_user("student")
    target_sid = wiring.get_sessions().create(sub=target.uid, roles=["student"], name="T", email=target.email).session_id
    async with client() as c:
        login(c, admin)
        r = await c.post("/api/role", json={"uid": target.uid, "role": "teacher"})
    assert r.status_code == 200 and r.json() == {"ok": True}
    assert wiring.get_profiles().get(target.uid).role == "teacher"
    assert wiring.get_sessions().get(target_sid) is None


@pytest.mark.anyio
@pytest.mark.parametrize("role", ["student", "teacher", "institution"])
async def test_non_managers_cannot_change_roles(role):
    caller = make_user(role, uid=f"caller-{role}")
    make_user("student", uid="victim")
    async with client() as c:
        login(c, caller)
        r = await c.post("/api/role", json={"uid": "victim", "role": "admin"})
    assert r.status_code == 403
    assert wiring.get_profiles().get("victim").role == "student"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "body,status",
    [
        ({"uid": "student-1"}, 400),
        ({"uid": "student-1", "role": "root"}, 400),
        ({"uid": "missing", "role": "teacher"}, 404),
    ],
)
async def test_set_role_validation(body, status):
    make_user("student")
    async with client() as c:
        login(c, make_user("dev"))
        r = await c.post("/api/role", json=body)
    assert r.status_code == status


@pytest.mark.anyio
async def test_set_claims():
    make_user("student", uid="s1")
    async with client() as c:
        login(c, make_user("admin"))
        r = await c.post("/api/auth/set-claims", json={"uid": "s1", "role": "teacher", "institutionId": "school-1"})
    assert r.status_code == 200
    assert r.json()["claims"] == {"role": "teacher", "email": "s1@example.com", "institutionId": "school-1"}
    stored = wiring.get_profiles().get("s1")
    assert stored.role == "teacher" and stored.institution_id == "school-1"


@pytest.mark.anyio
async def test_set_claims_rejects_dev_and_missing_email():
    make_user("student", uid="s1")
    make_user("student", uid="s2", email="")
    async with client() as c:
        login(c, make_user("admin"))
        dev = await c.post("/api/auth/set-claims", json={"uid": "s1", "role": "dev"})
        no_email = await c.post("/api/auth/set-claims", json={"uid": "s2", "role": "teacher"})
        bad_inst = await c.post("/api/auth/set-claims", json={"uid": "s1", "role": "teacher", "institutionId": "x"})
    assert dev.status_code == 400 and dev.json()["detail"] == "invalid_role"
    assert no_email.status_code == 400 and no_email.json()["detail"] == "email_not_found"
    assert bad_inst.status_code == 400


@pytest.mark.anyio
@pytest.mark.parametrize("role", [["teacher"], {"role": "teacher"}, 7])
async def test_set_claims_rejects_non_string_role(role):
    make_user("student", uid="s1")
    async with client() as c:
        login(c, make_user("admin"))
        r = await c.post("/api/auth/set-claims", json={"uid": "s1", "role": role})
    assert r.status_code == 400
    assert r.json()["detail"] == "invalid_role"
    assert wiring.get_profiles().get("s1").role == "student"
