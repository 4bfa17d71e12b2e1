"""
Same-origin CSRF guard on cookie-authenticated writes.

Uses POST /api/notifications/read-all as a representative write endpoint.
"""
from __future__ import annotations

import pytest

from utils.sessions import client, login, make_user

pytestmark = pytest.mark.anyio("asyncio")


@pytest.mark.anyio
async def test_same_origin_write_passes():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.post("/api/notifications/read-all", headers={"Origin": "http://test"})
    assert r.status_code == 200


@pytest.mark.anyio
async def test_cross_origin_write_is_forbidden():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.post("/api/notifications/read-all", headers={"Origin": "https://evil.example"})
    assert r.status_code == 403
    assert r.json() == {"error": "forbidden", "detail": "csrf_violation"}
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_cross_origin_referer_is_forbidden():
    async with client() as c:
        login(c, make_user("student"))
        r = await c.post("/api/notifications/read-all", headers={"Referer": "https://evil.example/page"})
    assert r.status_code == 403


@pytest.mark.anyio
async def test_missing_headers_pass_in_dev_but_not_in_prod(monkeypatch: pytest.MonkeyPatch):
    async with client() as c:
        login(c, make_user("student"))
        dev = await c.post("/api/notifications/read-all")
        monkeypatch.setenv("PREPMINT_ENV", "production")
        prod = await c.post("/api/notifications/read-all")
    assert dev.status_code == 200
    assert prod.status_code == 403


@pytest.mark.anyio
async def test_forwarded_host_is_trusted_only_behind_proxy(monkeypatch: pytest.MonkeyPatch):
    headers = {
        "Origin": "https://app.example.com",
        "X-Forwarded-Proto": "https",
        "X-Forwarded-Host": "app.example.com",
    }
    async with client() as c:
        login(c, make_user("student"))
        untrusted = await c.post("/api/notifications/read-all", headers=headers)
        monkeypatch.setenv("PREPMINT_TRUST_PROXY", "true")
        trusted = await c.post("/api/notifications/read-all", headers=headers)
    assert untrusted.status_code == 403
    assert trusted.status_code == 200
