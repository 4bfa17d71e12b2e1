"""
Generic records API for admin management lists.

Why:
    Admin pages for institutions, subjects, tests, evaluations and reports all
    share the same list/detail/edit mechanics. One router over the record store
    serves them all; the collection name is allow-listed so the API cannot be
    used to read other collections (e.g. notifications).

Query parameters for listing:
    page, pageSize (1..100), orderBy, direction (asc|desc), q + searchFields
    (comma separated), and filters as `filter=<field>:<op>:<value>` (repeatable;
    `in` takes a comma separated list; values `true`/`false`/`null` and numbers
    are parsed).

Permissions:
    admin and dev only.
"""

from __future__ import annotations

from typing import Any, List, Tuple
import json
import logging

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from identity_access.domain import ROLE_MANAGERS

import wiring

from .common import current_profile, current_user, json_private, map_domain_error, private_error, read_json_object
from .security import csrf_guard

records_router = APIRouter(tags=["Records"])
logger = logging.getLogger("prepmint.web.records")

ALLOWED_COLLECTIONS = frozenset({"institutions", "subjects", "tests", "evaluations", "reports"})
MAX_BULK_IDS = 500


class BulkDeletePayload(BaseModel):
    ids: list[str] = Field(..., max_length=MAX_BULK_IDS)


def _guard(request: Request, collection: str):
    if not current_user(request):
        return private_error("unauthenticated", status_code=401)
    profile = current_profile(request)
    if profile is None or profile.role not in ROLE_MANAGERS:
        return private_error("forbidden", status_code=403)
    if collection not in ALLOWED_COLLECTIONS:
        return private_error("not_found", status_code=404, detail="unknown_collection")
    return None


def _parse_scalar(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_filter(raw: str) -> Tuple[str, str, Any]:
    """Parse `field:op:value` into a filter tuple (value keeps its colons)."""
    parts = raw.split(":", 2)
    if len(parts) != 3:
        raise ValueError("invalid_filter")
    fname, op, value = parts
    if op == "in":
        return fname, op, [_parse_scalar(v) for v in value.split(",") if v != ""]
    return fname, op, _parse_scalar(value)


@records_router.get("/api/records/{collection}")
async def list_records(
    request: Request,
    collection: str,
    page: int = 0,
    pageSize: int = 20,
    orderBy: str = "created_at",
    direction: str = "desc",
    q: str = "",
    searchFields: str = "",
    filter: List[str] = Query(default=[]),
):
    error = _guard(request, collection)
    if error:
        return error
    try:
        filters = [parse_filter(f) for f in filter]
        search = None
        if q.strip():
            fields = [f.strip() for f in searchFields.split(",") if f.strip()] or ["name"]
            search = (q, fields)
        result = wiring.get_records().list(
            collection,
            page=page,
            page_size=pageSize,
            order_by=orderBy,
            direction=direction,
            filters=filters,
            search=search,
        )
    except ValueError as exc:
        return map_domain_error(exc)
    body = result.to_dict()
    body["lastSeq"] = wiring.get_records().feed.last_seq
    return json_private(body)


@records_router.post("/api/records/{collection}")
async def add_record(request: Request, collection: str):
    error = _guard(request, collection) or csrf_guard(request)
    if error:
        return error
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    try:
        rid = wiring.get_records().add(collection, body)
    except ValueError as exc:
        if str(exc) == "id_taken":
            return private_error("conflict", status_code=409, detail="id_taken")
        return map_domain_error(exc)
    logger.info("record_added collection=%s id=%s", collection, rid)
    return json_private({"id": rid}, status_code=201)


@records_router.get("/api/records/{collection}/changes")
async def record_changes(request: Request, collection: str, since: int = 0):
    """Changes after `since`; `reset=true` when the buffer no longer covers it."""
    error = _guard(request, collection)
    if error:
        return error
    since = max(0, int(since or 0))
    feed = wiring.get_records().feed
    changes = feed.since(collection, since)
    reset = not feed.covers(collection, since)
    last = changes[-1].seq if changes else max(since, 0)
    return json_private({"changes": [c.to_dict() for c in changes], "lastSeq": last, "reset": reset})


@records_router.post("/api/records/{collection}/bulk-delete")
async def bulk_delete_records(request: Request, collection: str, payload: BulkDeletePayload):
    error = _guard(request, collection) or csrf_guard(request)
    if error:
        return error
    count = wiring.get_records().bulk_delete(collection, payload.ids)
    logger.info("records_bulk_deleted collection=%s count=%s", collection, count)
    return json_private({"success": True, "count": count})


@records_router.get("/api/records/{collection}/{record_id}")
async def get_record(request: Request, collection: str, record_id: str):
    error = _guard(request, collection)
    if error:
        return error
    row = wiring.get_records().get(collection, record_id)
    if row is None:
        return private_error("not_found", status_code=404)
    return json_private(row)


@records_router.patch("/api/records/{collection}/{record_id}")
async def update_record(request: Request, collection: str, record_id: str):
    error = _guard(request, collection) or csrf_guard(request)
    if error:
        return error
    body = await read_json_object(request)
    if body is None:
        return private_error("bad_request", status_code=400, detail="invalid_json")
    try:
        row = wiring.get_records().update(collection, record_id, body)
    except (ValueError, LookupError) as exc:
        return map_domain_error(exc)
    return json_private(row)


@records_router.delete("/api/records/{collection}/{record_id}")
async def delete_record(request: Request, collection: str, record_id: str):
    error = _guard(request, collection) or csrf_guard(request)
    if error:
        return error
    try:
        wiring.get_records().delete(collection, record_id)
    except LookupError as exc:
        return map_domain_error(exc)
    logger.info("record_deleted collection=%s id=%s", collection, record_id)
    return json_private({"success": True})
