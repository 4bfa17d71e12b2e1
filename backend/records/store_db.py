"""
Postgres-backed record store on a single JSONB table.

Schema (see `backend/migrations/0001_prepmint_core.sql`):
    public.records(collection text, id text, data jsonb,
                   created_at timestamptz, updated_at timestamptz,
                   primary key (collection, id))

Security:
- Field names are validated in `store.build_query` and passed as bind
  parameters (`data -> %s`); only the sort direction is interpolated and it is
  restricted to `asc`/`desc`.
- Changes are published on the in-process feed after the statement commits.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import os
import uuid

try:
    import psycopg
    from psycopg.types.json import Json
    HAVE_PSYCOPG = True
except ImportError:  # pragma: no cover - optional in some dev envs
    psycopg = None  # type: ignore
    Json = None  # type: ignore
    HAVE_PSYCOPG = False

from .feed import ChangeFeed
from .store import (
    DEFAULT_PAGE_SIZE,
    IMMUTABLE_FIELDS,
    ListQuery,
    Page,
    build_query,
    check_collection,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _where_clause(collection: str, query: ListQuery) -> Tuple[str, List[Any]]:
    parts = ["collection = %s"]
    params: List[Any] = [collection]
    for fname, op, value in query.filters:
        if op == "is":
            if value is None:
                parts.append("(data -> %s is null or data -> %s = 'null'::jsonb)")
                params.extend([fname, fname])
            else:
                parts.append("data -> %s = %s::jsonb")
                params.extend([fname, Json(value)])
        elif op == "in":
            parts.append("%s::jsonb @> (data -> %s)")
            params.extend([Json(list(value)), fname])
        elif op == "neq":
            parts.append("(data -> %s) is distinct from %s::jsonb")
            params.extend([fname, Json(value)])
        else:
            sym = {"eq": "=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}[op]
            parts.append(f"data -> %s {sym} %s::jsonb")
            params.extend([fname, Json(value)])
    if query.search_term and query.search_fields:
        ors = []
        for fname in query.search_fields:
            ors.append("coalesce(data ->> %s, '') ilike %s")
            params.extend([fname, f"%{query.search_term}%"])
        parts.append("(" + " or ".join(ors) + ")")
    return " and ".join(parts), params


class DBRecordStore:
    """Same interface as `RecordStore`, persisted in `public.records`."""

    def __init__(self, dsn: str | None = None, feed: Optional[ChangeFeed] = None) -> None:
        if not HAVE_PSYCOPG:
            raise RuntimeError("psycopg3 is required for DBRecordStore")
        self._dsn = dsn or os.getenv("PREPMINT_DATABASE_URL") or os.getenv("DATABASE_URL", "")
        if not self._dsn:
            raise RuntimeError("No database DSN provided for DBRecordStore")
        self.feed = feed or ChangeFeed()

    def list(
        self,
        collection: str,
        *,
        page: int = 0,
        page_size: int = DEFAULT_PAGE_SIZE,
        order_by: str = "created_at",
        direction: str = "desc",
        filters: Optional[Iterable[Sequence[Any]]] = None,
        search: Optional[Tuple[str, Sequence[str]]] = None,
    ) -> Page:
        check_collection(collection)
        query = build_query(
            page=page,
            page_size=page_size,
            order_by=order_by,
            direction=direction,
            filters=filters,
            search=search,
        )
        where, params = _where_clause(collection, query)
        order = "asc" if query.direction == "asc" else "desc"
        offset = query.page * query.page_size
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(f"select count(*) from public.records where {where}", tuple(params))
                total = int((cur.fetchone() or [0])[0])
                cur.execute(
                    f"select data from public.records where {where} "
                    f"order by data -> %s {order} nulls last, id {order} limit %s offset %s",
                    tuple(params + [query.order_by, query.page_size, offset]),
                )
                rows = cur.fetchall()
        items = [dict(r[0]) for r in rows]
        return Page(
            items=items,
            total=total,
            page=query.page,
            page_size=query.page_size,
            has_more=total > offset + len(items),
        )

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        check_collection(collection)
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "select data from public.records where collection = %s and id = %s",
                    (collection, str(record_id)),
                )
                row = cur.fetchone()
        return dict(row[0]) if row else None

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        check_collection(collection)
        if not isinstance(data, dict):
            raise ValueError("invalid_data")
        now = _now_iso()
        rid = str(data.get("id") or uuid.uuid4().hex)
        row = dict(data)
        row.update({"id": rid, "created_at": now, "updated_at": now})
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "insert into public.records (collection, id, data) values (%s, %s, %s) "
                    "on conflict (collection, id) do nothing returning id",
                    (collection, rid, Json(row)),
                )
                inserted = cur.fetchone()
        if not inserted:
            raise ValueError("id_taken")
        self.feed.publish(collection, "INSERT", new=row)
        return rid

    def update(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        check_collection(collection)
        if not isinstance(data, dict):
            raise ValueError("invalid_data")
        patch = {k: v for k, v in data.items() if k not in IMMUTABLE_FIELDS}
        patch["updated_at"] = _now_iso()
        with psycopg.connect(self._dsn) as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    cur.execute(
                        "select data from public.records where collection = %s and id = %s for update",
                        (collection, str(record_id)),
                    )
                    row = cur.fetchone()
                    if not row:
                        raise LookupError("not_found")
                    old = dict(row[0])
                    new = {**old, **patch}
                    cur.execute(
                        "update public.records set data = %s, updated_at = now() "
                        "where collection = %s and id = %s",
                        (Json(new), collection, str(record_id)),
                    )
        self.feed.publish(collection, "UPDATE", new=new, old=old)
        return new

    def delete(self, collection: str, record_id: str) -> None:
        check_collection(collection)
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "delete from public.records where collection = %s and id = %s returning data",
                    (collection, str(record_id)),
                )
                row = cur.fetchone()
        if not row:
            raise LookupError("not_found")
        self.feed.publish(collection, "DELETE", old=dict(row[0]))

    def bulk_delete(self, collection: str, ids: Iterable[str]) -> int:
        check_collection(collection)
        id_list = list(dict.fromkeys(str(i) for i in ids))
        if not id_list:
            return 0
        with psycopg.connect(self._dsn, autocommit=True) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "delete from public.records where collection = %s and id = any(%s) returning data",
                    (collection, id_list),
                )
                rows = cur.fetchall()
        for r in rows:
            self.feed.publish(collection, "DELETE", old=dict(r[0]))
        return len(rows)
