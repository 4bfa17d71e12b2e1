"""
Generic record store with pagination, filtering and change publication.

Why:
    Admin and dashboard lists (institutions, subjects, tests, evaluations,
    reports, notifications) all need the same operations: paged listing with
    ordering and filters, search, single-row CRUD and bulk delete. One store
    keyed by collection name avoids a repository per list.

Design:
    `RecordStore` is the in-memory implementation used in dev and tests.
    `store_db.DBRecordStore` keeps the same interface on a JSONB table. Both
    publish every mutation on a `ChangeFeed` so realtime consumers stay in sync.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import copy
import re
import threading
import uuid

from .feed import ChangeFeed

FILTER_OPS = ("eq", "neq", "gt", "gte", "lt", "lte", "in", "is")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
IMMUTABLE_FIELDS = ("id", "created_at")

_COLLECTION_RE = re.compile(r"^[a-z][a-z0-9_]{0,62}$")
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

Filter = Tuple[str, str, Any]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Page:
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "hasMore": self.has_more,
        }


@dataclass
class ListQuery:
    """Normalized list parameters shared by the memory and DB stores."""

    page: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    order_by: str = "created_at"
    direction: str = "desc"
    filters: List[Filter] = field(default_factory=list)
    search_term: str = ""
    search_fields: List[str] = field(default_factory=list)


def check_collection(name: str) -> str:
    if not isinstance(name, str) or not _COLLECTION_RE.match(name):
        raise ValueError("invalid_collection")
    return name


def check_field(name: str) -> str:
    if not isinstance(name, str) or not _FIELD_RE.match(name):
        raise ValueError("invalid_field")
    return name


def build_query(
    *,
    page: int = 0,
    page_size: int = DEFAULT_PAGE_SIZE,
    order_by: str = "created_at",
    direction: str = "desc",
    filters: Optional[Iterable[Sequence[Any]]] = None,
    search: Optional[Tuple[str, Sequence[str]]] = None,
) -> ListQuery:
    """Validate and clamp list arguments.

    Raises ValueError for unknown operators, bad field names or directions.
    """
    direction = (direction or "desc").lower()
    if direction not in ("asc", "desc"):
        raise ValueError("invalid_direction")
    norm_filters: List[Filter] = []
    for item in filters or ():
        if len(item) != 3:
            raise ValueError("invalid_filter")
        fname, op, value = item
        if op not in FILTER_OPS:
            raise ValueError("invalid_filter_op")
        if op == "in" and not isinstance(value, (list, tuple, set)):
            raise ValueError("invalid_filter_value")
        norm_filters.append((check_field(fname), op, value))
    term, fields = ("", [])
    if search:
        term = str(search[0] or "").strip()
        fields = [check_field(f) for f in (search[1] or ())]
    return ListQuery(
        page=max(0, int(page if page is not None else 0)),
        page_size=max(1, min(MAX_PAGE_SIZE, int(DEFAULT_PAGE_SIZE if page_size is None else page_size))),
        order_by=check_field(order_by or "created_at"),
        direction=direction,
        filters=norm_filters,
        search_term=term,
        search_fields=fields,
    )


def _compare(op: str, actual: Any, expected: Any) -> bool:
    try:
        if op == "eq":
            return actual == expected
        if op == "neq":
            return actual != expected
        if op == "in":
            return actual in list(expected)
        if op == "is":
            return actual is expected
        if actual is None or expected is None:
            return False
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "lt":
            return actual < expected
        if op == "lte":
            return actual <= expected
    except TypeError:
        return False
    return False


def matches(row: Dict[str, Any], query: ListQuery) -> bool:
    for fname, op, value in query.filters:
        if not _compare(op, row.get(fname), value):
            return False
    if query.search_term and query.search_fields:
        needle = query.search_term.lower()
        if not any(needle in str(row.get(f) or "").lower() for f in query.search_fields):
            return False
    return True


def _sort_rows(rows: List[Dict[str, Any]], order_by: str, direction: str) -> List[Dict[str, Any]]:
    present = [r for r in rows if r.get(order_by) is not None]
    missing = [r for r in rows if r.get(order_by) is None]
    reverse = direction == "desc"
    try:
        present.sort(key=lambda r: (r[order_by], str(r.get("id"))), reverse=reverse)
    except TypeError:
        present.sort(key=lambda r: (str(r[order_by]), str(r.get("id"))), reverse=reverse)
    # Rows without the order field go last in both directions.
    return present + missing


def paginate(rows: List[Dict[str, Any]], query: ListQuery) -> Page:
    filtered = [r for r in rows if matches(r, query)]
    ordered = _sort_rows(filtered, query.order_by, query.direction)
    start = query.page * query.page_size
    end = start + query.page_size
    return Page(
        items=ordered[start:end],
        total=len(ordered),
        page=query.page,
        page_size=query.page_size,
        has_more=len(ordered) > end,
    )


class RecordStore:
    def __init__(self, feed: Optional[ChangeFeed] = None) -> None:
        self.feed = feed or ChangeFeed()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

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
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._data.get(collection, {}).values()]
        return paginate(rows, query)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        check_collection(collection)
        with self._lock:
            row = self._data.get(collection, {}).get(str(record_id))
            return copy.deepcopy(row) if row is not None else None

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert a row, stamping `created_at`/`updated_at`; returns its id."""
        check_collection(collection)
        if not isinstance(data, dict):
            raise ValueError("invalid_data")
        now = _now_iso()
        rid = str(data.get("id") or uuid.uuid4().hex)
        row = copy.deepcopy(data)
        row.update({"id": rid, "created_at": now, "updated_at": now})
        with self._lock:
            rows = self._data.setdefault(collection, {})
            if rid in rows:
                raise ValueError("id_taken")
            rows[rid] = row
            self.feed.publish(collection, "INSERT", new=copy.deepcopy(row))
        return rid

    def update(self, collection: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge `data` into an existing row; `id` and `created_at` never change."""
        check_collection(collection)
        if not isinstance(data, dict):
            raise ValueError("invalid_data")
        with self._lock:
            rows = self._data.get(collection, {})
            current = rows.get(str(record_id))
            if current is None:
                raise LookupError("not_found")
            old = copy.deepcopy(current)
            for key, value in data.items():
                if key in IMMUTABLE_FIELDS:
                    continue
                current[key] = copy.deepcopy(value)
            current["updated_at"] = _now_iso()
            new = copy.deepcopy(current)
            self.feed.publish(collection, "UPDATE", new=new, old=old)
        return new

    def delete(self, collection: str, record_id: str) -> None:
        check_collection(collection)
        with self._lock:
            row = self._data.get(collection, {}).pop(str(record_id), None)
            if row is None:
                raise LookupError("not_found")
            self.feed.publish(collection, "DELETE", old=row)

    def bulk_delete(self, collection: str, ids: Iterable[str]) -> int:
        """Delete every existing id; unknown ids are ignored. Returns the count."""
        check_collection(collection)
        removed = 0
        with self._lock:
            rows = self._data.get(collection, {})
            for rid in dict.fromkeys(str(i) for i in ids):
                row = rows.pop(rid, None)
                if row is None:
                    continue
                removed += 1
                self.feed.publish(collection, "DELETE", old=row)
        return removed
