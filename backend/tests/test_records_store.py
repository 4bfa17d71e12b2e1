"""
In-memory RecordStore: CRUD, list parameters and change publication.
"""
from __future__ import annotations

import pytest

from records.store import MAX_PAGE_SIZE, RecordStore, build_query


@pytest.fixture
def store() -> RecordStore:
    s = RecordStore()
    for rid, name, grade in (("r1", "Algebra", 9), ("r2", "Biology", 10), ("r3", "Chemistry", 11), ("r4", "Art", None)):
        s.add("subjects", {"id": rid, "name": name, "grade": grade})
    return s


def test_add_stamps_timestamps_and_publishes(store: RecordStore):
    rid = store.add("tests", {"name": "Midterm"})
    row = store.get("tests", rid)
    assert row["id"] == rid and row["created_at"] == row["updated_at"]
    change = store.feed.since("tests")[-1]
    assert change.event == "INSERT" and change.new["name"] == "Midterm"


def test_add_rejects_duplicate_ids_and_bad_input(store: RecordStore):
    with pytest.raises(ValueError, match="id_taken"):
        store.add("subjects", {"id": "r1", "name": "Again"})
    with pytest.raises(ValueError, match="invalid_data"):
        store.add("subjects", ["not", "a", "dict"])
    with pytest.raises(ValueError, match="invalid_collection"):
        store.add("Bad Name", {"name": "x"})


def test_list_orders_and_paginates(store: RecordStore):
    page = store.list("subjects", page=0, page_size=2, order_by="name", direction="asc")
    assert [r["name"] for r in page.items] == ["Algebra", "Art"]
    assert page.total == 4 and page.has_more is True
    last = store.list("subjects", page=1, page_size=2, order_by="name", direction="asc")
    assert [r["name"] for r in last.items] == ["Biology", "Chemistry"]
    assert last.has_more is False
    assert last.to_dict()["pageSize"] == 2


def test_rows_without_order_field_go_last(store: RecordStore):
    desc = store.list("subjects", order_by="grade", direction="desc")
    assert [r["id"] for r in desc.items] == ["r3", "r2", "r1", "r4"]
    asc = store.list("subjects", order_by="grade", direction="asc")
    assert [r["id"] for r in asc.items] == ["r1", "r2", "r3", "r4"]


def test_filters(store: RecordStore):
    def ids(**kw):
        return sorted(r["id"] for r in store.list("subjects", **kw).items)

    assert ids(filters=[("grade", "gte", 10)]) == ["r2", "r3"]
    assert ids(filters=[("grade", "lt", 10)]) == ["r1"]
    assert ids(filters=[("name", "in", ["Art", "Biology"])]) == ["r2", "r4"]
    assert ids(filters=[("grade", "is", None)]) == ["r4"]
    assert ids(filters=[("name", "neq", "Art"), ("grade", "eq", 9)]) == ["r1"]


def test_search_runs_before_pagination(store: RecordStore):
    page = store.list("subjects", page_size=1, order_by="name", direction="asc", search=("r", ["name"]))
    # "Art" and "Chemistry" contain "r"; "Algebra" too.
    assert page.total == 3
    assert [r["name"] for r in page.items] == ["Algebra"]


def test_build_query_validation():
    assert build_query(page=-3, page_size=10_000).page == 0
    assert build_query(page_size=10_000).page_size == MAX_PAGE_SIZE
    assert build_query(page_size=0).page_size == 1
    assert build_query(page_size=-5).page_size == 1
    assert build_query(page_size=None).page_size == 20
    with pytest.raises(ValueError, match="invalid_direction"):
        build_query(direction="sideways")
    with pytest.raises(ValueError, match="invalid_filter_op"):
        build_query(filters=[("name", "like", "x")])
    with pytest.raises(ValueError, match="invalid_filter_value"):
        build_query(filters=[("name", "in", "x")])
    with pytest.raises(ValueError, match="invalid_field"):
        build_query(order_by="name; drop table")


def test_update_merges_and_protects_immutable_fields(store: RecordStore):
    before = store.get("subjects", "r1")
    updated = store.update("subjects", "r1", {"name": "Algebra II", "id": "hijack", "created_at": "1970"})
    assert updated["id"] == "r1" and updated["name"] == "Algebra II"
    assert updated["created_at"] == before["created_at"]
    change = store.feed.since("subjects")[-1]
    assert change.event == "UPDATE" and change.old["name"] == "Algebra"
    with pytest.raises(LookupError):
        store.update("subjects", "missing", {"name": "x"})


def test_delete_and_bulk_delete(store: RecordStore):
    store.delete("subjects", "r1")
    assert store.get("subjects", "r1") is None
    with pytest.raises(LookupError):
        store.delete("subjects", "r1")
    assert store.bulk_delete("subjects", ["r2", "r2", "missing", "r3"]) == 2
    deletes = [c for c in store.feed.since("subjects") if c.event == "DELETE"]
    assert [c.record_id for c in deletes] == ["r1", "r2", "r3"]


def test_returned_rows_are_copies(store: RecordStore):
    row = store.get("subjects", "r1")
    row["name"] = "mutated"
    assert store.get("subjects", "r1")["name"] == "Algebra"
