"""Tests for the versioned document store."""
from __future__ import annotations

import sqlite3

import pytest

from storage.documents import ConflictError, DocumentStore, StoreError
from storage.migrate import migrate


def test_migrate_creates_tables(tmp_path):
    db_path = str(tmp_path / "nested" / "interview.db")
    migrate(db_path)
    conn = sqlite3.connect(db_path)
    try:
        names = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"documents", "document_index"} <= names


def test_put_get_round_trip_injects_version(store: DocumentStore):
    assert store.get("session", "s1") is None
    version = store.put("session", "s1", {"user_id": "u1", "status": "active"}, expected_version=0)
    assert version == 1
    doc = store.get("session", "s1")
    assert doc == {"user_id": "u1", "status": "active", "version": 1}


def test_expected_version_mismatch_raises_conflict(store: DocumentStore):
    store.put("session", "s1", {"user_id": "u1", "status": "active"}, expected_version=0)
    with pytest.raises(ConflictError) as info:
        store.put("session", "s1", {"user_id": "u1", "status": "paused"}, expected_version=0)
    assert info.value.expected == 0
    assert info.value.actual == 1

    assert store.put("session", "s1", {"user_id": "u1", "status": "paused"}, expected_version=1) == 2
    with pytest.raises(ConflictError):
        store.put("session", "s1", {"user_id": "u1", "status": "active"}, expected_version=1)
    assert store.get("session", "s1")["status"] == "paused"


def test_unconditional_put_bumps_version(store: DocumentStore):
    store.put("readiness", "r1", {"user_id": "u1"})
    assert store.put("readiness", "r1", {"user_id": "u1", "score": 3}) == 2


def test_secondary_index_follows_updates(store: DocumentStore):
    store.put("session", "s1", {"user_id": "u1", "status": "active"}, expected_version=0)
    store.put("session", "s2", {"user_id": "u1", "status": "completed"}, expected_version=0)
    store.put("session", "s3", {"user_id": "u2", "status": "active"}, expected_version=0)

    assert [d["version"] for d in store.query_index("session", "user_id", "u1")] == [1, 1]
    active = store.query_index("session", "status", "active")
    assert sorted(d["user_id"] for d in active) == ["u1", "u2"]

    store.put("session", "s1", {"user_id": "u1", "status": "abandoned"}, expected_version=1)
    assert [d["user_id"] for d in store.query_index("session", "status", "active")] == ["u2"]
    assert len(store.query_index("session", "status", "abandoned")) == 1


def test_unindexed_kinds_are_not_queryable(store: DocumentStore):
    store.put("misc", "m1", {"user_id": "u1"})
    assert store.query_index("misc", "user_id", "u1") == []


def test_scan_index_pages_past_the_first_batch(store: DocumentStore):
    for n in range(7):
        store.put("session", f"s{n}", {"user_id": "u1", "status": "active"}, expected_version=0)
    store.put("session", "other", {"user_id": "u2", "status": "active"}, expected_version=0)

    assert len(store.query_index("session", "user_id", "u1", limit=3)) == 3
    scanned = list(store.scan_index("session", "user_id", "u1", page_size=3))
    assert len(scanned) == 7
    assert all(doc["user_id"] == "u1" for doc in scanned)


def test_scan_index_survives_documents_leaving_the_index(store: DocumentStore):
    for n in range(6):
        store.put("session", f"s{n}", {"user_id": "u1", "status": "active"}, expected_version=0)
    seen = []
    for doc in store.scan_index("session", "status", "active", page_size=2):
        seen.append(doc["version"])
        sid = f"s{len(seen) - 1}"
        store.put("session", sid, {"user_id": "u1", "status": "abandoned"}, expected_version=1)
    assert len(seen) == 6
    assert store.query_index("session", "status", "active") == []


def test_driver_errors_surface_as_store_errors(tmp_path):
    bare = DocumentStore(str(tmp_path / "no-schema.db"), ensure_schema=False)
    with pytest.raises(StoreError):
        bare.get("session", "s1")
