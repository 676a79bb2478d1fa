"""Versioned document store with secondary indexes on SQLite."""
from __future__ import annotations

import datetime as dt
import json
import sqlite3
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .migrate import migrate
from .sqlite import StoreError, get_conn

# kind -> top-level document fields mirrored into document_index
INDEXED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "session": ("user_id", "status"),
    "readiness": ("user_id",),
    "questionPool": ("topic",),
    "resume": ("user_id",),
    "jobDescription": ("user_id",),
}


class ConflictError(RuntimeError):
    """Raised when an expected version does not match the stored one."""

    def __init__(self, kind: str, doc_id: str, expected: int, actual: int) -> None:
        super().__init__(f"{kind}/{doc_id}: expected version {expected}, found {actual}")
        self.kind = kind
        self.doc_id = doc_id
        self.expected = expected
        self.actual = actual


class DocumentStore:
    """Opaque key -> document mapping with optimistic versions.

    Documents are JSON objects. ``get`` returns the stored body with the
    current ``version`` injected so callers can round-trip it into
    ``put(..., expected_version=...)``.
    """

    def __init__(self, db_path: Optional[str] = None, *, ensure_schema: bool = True) -> None:
        self._db_path = db_path
        if ensure_schema and db_path:
            migrate(db_path)

    def get(self, kind: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT body, version FROM documents WHERE kind = ? AND doc_id = ?",
                (kind, doc_id),
            ).fetchone()
        if row is None:
            return None
        doc = json.loads(row["body"])
        doc["version"] = int(row["version"])
        return doc

    def put(
        self,
        kind: str,
        doc_id: str,
        doc: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        """Write ``doc`` and return its new version.

        ``expected_version=0`` means the document must not exist yet;
        ``None`` writes unconditionally.
        """

        body = dict(doc)
        body.pop("version", None)
        now = dt.datetime.now(dt.timezone.utc).isoformat()
        with get_conn(self._db_path) as conn:
            row = conn.execute(
                "SELECT version FROM documents WHERE kind = ? AND doc_id = ?",
                (kind, doc_id),
            ).fetchone()
            current = int(row["version"]) if row else 0
            if expected_version is not None and expected_version != current:
                raise ConflictError(kind, doc_id, expected_version, current)
            new_version = current + 1
            if row is None:
                try:
                    conn.execute(
                        "INSERT INTO documents (kind, doc_id, version, body, updated_at) VALUES (?, ?, ?, ?, ?)",
                        (kind, doc_id, new_version, json.dumps(body), now),
                    )
                except sqlite3.IntegrityError as exc:
                    raise ConflictError(kind, doc_id, current, current + 1) from exc
            else:
                cur = conn.execute(
                    """UPDATE documents SET version = ?, body = ?, updated_at = ?
                       WHERE kind = ? AND doc_id = ? AND version = ?""",
                    (new_version, json.dumps(body), now, kind, doc_id, current),
                )
                if cur.rowcount != 1:
                    raise ConflictError(kind, doc_id, current, current + 1)
            self._reindex(conn, kind, doc_id, body)
        return new_version

    def query_index(self, kind: str, index_name: str, key: Any, limit: int = 100) -> List[Dict[str, Any]]:
        """First ``limit`` documents whose ``index_name`` equals ``key``, ordered by id."""

        return [doc for _, doc in self._index_page(kind, index_name, key, limit, after=None)]

    def scan_index(self, kind: str, index_name: str, key: Any, page_size: int = 200) -> Iterator[Dict[str, Any]]:
        """Every document whose ``index_name`` equals ``key``, read in id-ordered pages.

        Pages are keyed on the last id seen, so documents that leave the
        index between pages do not shift later ones out of view.
        """

        after: Optional[str] = None
        while True:
            page = self._index_page(kind, index_name, key, page_size, after=after)
            for _, doc in page:
                yield doc
            if len(page) < page_size:
                return
            after = page[-1][0]

    def _index_page(
        self, kind: str, index_name: str, key: Any, limit: int, *, after: Optional[str]
    ) -> List[Tuple[str, Dict[str, Any]]]:
        sql = """SELECT d.doc_id, d.body, d.version FROM document_index i
                 JOIN documents d ON d.kind = i.kind AND d.doc_id = i.doc_id
                 WHERE i.kind = ? AND i.index_name = ? AND i.index_key = ?"""
        params: List[Any] = [kind, index_name, str(key)]
        if after is not None:
            sql += " AND i.doc_id > ?"
            params.append(after)
        sql += " ORDER BY i.doc_id LIMIT ?"
        params.append(limit)
        with get_conn(self._db_path) as conn:
            rows = conn.execute(sql, params).fetchall()
        page: List[Tuple[str, Dict[str, Any]]] = []
        for row in rows:
            doc = json.loads(row["body"])
            doc["version"] = int(row["version"])
            page.append((row["doc_id"], doc))
        return page

    def _reindex(self, conn: sqlite3.Connection, kind: str, doc_id: str, body: Dict[str, Any]) -> None:
        fields = INDEXED_FIELDS.get(kind, ())
        conn.execute("DELETE FROM document_index WHERE kind = ? AND doc_id = ?", (kind, doc_id))
        for name in fields:
            value = body.get(name)
            if value is None:
                continue
            conn.execute(
                "INSERT INTO document_index (kind, index_name, index_key, doc_id) VALUES (?, ?, ?, ?)",
                (kind, name, str(value), doc_id),
            )


__all__ = ["ConflictError", "DocumentStore", "INDEXED_FIELDS", "StoreError"]
