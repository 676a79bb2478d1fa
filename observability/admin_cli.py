"""Lightweight CLI helpers for inspecting stored interview documents."""
from __future__ import annotations

import argparse
import json
import sqlite3
from typing import Optional

from config.settings import settings


def _connect(db_path: Optional[str] = None) -> sqlite3.Connection:
    return sqlite3.connect(db_path or settings.DB_PATH)


def tail_sessions(limit: int = 20, db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT updated_at, doc_id, version, body
            FROM documents
            WHERE kind = 'session'
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            ts, session_id, version, body = row
            doc = json.loads(body)
            print(
                f"[{ts}] {session_id} v{version} user={doc.get('user_id')} {doc.get('interview_type')} "
                f"status={doc.get('status')} turns={len(doc.get('turns', []))} "
                f"difficulty={doc.get('difficulty')} scores={doc.get('rolling_scores')}"
            )
    finally:
        conn.close()


def tail_readiness(limit: int = 20, db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT updated_at, doc_id, body
            FROM documents
            WHERE kind = 'readiness'
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (limit,),
        )
        for row in cursor.fetchall():
            ts, session_id, body = row
            doc = json.loads(body)
            readiness = doc.get("readiness") or {}
            gaps = [gap.get("skill") for gap in readiness.get("identified_gaps", [])]
            print(
                f"[{ts}] {session_id} user={doc.get('user_id')} score={readiness.get('overall_score')} "
                f"level={readiness.get('readiness_level')} gaps={gaps}"
            )
    finally:
        conn.close()


def show_session(session_id: str, db_path: Optional[str] = None) -> None:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT body FROM documents WHERE kind = 'session' AND doc_id = ?",
            (session_id,),
        ).fetchone()
    finally:
        conn.close()
    if row is None:
        print(f"session {session_id} not found")
        return
    print(json.dumps(json.loads(row[0]), indent=2, ensure_ascii=False))


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", help="SQLite database path (defaults to settings.DB_PATH)")
    parser.add_argument("--tail-sessions", type=int, help="Show the most recently updated sessions")
    parser.add_argument("--tail-readiness", type=int, help="Show the latest readiness summaries")
    parser.add_argument("--session", help="Dump one session document")
    args = parser.parse_args()

    if args.tail_sessions:
        tail_sessions(args.tail_sessions, args.db)
    if args.tail_readiness:
        tail_readiness(args.tail_readiness, args.db)
    if args.session:
        show_session(args.session, args.db)


if __name__ == "__main__":
    main()
