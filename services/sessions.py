"""Helpers for loading and persisting interview sessions."""
from __future__ import annotations

from typing import Iterator, Optional

from interview_session.state_machine import Session
from storage.documents import DocumentStore

SESSION_KIND = "session"


class SessionRepository:
    """Session documents keyed by ``session_id`` with optimistic versions."""

    page_size = 200

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def load(self, session_id: str) -> Optional[Session]:
        doc = self._store.get(SESSION_KIND, session_id)
        if doc is None:
            return None
        return Session.from_document(doc)

    def create(self, session: Session) -> Session:
        session.version = self._store.put(SESSION_KIND, session.session_id, session.to_document(), expected_version=0)
        return session

    def save(self, session: Session) -> Session:
        """Write ``session`` if nobody else has since; raises ``ConflictError`` otherwise."""

        session.version = self._store.put(
            SESSION_KIND,
            session.session_id,
            session.to_document(),
            expected_version=session.version,
        )
        return session

    def iter_for_user(self, user_id: str) -> Iterator[Session]:
        for doc in self._store.scan_index(SESSION_KIND, "user_id", user_id, self.page_size):
            yield Session.from_document(doc)

    def iter_by_status(self, status: str) -> Iterator[Session]:
        """Every session currently in ``status``, read page by page."""

        for doc in self._store.scan_index(SESSION_KIND, "status", status, self.page_size):
            yield Session.from_document(doc)


__all__ = ["SESSION_KIND", "SessionRepository"]
