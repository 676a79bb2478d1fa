"""Read-mostly question pool backed by ``questionPool`` documents."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from agents.types import PoolQuestion
from observability.logger import log_event

from .documents import DocumentStore

POOL_KIND = "questionPool"


def load_question_bank(path: str | Path) -> List[PoolQuestion]:
    """Parse a YAML question bank into pool questions."""

    raw: Dict[str, Any] = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return [PoolQuestion.model_validate(item) for item in raw.get("questions", [])]


class QuestionPool:
    """Query questions by topic tag, filtered by difficulty and interview type."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def query(self, topic: str, difficulty: str, interview_type: str) -> List[PoolQuestion]:
        docs = self._store.scan_index(POOL_KIND, "topic", topic)
        questions: List[PoolQuestion] = []
        for doc in docs:
            doc.pop("version", None)
            question = PoolQuestion.model_validate(doc)
            if question.difficulty != difficulty:
                continue
            if interview_type not in question.interview_types:
                continue
            questions.append(question)
        questions.sort(key=lambda q: q.question_id)
        return questions

    def get(self, question_id: str) -> Optional[PoolQuestion]:
        doc = self._store.get(POOL_KIND, question_id)
        if doc is None:
            return None
        doc.pop("version", None)
        return PoolQuestion.model_validate(doc)

    def add(self, question: PoolQuestion) -> int:
        return self._store.put(POOL_KIND, question.question_id, question.model_dump(mode="json"))

    def seed_from_yaml(self, path: str | Path) -> int:
        """Insert every bank question not already stored; returns the count added."""

        added = 0
        for question in load_question_bank(path):
            if self._store.get(POOL_KIND, question.question_id) is None:
                self.add(question)
                added += 1
        log_event("question_pool_seeded", None, added=added, source=str(path))
        return added


__all__ = ["POOL_KIND", "QuestionPool", "load_question_bank"]
