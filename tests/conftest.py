import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config.registry import CHAT_KEY, bind_model, unbind_model
from config.settings import settings
from llm_gateway import LlmReply
from storage.documents import DocumentStore
from storage.migrate import migrate
from storage.question_pool import QuestionPool

BANK_PATH = ROOT / "config" / "question_bank.yaml"


@pytest.fixture(autouse=True)
def tmp_db(monkeypatch):
    td = tempfile.TemporaryDirectory()
    db_path = os.path.join(td.name, "test.db")
    monkeypatch.setattr(settings, "DB_PATH", db_path, raising=False)
    migrate(db_path)
    unbind_model(CHAT_KEY)
    try:
        yield db_path
    finally:
        unbind_model(CHAT_KEY)
        td.cleanup()


@pytest.fixture
def store(tmp_db):
    return DocumentStore(tmp_db)


@pytest.fixture
def pool(store):
    pool = QuestionPool(store)
    pool.seed_from_yaml(BANK_PATH)
    return pool


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def fake_chat():
    """Bind a scripted chat model; replies are popped in order, the last one repeats."""

    calls = []

    def _bind(*replies):
        queue = list(replies)

        def _chat(messages, opts=None):
            calls.append({"messages": list(messages), "opts": dict(opts or {})})
            reply = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(reply, Exception):
                raise reply
            return LlmReply(content=reply, provider="fake")

        bind_model(CHAT_KEY, _chat)
        return calls

    return _bind


def put_resume(store, ref="res-1", user_id="user-1", skills=None, text=""):
    store.put(
        "resume",
        ref,
        {"user_id": user_id, "skills": skills if skills is not None else ["python", "arrays"], "text": text},
    )
    return ref


def put_job_description(store, ref="jd-1", user_id="user-1", title="Backend Engineer", skills=None, text=""):
    doc = {"user_id": user_id, "title": title, "text": text}
    if skills is not None:
        doc["skills"] = skills
    store.put("jobDescription", ref, doc)
    return ref


@pytest.fixture
def make_resume(store):
    def _make(ref="res-1", user_id="user-1", skills=None, text=""):
        return put_resume(store, ref, user_id, skills, text)

    return _make


@pytest.fixture
def make_jd(store):
    def _make(ref="jd-1", user_id="user-1", title="Backend Engineer", skills=None, text=""):
        return put_job_description(store, ref, user_id, title, skills, text)

    return _make
