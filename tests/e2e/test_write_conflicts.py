import asyncio

from config.settings import settings
from services.sessions import SessionRepository
from storage.documents import ConflictError, StoreError

ANSWER = "A reasonably detailed answer that walks through the approach and its trade-offs."


def test_persistent_conflict_surfaces_after_retries(make_resume, make_orchestrator, scripted, start_request, store, monkeypatch):
    make_resume()
    orchestrator = make_orchestrator(scripted([70]))
    attempts = []

    def always_conflict(session):
        attempts.append(session.version)
        raise ConflictError("session", session.session_id, session.version, session.version + 1)

    async def scenario():
        sid = (await orchestrator.start_session(start_request())).data["session_id"]
        monkeypatch.setattr(orchestrator.repo, "save", always_conflict)
        return sid, await orchestrator.pause_session(sid, user_id="user-1")

    sid, result = asyncio.run(scenario())
    assert result.error.kind == "conflict"
    assert len(attempts) == settings.CONFLICT_RETRIES + 1 == 4
    assert SessionRepository(store).load(sid).status == "active"


def test_transient_conflict_appends_exactly_one_turn(make_resume, make_orchestrator, scripted, start_request, store, monkeypatch):
    make_resume()
    evaluator = scripted([70])
    orchestrator = make_orchestrator(evaluator)
    real_save = orchestrator.repo.save
    saved_turns = []

    def flaky_save(session):
        saved_turns.append(session.turn_count)
        if len(saved_turns) == 1:
            raise ConflictError("session", session.session_id, session.version, session.version + 1)
        return real_save(session)

    async def scenario():
        sid = (await orchestrator.start_session(start_request())).data["session_id"]
        monkeypatch.setattr(orchestrator.repo, "save", flaky_save)
        return sid, await orchestrator.submit_answer({"session_id": sid, "answer": ANSWER}, user_id="user-1")

    sid, result = asyncio.run(scenario())
    assert result.ok, result.error
    assert saved_turns == [1, 1]
    assert evaluator.calls == 1
    session = SessionRepository(store).load(sid)
    assert session.turn_count == 1
    assert [t.turn_number for t in session.turns] == [1]


def test_readiness_write_failure_leaves_session_open(make_resume, make_orchestrator, scripted, start_request, sink, store, monkeypatch):
    make_resume()
    orchestrator = make_orchestrator(scripted([85]))
    repo = SessionRepository(store)
    real_put = store.put
    failing = [False]

    def put(kind, doc_id, doc, expected_version=None):
        if kind == "readiness" and failing[0]:
            raise StoreError("disk I/O error")
        return real_put(kind, doc_id, doc, expected_version)

    monkeypatch.setattr(store, "put", put)

    async def scenario():
        sid = (await orchestrator.start_session(start_request(planned_question_count=5))).data["session_id"]
        for _ in range(4):
            await orchestrator.submit_answer({"session_id": sid, "answer": ANSWER}, user_id="user-1")
        failing[0] = True
        broken = await orchestrator.submit_answer({"session_id": sid, "answer": ANSWER}, user_id="user-1")
        state = repo.load(sid)
        failing[0] = False
        retried = await orchestrator.submit_answer({"session_id": sid, "answer": ANSWER}, user_id="user-1")
        return sid, broken, state, retried

    sid, broken, state, retried = asyncio.run(scenario())
    assert broken.error.kind == "internal"
    # the completing turn was not persisted without its readiness record
    assert (state.status, state.turn_count) == ("active", 4)
    assert retried.data["type"] == "interview-complete"
    assert store.get("readiness", sid)["session_id"] == sid
    assert sink.names(sid).count("interview_completed") == 1
