import asyncio

from interview_session import state_machine as sm
from services.sessions import SessionRepository

ANSWER = "A reasonably detailed answer that walks through the approach and its trade-offs."


def _submit(orchestrator, sid, reply=None):
    return orchestrator.submit_answer({"session_id": sid, "answer": ANSWER}, user_id="user-1", reply=reply)


def test_end_during_in_flight_answer(make_resume, make_orchestrator, scripted, start_request, sink, store):
    make_resume()
    evaluator = scripted([80, 80, 80])
    orchestrator = make_orchestrator(evaluator)
    repo = SessionRepository(store)

    async def scenario():
        sid = (await orchestrator.start_session(start_request())).data["session_id"]
        await _submit(orchestrator, sid)
        await _submit(orchestrator, sid)
        evaluator.hold()
        in_flight = asyncio.create_task(_submit(orchestrator, sid))
        await evaluator.entered.wait()
        ending = asyncio.create_task(orchestrator.end_session(sid, user_id="user-1"))
        await asyncio.sleep(0)
        assert not ending.done()
        evaluator.release()
        third, ended = await asyncio.gather(in_flight, ending)
        snapshot = repo.load(sid).to_document()
        late = await _submit(orchestrator, sid)
        return sid, third, ended, snapshot, late

    sid, third, ended, snapshot, late = asyncio.run(scenario())
    assert third.ok
    assert third.data["type"] == "next-question"
    assert ended.ok
    assert ended.data["turns_completed"] == 3
    session = repo.load(sid)
    assert session.status == "terminated"
    assert session.turns[2].evaluation.score == 80
    assert sink.names(sid)[-1] == "interview_ended"
    assert late.error.kind == "gone"
    # a rejected submit leaves the terminal session untouched
    assert session.to_document() == snapshot


def test_concurrent_submit_is_rejected_after_first(make_resume, make_orchestrator, scripted, start_request, sink, store):
    make_resume()
    evaluator = scripted([70])
    orchestrator = make_orchestrator(evaluator)
    acks = []

    def recorder(tag):
        async def reply(result):
            acks.append((tag, result.ok, result.error.kind if result.error else None, len(sink.events)))

        return reply

    async def scenario():
        sid = (await orchestrator.start_session(start_request())).data["session_id"]
        evaluator.hold()
        first = asyncio.create_task(_submit(orchestrator, sid, recorder("first")))
        await evaluator.entered.wait()
        second = asyncio.create_task(_submit(orchestrator, sid, recorder("second")))
        await asyncio.sleep(0)
        evaluator.release()
        await asyncio.gather(first, second)
        return sid

    sid = asyncio.run(scenario())
    # acks go out in arrival order; the first is sent before its push
    assert acks == [("first", True, None, 1), ("second", False, "precondition-failed", 2)]
    session = SessionRepository(store).load(sid)
    assert session.turn_count == 1
    sm.check_invariants(session)
    assert evaluator.calls == 1
    # the slot is free again once both settled
    assert not orchestrator.mailbox.is_submitting(sid)


def test_sessions_do_not_block_each_other(make_resume, make_orchestrator, scripted, start_request):
    make_resume()
    evaluator = scripted([70])
    orchestrator = make_orchestrator(evaluator)

    async def scenario():
        slow_sid = (await orchestrator.start_session(start_request())).data["session_id"]
        other_sid = (await orchestrator.start_session(start_request())).data["session_id"]
        evaluator.hold()
        slow = asyncio.create_task(_submit(orchestrator, slow_sid))
        await evaluator.entered.wait()
        # the held answer does not stop work on a different session
        paused = await orchestrator.pause_session(other_sid, user_id="user-1")
        resumed = await orchestrator.resume_session(other_sid, user_id="user-1")
        assert not slow.done()
        evaluator.release()
        return paused, resumed, await slow

    paused, resumed, slow = asyncio.run(scenario())
    assert paused.data["status"] == "paused"
    assert resumed.data["status"] == "active"
    assert slow.ok


def test_reply_precedes_events_for_each_operation(make_resume, make_orchestrator, scripted, start_request, sink):
    make_resume()
    orchestrator = make_orchestrator(scripted([70]))
    order = []

    async def reply(result):
        order.append(("ack", len(sink.events)))

    async def scenario():
        started = await orchestrator.start_session(start_request(), reply=reply)
        sid = started.data["session_id"]
        await _submit(orchestrator, sid, reply)
        await orchestrator.end_session(sid, user_id="user-1", reply=reply)

    asyncio.run(scenario())
    assert order == [("ack", 0), ("ack", 1), ("ack", 2)]
    assert sink.names() == ["interview_started", "next_question", "interview_ended"]
