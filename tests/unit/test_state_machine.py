from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from agents.types import Answer, CoreError, Evaluation, MetricScores, PlanSkill, Question, Readiness, Turn
from interview_session import state_machine as sm
from interview_session.state_machine import InvariantViolation, Session

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _session(planned=5) -> Session:
    return sm.new_session(
        user_id="u1",
        target_role="Backend Engineer",
        interview_type="technical",
        plan_skills=[PlanSkill(skill="arrays", severity="high")],
        planned_question_count=planned,
        max_follow_ups=2,
        difficulty="medium",
        now=T0,
    )


def _question(topic="arrays", qid="arr-med-01"):
    return Question(question_id=qid, text="?", topic=topic, skill=topic, difficulty="medium")


def _turn(number, question, minutes=None):
    metrics = MetricScores(relevance=70, depth=70, correctness=70, clarity=70, structure=70)
    return Turn(
        turn_number=number,
        question=question,
        answer=Answer(text="answer"),
        evaluation=Evaluation(score=70, metrics=metrics, verdict="adequate"),
        decision="continue-new-topic",
        timestamp=T0 + timedelta(minutes=number if minutes is None else minutes),
    )


def _readiness():
    return Readiness(
        overall_score=70,
        readiness_level="interview-ready",
        category_scores={"relevance": 70, "depth": 70, "correctness": 70, "clarity": 70, "structure": 70},
    )


def test_new_session_is_active_and_empty():
    session = _session()
    assert session.status == "active"
    assert session.turns == []
    assert session.rolling_scores == {m: 0.0 for m in ("relevance", "depth", "correctness", "clarity", "structure")}
    assert session.context()["turn_number"] == 1
    sm.check_invariants(session)


def test_pause_resume_round_trip():
    session = _session()
    sm.pause(session, T0)
    assert session.status == "paused"
    with pytest.raises(CoreError) as info:
        sm.pause(session)
    assert info.value.kind == "precondition-failed"
    sm.resume(session, T0)
    assert session.status == "active"
    with pytest.raises(CoreError) as info:
        sm.resume(session)
    assert info.value.kind == "precondition-failed"


@pytest.mark.parametrize("finish", ["end", "abandon", "complete"])
def test_terminal_states_are_absorbing(finish):
    session = _session()
    if finish == "end":
        sm.end(session, "user-ended", T0)
        assert session.status == "terminated"
    elif finish == "abandon":
        sm.abandon(session, T0)
        assert session.status == "abandoned"
    else:
        sm.complete(session, _readiness(), T0)
        assert session.status == "completed"
    assert session.completed_at == T0
    for transition in (sm.pause, sm.resume, sm.abandon, lambda s: sm.end(s, "again")):
        with pytest.raises(CoreError) as info:
            transition(session)
        assert info.value.kind == "gone"


def test_paused_session_can_be_ended_but_not_answered():
    session = _session()
    sm.pause(session)
    with pytest.raises(CoreError) as info:
        sm.ensure_active(session)
    assert info.value.kind == "precondition-failed"
    sm.end(session, "user-ended")
    assert session.status == "terminated"


def test_pose_question_tracks_topics_and_pool_ids():
    session = _session()
    sm.pose_question(session, _question())
    assert session.pending_question.question_id == "arr-med-01"
    assert session.topics_covered == ["arrays"]
    assert session.asked_question_ids == ["arr-med-01"]
    assert session.topic_last_turn == {"arrays": 1}

    template = _question(topic="graphs", qid="tpl:graphs:medium:2")
    template.source = "template"
    sm.pose_question(session, template, revisit=True)
    assert session.asked_question_ids == ["arr-med-01"]
    assert session.revisited_topics == ["graphs"]


def test_append_turn_enforces_numbering_and_time_order():
    session = _session()
    question = _question()
    sm.pose_question(session, question)
    sm.append_turn(session, _turn(1, question, minutes=5))
    assert session.pending_question is None
    with pytest.raises(InvariantViolation):
        sm.append_turn(session, _turn(3, question))
    with pytest.raises(InvariantViolation):
        sm.append_turn(session, _turn(2, question, minutes=1))


def test_check_invariants_turn_budget():
    session = _session(planned=5)
    question = _question()
    for number in range(1, sm.max_turns(5) + 1):
        sm.pose_question(session, question)
        sm.append_turn(session, _turn(number, question))
    sm.check_invariants(session)
    session.turns.append(_turn(9, question, minutes=9))
    with pytest.raises(InvariantViolation):
        sm.check_invariants(session)


def test_check_invariants_rejects_unposed_topics():
    session = _session()
    session.topics_covered.append("graphs")
    with pytest.raises(InvariantViolation):
        sm.check_invariants(session)


def test_topics_stay_consistent_after_ending_with_pending_question():
    session = _session()
    sm.pose_question(session, _question())
    sm.end(session, "user-ended", T0)
    sm.check_invariants(session)


def test_terminate_on_error_marks_reason():
    session = _session()
    sm.terminate_on_error(session, T0)
    assert session.status == "terminated"
    assert session.termination_reason == "internal-error"


def test_document_round_trip():
    session = _session()
    sm.pose_question(session, _question())
    restored = Session.from_document(session.to_document())
    assert restored == session
