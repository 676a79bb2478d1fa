from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

import services.scoring as scoring
from agents.types import Answer, Evaluation, Gap, GapSignal, MetricScores, PlanSkill, Question, Turn
from agents.response_evaluator import verdict_for
from interview_session import state_machine as sm

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _session(planned=10):
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


def _turn(session, topic, score, *, clarity=None, kind="conceptual", tests=None, signals=()):
    question = Question(
        question_id=f"{topic}-{session.turn_count}",
        text="?",
        topic=topic,
        skill=topic,
        difficulty="medium",
        kind=kind,
    )
    sm.pose_question(session, question)
    metrics = MetricScores(
        relevance=score,
        depth=score,
        correctness=score,
        clarity=score if clarity is None else clarity,
        structure=score,
    )
    answer = Answer(text="answer")
    if tests is not None:
        answer = Answer(text="answer", tests_passed=tests[0], tests_total=tests[1])
    turn = Turn(
        turn_number=session.turn_count + 1,
        question=question,
        answer=answer,
        evaluation=Evaluation(score=score, metrics=metrics, verdict=verdict_for(score), gap_signals=list(signals)),
        decision="continue-new-topic",
        timestamp=T0 + timedelta(minutes=session.turn_count + 1),
    )
    sm.append_turn(session, turn)
    scoring.apply_turn_scores(session, turn)
    return turn


def test_rolling_scores_seed_then_ema():
    rolling = scoring.update_rolling({}, {m: 80 for m in ("relevance", "depth", "correctness", "clarity", "structure")}, seed=True)
    assert rolling["depth"] == 80.0
    rolling = scoring.update_rolling(rolling, {m: 50 for m in rolling}, seed=False)
    assert rolling["depth"] == 71.0
    rolling = scoring.update_rolling(rolling, {m: 0 for m in rolling}, seed=False)
    assert rolling["depth"] == 49.7


def test_apply_turn_scores_updates_rolling_and_areas():
    session = _session()
    _turn(session, "arrays", 90)
    assert session.rolling_scores["correctness"] == 90.0
    assert session.strong_areas == ["arrays"]
    _turn(session, "graphs", 40)
    assert session.rolling_scores["correctness"] == pytest.approx(75.0)
    assert session.struggling_areas == ["graphs"]
    assert session.skills_probed == ["arrays", "graphs"]


def test_merge_keeps_max_severity_and_escalates_to_critical():
    gaps = []
    scoring.merge_gaps(gaps, [GapSignal(skill="trees", type="knowledge", severity="medium")], 1)
    scoring.merge_gaps(gaps, [GapSignal(skill="trees", type="knowledge", severity="high")], 2)
    assert [(g.severity, g.evidence_turns) for g in gaps] == [("high", [1, 2])]
    scoring.merge_gaps(gaps, [GapSignal(skill="trees", type="knowledge", severity="low")], 3)
    assert gaps[0].severity == "critical"
    assert gaps[0].first_seen_turn == 1


def test_depth_gap_for_borderline_answer_on_strong_topic():
    session = _session()
    _turn(session, "arrays", 95)
    _turn(session, "arrays", 55)
    assert [(g.skill, g.type, g.severity) for g in session.identified_gaps] == [("arrays", "depth", "medium")]


def test_communication_gap_from_low_clarity():
    session = _session()
    _turn(session, "arrays", 70, clarity=40)
    assert [(g.skill, g.type) for g in session.identified_gaps] == [("communication", "communication")]


def test_application_gap_for_failing_coding_answer():
    session = _session()
    _turn(session, "graphs", 50, kind="coding", tests=(2, 10))
    _turn(session, "trees", 70, kind="coding", tests=(5, 10))
    assert [(g.skill, g.type, g.severity) for g in session.identified_gaps] == [("graphs", "application", "high")]


def test_readiness_levels():
    assert scoring.readiness_level(80) == "highly-confident"
    assert scoring.readiness_level(65) == "interview-ready"
    assert scoring.readiness_level(40) == "needs-improvement"
    assert scoring.readiness_level(39) == "not-ready"


def test_improvement_bonus_compares_first_and_last_thirds():
    assert scoring.improvement_bonus([]) == 0.0
    assert scoring.improvement_bonus([40, 60, 80]) == 20.0
    assert scoring.improvement_bonus([50, 50, 50, 50, 50, 80]) == 7.5
    assert scoring.improvement_bonus([80, 60, 40]) == 0.0


def test_compute_readiness_applies_bonus_and_critical_penalty():
    session = _session()
    for score in (40, 60, 80):
        _turn(session, "arrays", score)
    session.rolling_scores = {m: 60.0 for m in session.rolling_scores}
    readiness = scoring.compute_readiness(session)
    assert readiness.improvement_bonus == 20.0
    assert readiness.overall_score == 80
    assert readiness.readiness_level == "highly-confident"
    assert readiness.turns_evaluated == 3

    session.identified_gaps = [
        Gap(skill=f"s{i}", type="knowledge", severity="critical", first_seen_turn=1, evidence_turns=[1, 2, 3])
        for i in range(4)
    ]
    penalised = scoring.compute_readiness(session)
    assert penalised.overall_score == 50
    assert penalised.readiness_level == "needs-improvement"


def test_recommendations_are_ranked_and_capped():
    session = _session()
    session.strong_areas = ["arrays"]
    session.identified_gaps = [
        Gap(skill="communication", type="communication", severity="medium", first_seen_turn=1),
        Gap(skill="trees", type="knowledge", severity="critical", first_seen_turn=4),
        Gap(skill="graphs", type="knowledge", severity="high", first_seen_turn=2),
        Gap(skill="sql", type="knowledge", severity="low", first_seen_turn=1),
        Gap(skill="caching", type="depth", severity="medium", first_seen_turn=3),
        Gap(skill="heaps", type="knowledge", severity="medium", first_seen_turn=5),
    ]
    recs = scoring.recommendations_for(session)
    assert [r.skill for r in recs] == ["trees", "graphs", "communication", "caching", "heaps"]
    assert recs[0].priority == "critical"
    assert "arrays" in recs[0].action
    assert recs[0].category == "data-structures"
