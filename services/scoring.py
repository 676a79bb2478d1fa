"""Rolling scores, gap inventory and readiness aggregation."""
from __future__ import annotations

from statistics import mean
from typing import Dict, Iterable, List, Optional

from agents.types import (
    METRICS,
    SEVERITY_RANK,
    Gap,
    GapSignal,
    Readiness,
    Recommendation,
    Turn,
    severity_max,
)
from config.settings import settings
from interview_session.state_machine import Session
from ontology import SkillOntology, default_ontology

STRONG_THRESHOLD = 80
STRUGGLING_THRESHOLD = 60
COMMUNICATION_THRESHOLD = 50
CRITICAL_EVIDENCE_TURNS = 3
MAX_RECOMMENDATIONS = 5


def _round1(value: float) -> float:
    """Round a float to one decimal place with stable formatting."""
    return float(f"{value:.1f}")


def update_rolling(rolling: Dict[str, float], metrics: Dict[str, int], *, seed: bool, alpha: Optional[float] = None) -> Dict[str, float]:
    """Exponentially weighted update; the first observation seeds the average."""

    a = settings.EMA_ALPHA if alpha is None else alpha
    updated: Dict[str, float] = {}
    for metric in METRICS:
        value = float(metrics[metric])
        if seed:
            updated[metric] = value
        else:
            updated[metric] = _round1(a * value + (1 - a) * rolling.get(metric, value))
    return updated


def topic_means(turns: Iterable[Turn]) -> Dict[str, float]:
    buckets: Dict[str, List[int]] = {}
    for turn in turns:
        buckets.setdefault(turn.question.topic, []).append(turn.evaluation.score)
    return {topic: mean(scores) for topic, scores in buckets.items()}


def recompute_areas(session: Session) -> None:
    means = topic_means(session.turns)
    session.strong_areas = [topic for topic, value in means.items() if value >= STRONG_THRESHOLD]
    session.struggling_areas = [topic for topic, value in means.items() if value < STRUGGLING_THRESHOLD]


def merge_gaps(gaps: List[Gap], signals: Iterable[GapSignal], turn_number: int) -> List[Gap]:
    """Fold ``signals`` into ``gaps``; never drops a gap or lowers a severity."""

    by_skill = {gap.skill: gap for gap in gaps}
    for signal in signals:
        gap = by_skill.get(signal.skill)
        if gap is None:
            gap = Gap(
                skill=signal.skill,
                type=signal.type,
                severity=signal.severity,
                first_seen_turn=turn_number,
                evidence_turns=[turn_number],
            )
            gaps.append(gap)
            by_skill[gap.skill] = gap
            continue
        if turn_number not in gap.evidence_turns:
            gap.evidence_turns.append(turn_number)
        gap.severity = severity_max(gap.severity, signal.severity)
    for gap in gaps:
        if gap.severity == "high" and len(gap.evidence_turns) >= CRITICAL_EVIDENCE_TURNS:
            gap.severity = "critical"
    return gaps


def turn_gap_signals(
    turn: Turn,
    *,
    strong_before: Iterable[str],
    ontology: Optional[SkillOntology] = None,
) -> List[GapSignal]:
    """Gap signals for one turn: evaluator knowledge gaps plus session-level ones."""

    onto = ontology or default_ontology()
    skill = onto.normalize(turn.question.skill)
    evaluation = turn.evaluation
    signals = list(evaluation.gap_signals)
    if evaluation.verdict == "borderline" and turn.question.topic in set(strong_before):
        signals.append(GapSignal(skill=skill, type="depth", severity="medium"))
    if evaluation.metrics.clarity < COMMUNICATION_THRESHOLD:
        signals.append(GapSignal(skill="communication", type="communication", severity="medium"))
    answer = turn.answer
    if turn.question.kind == "coding" and answer.tests_total:
        if (answer.tests_passed or 0) * 2 < answer.tests_total:
            signals.append(GapSignal(skill=skill, type="application", severity="high"))
    return signals


def apply_turn_scores(session: Session, turn: Turn, ontology: Optional[SkillOntology] = None) -> Session:
    """Update rolling scores, probed skills, areas and gaps after ``turn`` was appended."""

    onto = ontology or default_ontology()
    strong_before = list(session.strong_areas)
    session.rolling_scores = update_rolling(
        session.rolling_scores,
        turn.evaluation.metrics.model_dump(),
        seed=session.turn_count == 1,
    )
    skill = onto.normalize(turn.question.skill)
    if skill not in session.skills_probed:
        session.skills_probed.append(skill)
    recompute_areas(session)
    merge_gaps(
        session.identified_gaps,
        turn_gap_signals(turn, strong_before=strong_before, ontology=onto),
        turn.turn_number,
    )
    return session


# ----------------------------------------------------------------------
# Readiness
# ----------------------------------------------------------------------
def readiness_level(score: int) -> str:
    if score >= 80:
        return "highly-confident"
    if score >= 65:
        return "interview-ready"
    if score >= 40:
        return "needs-improvement"
    return "not-ready"


def improvement_bonus(scores: List[int]) -> float:
    if not scores:
        return 0.0
    k = max(1, len(scores) // 3)
    return max(0.0, (mean(scores[-k:]) - mean(scores[:k])) / 2)


def _recommendation_text(gap: Gap, category: Optional[str], related: List[str]) -> str:
    if gap.type == "depth":
        return f"Go beyond definitions on {gap.skill}: prepare trade-offs and a worked example"
    if gap.type == "communication":
        return "Practise structured answers: state the approach, walk through it, then conclude"
    if gap.type == "application":
        return f"Solve timed {gap.skill} problems and test them against edge cases"
    if related:
        return f"Study {gap.skill} by building on {', '.join(related)}, which you already handle well"
    if category:
        return f"Study {gap.skill} fundamentals ({category.replace('-', ' ')}) and practise explaining them with examples"
    return f"Study {gap.skill} fundamentals and practise explaining them with examples"


def recommendations_for(session: Session, ontology: Optional[SkillOntology] = None) -> List[Recommendation]:
    onto = ontology or default_ontology()
    ranked = sorted(
        enumerate(session.identified_gaps),
        key=lambda pair: (-SEVERITY_RANK[pair[1].severity], pair[1].first_seen_turn, pair[0]),
    )
    recs: List[Recommendation] = []
    for _, gap in ranked[:MAX_RECOMMENDATIONS]:
        category = onto.category_of(gap.skill)
        related = onto.suggest_learning_path(gap.skill, session.strong_areas).related_skills
        recs.append(
            Recommendation(
                skill=gap.skill,
                category=category,
                priority=gap.severity,
                action=_recommendation_text(gap, category, related),
            )
        )
    return recs


def compute_readiness(session: Session, ontology: Optional[SkillOntology] = None) -> Readiness:
    """Terminal assessment from rolling scores, gaps and the score trend."""

    category_scores = {metric: int(round(session.rolling_scores[metric])) for metric in METRICS}
    scores = [turn.evaluation.score for turn in session.turns]
    bonus = improvement_bonus(scores)
    critical = sum(1 for gap in session.identified_gaps if gap.severity == "critical")
    raw = mean(category_scores.values()) - min(critical * 10, 30) + bonus
    overall = int(max(0, min(100, round(raw))))
    return Readiness(
        overall_score=overall,
        readiness_level=readiness_level(overall),
        category_scores=category_scores,
        identified_gaps=[gap.model_copy(deep=True) for gap in session.identified_gaps],
        recommendations=recommendations_for(session, ontology),
        improvement_bonus=_round1(bonus),
        turns_evaluated=len(scores),
    )


__all__ = [
    "apply_turn_scores",
    "compute_readiness",
    "improvement_bonus",
    "merge_gaps",
    "readiness_level",
    "recommendations_for",
    "recompute_areas",
    "topic_means",
    "turn_gap_signals",
    "update_rolling",
]
