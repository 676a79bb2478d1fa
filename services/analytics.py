"""Read-only aggregates over a user's completed interview sessions."""
from __future__ import annotations

from collections import Counter
from statistics import mean
from typing import Any, Dict, List

from agents.types import METRICS
from interview_session.state_machine import Session

from services.sessions import SessionRepository

RECURRING_MIN_SESSIONS = 2


def _round1(value: float) -> float:
    """Round a float to one decimal place with stable formatting."""
    return float(f"{value:.1f}")


def summarize(sessions: List[Session]) -> Dict[str, Any]:
    completed = sorted(
        (s for s in sessions if s.status == "completed" and s.readiness is not None),
        key=lambda s: (s.completed_at or s.updated_at, s.session_id),
    )
    if not completed:
        return {
            "sessions_completed": 0,
            "average_score": None,
            "best_score": None,
            "latest_score": None,
            "latest_level": None,
            "metric_averages": {},
            "score_trend": [],
            "recurring_gaps": [],
            "improvement": None,
        }

    scores = [s.readiness.overall_score for s in completed]  # type: ignore[union-attr]
    metric_averages = {
        metric: _round1(mean(s.readiness.category_scores.get(metric, 0) for s in completed))  # type: ignore[union-attr]
        for metric in METRICS
    }
    gap_counts: Counter[str] = Counter()
    for session in completed:
        gap_counts.update({gap.skill for gap in session.identified_gaps})
    recurring = sorted(skill for skill, count in gap_counts.items() if count >= RECURRING_MIN_SESSIONS)
    latest = completed[-1]
    return {
        "sessions_completed": len(completed),
        "average_score": _round1(mean(scores)),
        "best_score": max(scores),
        "latest_score": scores[-1],
        "latest_level": latest.readiness.readiness_level,  # type: ignore[union-attr]
        "metric_averages": metric_averages,
        "score_trend": [
            {
                "session_id": s.session_id,
                "completed_at": (s.completed_at or s.updated_at).isoformat(),
                "overall_score": s.readiness.overall_score,  # type: ignore[union-attr]
            }
            for s in completed
        ],
        "recurring_gaps": recurring,
        "improvement": scores[-1] - scores[0],
    }


def user_analytics(repo: SessionRepository, user_id: str) -> Dict[str, Any]:
    data = summarize([s for s in repo.iter_for_user(user_id) if s.status == "completed"])
    data["user_id"] = user_id
    return data


__all__ = ["summarize", "user_analytics"]
