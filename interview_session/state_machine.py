"""Durable per-session interview state and its lifecycle transitions."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from agents.types import (
    METRICS,
    TERMINAL_STATUSES,
    CoreError,
    Difficulty,
    Gap,
    InterviewType,
    PlanSkill,
    Question,
    Readiness,
    SessionStatus,
    Turn,
)


class InvariantViolation(RuntimeError):
    """Raised when a session would enter an impossible state."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _empty_scores() -> Dict[str, float]:
    return {metric: 0.0 for metric in METRICS}


class Session(BaseModel):  # Persisted interview session
    session_id: str
    user_id: str
    target_role: str
    interview_type: InterviewType
    status: SessionStatus = "active"
    turns: List[Turn] = Field(default_factory=list)
    rolling_scores: Dict[str, float] = Field(default_factory=_empty_scores)
    difficulty: Difficulty = "medium"
    topics_covered: List[str] = Field(default_factory=list)
    skills_probed: List[str] = Field(default_factory=list)
    strong_areas: List[str] = Field(default_factory=list)
    struggling_areas: List[str] = Field(default_factory=list)
    identified_gaps: List[Gap] = Field(default_factory=list)
    planned_question_count: int = Field(default=10, ge=5, le=20)
    max_follow_ups: int = Field(default=2, ge=0, le=5)
    plan_skills: List[PlanSkill] = Field(default_factory=list)
    pending_question: Optional[Question] = None
    asked_question_ids: List[str] = Field(default_factory=list)
    topic_last_turn: Dict[str, int] = Field(default_factory=dict)
    revisited_topics: List[str] = Field(default_factory=list)
    hints_used: int = 0
    resume_ref: Optional[str] = None
    job_description_ref: Optional[str] = None
    resume_excerpt: str = ""
    readiness: Optional[Readiness] = None
    termination_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def turn_count(self) -> int:
        return len(self.turns)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Session":
        return cls.model_validate(doc)

    def context(self) -> Dict[str, Any]:
        return {
            "target_role": self.target_role,
            "plan_skills": [p.skill for p in self.plan_skills],
            "turn_number": self.turn_count + 1,
            "difficulty": self.difficulty,
            "status": self.status,
        }


def new_session(
    *,
    user_id: str,
    target_role: str,
    interview_type: InterviewType,
    plan_skills: List[PlanSkill],
    planned_question_count: int,
    max_follow_ups: int,
    difficulty: Difficulty,
    resume_ref: Optional[str] = None,
    job_description_ref: Optional[str] = None,
    resume_excerpt: str = "",
    now: Optional[datetime] = None,
) -> Session:
    """Create an ``active`` session with no turns."""

    ts = now or utcnow()
    return Session(
        session_id=str(uuid4()),
        user_id=user_id,
        target_role=target_role,
        interview_type=interview_type,
        plan_skills=plan_skills,
        planned_question_count=planned_question_count,
        max_follow_ups=max_follow_ups,
        difficulty=difficulty,
        resume_ref=resume_ref,
        job_description_ref=job_description_ref,
        resume_excerpt=resume_excerpt,
        created_at=ts,
        updated_at=ts,
    )


# ----------------------------------------------------------------------
# Guards
# ----------------------------------------------------------------------
def ensure_not_terminal(session: Session) -> None:
    if session.is_terminal:
        raise CoreError("gone", f"session {session.session_id} is {session.status}")


def ensure_active(session: Session) -> None:
    ensure_not_terminal(session)
    if session.status != "active":
        raise CoreError("precondition-failed", f"session {session.session_id} is {session.status}")


# ----------------------------------------------------------------------
# Transitions
# ----------------------------------------------------------------------
def pause(session: Session, now: Optional[datetime] = None) -> Session:
    ensure_active(session)
    session.status = "paused"
    session.updated_at = now or utcnow()
    return session


def resume(session: Session, now: Optional[datetime] = None) -> Session:
    ensure_not_terminal(session)
    if session.status != "paused":
        raise CoreError("precondition-failed", f"session {session.session_id} is not paused")
    session.status = "active"
    session.updated_at = now or utcnow()
    return session


def _finish(session: Session, status: SessionStatus, reason: str, now: Optional[datetime]) -> Session:
    ts = now or utcnow()
    session.status = status
    session.termination_reason = reason
    session.completed_at = ts
    session.updated_at = ts
    return session


def end(session: Session, reason: str = "user-ended", now: Optional[datetime] = None) -> Session:
    ensure_not_terminal(session)
    return _finish(session, "terminated", reason, now)


def abandon(session: Session, now: Optional[datetime] = None) -> Session:
    ensure_not_terminal(session)
    return _finish(session, "abandoned", "abandoned", now)


def complete(session: Session, readiness: Readiness, now: Optional[datetime] = None) -> Session:
    ensure_active(session)
    session.readiness = readiness
    return _finish(session, "completed", "completed", now)


def terminate_on_error(session: Session, now: Optional[datetime] = None) -> Session:
    """Force a ``terminated`` status after an invariant failure."""

    if session.is_terminal:
        return session
    return _finish(session, "terminated", "internal-error", now)


def pose_question(session: Session, question: Question, *, revisit: bool = False) -> Session:
    """Record ``question`` as the pending one and mark its topic covered."""

    session.pending_question = question
    session.hints_used = 0
    if question.topic not in session.topics_covered:
        session.topics_covered.append(question.topic)
    session.topic_last_turn[question.topic] = session.turn_count + 1
    if question.source == "pool" and question.question_id not in session.asked_question_ids:
        session.asked_question_ids.append(question.question_id)
    if revisit and question.topic not in session.revisited_topics:
        session.revisited_topics.append(question.topic)
    return session


def append_turn(session: Session, turn: Turn) -> Session:
    ensure_active(session)
    expected = session.turn_count + 1
    if turn.turn_number != expected:
        raise InvariantViolation(f"turn number {turn.turn_number} does not follow {expected - 1}")
    if session.turns and turn.timestamp < session.turns[-1].timestamp:
        raise InvariantViolation("turn timestamp regressed")
    session.turns.append(turn)
    session.pending_question = None
    session.updated_at = turn.timestamp
    return session


def max_turns(planned: int) -> int:
    return math.ceil(1.5 * planned)


def check_invariants(session: Session) -> None:
    """Raise :class:`InvariantViolation` when a stored session is inconsistent."""

    for index, turn in enumerate(session.turns):
        if turn.turn_number != index + 1:
            raise InvariantViolation(f"turn {index} numbered {turn.turn_number}")
        if index and turn.timestamp < session.turns[index - 1].timestamp:
            raise InvariantViolation(f"turn {turn.turn_number} timestamp regressed")
    if session.is_terminal and session.completed_at is None:
        raise InvariantViolation("terminal session without completed_at")
    if session.turn_count > max_turns(session.planned_question_count):
        raise InvariantViolation("turn budget exceeded")
    topics = {turn.question.topic for turn in session.turns}
    if session.pending_question is not None:
        topics.add(session.pending_question.topic)
    stray = [topic for topic in session.topics_covered if topic not in topics]
    if stray:
        raise InvariantViolation(f"covered topics never posed: {stray}")
    if set(session.rolling_scores) != set(METRICS):
        raise InvariantViolation("rolling score metrics drifted")


__all__ = [
    "InvariantViolation",
    "Session",
    "abandon",
    "append_turn",
    "check_invariants",
    "complete",
    "end",
    "ensure_active",
    "ensure_not_terminal",
    "max_turns",
    "new_session",
    "pause",
    "pose_question",
    "resume",
    "terminate_on_error",
    "utcnow",
]
