"""Shared type definitions for the interview core."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

InterviewType = Literal["technical", "behavioral", "coding", "mixed"]
SessionStatus = Literal["active", "paused", "completed", "terminated", "abandoned"]
Difficulty = Literal["easy", "medium", "hard"]
Verdict = Literal["strong", "adequate", "borderline", "weak"]
Decision = Literal["continue-new-topic", "continue-follow-up", "terminate"]
GapType = Literal["knowledge", "application", "communication", "depth"]
Severity = Literal["low", "medium", "high", "critical"]
ReadinessLevel = Literal["not-ready", "needs-improvement", "interview-ready", "highly-confident"]
QuestionKind = Literal["conceptual", "coding", "behavioral"]
QuestionSource = Literal["pool", "generated", "template", "follow-up"]
ErrorKind = Literal[
    "invalid-input",
    "not-found",
    "precondition-failed",
    "gone",
    "unauthorized",
    "conflict",
    "internal",
]

TERMINAL_STATUSES = ("completed", "terminated", "abandoned")
DIFFICULTY_LEVELS: List[str] = ["easy", "medium", "hard"]
SEVERITY_RANK: Dict[str, int] = {"low": 0, "medium": 1, "high": 2, "critical": 3}
SEVERITY_LEVELS: List[str] = ["low", "medium", "high", "critical"]

METRICS = ("relevance", "depth", "correctness", "clarity", "structure")
METRIC_WEIGHTS: Dict[str, float] = {
    "correctness": 0.30,
    "depth": 0.25,
    "relevance": 0.20,
    "clarity": 0.15,
    "structure": 0.10,
}

FLAG_OFF_TOPIC = "off-topic"
FLAG_TOO_BRIEF = "too-brief"
FLAG_HALLUCINATED = "hallucinated"
FLAG_NO_COMPLEXITY = "no-complexity-analysis"
FLAG_NO_EXAMPLES = "no-examples"
FLAG_LLM_UNAVAILABLE = "llm-unavailable"


class CoreError(Exception):
    """Error carrying one of the wire error kinds."""

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class ErrorInfo(BaseModel):
    kind: ErrorKind
    message: str


class OpResult(BaseModel):
    """Tagged success/error result returned by every core operation."""

    ok: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, data: Optional[Dict[str, Any]] = None) -> "OpResult":
        return cls(ok=True, data=data or {})

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "OpResult":
        return cls(ok=False, error=ErrorInfo(kind=kind, message=message))


class ExpectedConcept(BaseModel):
    name: str
    severity: Severity = "high"


class Question(BaseModel):
    question_id: str
    text: str
    topic: str
    skill: str
    difficulty: Difficulty
    kind: QuestionKind = "conceptual"
    is_follow_up: bool = False
    parent_turn_number: Optional[int] = None
    expected_concepts: List[ExpectedConcept] = Field(default_factory=list)
    misconceptions: List[str] = Field(default_factory=list)
    source: QuestionSource = "pool"
    flags: List[str] = Field(default_factory=list)

    def public(self) -> Dict[str, Any]:
        """Fields safe to show the candidate."""

        payload: Dict[str, Any] = {
            "text": self.text,
            "topic": self.topic,
            "skill": self.skill,
            "difficulty": self.difficulty,
            "is_follow_up": self.is_follow_up,
        }
        if self.parent_turn_number is not None:
            payload["parent_turn_number"] = self.parent_turn_number
        if self.flags:
            payload["flags"] = list(self.flags)
        return payload


class PoolQuestion(BaseModel):
    """Candidate question stored in the question pool."""

    question_id: str
    text: str
    topic: str
    skill: str
    difficulty: Difficulty
    interview_types: List[InterviewType] = Field(default_factory=lambda: ["technical", "mixed"])
    kind: QuestionKind = "conceptual"
    expected_concepts: List[ExpectedConcept] = Field(default_factory=list)
    misconceptions: List[str] = Field(default_factory=list)

    def to_question(self) -> Question:
        return Question(
            question_id=self.question_id,
            text=self.text,
            topic=self.topic,
            skill=self.skill,
            difficulty=self.difficulty,
            kind=self.kind,
            expected_concepts=list(self.expected_concepts),
            misconceptions=list(self.misconceptions),
            source="pool",
        )


class Answer(BaseModel):
    text: str = ""
    time_spent_sec: float = Field(default=0.0, ge=0.0)
    media_ref: Optional[str] = None
    tests_passed: Optional[int] = Field(default=None, ge=0)
    tests_total: Optional[int] = Field(default=None, ge=0)


class MetricScores(BaseModel):
    relevance: int = Field(ge=0, le=100)
    depth: int = Field(ge=0, le=100)
    correctness: int = Field(ge=0, le=100)
    clarity: int = Field(ge=0, le=100)
    structure: int = Field(ge=0, le=100)


class Feedback(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class GapSignal(BaseModel):
    """Gap candidate raised by a single evaluation."""

    skill: str
    type: GapType
    severity: Severity


class Evaluation(BaseModel):
    score: int = Field(ge=0, le=100)
    metrics: MetricScores
    verdict: Verdict
    feedback: Feedback = Field(default_factory=Feedback)
    matched_concepts: List[str] = Field(default_factory=list)
    missing_concepts: List[str] = Field(default_factory=list)
    flags: List[str] = Field(default_factory=list)
    gap_signals: List[GapSignal] = Field(default_factory=list)


class Gap(BaseModel):
    skill: str
    type: GapType
    severity: Severity
    first_seen_turn: int
    evidence_turns: List[int] = Field(default_factory=list)


class Turn(BaseModel):
    turn_number: int
    question: Question
    answer: Answer
    evaluation: Evaluation
    decision: Decision
    timestamp: datetime


class Recommendation(BaseModel):
    skill: str
    category: Optional[str] = None
    priority: Severity
    action: str


class Readiness(BaseModel):
    overall_score: int = Field(ge=0, le=100)
    readiness_level: ReadinessLevel
    category_scores: Dict[str, int]
    identified_gaps: List[Gap] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    improvement_bonus: float = 0.0
    turns_evaluated: int = 0


class PlanSkill(BaseModel):
    skill: str
    severity: Severity
    category: Optional[str] = None
    source: Literal[
        "jd-missing",
        "jd-preferred",
        "jd-transferable",
        "jd-proficiency",
        "resume-verify",
        "prior-gap",
        "baseline",
    ] = "baseline"


class SessionConfig(BaseModel):
    planned_question_count: Optional[int] = Field(default=None, ge=5, le=20)
    initial_difficulty: Optional[Difficulty] = None
    max_follow_ups_per_topic: Optional[int] = Field(default=None, ge=0, le=5)


def severity_max(a: str, b: str) -> str:
    return a if SEVERITY_RANK[a] >= SEVERITY_RANK[b] else b
