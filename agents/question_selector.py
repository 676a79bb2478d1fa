"""Adaptive next-question selection: termination, follow-ups, topic and difficulty."""
from __future__ import annotations

import asyncio
from statistics import mean
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from agents.types import (
    DIFFICULTY_LEVELS,
    FLAG_LLM_UNAVAILABLE,
    SEVERITY_RANK,
    Decision,
    ExpectedConcept,
    PlanSkill,
    Question,
    Turn,
)
from config.registry import CHAT_KEY, get_model, is_bound
from config.settings import settings
from interview_session.state_machine import Session
from llm_gateway import LlmGatewayError, chat_json
from observability.logger import log_event
from ontology import SkillOntology, default_ontology
from storage.question_pool import QuestionPool

STEP_UP_MEAN = 75
STEP_DOWN_MEAN = 45
CONTINUE_VERDICTS = ("strong", "adequate")

_TEMPLATES = {
    "conceptual": {
        "easy": "What is {skill}, and where have you used it in practice?",
        "medium": "How does {skill} work under the hood, and what trade-offs does it involve?",
        "hard": "Design a solution at scale that relies on {skill}. Walk through your approach and its limits.",
    },
    "coding": {
        "easy": "Write a function that solves a simple {skill} problem and explain its complexity.",
        "medium": "Solve a typical {skill} interview problem. Explain your approach, then its time and space complexity.",
        "hard": "Solve a challenging {skill} problem, justify correctness and analyse complexity.",
    },
    "behavioral": {
        "easy": "Tell me about a time you demonstrated {skill}.",
        "medium": "Describe a situation that tested your {skill}. What did you do and what was the outcome?",
        "hard": "Tell me about your hardest experience with {skill}. What would you do differently now?",
    },
}


class Selection(BaseModel):
    decision: Decision
    question: Optional[Question] = None
    revisit: bool = False


class GeneratedQuestion(BaseModel):
    text: str
    expected_concepts: List[str] = Field(default_factory=list)


def next_difficulty(turns: Sequence[Turn], current: str) -> str:
    """Difficulty after the latest turn from the mean of the last three scores."""

    if len(turns) < 3:
        return current
    avg = mean(turn.evaluation.score for turn in turns[-3:])
    index = DIFFICULTY_LEVELS.index(current)
    if avg >= STEP_UP_MEAN:
        index = min(index + 1, len(DIFFICULTY_LEVELS) - 1)
    elif avg <= STEP_DOWN_MEAN:
        index = max(index - 1, 0)
    return DIFFICULTY_LEVELS[index]


def should_terminate(session: Session) -> bool:
    if session.status == "terminated":
        return True
    turn_number = session.turn_count
    if turn_number >= 1.5 * session.planned_question_count:
        return True
    if turn_number >= session.planned_question_count:
        last_two = [turn.evaluation.verdict for turn in session.turns[-2:]]
        return len(last_two) == 2 and all(v in CONTINUE_VERDICTS for v in last_two)
    return False


def follow_ups_on(turns: Sequence[Turn], topic: str) -> int:
    return sum(1 for turn in turns if turn.question.is_follow_up and turn.question.topic == topic)


def needs_follow_up(session: Session) -> bool:
    if not session.turns:
        return False
    last = session.turns[-1]
    if last.evaluation.verdict != "borderline":
        return False
    return follow_ups_on(session.turns, last.question.topic) < session.max_follow_ups


def follow_up_question(last: Turn) -> Question:
    parent = last.question
    missing = last.evaluation.missing_concepts
    if missing:
        focus = " and ".join(missing[:2])
        text = f"Let's go deeper on {parent.topic}. How do {focus} fit into your answer?"
    else:
        text = f"Let's go deeper on {parent.topic}. Can you walk through a concrete example and its trade-offs?"
    return Question(
        question_id=f"{parent.question_id}:fu{last.turn_number}",
        text=text,
        topic=parent.topic,
        skill=parent.skill,
        difficulty=parent.difficulty,
        kind=parent.kind,
        is_follow_up=True,
        parent_turn_number=last.turn_number,
        expected_concepts=list(parent.expected_concepts),
        misconceptions=list(parent.misconceptions),
        source="follow-up",
    )


def choose_topic(session: Session) -> Tuple[Optional[PlanSkill], bool]:
    """Pick the next topic; the flag is true when a struggling topic is revisited."""

    plan = list(enumerate(session.plan_skills))
    last_seen = session.topic_last_turn

    def _key(pair: Tuple[int, PlanSkill]) -> Tuple[int, int, int]:
        index, item = pair
        return (-SEVERITY_RANK[item.severity], last_seen.get(item.skill, 0), index)

    candidates = [pair for pair in plan if pair[1].skill not in session.topics_covered]
    if candidates:
        return min(candidates, key=_key)[1], False

    by_topic = {item.skill: item for _, item in plan}
    revisits = [
        (order, topic)
        for order, topic in enumerate(session.struggling_areas)
        if topic not in session.revisited_topics
    ]
    if revisits:
        order, topic = min(revisits, key=lambda pair: (last_seen.get(pair[1], 0), pair[0]))
        item = by_topic.get(topic) or PlanSkill(skill=topic, severity="medium")
        return item, True

    if plan:
        return min(plan, key=lambda pair: (last_seen.get(pair[1].skill, 0), pair[0]))[1], False
    return None, False


def question_kind(interview_type: str, topic: str, ontology: SkillOntology) -> str:
    if ontology.category_of(topic) == "behavioral":
        return "behavioral"
    if interview_type == "coding":
        return "coding"
    return "conceptual"


def template_question(topic: str, skill: str, difficulty: str, kind: str, turn_number: int) -> Question:
    text = _TEMPLATES[kind][difficulty].format(skill=skill)
    return Question(
        question_id=f"tpl:{topic}:{difficulty}:{turn_number}",
        text=text,
        topic=topic,
        skill=skill,
        difficulty=difficulty,
        kind=kind,
        source="template",
        flags=[FLAG_LLM_UNAVAILABLE],
    )


class AdaptiveSelector:
    """Chooses the next question for a session; deterministic for fixed inputs."""

    def __init__(
        self,
        pool: QuestionPool,
        ontology: Optional[SkillOntology] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.pool = pool
        self.ontology = ontology or default_ontology()
        self.timeout_s = settings.QUESTION_LLM_TIMEOUT_S if timeout_s is None else timeout_s

    def _from_pool(self, session: Session, topic: str) -> Optional[Question]:
        current = DIFFICULTY_LEVELS.index(session.difficulty)
        order = [current]
        order.extend(i for i in (current - 1, current + 1) if 0 <= i < len(DIFFICULTY_LEVELS))
        asked = set(session.asked_question_ids)
        for index in order:
            for candidate in self.pool.query(topic, DIFFICULTY_LEVELS[index], session.interview_type):
                if candidate.question_id not in asked:
                    return candidate.to_question()
        return None

    async def _generate(self, session: Session, topic: str, skill: str, kind: str) -> Optional[Question]:
        if not is_bound(CHAT_KEY):
            return None
        chat_fn = get_model(CHAT_KEY)
        difficulty = session.difficulty
        messages = [
            {
                "role": "system",
                "content": (
                    "You write one interview question. Reply with JSON "
                    '{"text": "...", "expected_concepts": ["..."]}.'
                ),
            },
            {
                "role": "user",
                "content": (
                    f"Interview type: {session.interview_type}\nTarget role: {session.target_role}\n"
                    f"Topic: {topic}\nSkill: {skill}\nDifficulty: {difficulty}\nQuestion style: {kind}\n"
                    f"Candidate background: {session.resume_excerpt or 'n/a'}"
                ),
            },
        ]
        try:
            generated = await asyncio.wait_for(
                asyncio.to_thread(
                    chat_json,
                    chat_fn,
                    messages,
                    GeneratedQuestion,
                    {"temperature": 0.4, "max_tokens": 250, "timeout_ms": int(self.timeout_s * 1000)},
                ),
                timeout=self.timeout_s,
            )
        except (asyncio.TimeoutError, LlmGatewayError) as exc:
            log_event("question_generation_failed", session.session_id, error=getattr(exc, "kind", "timeout"))
            return None
        text = generated.text.strip()
        if not text:
            return None
        return Question(
            question_id=f"gen:{topic}:{difficulty}:{session.turn_count + 1}",
            text=text,
            topic=topic,
            skill=skill,
            difficulty=difficulty,
            kind=kind,
            expected_concepts=[ExpectedConcept(name=c, severity="medium") for c in generated.expected_concepts[:5]],
            source="generated",
        )

    async def select(self, session: Session) -> Selection:
        """Decide terminate / follow-up / new topic and produce the question."""

        if should_terminate(session):
            return Selection(decision="terminate")
        if needs_follow_up(session):
            return Selection(decision="continue-follow-up", question=follow_up_question(session.turns[-1]))

        plan_item, revisit = choose_topic(session)
        topic = plan_item.skill if plan_item else "general problem solving"
        skill = topic
        question = self._from_pool(session, topic)
        if question is None:
            kind = question_kind(session.interview_type, topic, self.ontology)
            question = await self._generate(session, topic, skill, kind)
            if question is None:
                question = template_question(topic, skill, session.difficulty, kind, session.turn_count + 1)
        return Selection(decision="continue-new-topic", question=question, revisit=revisit)


__all__ = [
    "AdaptiveSelector",
    "GeneratedQuestion",
    "Selection",
    "choose_topic",
    "follow_up_question",
    "follow_ups_on",
    "needs_follow_up",
    "next_difficulty",
    "should_terminate",
    "template_question",
]
