"""Rule-based answer evaluator with optional LLM feedback phrasing."""
from __future__ import annotations

import asyncio
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from agents.types import (
    FLAG_HALLUCINATED,
    FLAG_LLM_UNAVAILABLE,
    FLAG_NO_COMPLEXITY,
    FLAG_NO_EXAMPLES,
    FLAG_OFF_TOPIC,
    FLAG_TOO_BRIEF,
    METRIC_WEIGHTS,
    Answer,
    Evaluation,
    Feedback,
    GapSignal,
    MetricScores,
    Question,
)
from config.registry import CHAT_KEY, get_model, is_bound
from config.settings import settings
from llm_gateway import LlmGatewayError, chat_json
from observability.logger import log_event
from ontology import SkillOntology, default_ontology

BRIEF_CHARS = 50
OFF_TOPIC_PENALTY = 40
MISCONCEPTION_PENALTY = 25

FILLER_WORDS = ("um", "uh", "like", "kinda", "sorta", "basically")
FILLER_PHRASES = ("you know",)
STEP_CUES = ("first", "then", "next", "step", "steps", "finally", "after that")
EXAMPLE_CUES = (
    "for example",
    "for instance",
    "e.g.",
    "such as",
    "in my last",
    "at my previous",
    "when i",
    "in one project",
)
TRADEOFF_CUES = (
    "trade-off",
    "tradeoff",
    "trade off",
    "however",
    "on the other hand",
    "downside",
    "drawback",
    "versus",
    "vs",
    "pros",
    "cons",
)
ORDERED_MARKERS = ("first", "second", "third", "then", "next", "finally", "therefore")
CONCLUSION_CUES = ("in summary", "in conclusion", "to summarize", "to sum up", "overall", "in short")
COMPLEXITY_CUES = (
    "complexity",
    "big o",
    "constant time",
    "linear time",
    "logarithmic",
    "quadratic",
    "n log n",
)
_BIG_O_RE = re.compile(r"\bo\s*\([^)]{1,20}\)")
_TOKEN_RE = re.compile(r"[a-z0-9+#']+")
_SENTENCE_RE = re.compile(r"[.!?]+")
_LIST_LINE_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+", re.MULTILINE)

STOPWORDS = frozenset(
    """a an and are as at be been but by can could did do does for from had has have how i if in into is it
    its me my of on or our so such than that the their them then there these they this those to was we
    were what when where which while who why will with would you your about explain describe tell give
    walk through time use using used""".split()
)

_STRENGTHS = {
    "relevance": "Stayed focused on the question",
    "depth": "Went into good depth",
    "correctness": "Covered the key concepts accurately",
    "clarity": "Clear, easy to follow delivery",
    "structure": "Well organised answer",
}
_WEAKNESSES = {
    "relevance": "Answer drifted away from the question",
    "depth": "Answer stayed at surface level",
    "correctness": "Key concepts were missing or inaccurate",
    "clarity": "Delivery was hard to follow",
    "structure": "Answer lacked a clear structure",
}
_FLAG_SUGGESTIONS = {
    FLAG_OFF_TOPIC: "Address the question directly before adding context",
    FLAG_TOO_BRIEF: "Expand the answer with more detail",
    FLAG_HALLUCINATED: "Double-check the facts behind your claims",
    FLAG_NO_COMPLEXITY: "State the time and space complexity of your solution",
    FLAG_NO_EXAMPLES: "Back the answer with a concrete example",
}


def _stem(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def _tokens(text: str) -> List[str]:
    return _TOKEN_RE.findall((text or "").lower())


def _content_words(text: str) -> List[str]:
    return [_stem(tok) for tok in _tokens(text) if len(tok) > 2 and tok not in STOPWORDS]


def _cue_pattern(cue: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(cue)}(?![a-z0-9])")


_CUE_CACHE: Dict[str, re.Pattern[str]] = {}


def _count_cues(lower: str, cues: Iterable[str]) -> int:
    hits = 0
    for cue in cues:
        pattern = _CUE_CACHE.get(cue)
        if pattern is None:
            pattern = _cue_pattern(cue)
            _CUE_CACHE[cue] = pattern
        if pattern.search(lower):
            hits += 1
    return hits


def _clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


def verdict_for(score: int) -> str:
    if score >= 80:
        return "strong"
    if score >= 65:
        return "adequate"
    if score >= 45:
        return "borderline"
    return "weak"


def weighted_score(metrics: MetricScores) -> int:
    values = metrics.model_dump()
    return _clamp(sum(METRIC_WEIGHTS[name] * values[name] for name in METRIC_WEIGHTS))


class EnrichedFeedback(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class AnswerEvaluator:
    """Scores a single answer on relevance, depth, correctness, clarity and structure."""

    def __init__(self, ontology: Optional[SkillOntology] = None, coding_test_weight: Optional[float] = None) -> None:
        self.ontology = ontology or default_ontology()
        self.coding_test_weight = (
            settings.CODING_TEST_WEIGHT if coding_test_weight is None else coding_test_weight
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def _relevance(self, question: Question, text: str) -> Tuple[int, bool]:
        keywords = set(_content_words(question.text))
        keywords.update(_content_words(question.topic))
        keywords.update(_content_words(question.skill))
        for concept in question.expected_concepts:
            keywords.update(_content_words(concept.name))
        answer_words = set(_content_words(text))
        lexical = len(keywords & answer_words) / len(keywords) if keywords else 0.0

        if self.ontology.mentions(text, question.topic) or self.ontology.mentions(text, question.skill):
            semantic = 1.0
        else:
            probed = (self.ontology.normalize(question.skill), self.ontology.normalize(question.topic))
            semantic = 0.0
            for mentioned in self.ontology.skills_in_text(text):
                for target in probed:
                    semantic = max(semantic, self.ontology.transferability(mentioned, target))

        off_topic = lexical < 0.1 and semantic < 0.3
        score = 100.0 * (0.6 * min(1.0, 2.0 * lexical) + 0.4 * semantic)
        if off_topic:
            score -= OFF_TOPIC_PENALTY
        return _clamp(score), off_topic

    @staticmethod
    def _depth(text: str, lower: str, word_count: int) -> Tuple[int, bool]:
        if word_count < 20:
            base = 15
        elif word_count < 50:
            base = 35
        elif word_count < 100:
            base = 55
        elif word_count < 200:
            base = 70
        else:
            base = 80
        has_example = _count_cues(lower, EXAMPLE_CUES) > 0
        if _count_cues(lower, STEP_CUES):
            base += 10
        if has_example:
            base += 15
        if _count_cues(lower, TRADEOFF_CUES):
            base += 10
        depth = min(100, base)
        if len(text.strip()) < BRIEF_CHARS:
            depth = min(depth, 20)
        return depth, has_example

    def _correctness(
        self,
        question: Question,
        answer: Answer,
        text: str,
        relevance: int,
    ) -> Tuple[int, List[str], List[str], int]:
        matched: List[str] = []
        missing: List[str] = []
        for concept in question.expected_concepts:
            canonical = self.ontology.normalize(concept.name)
            target = matched if self.ontology.mentions(text, concept.name) else missing
            if canonical not in target:
                target.append(canonical)
        misconceptions = sum(1 for phrase in question.misconceptions if self.ontology.mentions(text, phrase))

        expected = len(question.expected_concepts)
        share = len(matched) / expected if expected else None
        if question.kind == "coding" and answer.tests_total:
            passed = min(answer.tests_passed or 0, answer.tests_total)
            concept_share = share if share is not None else relevance / 100.0
            w = self.coding_test_weight
            score = 100.0 * (w * passed / answer.tests_total + (1 - w) * concept_share)
        elif share is not None:
            score = share * 100.0
        else:
            score = 70.0 if relevance >= 50 else float(relevance)
        score -= MISCONCEPTION_PENALTY * misconceptions
        return _clamp(score), matched, missing, misconceptions

    @staticmethod
    def _clarity(text: str, lower: str, tokens: Sequence[str]) -> int:
        fillers = sum(1 for tok in tokens if tok in FILLER_WORDS)
        fillers += sum(lower.count(phrase) for phrase in FILLER_PHRASES)
        score = 100 - min(30, 5 * fillers)
        sentences = [part for part in _SENTENCE_RE.split(text) if part.strip()]
        avg_len = len(tokens) / len(sentences) if sentences else 0.0
        if avg_len < 8 or avg_len > 30:
            score -= 15
        if len(tokens) < 20:
            score -= 30
        return _clamp(score)

    @staticmethod
    def _structure(text: str, lower: str) -> int:
        score = 30 + min(40, 10 * _count_cues(lower, ORDERED_MARKERS))
        if "\n\n" in text.strip() or _LIST_LINE_RE.search(text):
            score += 15
        if _count_cues(lower, CONCLUSION_CUES):
            score += 15
        return _clamp(score)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def evaluate(self, question: Question, answer: Answer, interview_type: str = "technical") -> Evaluation:
        """Score ``answer`` against ``question``; never raises on well-formed input."""

        text = answer.text or ""
        if not text.strip():
            return self._empty(question)

        lower = text.lower()
        tokens = _tokens(text)
        flags: List[str] = []

        relevance, off_topic = self._relevance(question, text)
        depth, has_example = self._depth(text, lower, len(tokens))
        correctness, matched, missing, misconceptions = self._correctness(question, answer, text, relevance)
        clarity = self._clarity(text, lower, tokens)
        structure = self._structure(text, lower)

        if off_topic:
            flags.append(FLAG_OFF_TOPIC)
        if len(text.strip()) < BRIEF_CHARS:
            flags.append(FLAG_TOO_BRIEF)
        if misconceptions:
            flags.append(FLAG_HALLUCINATED)
        if question.kind == "coding" and not (_count_cues(lower, COMPLEXITY_CUES) or _BIG_O_RE.search(lower)):
            flags.append(FLAG_NO_COMPLEXITY)
        if not has_example and depth < 70:
            flags.append(FLAG_NO_EXAMPLES)

        metrics = MetricScores(
            relevance=relevance,
            depth=depth,
            correctness=correctness,
            clarity=clarity,
            structure=structure,
        )
        score = weighted_score(metrics)
        return Evaluation(
            score=score,
            metrics=metrics,
            verdict=verdict_for(score),
            feedback=self._feedback(metrics, missing, flags),
            matched_concepts=matched,
            missing_concepts=missing,
            flags=flags,
            gap_signals=self._gap_signals(question, missing),
        )

    def _empty(self, question: Question) -> Evaluation:
        missing: List[str] = []
        for concept in question.expected_concepts:
            canonical = self.ontology.normalize(concept.name)
            if canonical not in missing:
                missing.append(canonical)
        return Evaluation(
            score=0,
            metrics=MetricScores(relevance=0, depth=0, correctness=0, clarity=0, structure=0),
            verdict="weak",
            feedback=Feedback(
                weaknesses=["No answer was given"],
                suggestions=[_FLAG_SUGGESTIONS[FLAG_TOO_BRIEF]],
            ),
            missing_concepts=missing,
            flags=[FLAG_TOO_BRIEF],
            gap_signals=self._gap_signals(question, missing),
        )

    def _gap_signals(self, question: Question, missing: Sequence[str]) -> List[GapSignal]:
        signals: List[GapSignal] = []
        for concept in question.expected_concepts:
            canonical = self.ontology.normalize(concept.name)
            if concept.severity == "high" and canonical in missing:
                if all(sig.skill != canonical for sig in signals):
                    signals.append(GapSignal(skill=canonical, type="knowledge", severity="high"))
        return signals

    @staticmethod
    def _feedback(metrics: MetricScores, missing: Sequence[str], flags: Sequence[str]) -> Feedback:
        values = metrics.model_dump()
        strengths = [_STRENGTHS[name] for name, value in values.items() if value >= 75]
        weaknesses = [_WEAKNESSES[name] for name, value in values.items() if value < 50]
        suggestions = [f"Review {concept}" for concept in missing[:3]]
        suggestions.extend(_FLAG_SUGGESTIONS[flag] for flag in flags if flag in _FLAG_SUGGESTIONS)
        return Feedback(strengths=strengths, weaknesses=weaknesses, suggestions=suggestions)

    async def enrich_feedback(
        self,
        evaluation: Evaluation,
        question: Question,
        answer: Answer,
        *,
        session_id: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> Evaluation:
        """Rephrase the rule feedback through the bound chat model.

        Scores are never touched. When no chat model is bound the
        evaluation is returned as is; any failure or deadline overrun keeps
        the rule feedback and adds ``llm-unavailable``.
        """

        if not is_bound(CHAT_KEY) or not (answer.text or "").strip():
            return evaluation
        chat_fn = get_model(CHAT_KEY)
        messages = [
            {
                "role": "system",
                "content": (
                    "Rewrite interview feedback as short phrases. Reply with JSON "
                    '{"strengths": [...], "weaknesses": [...], "suggestions": [...]}. '
                    "Keep the meaning of every item."
                ),
            },
            {
                "role": "user",
                "content": (
                    f"Question: {question.text}\nTopic: {question.topic}\nScore: {evaluation.score}\n"
                    f"Feedback: {evaluation.feedback.model_dump_json()}"
                ),
            },
        ]
        deadline = settings.EVAL_LLM_TIMEOUT_S if timeout_s is None else timeout_s
        try:
            enriched = await asyncio.wait_for(
                asyncio.to_thread(
                    chat_json,
                    chat_fn,
                    messages,
                    EnrichedFeedback,
                    {"temperature": 0.2, "max_tokens": 300, "timeout_ms": int(deadline * 1000)},
                ),
                timeout=deadline,
            )
        except (asyncio.TimeoutError, LlmGatewayError) as exc:
            kind = getattr(exc, "kind", "timeout")
            log_event("feedback_enrichment_failed", session_id, error=kind)
            return evaluation.model_copy(update={"flags": _with_flag(evaluation.flags, FLAG_LLM_UNAVAILABLE)})

        feedback = Feedback(
            strengths=[s.strip() for s in enriched.strengths if s.strip()] or evaluation.feedback.strengths,
            weaknesses=[s.strip() for s in enriched.weaknesses if s.strip()] or evaluation.feedback.weaknesses,
            suggestions=[s.strip() for s in enriched.suggestions if s.strip()] or evaluation.feedback.suggestions,
        )
        return evaluation.model_copy(update={"feedback": feedback})


def _with_flag(flags: Sequence[str], flag: str) -> List[str]:
    return list(flags) if flag in flags else list(flags) + [flag]


__all__ = ["AnswerEvaluator", "EnrichedFeedback", "verdict_for", "weighted_score"]
