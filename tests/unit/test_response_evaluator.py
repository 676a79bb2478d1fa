import asyncio
import time

import pytest

from agents.response_evaluator import AnswerEvaluator, verdict_for, weighted_score
from agents.types import Answer, MetricScores
from llm_gateway import LlmGatewayError

STRONG_HASHING_ANSWER = (
    "A hash table maps each key through a hash function to a bucket, so collisions happen when two keys "
    "land in the same bucket. First, with chaining every bucket holds a small list and colliding entries "
    "are appended to it. Then there is open addressing, where we probe for the next free slot using linear "
    "or quadratic probing. Next, the load factor is the ratio of stored entries to buckets, and performance "
    "degrades as it grows because chains or probe sequences get longer. Finally, when the load factor passes "
    "a threshold such as 0.75 the table performs rehashing into a larger array. For example, in my last "
    "project we sized a cache table up front to avoid rehashing during peak traffic. The trade-off is memory "
    "versus lookup speed. In summary, good hashing and a controlled load factor keep operations close to "
    "constant time."
)


@pytest.fixture
def evaluator():
    return AnswerEvaluator()


@pytest.fixture
def hashing_question(pool):
    return pool.get("hash-med-01").to_question()


@pytest.fixture
def two_sum_question(pool):
    return pool.get("arr-med-01").to_question()


def test_verdict_bands():
    assert verdict_for(80) == "strong"
    assert verdict_for(79) == "adequate"
    assert verdict_for(65) == "adequate"
    assert verdict_for(64) == "borderline"
    assert verdict_for(45) == "borderline"
    assert verdict_for(44) == "weak"


def test_weighted_score_uses_metric_weights():
    metrics = MetricScores(relevance=100, depth=0, correctness=100, clarity=0, structure=0)
    assert weighted_score(metrics) == 50


def test_empty_answer_scores_zero(evaluator, hashing_question):
    result = evaluator.evaluate(hashing_question, Answer(text="   "))
    assert result.score == 0
    assert result.verdict == "weak"
    assert result.flags == ["too-brief"]
    assert result.missing_concepts == ["chaining", "open addressing", "load factor", "rehashing"]
    assert [(g.skill, g.type, g.severity) for g in result.gap_signals] == [
        ("chaining", "knowledge", "high"),
        ("open addressing", "knowledge", "high"),
    ]


def test_strong_answer(evaluator, hashing_question):
    result = evaluator.evaluate(hashing_question, Answer(text=STRONG_HASHING_ANSWER, time_spent_sec=120))
    assert result.verdict == "strong"
    assert result.score >= 90
    assert result.metrics.correctness == 100
    assert result.metrics.relevance == 100
    assert result.metrics.depth == 100
    assert result.matched_concepts == ["chaining", "open addressing", "load factor", "rehashing"]
    assert result.missing_concepts == []
    assert result.flags == []
    assert result.gap_signals == []
    assert result.feedback.strengths


def test_off_topic_answer(evaluator, hashing_question):
    answer = Answer(text="I enjoy hiking in the mountains on weekends with my dog and family, it is relaxing.")
    result = evaluator.evaluate(hashing_question, answer)
    assert "off-topic" in result.flags
    assert result.metrics.relevance == 0
    assert result.verdict == "weak"
    assert "Answer drifted away from the question" in result.feedback.weaknesses


def test_brief_answer_caps_depth(evaluator, hashing_question):
    result = evaluator.evaluate(hashing_question, Answer(text="Use chaining."))
    assert "too-brief" in result.flags
    assert result.metrics.depth <= 20
    assert result.matched_concepts == ["chaining"]


def test_coding_answer_blends_tests_and_concepts(evaluator, two_sum_question):
    text = "Use a hash map while scanning the array in a single pass; this runs in O(n) time."
    full = evaluator.evaluate(two_sum_question, Answer(text=text, tests_passed=10, tests_total=10))
    half = evaluator.evaluate(two_sum_question, Answer(text=text, tests_passed=5, tests_total=10))
    assert full.metrics.correctness == 100
    # 0.7 * 5/10 + 0.3 * 3/3
    assert half.metrics.correctness == 65
    assert "no-complexity-analysis" not in half.flags


def test_coding_answer_without_complexity_is_flagged(evaluator, two_sum_question):
    text = "Use a hash map to remember every value seen so far and check the complement on each step."
    result = evaluator.evaluate(two_sum_question, Answer(text=text))
    assert "no-complexity-analysis" in result.flags


def test_misconception_is_penalised(evaluator, two_sum_question):
    clean = "Use a hash map in a single pass which is O(n)."
    wrong = clean + " You could also do binary search on unsorted input."
    a = evaluator.evaluate(two_sum_question, Answer(text=clean))
    b = evaluator.evaluate(two_sum_question, Answer(text=wrong))
    assert "hallucinated" in b.flags
    assert b.metrics.correctness == a.metrics.correctness - 25


def test_enrich_feedback_is_noop_without_chat_model(evaluator, hashing_question):
    answer = Answer(text=STRONG_HASHING_ANSWER)
    result = evaluator.evaluate(hashing_question, answer)
    assert asyncio.run(evaluator.enrich_feedback(result, hashing_question, answer)) == result


def test_enrich_feedback_rephrases_without_touching_scores(evaluator, hashing_question, fake_chat):
    calls = fake_chat('{"strengths": ["Clear tour of collision handling"], "weaknesses": [], "suggestions": []}')
    answer = Answer(text=STRONG_HASHING_ANSWER)
    result = evaluator.evaluate(hashing_question, answer)
    enriched = asyncio.run(evaluator.enrich_feedback(result, hashing_question, answer, session_id="s1"))
    assert enriched.feedback.strengths == ["Clear tour of collision handling"]
    assert enriched.feedback.suggestions == result.feedback.suggestions
    assert enriched.score == result.score
    assert enriched.metrics == result.metrics
    assert "llm-unavailable" not in enriched.flags
    assert len(calls) == 1


def test_enrich_feedback_falls_back_on_gateway_error(evaluator, hashing_question, fake_chat):
    fake_chat(LlmGatewayError("upstream", "boom"))
    answer = Answer(text=STRONG_HASHING_ANSWER)
    result = evaluator.evaluate(hashing_question, answer)
    enriched = asyncio.run(evaluator.enrich_feedback(result, hashing_question, answer))
    assert enriched.feedback == result.feedback
    assert enriched.flags == ["llm-unavailable"]


def test_enrich_feedback_respects_deadline(evaluator, hashing_question):
    from config.registry import CHAT_KEY, bind_model

    def slow_chat(messages, opts=None):
        time.sleep(0.3)
        raise LlmGatewayError("timeout", "late")

    bind_model(CHAT_KEY, slow_chat)
    answer = Answer(text=STRONG_HASHING_ANSWER)
    result = evaluator.evaluate(hashing_question, answer)
    started = time.perf_counter()
    enriched = asyncio.run(evaluator.enrich_feedback(result, hashing_question, answer, timeout_s=0.05))
    assert "llm-unavailable" in enriched.flags
    assert enriched.score == result.score
    assert time.perf_counter() - started < 1.0
