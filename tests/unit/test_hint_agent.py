import asyncio

from agents.hint_agent import rule_hint, run as hint_run
from agents.types import ExpectedConcept, Question
from llm_gateway import LlmGatewayError


def _question(kind="conceptual", concepts=("hash function", "buckets")):
    return Question(
        question_id="q1",
        text="What is a hash table?",
        topic="hash tables",
        skill="hash tables",
        difficulty="easy",
        kind=kind,
        expected_concepts=[ExpectedConcept(name=c) for c in concepts],
    )


def test_rule_hints_walk_concepts_then_generic_prompts():
    question = _question()
    assert rule_hint(question, 0) == "Think about hash function and how it applies to hash tables."
    assert rule_hint(question, 1) == "Think about buckets and how it applies to hash tables."
    assert "concrete example" in rule_hint(question, 2)
    assert rule_hint(question, 10) == rule_hint(question, 4)


def test_behavioral_questions_get_star_prompts():
    question = _question(kind="behavioral", concepts=())
    assert "situation" in rule_hint(question, 0)
    assert "outcome" in rule_hint(question, 2)


def test_run_without_chat_model_uses_rules():
    hint = asyncio.run(hint_run(_question(), 0))
    assert hint.source == "rules"
    assert hint.flags == []
    assert "hash function" in hint.hint


def test_run_rephrases_with_chat_model(fake_chat):
    calls = fake_chat('{"hint": "Consider how keys become positions."}')
    hint = asyncio.run(hint_run(_question(), 0, session_id="s1"))
    assert hint.source == "llm"
    assert hint.hint == "Consider how keys become positions."
    assert "hash function" in calls[0]["messages"][-1]["content"]


def test_run_falls_back_when_gateway_fails(fake_chat):
    fake_chat(LlmGatewayError("quota", "slow down"))
    hint = asyncio.run(hint_run(_question(), 1))
    assert hint.source == "rules"
    assert hint.flags == ["llm-unavailable"]
    assert "buckets" in hint.hint
