"""Hint agent for the pending question with optional LLM phrasing."""
from __future__ import annotations

import asyncio
from typing import List, Optional

from pydantic import BaseModel, Field

from agents.types import FLAG_LLM_UNAVAILABLE, Question
from config.registry import CHAT_KEY, get_model, is_bound
from config.settings import settings
from llm_gateway import LlmGatewayError, chat_json
from observability.logger import log_event

_GENERIC_PROMPTS = (
    "Ground your answer in a concrete example from a project you worked on.",
    "Mention the trade-offs: what does this approach cost, and when would you avoid it?",
    "Structure it: state the idea, walk through how it works, then conclude.",
)
_BEHAVIORAL_PROMPTS = (
    "Set the scene briefly: what was the situation and what was at stake?",
    "Focus on what you did personally, not just the team.",
    "Close with the outcome and what you learned.",
)


class Hint(BaseModel):
    hint: str
    index: int
    source: str = "rules"
    flags: List[str] = Field(default_factory=list)


class _PhrasedHint(BaseModel):
    hint: str


def rule_hint(question: Question, index: int) -> str:
    """The ``index``-th hint: expected concepts in order, then generic prompts."""

    concepts = [concept.name for concept in question.expected_concepts]
    if index < len(concepts):
        return f"Think about {concepts[index]} and how it applies to {question.topic}."
    prompts = _BEHAVIORAL_PROMPTS if question.kind == "behavioral" else _GENERIC_PROMPTS
    offset = min(index - len(concepts), len(prompts) - 1)
    return prompts[offset]


async def run(
    question: Question,
    index: int,
    *,
    session_id: Optional[str] = None,
    timeout_s: Optional[float] = None,
) -> Hint:
    """Produce a hint, rephrased by the bound chat model when one is available."""

    base = rule_hint(question, index)
    if not is_bound(CHAT_KEY):
        return Hint(hint=base, index=index)

    chat_fn = get_model(CHAT_KEY)
    deadline = settings.EVAL_LLM_TIMEOUT_S if timeout_s is None else timeout_s
    messages = [
        {
            "role": "system",
            "content": (
                "Rephrase an interview hint in at most two encouraging sentences without giving "
                'away the answer. Reply with JSON {"hint": "..."}.'
            ),
        },
        {"role": "user", "content": f"Question: {question.text}\nHint: {base}"},
    ]
    try:
        phrased = await asyncio.wait_for(
            asyncio.to_thread(
                chat_json,
                chat_fn,
                messages,
                _PhrasedHint,
                {"temperature": 0.2, "max_tokens": 120, "timeout_ms": int(deadline * 1000)},
            ),
            timeout=deadline,
        )
    except (asyncio.TimeoutError, LlmGatewayError) as exc:
        log_event("hint_phrasing_failed", session_id, error=getattr(exc, "kind", "timeout"))
        return Hint(hint=base, index=index, flags=[FLAG_LLM_UNAVAILABLE])

    hint = phrased.hint.strip()
    if not hint:
        return Hint(hint=base, index=index)
    return Hint(hint=hint, index=index, source="llm")


__all__ = ["Hint", "rule_hint", "run"]
