import asyncio
from typing import List, Optional, Sequence

import pytest

from agents.response_evaluator import verdict_for
from agents.types import Evaluation, GapSignal, MetricScores
from services.orchestrator import CoreDeps, InterviewOrchestrator


class ScriptedEvaluator:
    """Returns the next scripted score for every answer, optionally pausing inside enrichment."""

    def __init__(self, scores: Sequence[int], gaps: Optional[dict] = None) -> None:
        self.scores = list(scores)
        self.gaps = gaps or {}
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None
        self.entered: Optional[asyncio.Event] = None
        self._held: Optional[asyncio.Event] = None

    def hold(self) -> None:
        """Block the next enrichment until ``release``; must run inside the event loop."""

        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self._held = self.gate

    def release(self) -> None:
        assert self._held is not None, "release() without hold()"
        self._held.set()
        self._held = None

    def evaluate(self, question, answer, interview_type="technical"):
        score = self.scores[min(self.calls, len(self.scores) - 1)]
        self.calls += 1
        signals = [GapSignal(skill=skill, type="knowledge", severity=sev) for skill, sev in self.gaps.get(self.calls, [])]
        return Evaluation(
            score=score,
            metrics=MetricScores(relevance=score, depth=score, correctness=score, clarity=score, structure=score),
            verdict=verdict_for(score),
            gap_signals=signals,
        )

    async def enrich_feedback(self, evaluation, question, answer, *, session_id=None):
        if self.gate is not None:
            gate, self.gate = self.gate, None
            self.entered.set()
            await gate.wait()
        return evaluation


class RecordingSink:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def publish(self, session_id, event, data):
        self.events.append((session_id, event, data))

    def names(self, session_id=None) -> List[str]:
        return [name for sid, name, _ in self.events if session_id is None or sid == session_id]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scripted():
    return ScriptedEvaluator


@pytest.fixture
def make_orchestrator(store, pool, clock, sink):
    """Fresh orchestrator over the seeded pool; ``overrides`` replace dependencies."""

    def _make(evaluator=None, **overrides):
        deps = CoreDeps.build(store, evaluator=evaluator, clock=clock)
        for name, value in overrides.items():
            setattr(deps, name, value)
        return InterviewOrchestrator(deps, events=sink)

    return _make


@pytest.fixture
def start_request():
    def _request(resume_ref="res-1", jd_ref=None, interview_type="technical", user_id="user-1", **config):
        request = {"user_id": user_id, "resume_ref": resume_ref, "interview_type": interview_type}
        if jd_ref:
            request["job_description_ref"] = jd_ref
        if config:
            request["config"] = config
        return request

    return _request
