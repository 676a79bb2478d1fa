"""Public operations of the interview core.

Every operation returns an :class:`agents.types.OpResult`; core errors never
cross this boundary as exceptions. Mutations of one session run under its
mailbox lock. When a ``reply`` callback is given it is awaited with the
result before any server push for that session is published, still under
the lock, so acks and pushes keep request order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError

from agents import hint_agent
from agents.question_selector import AdaptiveSelector, Selection, next_difficulty
from agents.response_evaluator import AnswerEvaluator
from agents.types import (
    Answer,
    CoreError,
    Evaluation,
    InterviewType,
    OpResult,
    Question,
    TERMINAL_STATUSES,
    SessionConfig,
    Turn,
)
from config.settings import settings
from interview_session import state_machine as sm
from interview_session.state_machine import InvariantViolation, Session
from observability.logger import log_event
from observability.tracing import span
from ontology import SkillOntology, default_ontology
from storage.documents import ConflictError, DocumentStore, StoreError
from storage.question_pool import QuestionPool

from services.analytics import user_analytics
from services.documents import DocumentParser, StoredDocumentParser
from services.mailbox import SessionMailbox
from services.scoring import apply_turn_scores, compute_readiness
from services.sessions import SessionRepository
from services.skill_gap import READINESS_KIND, derive_plan_skills, prior_open_gaps, target_role_for

Reply = Callable[[OpResult], Awaitable[None]]
Event = Tuple[str, str, Dict[str, Any]]
T = TypeVar("T")

# errors after which a session id will never take work again
FINISHED_ERROR_KINDS = ("not-found", "gone")


class EventSink(Protocol):
    async def publish(self, session_id: str, event: str, data: Dict[str, Any]) -> None: ...


class NullEventSink:
    async def publish(self, session_id: str, event: str, data: Dict[str, Any]) -> None:
        return None


class Evaluator(Protocol):
    def evaluate(self, question: Question, answer: Answer, interview_type: str = "technical") -> Evaluation: ...

    async def enrich_feedback(
        self,
        evaluation: Evaluation,
        question: Question,
        answer: Answer,
        *,
        session_id: Optional[str] = None,
    ) -> Evaluation: ...


class StartSessionRequest(BaseModel):
    user_id: str = Field(min_length=1)
    resume_ref: str = Field(min_length=1)
    job_description_ref: Optional[str] = None
    interview_type: InterviewType
    config: SessionConfig = Field(default_factory=SessionConfig)


class SubmitAnswerRequest(BaseModel):
    session_id: str = Field(min_length=1)
    answer: str = ""
    time_spent_sec: float = Field(default=0.0, ge=0.0)
    media_ref: Optional[str] = None
    tests_passed: Optional[int] = Field(default=None, ge=0)
    tests_total: Optional[int] = Field(default=None, ge=0)


@dataclass
class CoreDeps:
    """Explicit collaborators handed to the orchestrator."""

    store: DocumentStore
    pool: QuestionPool
    parser: DocumentParser
    ontology: SkillOntology
    evaluator: Evaluator
    selector: AdaptiveSelector
    clock: Callable[[], datetime] = sm.utcnow

    @classmethod
    def build(
        cls,
        store: Optional[DocumentStore] = None,
        *,
        ontology: Optional[SkillOntology] = None,
        parser: Optional[DocumentParser] = None,
        evaluator: Optional[Evaluator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "CoreDeps":
        store = store or DocumentStore(settings.DB_PATH)
        onto = ontology or default_ontology()
        pool = QuestionPool(store)
        return cls(
            store=store,
            pool=pool,
            parser=parser or StoredDocumentParser(store, onto),
            ontology=onto,
            evaluator=evaluator or AnswerEvaluator(onto),
            selector=AdaptiveSelector(pool, onto),
            clock=clock or sm.utcnow,
        )


def validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ())) or "request"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def session_view(session: Session) -> Dict[str, Any]:
    """Session document safe to return to clients."""

    doc = session.to_document()
    if session.pending_question is not None:
        doc["pending_question"] = session.pending_question.public()
    return doc


class InterviewOrchestrator:
    """Coordinates evaluator, selector and state machine for every session."""

    def __init__(
        self,
        deps: CoreDeps,
        events: Optional[EventSink] = None,
        mailbox: Optional[SessionMailbox] = None,
    ) -> None:
        self.deps = deps
        self.events: EventSink = events or NullEventSink()
        self.mailbox = mailbox or SessionMailbox()
        self.repo = SessionRepository(deps.store)

    def set_event_sink(self, events: EventSink) -> None:
        self.events = events

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    async def _deliver(self, result: OpResult, reply: Optional[Reply], events: List[Event]) -> OpResult:
        if reply is not None:
            await reply(result)
        for session_id, name, data in events:
            await self.events.publish(session_id, name, data)
        return result

    def _load(self, session_id: str) -> Session:
        session = self.repo.load(session_id)
        if session is None:
            raise CoreError("not-found", f"session {session_id} not found")
        return session

    @staticmethod
    def _authorize(session: Session, user_id: Optional[str]) -> None:
        if user_id is not None and session.user_id != user_id:
            raise CoreError("unauthorized", "session belongs to another user")

    async def _mutate(
        self,
        session_id: str,
        user_id: Optional[str],
        apply: Callable[[Session], Awaitable[T]],
    ) -> Tuple[Session, T]:
        """Load, apply and save with optimistic versions, re-reading on conflict."""

        attempts = settings.CONFLICT_RETRIES + 1
        for attempt in range(attempts):
            session = self._load(session_id)
            self._authorize(session, user_id)
            outcome = await apply(session)
            sm.check_invariants(session)
            try:
                self.repo.save(session)
            except ConflictError as exc:
                log_event("session_write_conflict", session_id, level=logging.WARNING, attempt=attempt + 1, error=str(exc))
                continue
            return session, outcome
        raise CoreError("conflict", f"session {session_id} kept changing; gave up after {attempts} attempts")

    async def _guarded(
        self,
        session_id: Optional[str],
        reply: Optional[Reply],
        body: Callable[[], Awaitable[Tuple[Dict[str, Any], List[Event]]]],
    ) -> OpResult:
        events: List[Event] = []
        try:
            data, events = await body()
            result = OpResult.success(data)
        except CoreError as exc:
            result = OpResult.failure(exc.kind, exc.message)
        except InvariantViolation as exc:
            events = self._terminate_after_violation(session_id, exc)
            result = OpResult.failure("internal", "internal error; the session was terminated")
        except StoreError as exc:
            log_event("store_error", session_id, level=logging.ERROR, error=str(exc))
            result = OpResult.failure("internal", "session storage is unavailable")
        return await self._deliver(result, reply, events)

    async def _locked(
        self,
        session_id: str,
        reply: Optional[Reply],
        body: Callable[[], Awaitable[Tuple[Dict[str, Any], List[Event]]]],
    ) -> OpResult:
        async with self.mailbox.exclusive(session_id):
            self.mailbox.touch(session_id, self.deps.clock())
            result = await self._guarded(session_id, reply, body)
        self._settle(session_id, result)
        return result

    def _settle(self, session_id: str, result: OpResult) -> None:
        """Forget mailbox state for sessions that can take no further work."""

        if result.ok:
            data = result.data or {}
            done = data.get("status") in TERMINAL_STATUSES or data.get("type") == "interview-complete"
        else:
            done = result.error is not None and result.error.kind in FINISHED_ERROR_KINDS
        if done:
            self.mailbox.forget(session_id)

    def _terminate_after_violation(self, session_id: Optional[str], exc: InvariantViolation) -> List[Event]:
        log_event("invariant_violation", session_id, level=logging.ERROR, error=str(exc))
        if session_id is None:
            return []
        for _ in range(settings.CONFLICT_RETRIES + 1):
            session = self.repo.load(session_id)
            if session is None or session.is_terminal:
                return []
            sm.terminate_on_error(session, self.deps.clock())
            try:
                self.repo.save(session)
            except ConflictError:
                continue
            self.mailbox.forget(session_id)
            return [
                (
                    session_id,
                    "interview_ended",
                    {"session_id": session_id, "reason": "internal-error", "status": session.status},
                )
            ]
        return []

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def start_session(
        self,
        request: Union[StartSessionRequest, Dict[str, Any]],
        *,
        reply: Optional[Reply] = None,
    ) -> OpResult:
        try:
            req = request if isinstance(request, StartSessionRequest) else StartSessionRequest.model_validate(request)
        except ValidationError as exc:
            return await self._deliver(OpResult.failure("invalid-input", validation_message(exc)), reply, [])

        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            deps = self.deps
            resume = deps.parser.load_resume(req.resume_ref)
            if resume is None:
                raise CoreError("not-found", f"resume {req.resume_ref} not found")
            job_description = None
            if req.job_description_ref:
                job_description = deps.parser.load_job_description(req.job_description_ref)
                if job_description is None:
                    raise CoreError("not-found", f"job description {req.job_description_ref} not found")

            cfg = req.config
            planned = cfg.planned_question_count or settings.DEFAULT_PLANNED_QUESTIONS
            planned = max(settings.MIN_PLANNED_QUESTIONS, min(settings.MAX_PLANNED_QUESTIONS, planned))
            max_follow_ups = (
                settings.MAX_FOLLOWUPS_PER_TOPIC if cfg.max_follow_ups_per_topic is None else cfg.max_follow_ups_per_topic
            )
            plan = derive_plan_skills(
                resume,
                job_description,
                req.interview_type,
                prior_open_gaps(deps.store, req.user_id),
                deps.ontology,
            )
            session = sm.new_session(
                user_id=req.user_id,
                target_role=target_role_for(job_description),
                interview_type=req.interview_type,
                plan_skills=plan,
                planned_question_count=planned,
                max_follow_ups=max_follow_ups,
                difficulty=cfg.initial_difficulty or "medium",
                resume_ref=req.resume_ref,
                job_description_ref=req.job_description_ref,
                resume_excerpt=resume.summary[:300],
                now=deps.clock(),
            )
            created = False
            try:
                async with self.mailbox.exclusive(session.session_id):
                    selection = await deps.selector.select(session)
                    if selection.question is None:
                        raise InvariantViolation("selector produced no first question")
                    sm.pose_question(session, selection.question, revisit=selection.revisit)
                    sm.check_invariants(session)
                    self.repo.create(session)
                    created = True
                    self.mailbox.touch(session.session_id, deps.clock())
            finally:
                if not created:
                    self.mailbox.forget(session.session_id)

            question = selection.question
            log_event(
                "session_started",
                session.session_id,
                status=session.status,
                difficulty=session.difficulty,
                user_id=session.user_id,
                topic=question.topic,
                plan=[p.skill for p in plan],
            )
            data = {
                "session_id": session.session_id,
                "first_question": question.public(),
                "context": session.context(),
            }
            return data, [(session.session_id, "interview_started", data)]

        return await self._guarded(None, reply, body)

    async def submit_answer(
        self,
        request: Union[SubmitAnswerRequest, Dict[str, Any]],
        *,
        user_id: Optional[str] = None,
        reply: Optional[Reply] = None,
    ) -> OpResult:
        try:
            req = request if isinstance(request, SubmitAnswerRequest) else SubmitAnswerRequest.model_validate(request)
        except ValidationError as exc:
            return await self._deliver(OpResult.failure("invalid-input", validation_message(exc)), reply, [])

        session_id = req.session_id
        claimed = self.mailbox.try_begin_submit(session_id)
        try:
            async with self.mailbox.exclusive(session_id):
                self.mailbox.touch(session_id, self.deps.clock())
                if not claimed:
                    # rejected while the earlier answer was in flight; acked after its result
                    result = OpResult.failure(
                        "precondition-failed",
                        "another answer for this session was still being evaluated",
                    )
                    return await self._deliver(result, reply, [])
                result = await self._guarded(session_id, reply, lambda: self._submit(req, user_id))
        finally:
            if claimed:
                self.mailbox.end_submit(session_id)
        self._settle(session_id, result)
        return result

    async def _submit(self, req: SubmitAnswerRequest, user_id: Optional[str]) -> Tuple[Dict[str, Any], List[Event]]:
        deps = self.deps
        session = self._load(req.session_id)
        self._authorize(session, user_id)
        sm.ensure_active(session)
        question = session.pending_question
        if question is None:
            raise InvariantViolation("active session has no pending question")
        answer = Answer(
            text=req.answer,
            time_spent_sec=req.time_spent_sec,
            media_ref=req.media_ref,
            tests_passed=req.tests_passed,
            tests_total=req.tests_total,
        )
        with span(session.session_id, "evaluate", turn=session.turn_count + 1):
            evaluation = deps.evaluator.evaluate(question, answer, session.interview_type)
            evaluation = await deps.evaluator.enrich_feedback(evaluation, question, answer, session_id=session.session_id)

        async def apply(current: Session) -> Selection:
            sm.ensure_active(current)
            pending = current.pending_question
            if pending is None or pending.question_id != question.question_id:
                raise CoreError("conflict", "the pending question changed while the answer was evaluated")
            turn = Turn(
                turn_number=current.turn_count + 1,
                question=question,
                answer=answer,
                evaluation=evaluation,
                decision="continue-new-topic",
                timestamp=deps.clock(),
            )
            sm.append_turn(current, turn)
            apply_turn_scores(current, turn, deps.ontology)
            current.difficulty = next_difficulty(current.turns, current.difficulty)
            with span(current.session_id, "select", turn=turn.turn_number):
                selection = await deps.selector.select(current)
            turn.decision = selection.decision
            if selection.decision == "terminate":
                sm.complete(current, compute_readiness(current, deps.ontology), deps.clock())
                self._record_readiness(current)
            else:
                if selection.question is None:
                    raise InvariantViolation("selector continued without a question")
                sm.pose_question(current, selection.question, revisit=selection.revisit)
            return selection

        session, selection = await self._mutate(req.session_id, user_id, apply)
        turn = session.turns[-1]
        log_event(
            "turn_evaluated",
            session.session_id,
            turn=turn.turn_number,
            score=evaluation.score,
            verdict=evaluation.verdict,
            decision=selection.decision,
            difficulty=session.difficulty,
        )
        evaluation_data = evaluation.model_dump(mode="json")
        sid = session.session_id

        if session.status == "completed" and session.readiness is not None:
            summary = session.readiness.model_dump(mode="json")
            log_event(
                "session_completed",
                sid,
                status=session.status,
                score=session.readiness.overall_score,
                reason=session.readiness.readiness_level,
            )
            data = {"session_id": sid, "type": "interview-complete", "evaluation": evaluation_data, "summary": summary}
            return data, [(sid, "interview_completed", {"session_id": sid, "summary": summary})]

        next_q = session.pending_question
        if next_q is None:
            raise InvariantViolation("active session has no pending question after a turn")
        context = session.context()
        if next_q.is_follow_up:
            data = {
                "session_id": sid,
                "type": "follow-up",
                "evaluation": evaluation_data,
                "next_question": next_q.public(),
                "parent_turn_number": next_q.parent_turn_number,
                "context": context,
            }
            event = {
                "session_id": sid,
                "question": next_q.public(),
                "parent_turn_number": next_q.parent_turn_number,
                "context": context,
            }
            return data, [(sid, "follow_up_question", event)]
        data = {
            "session_id": sid,
            "type": "next-question",
            "evaluation": evaluation_data,
            "next_question": next_q.public(),
            "context": context,
        }
        return data, [(sid, "next_question", {"session_id": sid, "question": next_q.public(), "context": context})]

    def _record_readiness(self, session: Session) -> None:
        """Store the readiness summary; runs before the completed session is saved."""

        if session.readiness is None:
            return
        self.deps.store.put(
            READINESS_KIND,
            session.session_id,
            {
                "user_id": session.user_id,
                "session_id": session.session_id,
                "completed_at": session.completed_at.isoformat() if session.completed_at else None,
                "readiness": session.readiness.model_dump(mode="json"),
            },
        )

    async def pause_session(self, session_id: str, *, user_id: Optional[str] = None, reply: Optional[Reply] = None) -> OpResult:
        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            async def apply(session: Session) -> None:
                sm.pause(session, self.deps.clock())

            session, _ = await self._mutate(session_id, user_id, apply)
            log_event("session_paused", session_id, status=session.status)
            return {"session_id": session_id, "status": session.status}, []

        return await self._locked(session_id, reply, body)

    async def resume_session(self, session_id: str, *, user_id: Optional[str] = None, reply: Optional[Reply] = None) -> OpResult:
        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            async def apply(session: Session) -> None:
                sm.resume(session, self.deps.clock())

            session, _ = await self._mutate(session_id, user_id, apply)
            log_event("session_resumed", session_id, status=session.status)
            data: Dict[str, Any] = {"session_id": session_id, "status": session.status, "context": session.context()}
            if session.pending_question is not None:
                data["question"] = session.pending_question.public()
            return data, []

        return await self._locked(session_id, reply, body)

    async def end_session(
        self,
        session_id: str,
        *,
        user_id: Optional[str] = None,
        reason: str = "user-ended",
        reply: Optional[Reply] = None,
    ) -> OpResult:
        """Terminate a session; waits for any in-flight answer on it first."""

        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            async def apply(session: Session) -> None:
                sm.end(session, reason, self.deps.clock())

            session, _ = await self._mutate(session_id, user_id, apply)
            log_event("session_ended", session_id, status=session.status, reason=reason, turn=session.turn_count)
            data = {
                "session_id": session_id,
                "status": session.status,
                "reason": reason,
                "turns_completed": session.turn_count,
            }
            event = {"session_id": session_id, "reason": reason, "status": session.status}
            return data, [(session_id, "interview_ended", event)]

        return await self._locked(session_id, reply, body)

    async def get_session(self, session_id: str, *, user_id: Optional[str] = None, reply: Optional[Reply] = None) -> OpResult:
        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            session = self._load(session_id)
            self._authorize(session, user_id)
            return {"session": session_view(session)}, []

        return await self._guarded(None, reply, body)

    async def get_analytics(self, user_id: str, *, reply: Optional[Reply] = None) -> OpResult:
        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            if not user_id:
                raise CoreError("invalid-input", "user_id is required")
            return user_analytics(self.repo, user_id), []

        return await self._guarded(None, reply, body)

    async def request_hint(self, session_id: str, *, user_id: Optional[str] = None, reply: Optional[Reply] = None) -> OpResult:
        async def body() -> Tuple[Dict[str, Any], List[Event]]:
            async def apply(session: Session) -> hint_agent.Hint:
                sm.ensure_active(session)
                if session.pending_question is None:
                    raise CoreError("precondition-failed", "no question is waiting for an answer")
                hint = await hint_agent.run(session.pending_question, session.hints_used, session_id=session_id)
                session.hints_used += 1
                return hint

            session, hint = await self._mutate(session_id, user_id, apply)
            log_event("hint_served", session_id, turn=session.turn_count + 1, hints=session.hints_used)
            return {
                "session_id": session_id,
                "hint": hint.hint,
                "hints_used": session.hints_used,
                "flags": hint.flags,
            }, []

        return await self._locked(session_id, reply, body)

    # ------------------------------------------------------------------
    # Idle sweeping
    # ------------------------------------------------------------------
    def _idle_since(self, session: Session) -> datetime:
        seen = self.mailbox.last_seen(session.session_id)
        if seen is not None and seen > session.updated_at:
            return seen
        return session.updated_at

    async def sweep_idle(self, now: Optional[datetime] = None) -> List[str]:
        """Abandon active/paused sessions idle past the timeout; returns their ids."""

        ts = now or self.deps.clock()
        cutoff = timedelta(minutes=settings.SESSION_IDLE_TIMEOUT_MIN)
        abandoned: List[str] = []
        idle = [
            candidate.session_id
            for status in ("active", "paused")
            for candidate in self.repo.iter_by_status(status)
            if ts - self._idle_since(candidate) >= cutoff
        ]
        for sid in idle:
            async def body(sid: str = sid) -> Tuple[Dict[str, Any], List[Event]]:
                async def apply(session: Session) -> None:
                    if session.is_terminal or ts - self._idle_since(session) < cutoff:
                        raise CoreError("precondition-failed", "session is no longer idle")
                    sm.abandon(session, ts)

                session, _ = await self._mutate(sid, None, apply)
                log_event("session_abandoned", sid, status=session.status, turn=session.turn_count)
                abandoned.append(sid)
                event = {"session_id": sid, "reason": "abandoned", "status": session.status}
                return {"session_id": sid}, [(sid, "interview_ended", event)]

            async with self.mailbox.exclusive(sid):
                await self._guarded(sid, None, body)
            if sid in abandoned:
                self.mailbox.forget(sid)
        return abandoned


__all__ = [
    "CoreDeps",
    "EventSink",
    "Evaluator",
    "InterviewOrchestrator",
    "NullEventSink",
    "StartSessionRequest",
    "SubmitAnswerRequest",
    "session_view",
    "validation_message",
]
